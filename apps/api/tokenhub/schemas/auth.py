"""Auth schemas: CurrentUser, profile, permissions."""

import uuid

from pydantic import BaseModel

from tokenhub.models.enums import OrgType, UserRole


class CurrentUser(BaseModel):
    """Lightweight user context extracted from Clerk JWT + DB lookup."""

    user_id: uuid.UUID
    org_id: uuid.UUID
    role: UserRole
    email: str
    external_auth_id: str  # Clerk user ID (e.g. "user_2x...")
    full_name: str = ""


class UserProfileResponse(BaseModel):
    id: uuid.UUID
    email: str
    full_name: str
    role: UserRole
    org_id: uuid.UUID
    org_name: str
    org_type: OrgType
    org_slug: str
    permissions: dict[str, list[str]]  # resource_type -> allowed actions


class PermissionMatrixResponse(BaseModel):
    role: UserRole
    permissions: dict[str, list[str]]  # resource_type -> actions
