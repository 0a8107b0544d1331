"""Auth API router: profile and permissions."""

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tokenhub.auth.dependencies import get_current_user
from tokenhub.auth.rbac import get_permissions_for_role
from tokenhub.core.database import get_db
from tokenhub.models.core import Organization, User
from tokenhub.schemas.auth import CurrentUser, PermissionMatrixResponse, UserProfileResponse

logger = structlog.get_logger()

router = APIRouter(prefix="/auth", tags=["auth"])


@router.get("/me", response_model=UserProfileResponse)
async def get_me(
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Return current user profile with organization details and permissions."""
    stmt = (
        select(User, Organization)
        .join(Organization, User.org_id == Organization.id)
        .where(User.id == current_user.user_id)
    )
    row = (await db.execute(stmt)).one_or_none()
    if not row:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    user, org = row.tuple()
    return UserProfileResponse(
        id=user.id,
        email=user.email,
        full_name=user.full_name,
        role=user.role,
        org_id=org.id,
        org_name=org.name,
        org_type=org.type,
        org_slug=org.slug,
        permissions=get_permissions_for_role(current_user.role),
    )


@router.get("/permissions", response_model=PermissionMatrixResponse)
async def get_permissions(
    current_user: CurrentUser = Depends(get_current_user),
):
    """Return the current user's permission matrix."""
    return PermissionMatrixResponse(
        role=current_user.role,
        permissions=get_permissions_for_role(current_user.role),
    )
