"""FastAPI auth dependencies: get_current_user, require_role, require_permission."""

import httpx
import sentry_sdk
import structlog
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tokenhub.auth.clerk_jwt import verify_clerk_token
from tokenhub.auth.rbac import check_permission
from tokenhub.core.database import get_db
from tokenhub.models.core import User
from tokenhub.models.enums import UserRole
from tokenhub.schemas.auth import CurrentUser

logger = structlog.get_logger()

bearer_scheme = HTTPBearer(auto_error=True)


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> CurrentUser:
    """
    Verify Clerk JWT and resolve the platform user.

    Decodes JWT -> gets Clerk's `sub` claim (external_auth_id) ->
    looks up User in DB to get internal user_id, org_id, role.
    Always checks is_active and is_deleted.
    """
    token = credentials.credentials
    try:
        payload = await verify_clerk_token(token)
    except (JWTError, httpx.HTTPError) as e:
        logger.warning("jwt_verification_failed", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e

    clerk_user_id = payload.get("sub")
    if not clerk_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token missing subject claim",
        )

    stmt = select(User).where(
        User.external_auth_id == clerk_user_id,
        User.is_active.is_(True),
        User.is_deleted.is_(False),
    )
    user = (await db.execute(stmt)).scalar_one_or_none()

    if user is None:
        logger.warning("user_not_found_for_clerk_id", clerk_id=clerk_user_id)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or inactive",
        )

    current_user = CurrentUser(
        user_id=user.id,
        org_id=user.org_id,
        role=user.role,
        email=user.email,
        external_auth_id=clerk_user_id,
        full_name=user.full_name,
    )

    # Tenant context for the audit middleware
    request.state.org_id = user.org_id
    request.state.user_id = user.id

    # PII-free: no email
    sentry_sdk.set_user({"id": str(user.id)})
    sentry_sdk.set_tag("org_id", str(user.org_id))
    sentry_sdk.set_tag("user_role", user.role.value)

    return current_user


def require_role(allowed_roles: list[UserRole]):
    """
    Dependency factory: checks if current user has one of the allowed roles.

    Usage:
        @router.post("/x", dependencies=[Depends(require_role([UserRole.ADMIN]))])
    """

    async def _check_role(
        current_user: CurrentUser = Depends(get_current_user),
    ) -> CurrentUser:
        if current_user.role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Role '{current_user.role.value}' not authorized. Required: {[r.value for r in allowed_roles]}",
            )
        return current_user

    return _check_role


def require_permission(action: str, resource_type: str):
    """
    Dependency factory: checks a specific (action, resource_type) permission.

    Usage:
        current_user: CurrentUser = Depends(require_permission("approve", "approval"))
    """

    async def _check_perm(
        current_user: CurrentUser = Depends(get_current_user),
    ) -> CurrentUser:
        if not check_permission(current_user.role, action, resource_type):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied: {action} on {resource_type}",
            )
        return current_user

    return _check_perm
