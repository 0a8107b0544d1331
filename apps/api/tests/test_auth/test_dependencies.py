"""Tests for auth dependency functions."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials
from jose import JWTError

from tokenhub.auth.dependencies import (
    get_current_user,
    require_permission,
    require_role,
)
from tokenhub.models.enums import UserRole
from tests.conftest import (
    SAMPLE_CLERK_ID,
    SAMPLE_ORG_ID,
    SAMPLE_USER_ID,
    make_user,
    result,
)

CREDENTIALS = HTTPAuthorizationCredentials(scheme="Bearer", credentials="header.payload.sig")


def _db_user(role: UserRole = UserRole.MANAGER) -> MagicMock:
    user = MagicMock()
    user.id = SAMPLE_USER_ID
    user.org_id = SAMPLE_ORG_ID
    user.role = role
    user.email = "manager@example.com"
    user.full_name = "Morgan Manager"
    return user


class TestRequireRole:
    """Test the require_role dependency factory."""

    @pytest.mark.anyio
    async def test_allowed_role_passes(self):
        checker = require_role([UserRole.ADMIN, UserRole.MANAGER])
        user = await checker(current_user=make_user(UserRole.MANAGER))
        assert user.role == UserRole.MANAGER

    @pytest.mark.anyio
    async def test_disallowed_role_raises_403(self):
        checker = require_role([UserRole.ADMIN])
        with pytest.raises(HTTPException) as exc:
            await checker(current_user=make_user(UserRole.VIEWER))
        assert exc.value.status_code == 403
        assert "viewer" in exc.value.detail


class TestRequirePermission:
    """Test the require_permission dependency factory."""

    @pytest.mark.anyio
    async def test_manager_can_approve(self):
        checker = require_permission("approve", "approval")
        user = await checker(current_user=make_user(UserRole.MANAGER))
        assert user.role == UserRole.MANAGER

    @pytest.mark.anyio
    async def test_analyst_cannot_approve(self):
        checker = require_permission("approve", "approval")
        with pytest.raises(HTTPException) as exc:
            await checker(current_user=make_user(UserRole.ANALYST))
        assert exc.value.status_code == 403
        assert exc.value.detail == "Permission denied: approve on approval"


@pytest.mark.anyio
class TestGetCurrentUser:
    async def test_resolves_user_and_tenant_state(self, mock_db):
        request = MagicMock()
        mock_db.execute.return_value = result(scalar=_db_user())
        with patch(
            "tokenhub.auth.dependencies.verify_clerk_token",
            new_callable=AsyncMock,
            return_value={"sub": SAMPLE_CLERK_ID},
        ):
            user = await get_current_user(request, CREDENTIALS, mock_db)

        assert user.user_id == SAMPLE_USER_ID
        assert user.org_id == SAMPLE_ORG_ID
        assert user.role == UserRole.MANAGER
        assert user.full_name == "Morgan Manager"
        assert user.external_auth_id == SAMPLE_CLERK_ID
        assert request.state.org_id == SAMPLE_ORG_ID
        assert request.state.user_id == SAMPLE_USER_ID

    async def test_invalid_token_is_401(self, mock_db):
        with patch(
            "tokenhub.auth.dependencies.verify_clerk_token",
            new_callable=AsyncMock,
            side_effect=JWTError("bad signature"),
        ):
            with pytest.raises(HTTPException) as exc:
                await get_current_user(MagicMock(), CREDENTIALS, mock_db)
        assert exc.value.status_code == 401
        mock_db.execute.assert_not_called()

    async def test_missing_subject_is_401(self, mock_db):
        with patch(
            "tokenhub.auth.dependencies.verify_clerk_token",
            new_callable=AsyncMock,
            return_value={},
        ):
            with pytest.raises(HTTPException) as exc:
                await get_current_user(MagicMock(), CREDENTIALS, mock_db)
        assert exc.value.detail == "Token missing subject claim"

    async def test_unknown_user_is_401(self, mock_db):
        mock_db.execute.return_value = result(scalar=None)
        with patch(
            "tokenhub.auth.dependencies.verify_clerk_token",
            new_callable=AsyncMock,
            return_value={"sub": "user_unknown"},
        ):
            with pytest.raises(HTTPException) as exc:
                await get_current_user(MagicMock(), CREDENTIALS, mock_db)
        assert exc.value.status_code == 401
        assert exc.value.detail == "User not found or inactive"
