"""Tests for auth router endpoints."""

from unittest.mock import MagicMock

import pytest
from httpx import AsyncClient

from tokenhub.models.enums import OrgType, UserRole
from tests.conftest import SAMPLE_ORG_ID, SAMPLE_USER_ID, result


@pytest.mark.anyio
class TestMeEndpoint:
    async def test_unauthenticated_returns_401(self, client: AsyncClient):
        response = await client.get("/v1/auth/me")
        assert response.status_code in (401, 403)

    async def test_profile(self, client: AsyncClient, as_user, mock_db):
        as_user(UserRole.ANALYST)
        user = MagicMock(
            id=SAMPLE_USER_ID,
            email="test@example.com",
            full_name="Test User",
            role=UserRole.ANALYST,
        )
        org = MagicMock(id=SAMPLE_ORG_ID, type=OrgType.INVESTOR, slug="acme")
        org.name = "Acme Capital"
        row = MagicMock()
        row.tuple.return_value = (user, org)
        res = result()
        res.one_or_none.return_value = row
        mock_db.execute.return_value = res

        response = await client.get("/v1/auth/me")

        assert response.status_code == 200
        body = response.json()
        assert body["org_name"] == "Acme Capital"
        assert body["role"] == "analyst"
        assert body["permissions"]["redemption"] == ["create", "view"]

    async def test_missing_profile_is_404(self, client: AsyncClient, as_user, mock_db):
        as_user(UserRole.VIEWER)
        res = result()
        res.one_or_none.return_value = None
        mock_db.execute.return_value = res

        response = await client.get("/v1/auth/me")

        assert response.status_code == 404


@pytest.mark.anyio
class TestPermissionsEndpoint:
    async def test_unauthenticated_returns_401(self, client: AsyncClient):
        response = await client.get("/v1/auth/permissions")
        assert response.status_code in (401, 403)

    async def test_manager_matrix(self, client: AsyncClient, as_user):
        as_user(UserRole.MANAGER)
        response = await client.get("/v1/auth/permissions")
        assert response.status_code == 200
        body = response.json()
        assert body["role"] == "manager"
        assert "approve" in body["permissions"]["approval"]
