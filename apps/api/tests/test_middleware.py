"""Tests for the ASGI middleware stack: headers, body limits, rate rules, audit."""

import base64
import json
import uuid

import pytest
from httpx import AsyncClient

from tokenhub.middleware.audit import describe_request
from tokenhub.middleware.security import (
    _DEFAULT_RATE,
    _ORG_RATE_RULES,
    _RATE_RULES,
    RateLimitMiddleware,
    _match_rule,
)
from tokenhub.middleware.tenant import TenantMiddleware
from tokenhub.models.enums import UserRole


def _bearer(claims: dict) -> bytes:
    payload = base64.urlsafe_b64encode(json.dumps(claims).encode()).rstrip(b"=")
    return b"Bearer eyJhbGciOiJSUzI1NiJ9." + payload + b".signature"


class TestDescribeRequest:
    def test_create(self):
        assert describe_request("POST", "/v1/redemptions") == ("create", "redemption", None)

    def test_status_change(self):
        rid = uuid.uuid4()
        assert describe_request("PATCH", f"/v1/redemptions/{rid}/status") == (
            "status",
            "redemption",
            rid,
        )

    def test_decision(self):
        aid = uuid.uuid4()
        assert describe_request("POST", f"/v1/approvals/{aid}/decision") == (
            "decision",
            "approval",
            aid,
        )

    def test_named_sub_action(self):
        assert describe_request("POST", "/v1/redemptions/bulk") == ("bulk", "redemption", None)

    def test_delete_by_id(self):
        did = uuid.uuid4()
        assert describe_request("DELETE", f"/distributions/{did}") == ("delete", "distribution", did)

    def test_empty_path(self):
        assert describe_request("POST", "/") == ("create", "unknown", None)


class TestRateRules:
    def test_auth_is_strictest(self):
        assert _match_rule("/auth/me", _RATE_RULES, _DEFAULT_RATE) == (20, 60)

    def test_bulk_before_generic(self):
        assert _match_rule("/redemptions/bulk", _RATE_RULES, _DEFAULT_RATE) == (10, 60)
        assert _match_rule("/redemptions/bulk", _ORG_RATE_RULES, (1000, 60)) == (30, 60)

    def test_default(self):
        assert _match_rule("/distributions/enriched", _RATE_RULES, _DEFAULT_RATE) == _DEFAULT_RATE


class TestExtractOrgId:
    def test_top_level_claim(self):
        headers = {b"authorization": _bearer({"sub": "user_1", "org_id": "org_a"})}
        assert RateLimitMiddleware._extract_org_id(headers) == "org_a"

    def test_metadata_claim(self):
        headers = {b"authorization": _bearer({"metadata": {"org_id": "org_b"}})}
        assert RateLimitMiddleware._extract_org_id(headers) == "org_b"

    @pytest.mark.parametrize(
        "value",
        [b"", b"Basic abc", b"Bearer not-a-jwt", b"Bearer a.!!!.c"],
    )
    def test_malformed(self, value):
        assert RateLimitMiddleware._extract_org_id({b"authorization": value}) is None


@pytest.mark.anyio
class TestTenantMiddleware:
    async def test_sets_state_defaults(self):
        seen: dict = {}

        async def inner(scope, receive, send):
            seen.update(scope["state"])

        await TenantMiddleware(inner)({"type": "http", "path": "/"}, None, None)

        assert seen == {"org_id": None, "user_id": None}

    async def test_keeps_existing_state(self):
        seen: dict = {}

        async def inner(scope, receive, send):
            seen.update(scope["state"])

        scope = {"type": "http", "path": "/", "state": {"org_id": "org_a"}}
        await TenantMiddleware(inner)(scope, None, None)

        assert seen["org_id"] == "org_a"
        assert seen["user_id"] is None


@pytest.mark.anyio
class TestAppMiddleware:
    async def test_security_and_version_headers(self, client: AsyncClient, as_user):
        as_user(UserRole.VIEWER)
        response = await client.get("/v1/auth/permissions")

        assert response.status_code == 200
        assert response.headers["x-content-type-options"] == "nosniff"
        assert response.headers["x-frame-options"] == "DENY"
        assert response.headers["server"] == "tokenhub"
        assert response.headers["x-api-version"] == "v1"

    async def test_oversized_body_is_413(self, client: AsyncClient):
        response = await client.post(
            "/v1/redemptions",
            content=b"{}",
            headers={"content-length": str(50 * 1024 * 1024), "content-type": "application/json"},
        )
        assert response.status_code == 413
        assert "too large" in response.json()["detail"]
