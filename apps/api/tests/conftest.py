"""Shared test fixtures for the Tokenhub API test suite.

Service and router tests run against a mocked AsyncSession: execute()
results are scripted per test with ``result()`` and routers get their
user and session through dependency overrides.
"""

import os

os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import uuid  # noqa: E402
from collections.abc import AsyncGenerator, Callable, Generator  # noqa: E402
from datetime import datetime, timezone  # noqa: E402
from decimal import Decimal  # noqa: E402
from typing import Any  # noqa: E402
from unittest.mock import AsyncMock, MagicMock, patch  # noqa: E402

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from tokenhub.auth.dependencies import get_current_user  # noqa: E402
from tokenhub.core.database import get_db  # noqa: E402
from tokenhub.main import app  # noqa: E402
from tokenhub.models.enums import (  # noqa: E402
    ApproverStatus,
    RedemptionStatus,
    RedemptionType,
    UserRole,
)
from tokenhub.models.investors import Distribution  # noqa: E402
from tokenhub.models.redemptions import (  # noqa: E402
    RedemptionApprover,
    RedemptionRequest,
    RedemptionStatusEvent,
)
from tokenhub.schemas.auth import CurrentUser  # noqa: E402

SAMPLE_ORG_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")
SAMPLE_USER_ID = uuid.UUID("00000000-0000-0000-0000-000000000002")
SAMPLE_INVESTOR_ID = uuid.UUID("00000000-0000-0000-0000-000000000003")
SAMPLE_CLERK_ID = "user_test_clerk_123"

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


# ── Users ─────────────────────────────────────────────────────────────────


def make_user(role: UserRole = UserRole.ADMIN, user_id: uuid.UUID = SAMPLE_USER_ID) -> CurrentUser:
    return CurrentUser(
        user_id=user_id,
        org_id=SAMPLE_ORG_ID,
        role=role,
        email="test@example.com",
        external_auth_id=SAMPLE_CLERK_ID,
        full_name="Test User",
    )


@pytest.fixture
def sample_current_user() -> CurrentUser:
    return make_user(UserRole.ADMIN)


# ── Mocked session ────────────────────────────────────────────────────────


def result(
    scalar: Any = None,
    scalars: list[Any] | None = None,
    rows: list[Any] | None = None,
) -> MagicMock:
    """A stand-in for the Result returned by AsyncSession.execute()."""
    res = MagicMock()
    res.scalar_one_or_none.return_value = scalar
    res.scalar_one.return_value = scalar
    res.scalars.return_value.all.return_value = scalars or []
    res.scalars.return_value.unique.return_value.all.return_value = scalars or []
    res.all.return_value = rows or []
    return res


@pytest.fixture
def mock_db() -> MagicMock:
    db = MagicMock()
    db.execute = AsyncMock(return_value=result())
    db.flush = AsyncMock()
    db.refresh = AsyncMock()
    db.commit = AsyncMock()
    db.rollback = AsyncMock()
    db.close = AsyncMock()
    return db


# ── HTTP client ───────────────────────────────────────────────────────────


@pytest.fixture
async def client() -> AsyncGenerator[AsyncClient]:
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
def as_user(mock_db: MagicMock) -> Generator[Callable[[UserRole], CurrentUser]]:
    """Authenticate requests as a user of the given role, backed by mock_db."""

    def _login(role: UserRole = UserRole.ADMIN) -> CurrentUser:
        user = make_user(role)
        app.dependency_overrides[get_current_user] = lambda: user
        return user

    async def _db():
        yield mock_db

    app.dependency_overrides[get_db] = _db
    yield _login
    app.dependency_overrides.clear()


@pytest.fixture
def no_publish():
    """Skip publishing change events to Redis."""
    with patch("tokenhub.realtime.feed.RedisChangeFeed.publish", new_callable=AsyncMock) as mock:
        yield mock


# ── Model factories ───────────────────────────────────────────────────────


def make_redemption(**overrides: Any) -> RedemptionRequest:
    values: dict[str, Any] = {
        "id": uuid.uuid4(),
        "org_id": SAMPLE_ORG_ID,
        "token_amount": Decimal("100"),
        "token_type": "TKN",
        "redemption_type": RedemptionType.STANDARD,
        "status": RedemptionStatus.PENDING,
        "source_wallet_address": "0xsource",
        "destination_wallet_address": "0xdestination",
        "conversion_rate": Decimal("1.5"),
        "investor_id": SAMPLE_INVESTOR_ID,
        "investor_name": "Ada Investor",
        "distribution_id": None,
        "required_approvals": 2,
        "is_bulk_redemption": False,
        "investor_count": 1,
        "is_deleted": False,
        "created_at": NOW,
        "updated_at": NOW,
    }
    values.update(overrides)
    return RedemptionRequest(**values)


def make_seat(
    redemption: RedemptionRequest | None = None,
    status: ApproverStatus = ApproverStatus.PENDING,
    **overrides: Any,
) -> RedemptionApprover:
    values: dict[str, Any] = {
        "id": uuid.uuid4(),
        "redemption_id": redemption.id if redemption is not None else uuid.uuid4(),
        "approver_id": uuid.uuid4(),
        "approver_name": "Approver",
        "status": status,
        "is_deleted": False,
        "created_at": NOW,
        "updated_at": NOW,
    }
    values.update(overrides)
    return RedemptionApprover(**values)


def make_distribution(**overrides: Any) -> Distribution:
    values: dict[str, Any] = {
        "id": uuid.uuid4(),
        "org_id": SAMPLE_ORG_ID,
        "investor_id": SAMPLE_INVESTOR_ID,
        "token_type": "TKN",
        "token_amount": Decimal("1000"),
        "remaining_amount": Decimal("1000"),
        "fully_redeemed": False,
        "distribution_date": NOW,
        "blockchain": "ethereum",
        "to_address": "0xinvestor",
        "status": "completed",
        "is_deleted": False,
        "created_at": NOW,
        "updated_at": NOW,
    }
    values.update(overrides)
    return Distribution(**values)


def make_status_event(redemption: RedemptionRequest, **overrides: Any) -> RedemptionStatusEvent:
    values: dict[str, Any] = {
        "id": uuid.uuid4(),
        "redemption_id": redemption.id,
        "from_status": None,
        "to_status": redemption.status.value,
        "message": "Redemption request submitted for review",
        "created_at": NOW,
    }
    values.update(overrides)
    return RedemptionStatusEvent(**values)
