"""Tests for distributions: investor id parsing, balance draw-down, routes."""

import uuid
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest
from httpx import AsyncClient

from tokenhub.core.errors import NotFoundError, ValidationError
from tokenhub.models.enums import UserRole
from tokenhub.models.investors import DistributionRedemption
from tokenhub.modules.distributions.service import (
    DistributionService,
    is_placeholder,
    parse_investor_id,
)
from tests.conftest import SAMPLE_ORG_ID, make_distribution, result


class TestParseInvestorId:
    @pytest.mark.parametrize("value", ["current-user", "current-investor", " current-user "])
    def test_placeholders_rejected(self, value):
        assert is_placeholder(value)
        with pytest.raises(ValidationError):
            parse_investor_id(value)

    def test_garbage_rejected(self):
        with pytest.raises(ValidationError):
            parse_investor_id("not-a-uuid")

    def test_valid(self):
        investor_id = uuid.uuid4()
        assert parse_investor_id(str(investor_id)) == investor_id

    @pytest.mark.parametrize("value", [None, "", "   "])
    def test_empty_is_none(self, value):
        assert parse_investor_id(value) is None
        assert not is_placeholder(value)


@pytest.mark.anyio
class TestLinkRedemption:
    async def test_draws_down_balance(self, mock_db):
        distribution = make_distribution(remaining_amount=Decimal("300"))
        redemption_id = uuid.uuid4()
        mock_db.execute.side_effect = [result(scalar=redemption_id), result(scalar=distribution)]
        svc = DistributionService(mock_db, SAMPLE_ORG_ID)

        link = await svc.link_redemption(distribution.id, redemption_id, Decimal("120"))

        assert isinstance(link, DistributionRedemption)
        assert link.amount_redeemed == Decimal("120")
        assert distribution.remaining_amount == Decimal("180")
        assert distribution.fully_redeemed is False
        event = svc.events[-1]
        assert event.table == "distributions"
        assert event.old["remaining_amount"] == "300"
        assert event.new["remaining_amount"] == "180"

    async def test_exact_balance_marks_fully_redeemed(self, mock_db):
        distribution = make_distribution(remaining_amount=Decimal("50"))
        mock_db.execute.side_effect = [result(scalar=uuid.uuid4()), result(scalar=distribution)]
        svc = DistributionService(mock_db, SAMPLE_ORG_ID)

        await svc.link_redemption(distribution.id, uuid.uuid4(), Decimal("50"))

        assert distribution.remaining_amount == Decimal("0")
        assert distribution.fully_redeemed is True

    async def test_overdraw_rejected(self, mock_db):
        distribution = make_distribution(remaining_amount=Decimal("10"))
        mock_db.execute.side_effect = [result(scalar=uuid.uuid4()), result(scalar=distribution)]
        svc = DistributionService(mock_db, SAMPLE_ORG_ID)

        with pytest.raises(ValidationError):
            await svc.link_redemption(distribution.id, uuid.uuid4(), Decimal("11"))
        assert distribution.remaining_amount == Decimal("10")
        mock_db.add.assert_not_called()

    async def test_non_positive_amount(self, mock_db):
        svc = DistributionService(mock_db, SAMPLE_ORG_ID)
        with pytest.raises(ValidationError):
            await svc.link_redemption(uuid.uuid4(), uuid.uuid4(), Decimal("0"))
        mock_db.execute.assert_not_called()

    async def test_unknown_redemption(self, mock_db):
        svc = DistributionService(mock_db, SAMPLE_ORG_ID)
        with pytest.raises(NotFoundError) as exc:
            await svc.link_redemption(uuid.uuid4(), uuid.uuid4(), Decimal("1"))
        assert exc.value.message == "Redemption request not found"

    async def test_set_redemption_status_queues_event(self, mock_db):
        distribution = make_distribution()
        svc = DistributionService(mock_db, SAMPLE_ORG_ID)

        await svc.set_redemption_status(distribution, "processing")

        assert distribution.redemption_status == "processing"
        assert svc.events[0].old["redemption_status"] is None
        assert svc.events[0].new["redemption_status"] == "processing"


@pytest.mark.anyio
class TestDistributionRoutes:
    async def test_placeholder_investor_is_400(self, client: AsyncClient, as_user):
        as_user(UserRole.VIEWER)
        response = await client.get("/v1/distributions/investor/current-user")
        assert response.status_code == 400
        assert "select a specific investor" in response.json()["message"]

    async def test_investor_distributions(self, client: AsyncClient, as_user, mock_db):
        as_user(UserRole.VIEWER)
        distribution = make_distribution()
        mock_db.execute.return_value = result(scalars=[distribution])

        response = await client.get(f"/v1/distributions/investor/{distribution.investor_id}")

        assert response.status_code == 200
        body = response.json()
        assert [d["id"] for d in body] == [str(distribution.id)]
        assert body[0]["remaining_amount"] == "1000"

    async def test_enriched_placeholder_means_all(self, client: AsyncClient, as_user, mock_db):
        as_user(UserRole.VIEWER)
        distribution = make_distribution()
        mock_db.execute.return_value = result(scalars=[distribution])

        response = await client.get("/v1/distributions/enriched", params={"investor_id": "current-user"})

        assert response.status_code == 200
        assert response.json()[0]["investor"] is None

    async def test_link_requires_edit(self, client: AsyncClient, as_user):
        as_user(UserRole.ANALYST)
        response = await client.post(
            f"/v1/distributions/{uuid.uuid4()}/redemptions",
            json={"redemption_request_id": str(uuid.uuid4()), "amount_redeemed": "5"},
        )
        assert response.status_code == 403

    async def test_link_overdraw_is_400(self, client: AsyncClient, as_user, mock_db):
        as_user(UserRole.MANAGER)
        with patch.object(
            DistributionService,
            "link_redemption",
            new_callable=AsyncMock,
            side_effect=ValidationError("Redeemed amount 5 exceeds remaining balance 1"),
        ):
            response = await client.post(
                f"/v1/distributions/{uuid.uuid4()}/redemptions",
                json={"redemption_request_id": str(uuid.uuid4()), "amount_redeemed": "5"},
            )
        assert response.status_code == 400
        mock_db.commit.assert_not_called()
