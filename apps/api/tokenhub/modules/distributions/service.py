"""Distributions: which token allocations are still redeemable, and the
ledger of redemptions drawn against them."""

import uuid
from decimal import Decimal

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from tokenhub.core.errors import NotFoundError, ValidationError
from tokenhub.models.investors import Distribution, DistributionRedemption
from tokenhub.models.redemptions import RedemptionRequest
from tokenhub.realtime.events import ChangeEvent, ChangeType

logger = structlog.get_logger()

# Ids some clients send before the investor is resolved
PLACEHOLDER_INVESTOR_IDS = frozenset({"current-user", "current-investor"})


def is_placeholder(investor_id: str | None) -> bool:
    return investor_id is not None and investor_id.strip() in PLACEHOLDER_INVESTOR_IDS


def parse_investor_id(investor_id: str | None) -> uuid.UUID | None:
    """Parse a client-supplied investor id; placeholders are rejected."""
    if investor_id is None or not investor_id.strip():
        return None
    if is_placeholder(investor_id):
        raise ValidationError(
            "Invalid investor ID. Please select a specific investor or distribution."
        )
    try:
        return uuid.UUID(investor_id.strip())
    except ValueError as exc:
        raise ValidationError(f"Invalid investor ID: {investor_id}") from exc


class DistributionService:
    def __init__(
        self,
        db: AsyncSession,
        org_id: uuid.UUID,
        events: list[ChangeEvent] | None = None,
    ) -> None:
        self.db = db
        self.org_id = org_id
        # Change events to publish once the caller commits
        self.events: list[ChangeEvent] = events if events is not None else []

    def _available(self):
        return (
            select(Distribution)
            .where(
                Distribution.org_id == self.org_id,
                Distribution.is_deleted.is_(False),
                Distribution.fully_redeemed.is_(False),
                Distribution.remaining_amount > 0,
            )
            .order_by(Distribution.distribution_date.desc())
        )

    async def get(self, distribution_id: uuid.UUID, *, for_update: bool = False) -> Distribution:
        stmt = select(Distribution).where(
            Distribution.id == distribution_id,
            Distribution.org_id == self.org_id,
            Distribution.is_deleted.is_(False),
        )
        if for_update:
            stmt = stmt.with_for_update()
        distribution = (await self.db.execute(stmt)).scalar_one_or_none()
        if distribution is None:
            raise NotFoundError("Distribution not found")
        return distribution

    async def available_for_investor(self, investor_id: uuid.UUID) -> list[Distribution]:
        stmt = self._available().where(Distribution.investor_id == investor_id)
        return list((await self.db.execute(stmt)).scalars().all())

    async def list_available(self) -> list[Distribution]:
        return list((await self.db.execute(self._available())).scalars().all())

    async def enriched(self, investor_id: str | None = None) -> list[Distribution]:
        """Available distributions with investor and subscription loaded.

        A placeholder investor id is treated as no filter.
        """
        stmt = self._available().options(
            selectinload(Distribution.investor),
            selectinload(Distribution.subscription),
        )
        if investor_id and not is_placeholder(investor_id):
            stmt = stmt.where(Distribution.investor_id == parse_investor_id(investor_id))
        return list((await self.db.execute(stmt)).scalars().all())

    async def set_redemption_status(self, distribution: Distribution, value: str | None) -> None:
        before = distribution.to_dict()
        distribution.redemption_status = value
        await self.db.flush()
        await self.db.refresh(distribution)
        self.events.append(
            ChangeEvent(ChangeType.UPDATE, "distributions", new=distribution.to_dict(), old=before)
        )

    async def link_redemption(
        self,
        distribution_id: uuid.UUID,
        redemption_id: uuid.UUID,
        amount: Decimal,
    ) -> DistributionRedemption:
        """Record a redemption against a distribution and draw down its balance."""
        if amount <= 0:
            raise ValidationError("Redeemed amount must be positive")

        redemption = (
            await self.db.execute(
                select(RedemptionRequest.id).where(
                    RedemptionRequest.id == redemption_id,
                    RedemptionRequest.org_id == self.org_id,
                )
            )
        ).scalar_one_or_none()
        if redemption is None:
            raise NotFoundError("Redemption request not found")

        distribution = await self.get(distribution_id, for_update=True)
        if amount > distribution.remaining_amount:
            raise ValidationError(
                f"Redeemed amount {amount} exceeds remaining balance {distribution.remaining_amount}"
            )

        link = DistributionRedemption(
            distribution_id=distribution.id,
            redemption_request_id=redemption_id,
            amount_redeemed=amount,
        )
        self.db.add(link)

        before = distribution.to_dict()
        distribution.remaining_amount = distribution.remaining_amount - amount
        if distribution.remaining_amount <= 0:
            distribution.fully_redeemed = True
        await self.db.flush()
        await self.db.refresh(distribution)
        await self.db.refresh(link)

        self.events.append(
            ChangeEvent(ChangeType.UPDATE, "distributions", new=distribution.to_dict(), old=before)
        )
        logger.info(
            "distribution.redemption_linked",
            distribution_id=str(distribution.id),
            redemption_id=str(redemption_id),
            amount=str(amount),
            remaining=str(distribution.remaining_amount),
            fully_redeemed=distribution.fully_redeemed,
        )
        return link
