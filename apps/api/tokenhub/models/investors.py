"""Investor-side models: Investor, Subscription, Distribution, DistributionRedemption."""

import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Numeric, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tokenhub.models.base import BaseModel


class Investor(BaseModel):
    __tablename__ = "investors"
    __table_args__ = (
        Index("ix_investors_org_id", "org_id"),
        Index("ix_investors_email", "email"),
    )

    org_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    investor_type: Mapped[str] = mapped_column(String(50), nullable=False, default="individual")
    company: Mapped[str | None] = mapped_column(String(255))
    wallet_address: Mapped[str | None] = mapped_column(String(128))
    kyc_status: Mapped[str] = mapped_column(String(30), nullable=False, default="not_started")
    investor_status: Mapped[str] = mapped_column(String(30), nullable=False, default="pending")
    accreditation_status: Mapped[str] = mapped_column(
        String(30), nullable=False, default="not_started"
    )
    onboarding_completed: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false", nullable=False
    )

    distributions: Mapped[list["Distribution"]] = relationship(back_populates="investor")


class Subscription(BaseModel):
    __tablename__ = "subscriptions"
    __table_args__ = (
        Index("ix_subscriptions_investor_id", "investor_id"),
    )

    org_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    investor_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("investors.id", ondelete="CASCADE"),
        nullable=False,
    )
    subscription_ref: Mapped[str] = mapped_column(String(100), nullable=False)
    fiat_amount: Mapped[Decimal] = mapped_column(Numeric(19, 4), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    confirmed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    allocated: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    distributed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    subscription_date: Mapped[date] = mapped_column(Date, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)


class Distribution(BaseModel):
    """Tokens allocated to an investor; redemptions draw down remaining_amount."""

    __tablename__ = "distributions"
    __table_args__ = (
        Index("ix_distributions_org_id", "org_id"),
        Index("ix_distributions_investor_id", "investor_id"),
        Index("ix_distributions_available", "org_id", "fully_redeemed", "remaining_amount"),
    )

    org_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    investor_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("investors.id", ondelete="RESTRICT"),
        nullable=False,
    )
    subscription_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("subscriptions.id", ondelete="SET NULL"),
    )
    project_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True))
    token_type: Mapped[str] = mapped_column(String(50), nullable=False)
    token_amount: Mapped[Decimal] = mapped_column(nullable=False)
    distribution_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    distribution_tx_hash: Mapped[str | None] = mapped_column(String(66))
    blockchain: Mapped[str] = mapped_column(String(50), nullable=False, default="ethereum")
    token_address: Mapped[str | None] = mapped_column(String(128))
    token_symbol: Mapped[str | None] = mapped_column(String(20))
    to_address: Mapped[str] = mapped_column(String(128), nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="completed")
    notes: Mapped[str | None] = mapped_column(Text)
    remaining_amount: Mapped[Decimal] = mapped_column(nullable=False)
    fully_redeemed: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false", nullable=False
    )
    standard: Mapped[str | None] = mapped_column(String(20))
    redemption_status: Mapped[str | None] = mapped_column(String(30))

    investor: Mapped["Investor"] = relationship(back_populates="distributions")
    subscription: Mapped["Subscription"] = relationship()


class DistributionRedemption(BaseModel):
    __tablename__ = "distribution_redemptions"
    __table_args__ = (
        Index("ix_distribution_redemptions_distribution_id", "distribution_id"),
        Index("ix_distribution_redemptions_redemption_id", "redemption_request_id"),
    )

    distribution_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("distributions.id", ondelete="CASCADE"),
        nullable=False,
    )
    redemption_request_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("redemption_requests.id", ondelete="CASCADE"),
        nullable=False,
    )
    amount_redeemed: Mapped[Decimal] = mapped_column(nullable=False)
