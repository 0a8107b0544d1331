"""Redemption models: requests, approver seats, status history, approval configs."""

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tokenhub.models.base import AuditMixin, BaseModel, TimestampedModel
from tokenhub.models.enums import (
    ApproverStatus,
    ConsensusType,
    RedemptionStatus,
    RedemptionType,
)


class RedemptionRequest(BaseModel, AuditMixin):
    __tablename__ = "redemption_requests"
    __table_args__ = (
        Index("ix_redemption_requests_org_id_status", "org_id", "status"),
        Index("ix_redemption_requests_investor_id", "investor_id"),
        Index("ix_redemption_requests_batch_id", "batch_id"),
    )

    org_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    token_amount: Mapped[Decimal] = mapped_column(nullable=False)
    token_type: Mapped[str] = mapped_column(String(50), nullable=False)
    redemption_type: Mapped[RedemptionType] = mapped_column(
        nullable=False, default=RedemptionType.STANDARD
    )
    status: Mapped[RedemptionStatus] = mapped_column(
        nullable=False, default=RedemptionStatus.PENDING
    )
    source_wallet_address: Mapped[str] = mapped_column(String(128), nullable=False)
    destination_wallet_address: Mapped[str] = mapped_column(String(128), nullable=False)
    conversion_rate: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("1"))

    investor_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("investors.id", ondelete="SET NULL")
    )
    investor_name: Mapped[str | None] = mapped_column(String(255))
    distribution_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("distributions.id", ondelete="SET NULL")
    )

    required_approvals: Mapped[int] = mapped_column(Integer, nullable=False, default=2)
    is_bulk_redemption: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false", nullable=False
    )
    investor_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    batch_id: Mapped[str | None] = mapped_column(String(64))
    notes: Mapped[str | None] = mapped_column(Text)

    rejection_reason: Mapped[str | None] = mapped_column(Text)
    rejected_by: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True))
    rejection_timestamp: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    processing_started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    settled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    settlement_tx_hash: Mapped[str | None] = mapped_column(String(66))
    escalated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    escalation_reason: Mapped[str | None] = mapped_column(Text)

    # live seats only; replaced seats are soft-deleted
    approvers: Mapped[list["RedemptionApprover"]] = relationship(
        primaryjoin=(
            "and_(RedemptionRequest.id == RedemptionApprover.redemption_id, "
            "RedemptionApprover.is_deleted.is_(False))"
        ),
        order_by="RedemptionApprover.created_at",
        viewonly=True,
    )

    @property
    def usdc_amount(self) -> Decimal:
        return self.token_amount * self.conversion_rate

    def __repr__(self) -> str:
        return f"<RedemptionRequest(id={self.id}, status={self.status.value})>"


class RedemptionApprover(BaseModel):
    """One approver's seat on a redemption's N-of-M quorum."""

    __tablename__ = "redemption_approvers"
    __table_args__ = (
        Index("ix_redemption_approvers_redemption_id", "redemption_id"),
        Index("ix_redemption_approvers_approver_status", "approver_id", "status"),
    )

    redemption_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("redemption_requests.id", ondelete="CASCADE"),
        nullable=False,
    )
    approver_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    approver_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    approver_role: Mapped[str | None] = mapped_column(String(50))
    status: Mapped[ApproverStatus] = mapped_column(
        nullable=False, default=ApproverStatus.PENDING
    )
    comments: Mapped[str | None] = mapped_column(Text)
    decision_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    delegated_to: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True))

    redemption: Mapped["RedemptionRequest"] = relationship()


class RedemptionStatusEvent(TimestampedModel):
    """Append-only status history for a redemption."""

    __tablename__ = "redemption_status_events"
    __table_args__ = (
        Index("ix_redemption_status_events_redemption_id", "redemption_id", "created_at"),
    )

    redemption_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("redemption_requests.id", ondelete="CASCADE"),
        nullable=False,
    )
    from_status: Mapped[str | None] = mapped_column(String(20))
    to_status: Mapped[str] = mapped_column(String(20), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    actor_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True))


class ApprovalConfig(BaseModel, AuditMixin):
    """Per-organisation defaults applied when a redemption needs approvers."""

    __tablename__ = "approval_configs"
    __table_args__ = (Index("ix_approval_configs_org_id", "org_id", unique=True),)

    org_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    config_name: Mapped[str] = mapped_column(String(255), nullable=False)
    config_description: Mapped[str | None] = mapped_column(Text)
    consensus_type: Mapped[ConsensusType] = mapped_column(
        nullable=False, default=ConsensusType.ANY
    )
    required_approvals: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    active: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default="true", nullable=False
    )


class ApprovalConfigApprover(BaseModel):
    __tablename__ = "approval_config_approvers"
    __table_args__ = (Index("ix_approval_config_approvers_config_id", "config_id"),)

    config_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("approval_configs.id", ondelete="CASCADE"),
        nullable=False,
    )
    approver_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    approver_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    approver_role: Mapped[str | None] = mapped_column(String(50))
