"""Redemption request schemas."""

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field, model_validator

from tokenhub.models.enums import ApproverStatus, RedemptionStatus, RedemptionType


class RedemptionCreate(BaseModel):
    token_amount: Decimal = Field(..., gt=0)
    token_type: str = Field(..., min_length=1, max_length=50)
    redemption_type: RedemptionType = RedemptionType.STANDARD
    # Both spellings are accepted; the first non-empty one wins
    source_wallet: str | None = None
    source_wallet_address: str | None = None
    destination_wallet: str | None = None
    destination_wallet_address: str | None = None
    conversion_rate: Decimal = Field(Decimal("1"), gt=0)
    investor_id: str | None = None
    investor_name: str | None = Field(None, max_length=255)
    distribution_id: uuid.UUID | None = None
    required_approvals: int | None = Field(None, ge=1, le=10)
    notes: str | None = Field(None, max_length=5000)
    draft: bool = False

    @model_validator(mode="after")
    def _resolve_wallets(self) -> "RedemptionCreate":
        source = self.source_wallet or self.source_wallet_address
        destination = self.destination_wallet or self.destination_wallet_address
        if not source or not destination:
            raise ValueError("source and destination wallet addresses are required")
        self.source_wallet_address = source
        self.destination_wallet_address = destination
        return self


class RedemptionResponse(BaseModel):
    id: uuid.UUID
    org_id: uuid.UUID
    token_amount: Decimal
    token_type: str
    redemption_type: RedemptionType
    status: RedemptionStatus
    source_wallet_address: str
    destination_wallet_address: str
    conversion_rate: Decimal
    usdc_amount: Decimal
    investor_id: uuid.UUID | None
    investor_name: str | None
    distribution_id: uuid.UUID | None
    required_approvals: int
    is_bulk_redemption: bool
    investor_count: int
    batch_id: str | None
    notes: str | None
    rejection_reason: str | None
    rejected_by: uuid.UUID | None
    rejection_timestamp: datetime | None
    approved_at: datetime | None
    processing_started_at: datetime | None
    settled_at: datetime | None
    settlement_tx_hash: str | None
    escalated_at: datetime | None
    escalation_reason: str | None
    created_by: uuid.UUID | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class RedemptionListResponse(BaseModel):
    items: list[RedemptionResponse]
    total: int
    page: int
    limit: int
    total_pages: int
    has_more: bool


class StatusUpdateRequest(BaseModel):
    status: RedemptionStatus
    reason: str | None = Field(None, max_length=5000)
    settlement_tx_hash: str | None = Field(None, max_length=66)


class CancelRequest(BaseModel):
    reason: str | None = Field(None, max_length=5000)


class BulkRedemptionCreate(BaseModel):
    requests: list[RedemptionCreate] = Field(..., min_length=1, max_length=200)


class BulkFailure(BaseModel):
    index: int
    error: str


class BulkRedemptionResponse(BaseModel):
    batch_id: str
    requests: list[RedemptionResponse]
    success_count: int
    failed_count: int
    failures: list[BulkFailure]


class RedemptionMetrics(BaseModel):
    total_redemptions: int = 0
    total_volume: Decimal = Decimal("0")
    pending_redemptions: int = 0
    completed_redemptions: int = 0
    rejected_redemptions: int = 0
    average_processing_time: float = 0.0  # hours, created -> settled
    success_rate: float = 0.0  # percent


class StatusEventResponse(BaseModel):
    id: uuid.UUID
    from_status: str | None
    to_status: str
    message: str
    actor_id: uuid.UUID | None
    created_at: datetime

    model_config = {"from_attributes": True}


class ApproverResponse(BaseModel):
    id: uuid.UUID
    approver_id: uuid.UUID
    approver_name: str
    approver_role: str | None
    status: ApproverStatus
    comments: str | None
    decision_date: datetime | None
    delegated_to: uuid.UUID | None

    model_config = {"from_attributes": True}


class ApprovalProgress(BaseModel):
    outcome: str
    current: int
    required: int
    percentage: int
    approvers: list[ApproverResponse] = []


class SettlementInfo(BaseModel):
    settlement_tx_hash: str | None = None
    processing_started_at: datetime | None = None
    settled_at: datetime | None = None


class RedemptionStatusView(BaseModel):
    redemption_id: uuid.UUID
    status: RedemptionStatus
    progress_percentage: int
    estimated_completion: datetime | None
    time_remaining: str | None
    status_message: str
    is_in_progress: bool
    is_completed: bool
    is_failed: bool
    can_cancel: bool
    approval: ApprovalProgress
    settlement: SettlementInfo
    history: list[StatusEventResponse]
    updated_at: datetime
