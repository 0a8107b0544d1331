"""Approval workflow schemas."""

import uuid
from datetime import datetime

from pydantic import BaseModel, Field

from tokenhub.models.enums import ApprovalDecision, ConsensusType, RedemptionStatus
from tokenhub.modules.redemptions.schemas import (
    ApprovalProgress,
    ApproverResponse,
    RedemptionResponse,
)


class ApproverAssignment(BaseModel):
    approver_id: uuid.UUID
    approver_name: str = Field("", max_length=255)
    approver_role: str | None = Field(None, max_length=50)


class ApprovalRequest(BaseModel):
    # empty falls back to the organisation's approval config
    approvers: list[ApproverAssignment] = Field(default_factory=list, max_length=20)
    required_approvals: int | None = Field(None, ge=1)


class DecisionRequest(BaseModel):
    decision: ApprovalDecision
    comments: str | None = Field(None, max_length=5000)


class DecisionResponse(BaseModel):
    redemption_id: uuid.UUID
    redemption_status: RedemptionStatus
    approver: ApproverResponse
    progress: ApprovalProgress


class DelegateRequest(BaseModel):
    to: ApproverAssignment
    from_approver_id: uuid.UUID | None = None  # defaults to the caller


class EscalateRequest(BaseModel):
    reason: str | None = Field(None, max_length=5000)


class ApprovalStatusResponse(BaseModel):
    redemption_id: uuid.UUID
    redemption_status: RedemptionStatus
    progress: ApprovalProgress
    escalated_at: datetime | None
    escalation_reason: str | None


class QueueItem(BaseModel):
    redemption: RedemptionResponse
    assigned_approvers: list[ApproverResponse]
    current_approvals: int
    required_approvals: int
    submitted_at: datetime


class QueueResponse(BaseModel):
    items: list[QueueItem]
    total: int
    page: int
    limit: int
    has_more: bool


class ApprovalMetrics(BaseModel):
    total_pending: int = 0
    total_approved: int = 0
    total_rejected: int = 0
    avg_approval_hours: float = 0.0
    pending_older_than_24h: int = 0
    user_pending_count: int = 0


class BulkDecisionRequest(BaseModel):
    redemption_ids: list[uuid.UUID] = Field(..., min_length=1, max_length=100)
    decision: ApprovalDecision
    comments: str | None = Field(None, max_length=5000)


class BulkDecisionResult(BaseModel):
    redemption_id: uuid.UUID
    success: bool
    redemption_status: RedemptionStatus | None = None
    error: str | None = None


class BulkDecisionResponse(BaseModel):
    success_count: int
    failed_count: int
    results: list[BulkDecisionResult]


# ── Approval config ──────────────────────────────────────────────────────────


class ApprovalConfigUpdate(BaseModel):
    config_name: str = Field("Default Redemption Approval Config", max_length=255)
    config_description: str | None = Field(None, max_length=5000)
    consensus_type: ConsensusType = ConsensusType.ANY
    required_approvals: int = Field(1, ge=1)
    active: bool = True
    approvers: list[ApproverAssignment] = Field(default_factory=list, max_length=20)


class ConfigApproverResponse(BaseModel):
    approver_id: uuid.UUID
    approver_name: str
    approver_role: str | None

    model_config = {"from_attributes": True}


class ApprovalConfigResponse(BaseModel):
    id: uuid.UUID | None = None
    config_name: str
    config_description: str | None = None
    consensus_type: ConsensusType
    required_approvals: int
    effective_required_approvals: int
    active: bool
    approvers: list[ConfigApproverResponse] = []
    updated_at: datetime | None = None
    updated_by: uuid.UUID | None = None
