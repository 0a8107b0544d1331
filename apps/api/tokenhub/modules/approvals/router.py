"""Approvals API router: assignment, decisions, queue, metrics, delegation, config."""

import uuid

import structlog
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from tokenhub.auth.dependencies import require_permission
from tokenhub.core.database import get_db
from tokenhub.core.errors import DomainError, to_http
from tokenhub.models.enums import ApproverStatus
from tokenhub.modules.approvals.config import ApprovalConfigService, to_response
from tokenhub.modules.approvals.quorum import QuorumResult
from tokenhub.modules.approvals.schemas import (
    ApprovalConfigResponse,
    ApprovalConfigUpdate,
    ApprovalMetrics,
    ApprovalRequest,
    ApprovalStatusResponse,
    BulkDecisionRequest,
    BulkDecisionResponse,
    DecisionRequest,
    DecisionResponse,
    DelegateRequest,
    EscalateRequest,
    QueueItem,
    QueueResponse,
)
from tokenhub.modules.approvals.service import ApprovalService
from tokenhub.modules.redemptions.schemas import (
    ApprovalProgress,
    ApproverResponse,
    RedemptionResponse,
)
from tokenhub.realtime.feed import change_feed, publish_events
from tokenhub.schemas.auth import CurrentUser

logger = structlog.get_logger()

router = APIRouter(prefix="/approvals", tags=["approvals"])


def _progress(quorum: QuorumResult, seats) -> ApprovalProgress:
    return ApprovalProgress(
        outcome=quorum.outcome.value,
        current=quorum.current,
        required=quorum.required,
        percentage=quorum.percentage,
        approvers=[ApproverResponse.model_validate(s) for s in seats],
    )


# ── Fixed-path routes (before /{id}) ─────────────────────────────────────────


@router.get("/queue", response_model=QueueResponse)
async def get_approval_queue(
    status: ApproverStatus = Query(ApproverStatus.PENDING),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: CurrentUser = Depends(require_permission("view", "approval")),
    db: AsyncSession = Depends(get_db),
):
    """Redemptions awaiting the caller's decision."""
    svc = ApprovalService(db, current_user.org_id)
    redemptions, total = await svc.queue(current_user.user_id, status, page, limit)
    items = [
        QueueItem(
            redemption=RedemptionResponse.model_validate(r),
            assigned_approvers=[ApproverResponse.model_validate(a) for a in r.approvers],
            current_approvals=sum(1 for a in r.approvers if a.status == ApproverStatus.APPROVED),
            required_approvals=r.required_approvals,
            submitted_at=r.created_at,
        )
        for r in redemptions
    ]
    return QueueResponse(
        items=items,
        total=total,
        page=page,
        limit=limit,
        has_more=page * limit < total,
    )


@router.get("/metrics", response_model=ApprovalMetrics)
async def get_approval_metrics(
    current_user: CurrentUser = Depends(require_permission("view", "approval")),
    db: AsyncSession = Depends(get_db),
):
    return await ApprovalService(db, current_user.org_id).metrics(current_user.user_id)


@router.get("/config", response_model=ApprovalConfigResponse)
async def get_approval_config(
    current_user: CurrentUser = Depends(require_permission("manage_settings", "approval")),
    db: AsyncSession = Depends(get_db),
):
    """The organisation's default approvers and consensus rule."""
    config, approvers = await ApprovalConfigService(db, current_user.org_id).get()
    return to_response(config, approvers)


@router.put("/config", response_model=ApprovalConfigResponse)
async def update_approval_config(
    body: ApprovalConfigUpdate,
    current_user: CurrentUser = Depends(require_permission("manage_settings", "approval")),
    db: AsyncSession = Depends(get_db),
):
    try:
        config, approvers = await ApprovalConfigService(db, current_user.org_id).save(
            body, current_user.user_id
        )
        await db.commit()
    except DomainError as exc:
        raise to_http(exc) from exc
    return to_response(config, approvers)


@router.post("/bulk-decision", response_model=BulkDecisionResponse)
async def bulk_decision(
    body: BulkDecisionRequest,
    current_user: CurrentUser = Depends(require_permission("approve", "approval")),
    db: AsyncSession = Depends(get_db),
):
    """Apply one decision to many redemptions; failures are reported per item."""
    svc = ApprovalService(db, current_user.org_id)
    results = await svc.bulk_decision(
        body.redemption_ids, current_user, body.decision, body.comments
    )
    await db.commit()
    await publish_events(change_feed, svc.events)
    succeeded = sum(1 for r in results if r.success)
    return BulkDecisionResponse(
        success_count=succeeded,
        failed_count=len(results) - succeeded,
        results=results,
    )


# ── Parameterized routes (after fixed paths) ─────────────────────────────────


@router.get("/{redemption_id}", response_model=ApprovalStatusResponse)
async def get_approval_status(
    redemption_id: uuid.UUID,
    current_user: CurrentUser = Depends(require_permission("view", "approval")),
    db: AsyncSession = Depends(get_db),
):
    try:
        redemption, seats, quorum = await ApprovalService(db, current_user.org_id).get_approval(
            redemption_id
        )
    except DomainError as exc:
        raise to_http(exc) from exc
    return ApprovalStatusResponse(
        redemption_id=redemption.id,
        redemption_status=redemption.status,
        progress=_progress(quorum, seats),
        escalated_at=redemption.escalated_at,
        escalation_reason=redemption.escalation_reason,
    )


@router.post("/{redemption_id}/request", response_model=list[ApproverResponse])
async def request_approval(
    redemption_id: uuid.UUID,
    body: ApprovalRequest,
    current_user: CurrentUser = Depends(require_permission("create", "approval")),
    db: AsyncSession = Depends(get_db),
):
    """Assign approvers and the number of approvals required."""
    svc = ApprovalService(db, current_user.org_id)
    try:
        seats = await svc.request_approval(
            redemption_id, body.approvers, body.required_approvals, current_user.user_id
        )
        await db.commit()
    except DomainError as exc:
        raise to_http(exc) from exc
    await publish_events(change_feed, svc.events)
    return seats


@router.post("/{redemption_id}/decision", response_model=DecisionResponse)
async def submit_decision(
    redemption_id: uuid.UUID,
    body: DecisionRequest,
    current_user: CurrentUser = Depends(require_permission("approve", "approval")),
    db: AsyncSession = Depends(get_db),
):
    """Approve or reject; the redemption moves once quorum is decided."""
    svc = ApprovalService(db, current_user.org_id)
    try:
        redemption, seat, quorum = await svc.submit_decision(
            redemption_id, current_user, body.decision, body.comments
        )
        await db.commit()
    except DomainError as exc:
        raise to_http(exc) from exc
    await publish_events(change_feed, svc.events)
    return DecisionResponse(
        redemption_id=redemption.id,
        redemption_status=redemption.status,
        approver=ApproverResponse.model_validate(seat),
        progress=ApprovalProgress(
            outcome=quorum.outcome.value,
            current=quorum.current,
            required=quorum.required,
            percentage=quorum.percentage,
        ),
    )


@router.post("/{redemption_id}/delegate", response_model=ApproverResponse)
async def delegate_approval(
    redemption_id: uuid.UUID,
    body: DelegateRequest,
    current_user: CurrentUser = Depends(require_permission("delegate", "approval")),
    db: AsyncSession = Depends(get_db),
):
    svc = ApprovalService(db, current_user.org_id)
    try:
        seat = await svc.delegate(
            redemption_id,
            body.from_approver_id or current_user.user_id,
            body.to,
            current_user.user_id,
        )
        await db.commit()
    except DomainError as exc:
        raise to_http(exc) from exc
    await publish_events(change_feed, svc.events)
    return seat


@router.post("/{redemption_id}/escalate", response_model=RedemptionResponse)
async def escalate_approval(
    redemption_id: uuid.UUID,
    body: EscalateRequest | None = None,
    current_user: CurrentUser = Depends(require_permission("escalate", "approval")),
    db: AsyncSession = Depends(get_db),
):
    svc = ApprovalService(db, current_user.org_id)
    try:
        redemption = await svc.escalate(
            redemption_id, body.reason if body else None, current_user.user_id
        )
        await db.commit()
    except DomainError as exc:
        raise to_http(exc) from exc
    await publish_events(change_feed, svc.events)
    return redemption
