"""Approval workflow: N-of-M approver quorum over pending redemptions.

Decisions on one redemption are serialised in-process by an in-flight set
and across processes by the row lock taken in RedemptionService.lock().
"""

import uuid
from collections.abc import AsyncIterator, Iterable, Sequence
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Any

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from tokenhub.auth.rbac import has_role_at_least
from tokenhub.core.errors import (
    ConflictError,
    DomainError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from tokenhub.models.enums import ApprovalDecision, ApproverStatus, RedemptionStatus, UserRole
from tokenhub.models.redemptions import RedemptionApprover, RedemptionRequest
from tokenhub.modules.approvals.config import ApprovalConfigService
from tokenhub.modules.approvals.quorum import QuorumOutcome, QuorumResult, evaluate_quorum
from tokenhub.modules.approvals.schemas import (
    ApprovalMetrics,
    ApproverAssignment,
    BulkDecisionResult,
)
from tokenhub.modules.redemptions import lifecycle
from tokenhub.modules.redemptions.service import RedemptionService
from tokenhub.realtime.events import ChangeEvent, ChangeType
from tokenhub.schemas.auth import CurrentUser

logger = structlog.get_logger()

DEFAULT_REJECTION_REASON = "Rejected by approver"
DEFAULT_ESCALATION_REASON = "Manual escalation"

_in_flight: set[uuid.UUID] = set()


def is_processing(redemption_id: uuid.UUID) -> bool:
    """True while a decision on this redemption is being recorded."""
    return redemption_id in _in_flight


@asynccontextmanager
async def _claim(redemption_id: uuid.UUID) -> AsyncIterator[None]:
    if redemption_id in _in_flight:
        raise ConflictError("Approval already in progress")
    _in_flight.add(redemption_id)
    try:
        yield
    finally:
        _in_flight.discard(redemption_id)


def compute_approval_metrics(
    rows: Iterable[Sequence[Any]],
    approver_id: uuid.UUID,
    now: datetime | None = None,
) -> ApprovalMetrics:
    """Summarise (redemption_id, redemption_status, submitted_at, approver_id,
    seat_status, decision_date) rows."""
    now = now or lifecycle.utcnow()
    stale_before = now - timedelta(hours=24)

    pending_redemptions: set[Any] = set()
    stale_redemptions: set[Any] = set()
    approved = rejected = user_pending = 0
    decision_hours: list[float] = []

    for redemption_id, redemption_status, submitted_at, seat_approver, seat_status, decided_at in rows:
        redemption_status = RedemptionStatus(redemption_status)
        seat_status = ApproverStatus(seat_status)

        if redemption_status == RedemptionStatus.PENDING:
            pending_redemptions.add(redemption_id)
            if submitted_at and lifecycle.as_utc(submitted_at) < stale_before:
                stale_redemptions.add(redemption_id)
            if seat_approver == approver_id and seat_status == ApproverStatus.PENDING:
                user_pending += 1

        if seat_status == ApproverStatus.APPROVED:
            approved += 1
        elif seat_status == ApproverStatus.REJECTED:
            rejected += 1
        if seat_status in (ApproverStatus.APPROVED, ApproverStatus.REJECTED) and decided_at and submitted_at:
            delta = lifecycle.as_utc(decided_at) - lifecycle.as_utc(submitted_at)
            decision_hours.append(delta.total_seconds() / 3600)

    return ApprovalMetrics(
        total_pending=len(pending_redemptions),
        total_approved=approved,
        total_rejected=rejected,
        avg_approval_hours=(
            round(sum(decision_hours) / len(decision_hours), 2) if decision_hours else 0.0
        ),
        pending_older_than_24h=len(stale_redemptions),
        user_pending_count=user_pending,
    )


class ApprovalService:
    def __init__(self, db: AsyncSession, org_id: uuid.UUID) -> None:
        self.db = db
        self.org_id = org_id
        self.redemptions = RedemptionService(db, org_id)
        self.events: list[ChangeEvent] = self.redemptions.events

    async def _seats(self, redemption_id: uuid.UUID) -> list[RedemptionApprover]:
        result = await self.db.execute(
            select(RedemptionApprover)
            .where(
                RedemptionApprover.redemption_id == redemption_id,
                RedemptionApprover.is_deleted.is_(False),
            )
            .order_by(RedemptionApprover.created_at.asc())
        )
        return list(result.scalars().all())

    def _seat_event(self, seat: RedemptionApprover, before: dict[str, Any] | None = None) -> None:
        self.events.append(
            ChangeEvent(
                ChangeType.INSERT if before is None else ChangeType.UPDATE,
                "redemption_approvers",
                new=seat.to_dict(),
                old=before or {},
            )
        )

    @staticmethod
    def _require_pending(redemption: RedemptionRequest) -> None:
        if redemption.status != RedemptionStatus.PENDING:
            raise ConflictError(
                f"Redemption is '{redemption.status.value}'; only pending redemptions await approval"
            )

    # ── Assignment ─────────────────────────────────────────────────────────────

    async def request_approval(
        self,
        redemption_id: uuid.UUID,
        approvers: list[ApproverAssignment],
        required: int | None = None,
        actor_id: uuid.UUID | None = None,
    ) -> list[RedemptionApprover]:
        """Replace the approver set; a draft redemption is submitted for review."""
        redemption = await self.redemptions.lock(redemption_id)
        if redemption.status not in (RedemptionStatus.DRAFT, RedemptionStatus.PENDING):
            raise ConflictError(
                f"Cannot request approval for a '{redemption.status.value}' redemption"
            )

        defaults = None
        if not approvers or required is None:
            defaults = await ApprovalConfigService(self.db, self.org_id).defaults()
        if not approvers:
            if defaults is None or not defaults.approvers:
                raise ValidationError("At least one approver must be selected")
            approvers = defaults.approvers

        ids = [a.approver_id for a in approvers]
        if len(set(ids)) != len(ids):
            raise ValidationError("Each approver may only be assigned once")
        if required is None:
            required = (
                defaults.required_for(len(approvers)) if defaults else redemption.required_approvals
            )
        if not 1 <= required <= len(approvers):
            raise ValidationError(
                f"Required approvals must be between 1 and {len(approvers)}, got {required}"
            )

        # replaced seats stay on record, soft-deleted
        for old in await self._seats(redemption.id):
            image = old.to_dict()
            old.is_deleted = True
            self._seat_event(old, image)
        seats = [
            RedemptionApprover(
                redemption_id=redemption.id,
                approver_id=a.approver_id,
                approver_name=a.approver_name,
                approver_role=a.approver_role,
                status=ApproverStatus.PENDING,
            )
            for a in approvers
        ]
        self.db.add_all(seats)

        before = redemption.to_dict()
        redemption.required_approvals = required
        if redemption.status == RedemptionStatus.DRAFT:
            await self.redemptions.update_status(
                redemption.id, RedemptionStatus.PENDING, actor_id=actor_id, redemption=redemption
            )
        else:
            await self.db.flush()
            await self.db.refresh(redemption)
            self.redemptions.queue_update(redemption, before)

        for seat in seats:
            await self.db.refresh(seat)
            self._seat_event(seat)

        logger.info(
            "approval.requested",
            redemption_id=str(redemption.id),
            approvers=len(seats),
            required=required,
        )
        return seats

    # ── Decisions ──────────────────────────────────────────────────────────────

    async def submit_decision(
        self,
        redemption_id: uuid.UUID,
        user: CurrentUser,
        decision: ApprovalDecision,
        comments: str | None = None,
    ) -> tuple[RedemptionRequest, RedemptionApprover, QuorumResult]:
        async with _claim(redemption_id):
            redemption = await self.redemptions.lock(redemption_id)
            self._require_pending(redemption)

            seats = await self._seats(redemption.id)
            mine = [s for s in seats if s.approver_id == user.user_id]
            if any(s.status in (ApproverStatus.APPROVED, ApproverStatus.REJECTED) for s in mine):
                raise ConflictError("You have already submitted a decision for this redemption")

            seat = next((s for s in mine if s.status == ApproverStatus.PENDING), None)
            before: dict[str, Any] | None = None
            if seat is None:
                if not has_role_at_least(user.role, UserRole.ADMIN):
                    raise PermissionDeniedError("You are not an assigned approver for this redemption")
                seat = RedemptionApprover(
                    redemption_id=redemption.id,
                    approver_id=user.user_id,
                    approver_name=user.full_name or user.email,
                    approver_role=user.role.value,
                )
                self.db.add(seat)
                seats.append(seat)
            else:
                before = seat.to_dict()

            seat.status = ApproverStatus(decision.value)
            seat.comments = comments
            seat.decision_date = lifecycle.utcnow()
            await self.db.flush()
            await self.db.refresh(seat)
            self._seat_event(seat, before)

            quorum = evaluate_quorum([s.status for s in seats], redemption.required_approvals)
            if quorum.outcome == QuorumOutcome.REJECTED:
                redemption = await self.redemptions.update_status(
                    redemption.id,
                    RedemptionStatus.REJECTED,
                    reason=comments or DEFAULT_REJECTION_REASON,
                    actor_id=user.user_id,
                    redemption=redemption,
                )
            elif quorum.outcome == QuorumOutcome.APPROVED:
                redemption = await self.redemptions.update_status(
                    redemption.id,
                    RedemptionStatus.APPROVED,
                    actor_id=user.user_id,
                    redemption=redemption,
                )

            logger.info(
                "approval.decision_recorded",
                redemption_id=str(redemption.id),
                approver_id=str(user.user_id),
                decision=decision.value,
                outcome=quorum.outcome.value,
                current=quorum.current,
                required=quorum.required,
            )
            return redemption, seat, quorum

    async def bulk_decision(
        self,
        redemption_ids: list[uuid.UUID],
        user: CurrentUser,
        decision: ApprovalDecision,
        comments: str | None = None,
    ) -> list[BulkDecisionResult]:
        """Record the same decision on each redemption, each in its own savepoint."""
        results: list[BulkDecisionResult] = []
        for redemption_id in dict.fromkeys(redemption_ids):
            mark = len(self.events)
            try:
                async with self.db.begin_nested():
                    redemption, _, _ = await self.submit_decision(
                        redemption_id, user, decision, comments
                    )
            except DomainError as exc:
                del self.events[mark:]
                results.append(
                    BulkDecisionResult(redemption_id=redemption_id, success=False, error=exc.message)
                )
                continue
            except SQLAlchemyError as exc:
                del self.events[mark:]
                logger.warning(
                    "approval.bulk_item_failed", redemption_id=str(redemption_id), error=str(exc)
                )
                results.append(
                    BulkDecisionResult(redemption_id=redemption_id, success=False, error="Database error")
                )
                continue
            results.append(
                BulkDecisionResult(
                    redemption_id=redemption_id,
                    success=True,
                    redemption_status=redemption.status,
                )
            )

        logger.info(
            "approval.bulk_decision",
            decision=decision.value,
            success_count=sum(1 for r in results if r.success),
            failed_count=sum(1 for r in results if not r.success),
        )
        return results

    # ── Read ───────────────────────────────────────────────────────────────────

    async def get_approval(
        self, redemption_id: uuid.UUID
    ) -> tuple[RedemptionRequest, list[RedemptionApprover], QuorumResult]:
        redemption = await self.redemptions.get_request(redemption_id)
        seats = await self._seats(redemption.id)
        quorum = evaluate_quorum([s.status for s in seats], redemption.required_approvals)
        return redemption, seats, quorum

    async def queue(
        self,
        approver_id: uuid.UUID,
        status: ApproverStatus = ApproverStatus.PENDING,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[RedemptionRequest], int]:
        """Redemptions where ``approver_id`` holds a seat in ``status``."""
        filters = [
            RedemptionRequest.org_id == self.org_id,
            RedemptionRequest.is_deleted.is_(False),
            RedemptionApprover.approver_id == approver_id,
            RedemptionApprover.status == status,
            RedemptionApprover.is_deleted.is_(False),
        ]
        if status == ApproverStatus.PENDING:
            filters.append(RedemptionRequest.status == RedemptionStatus.PENDING)

        total: int = (
            await self.db.execute(
                select(func.count(RedemptionRequest.id))
                .join(RedemptionApprover, RedemptionApprover.redemption_id == RedemptionRequest.id)
                .where(*filters)
            )
        ).scalar_one()
        result = await self.db.execute(
            select(RedemptionRequest)
            .join(RedemptionApprover, RedemptionApprover.redemption_id == RedemptionRequest.id)
            .where(*filters)
            .options(selectinload(RedemptionRequest.approvers))
            .order_by(RedemptionRequest.created_at.asc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().unique().all()), total

    async def metrics(self, approver_id: uuid.UUID) -> ApprovalMetrics:
        result = await self.db.execute(
            select(
                RedemptionRequest.id,
                RedemptionRequest.status,
                RedemptionRequest.created_at,
                RedemptionApprover.approver_id,
                RedemptionApprover.status,
                RedemptionApprover.decision_date,
            )
            .join(RedemptionApprover, RedemptionApprover.redemption_id == RedemptionRequest.id)
            .where(
                RedemptionRequest.org_id == self.org_id,
                RedemptionRequest.is_deleted.is_(False),
                RedemptionApprover.is_deleted.is_(False),
            )
        )
        return compute_approval_metrics(result.all(), approver_id)

    # ── Delegation / escalation ────────────────────────────────────────────────

    async def delegate(
        self,
        redemption_id: uuid.UUID,
        from_approver_id: uuid.UUID,
        to: ApproverAssignment,
        actor_id: uuid.UUID | None = None,
    ) -> RedemptionApprover:
        redemption = await self.redemptions.lock(redemption_id)
        self._require_pending(redemption)

        seats = await self._seats(redemption.id)
        seat = next(
            (s for s in seats if s.approver_id == from_approver_id and s.status == ApproverStatus.PENDING),
            None,
        )
        if seat is None:
            raise NotFoundError("No pending approval seat for this approver")
        if any(s.approver_id == to.approver_id and s.status != ApproverStatus.DELEGATED for s in seats):
            raise ConflictError("Delegate is already an approver on this redemption")

        before = seat.to_dict()
        seat.status = ApproverStatus.DELEGATED
        seat.delegated_to = to.approver_id
        replacement = RedemptionApprover(
            redemption_id=redemption.id,
            approver_id=to.approver_id,
            approver_name=to.approver_name,
            approver_role=to.approver_role,
            status=ApproverStatus.PENDING,
        )
        self.db.add(replacement)
        await self.db.flush()
        await self.db.refresh(seat)
        await self.db.refresh(replacement)
        self._seat_event(seat, before)
        self._seat_event(replacement)

        await self.redemptions.record_note(
            redemption,
            f"Approval delegated from {seat.approver_name or from_approver_id} "
            f"to {to.approver_name or to.approver_id}",
            actor_id,
        )
        logger.info(
            "approval.delegated",
            redemption_id=str(redemption.id),
            from_approver=str(from_approver_id),
            to_approver=str(to.approver_id),
        )
        return replacement

    async def escalate(
        self,
        redemption_id: uuid.UUID,
        reason: str | None = None,
        actor_id: uuid.UUID | None = None,
    ) -> RedemptionRequest:
        redemption = await self.redemptions.lock(redemption_id)
        self._require_pending(redemption)

        before = redemption.to_dict()
        redemption.escalated_at = lifecycle.utcnow()
        redemption.escalation_reason = reason or DEFAULT_ESCALATION_REASON
        await self.db.flush()
        await self.db.refresh(redemption)

        await self.redemptions.record_note(
            redemption, f"Approval escalated: {redemption.escalation_reason}", actor_id
        )
        self.redemptions.queue_update(redemption, before)
        logger.info(
            "approval.escalated",
            redemption_id=str(redemption.id),
            reason=redemption.escalation_reason,
        )
        return redemption
