"""Redemption requests: async service layer.

Every status write goes through update_status(), which validates the move
against the lifecycle table, stamps the matching timestamp, appends a
RedemptionStatusEvent and queues a change event. Change events are only
collected here; the router publishes them after the transaction commits.
"""

import math
import uuid
from collections.abc import Iterable, Sequence
from datetime import datetime
from decimal import Decimal
from typing import Any

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from tokenhub.core.config import settings
from tokenhub.core.errors import ConflictError, DomainError, NotFoundError, ValidationError
from tokenhub.models.enums import RedemptionStatus, RedemptionType
from tokenhub.models.investors import Distribution, Investor
from tokenhub.models.redemptions import RedemptionRequest, RedemptionStatusEvent
from tokenhub.modules.approvals.config import ApprovalConfigService
from tokenhub.modules.approvals.quorum import evaluate_quorum
from tokenhub.modules.distributions.service import (
    DistributionService,
    is_placeholder,
    parse_investor_id,
)
from tokenhub.modules.redemptions import lifecycle
from tokenhub.modules.redemptions.schemas import (
    ApprovalProgress,
    ApproverResponse,
    BulkFailure,
    RedemptionCreate,
    RedemptionMetrics,
    RedemptionStatusView,
    SettlementInfo,
    StatusEventResponse,
)
from tokenhub.realtime.events import ChangeEvent, ChangeType

logger = structlog.get_logger()

DEFAULT_CANCEL_REASON = "Cancelled by user"


def compute_metrics(rows: Iterable[Sequence[Any]]) -> RedemptionMetrics:
    """Summarise (status, token_amount, created_at, settled_at) rows."""
    total = 0
    volume = Decimal("0")
    counts: dict[RedemptionStatus, int] = {}
    processing_hours: list[float] = []

    for status, token_amount, created_at, settled_at in rows:
        status = RedemptionStatus(status)
        total += 1
        volume += Decimal(token_amount or 0)
        counts[status] = counts.get(status, 0) + 1
        if status == RedemptionStatus.SETTLED and created_at and settled_at:
            delta = lifecycle.as_utc(settled_at) - lifecycle.as_utc(created_at)
            processing_hours.append(delta.total_seconds() / 3600)

    settled = counts.get(RedemptionStatus.SETTLED, 0)
    return RedemptionMetrics(
        total_redemptions=total,
        total_volume=volume,
        pending_redemptions=counts.get(RedemptionStatus.PENDING, 0),
        completed_redemptions=settled,
        rejected_redemptions=counts.get(RedemptionStatus.REJECTED, 0),
        average_processing_time=(
            round(sum(processing_hours) / len(processing_hours), 2) if processing_hours else 0.0
        ),
        success_rate=round(settled / total * 100, 2) if total else 0.0,
    )


class RedemptionService:
    def __init__(self, db: AsyncSession, org_id: uuid.UUID) -> None:
        self.db = db
        self.org_id = org_id
        # Change events to publish once the caller commits
        self.events: list[ChangeEvent] = []
        self.distributions = DistributionService(db, org_id, events=self.events)

    # ── Helpers ────────────────────────────────────────────────────────────────

    async def _get(
        self,
        redemption_id: uuid.UUID,
        *,
        for_update: bool = False,
        with_approvers: bool = False,
    ) -> RedemptionRequest:
        stmt = select(RedemptionRequest).where(
            RedemptionRequest.id == redemption_id,
            RedemptionRequest.org_id == self.org_id,
            RedemptionRequest.is_deleted.is_(False),
        )
        if for_update:
            stmt = stmt.with_for_update()
        if with_approvers:
            stmt = stmt.options(selectinload(RedemptionRequest.approvers))
        redemption = (await self.db.execute(stmt)).scalar_one_or_none()
        if redemption is None:
            raise NotFoundError("Redemption request not found")
        return redemption

    def _record_event(
        self,
        redemption: RedemptionRequest,
        previous: RedemptionStatus | None,
        actor_id: uuid.UUID | None,
        message: str | None = None,
    ) -> RedemptionStatusEvent:
        event = RedemptionStatusEvent(
            redemption_id=redemption.id,
            from_status=previous.value if previous else None,
            to_status=redemption.status.value,
            message=message or lifecycle.transition_message(previous, redemption.status),
            actor_id=actor_id,
        )
        self.db.add(event)
        return event

    async def _set_distribution_status(self, distribution_id: uuid.UUID, value: str | None) -> None:
        """Best effort: the redemption write stands even if this fails."""
        try:
            async with self.db.begin_nested():
                distribution = await self.distributions.get(distribution_id)
                await self.distributions.set_redemption_status(distribution, value)
        except (NotFoundError, SQLAlchemyError) as exc:
            logger.warning(
                "redemption.distribution_status_failed",
                distribution_id=str(distribution_id),
                redemption_status=value,
                error=str(exc),
            )

    async def _investor_name(self, investor_id: uuid.UUID) -> str | None:
        return (
            await self.db.execute(select(Investor.name).where(Investor.id == investor_id))
        ).scalar_one_or_none()

    async def _default_required(self) -> int:
        defaults = await ApprovalConfigService(self.db, self.org_id).defaults()
        if defaults is None or not defaults.approvers:
            return settings.REDEMPTION_DEFAULT_REQUIRED_APPROVALS
        return defaults.required_for()

    async def lock(
        self, redemption_id: uuid.UUID, *, with_approvers: bool = False
    ) -> RedemptionRequest:
        """Load a redemption with a row lock ahead of a status change."""
        return await self._get(redemption_id, for_update=True, with_approvers=with_approvers)

    def queue_update(self, redemption: RedemptionRequest, before: dict[str, Any]) -> None:
        self.events.append(
            ChangeEvent(
                ChangeType.UPDATE,
                "redemption_requests",
                new=redemption.to_dict(),
                old=before,
            )
        )

    # ── Create ─────────────────────────────────────────────────────────────────

    async def create_request(
        self,
        body: RedemptionCreate,
        user_id: uuid.UUID | None,
        *,
        batch_id: str | None = None,
    ) -> RedemptionRequest:
        investor_name = body.investor_name
        distribution: Distribution | None = None

        if body.distribution_id is not None:
            try:
                distribution = await self.distributions.get(body.distribution_id)
            except NotFoundError as exc:
                raise NotFoundError("Failed to fetch distribution details") from exc
            if body.token_amount > distribution.remaining_amount:
                raise ValidationError(
                    f"Requested {body.token_amount} tokens but only "
                    f"{distribution.remaining_amount} remain in this distribution"
                )
            # The distribution is authoritative for who is redeeming
            investor_id = distribution.investor_id
            investor_name = await self._investor_name(investor_id) or investor_name
        else:
            investor_id = parse_investor_id(body.investor_id)

        required = body.required_approvals or await self._default_required()
        status = RedemptionStatus.DRAFT if body.draft else RedemptionStatus.PENDING
        redemption = RedemptionRequest(
            org_id=self.org_id,
            token_amount=body.token_amount,
            token_type=body.token_type,
            redemption_type=body.redemption_type,
            status=status,
            source_wallet_address=body.source_wallet_address,
            destination_wallet_address=body.destination_wallet_address,
            conversion_rate=body.conversion_rate,
            investor_id=investor_id,
            investor_name=investor_name,
            distribution_id=body.distribution_id,
            required_approvals=required,
            is_bulk_redemption=batch_id is not None,
            investor_count=1,
            batch_id=batch_id,
            notes=body.notes,
            created_by=user_id,
        )
        self.db.add(redemption)
        await self.db.flush()
        await self.db.refresh(redemption)

        if distribution is not None:
            await self._set_distribution_status(distribution.id, "processing")

        self._record_event(redemption, None, user_id)
        await self.db.flush()

        self.events.append(
            ChangeEvent(ChangeType.INSERT, "redemption_requests", new=redemption.to_dict())
        )
        logger.info(
            "redemption.created",
            redemption_id=str(redemption.id),
            investor_id=str(investor_id) if investor_id else None,
            distribution_id=str(body.distribution_id) if body.distribution_id else None,
            token_amount=str(body.token_amount),
            status=status.value,
            batch_id=batch_id,
        )
        return redemption

    async def create_bulk(
        self,
        requests: list[RedemptionCreate],
        user_id: uuid.UUID | None,
    ) -> tuple[str, list[RedemptionRequest], list[BulkFailure]]:
        """Create each request in its own savepoint so one bad row does not
        sink the batch."""
        batch_id = f"batch_{uuid.uuid4().hex[:16]}"
        created: list[RedemptionRequest] = []
        failures: list[BulkFailure] = []

        for index, body in enumerate(requests):
            # events queued by a rolled-back item are dropped with it
            mark = len(self.events)
            try:
                async with self.db.begin_nested():
                    redemption = await self.create_request(body, user_id, batch_id=batch_id)
            except DomainError as exc:
                del self.events[mark:]
                failures.append(BulkFailure(index=index, error=exc.message))
                continue
            except SQLAlchemyError as exc:
                del self.events[mark:]
                logger.warning("redemption.bulk_item_failed", index=index, error=str(exc))
                failures.append(BulkFailure(index=index, error="Database error"))
                continue
            created.append(redemption)

        logger.info(
            "redemption.bulk_created",
            batch_id=batch_id,
            success_count=len(created),
            failed_count=len(failures),
        )
        return batch_id, created, failures

    # ── Read ───────────────────────────────────────────────────────────────────

    async def get_request(self, redemption_id: uuid.UUID) -> RedemptionRequest:
        return await self._get(redemption_id)

    async def list_requests(
        self,
        page: int = 1,
        limit: int = 20,
        status: RedemptionStatus | None = None,
        investor_id: str | None = None,
        token_type: str | None = None,
        redemption_type: RedemptionType | None = None,
    ) -> dict[str, Any]:
        filters = [
            RedemptionRequest.org_id == self.org_id,
            RedemptionRequest.is_deleted.is_(False),
        ]
        if status is not None:
            filters.append(RedemptionRequest.status == status)
        if investor_id and not is_placeholder(investor_id):
            filters.append(RedemptionRequest.investor_id == parse_investor_id(investor_id))
        if token_type is not None:
            filters.append(RedemptionRequest.token_type == token_type)
        if redemption_type is not None:
            filters.append(RedemptionRequest.redemption_type == redemption_type)

        total: int = (
            await self.db.execute(select(func.count(RedemptionRequest.id)).where(*filters))
        ).scalar_one()
        items = (
            await self.db.execute(
                select(RedemptionRequest)
                .where(*filters)
                .order_by(RedemptionRequest.created_at.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
        ).scalars().all()

        total_pages = math.ceil(total / limit) if total else 0
        return {
            "items": list(items),
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": total_pages,
            "has_more": page < total_pages,
        }

    async def get_metrics(
        self,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        token_type: str | None = None,
        redemption_type: RedemptionType | None = None,
    ) -> RedemptionMetrics:
        stmt = select(
            RedemptionRequest.status,
            RedemptionRequest.token_amount,
            RedemptionRequest.created_at,
            RedemptionRequest.settled_at,
        ).where(
            RedemptionRequest.org_id == self.org_id,
            RedemptionRequest.is_deleted.is_(False),
        )
        if start_date is not None:
            stmt = stmt.where(RedemptionRequest.created_at >= start_date)
        if end_date is not None:
            stmt = stmt.where(RedemptionRequest.created_at <= end_date)
        if token_type is not None:
            stmt = stmt.where(RedemptionRequest.token_type == token_type)
        if redemption_type is not None:
            stmt = stmt.where(RedemptionRequest.redemption_type == redemption_type)

        rows = (await self.db.execute(stmt)).all()
        return compute_metrics(rows)

    async def status_history(self, redemption_id: uuid.UUID) -> list[RedemptionStatusEvent]:
        await self._get(redemption_id)
        result = await self.db.execute(
            select(RedemptionStatusEvent)
            .where(RedemptionStatusEvent.redemption_id == redemption_id)
            .order_by(RedemptionStatusEvent.created_at.asc())
        )
        return list(result.scalars().all())

    async def status_view(
        self, redemption_id: uuid.UUID, now: datetime | None = None
    ) -> RedemptionStatusView:
        redemption = await self._get(redemption_id, with_approvers=True)
        history = await self.status_history(redemption_id)
        status = redemption.status

        quorum = evaluate_quorum([a.status for a in redemption.approvers], redemption.required_approvals)
        estimate = lifecycle.estimated_completion(status, now)

        return RedemptionStatusView(
            redemption_id=redemption.id,
            status=status,
            progress_percentage=lifecycle.progress_percentage(status),
            estimated_completion=estimate,
            time_remaining=lifecycle.time_remaining(estimate, now),
            status_message=lifecycle.status_message(status),
            is_in_progress=lifecycle.is_in_progress(status),
            is_completed=lifecycle.is_completed(status),
            is_failed=lifecycle.is_failed(status),
            can_cancel=lifecycle.can_cancel(status),
            approval=ApprovalProgress(
                outcome=quorum.outcome.value,
                current=quorum.current,
                required=quorum.required,
                percentage=quorum.percentage,
                approvers=[ApproverResponse.model_validate(a) for a in redemption.approvers],
            ),
            settlement=SettlementInfo(
                settlement_tx_hash=redemption.settlement_tx_hash,
                processing_started_at=redemption.processing_started_at,
                settled_at=redemption.settled_at,
            ),
            history=[StatusEventResponse.model_validate(e) for e in history],
            updated_at=redemption.updated_at,
        )

    # ── Status changes ─────────────────────────────────────────────────────────

    async def update_status(
        self,
        redemption_id: uuid.UUID,
        status: RedemptionStatus,
        *,
        reason: str | None = None,
        actor_id: uuid.UUID | None = None,
        settlement_tx_hash: str | None = None,
        redemption: RedemptionRequest | None = None,
    ) -> RedemptionRequest:
        if redemption is None:
            redemption = await self._get(redemption_id, for_update=True)
        previous = redemption.status
        lifecycle.ensure_transition(previous, status)

        before = redemption.to_dict()
        now = lifecycle.utcnow()
        redemption.status = status
        redemption.updated_by = actor_id

        if status == RedemptionStatus.APPROVED:
            redemption.approved_at = now
        elif status == RedemptionStatus.PROCESSING:
            redemption.processing_started_at = now
        elif status == RedemptionStatus.SETTLED:
            redemption.settled_at = now
            if settlement_tx_hash:
                redemption.settlement_tx_hash = settlement_tx_hash
            if redemption.distribution_id is not None:
                await self.distributions.link_redemption(
                    redemption.distribution_id, redemption.id, redemption.token_amount
                )
        elif status == RedemptionStatus.REJECTED:
            redemption.rejection_reason = reason
            redemption.rejected_by = actor_id
            redemption.rejection_timestamp = now
        elif status == RedemptionStatus.CANCELLED:
            redemption.rejection_reason = reason or DEFAULT_CANCEL_REASON
            redemption.rejection_timestamp = now

        await self.db.flush()
        await self.db.refresh(redemption)

        if redemption.distribution_id is not None and lifecycle.is_failed(status):
            await self._set_distribution_status(redemption.distribution_id, None)
        elif redemption.distribution_id is not None and status == RedemptionStatus.SETTLED:
            await self._set_distribution_status(redemption.distribution_id, "completed")

        self._record_event(redemption, previous, actor_id)
        await self.db.flush()

        self.queue_update(redemption, before)
        logger.info(
            "redemption.status_changed",
            redemption_id=str(redemption.id),
            from_status=previous.value,
            to_status=status.value,
            actor_id=str(actor_id) if actor_id else None,
        )
        return redemption

    async def cancel_request(
        self,
        redemption_id: uuid.UUID,
        reason: str | None = None,
        actor_id: uuid.UUID | None = None,
    ) -> RedemptionRequest:
        redemption = await self._get(redemption_id, for_update=True)
        if not lifecycle.can_cancel(redemption.status):
            raise ConflictError(
                f"Redemption in status '{redemption.status.value}' can no longer be cancelled"
            )
        return await self.update_status(
            redemption_id,
            RedemptionStatus.CANCELLED,
            reason=reason or DEFAULT_CANCEL_REASON,
            actor_id=actor_id,
            redemption=redemption,
        )

    async def record_note(
        self,
        redemption: RedemptionRequest,
        message: str,
        actor_id: uuid.UUID | None,
    ) -> RedemptionStatusEvent:
        """Append a history entry that does not change the status."""
        event = self._record_event(redemption, redemption.status, actor_id, message=message)
        await self.db.flush()
        return event
