"""Redemptions API router: requests, status, history, metrics, live streams."""

import asyncio
import json
import uuid
from datetime import datetime
from typing import Any

import structlog
from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from tokenhub.auth.dependencies import require_permission
from tokenhub.core.config import settings
from tokenhub.core.database import async_session_factory, get_db
from tokenhub.core.errors import DomainError, to_http
from tokenhub.models.enums import RedemptionStatus, RedemptionType
from tokenhub.modules.distributions.service import is_placeholder, parse_investor_id
from tokenhub.modules.redemptions.schemas import (
    BulkRedemptionCreate,
    BulkRedemptionResponse,
    CancelRequest,
    RedemptionCreate,
    RedemptionListResponse,
    RedemptionMetrics,
    RedemptionResponse,
    RedemptionStatusView,
    StatusEventResponse,
    StatusUpdateRequest,
)
from tokenhub.modules.redemptions.service import RedemptionService
from tokenhub.realtime.feed import change_feed, publish_events
from tokenhub.realtime.relay import RedemptionListRelay
from tokenhub.realtime.watcher import RedemptionStatusWatcher
from tokenhub.schemas.auth import CurrentUser

logger = structlog.get_logger()

router = APIRouter(prefix="/redemptions", tags=["redemptions"])

_SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _sse(data: dict[str, Any]) -> str:
    return f"data: {json.dumps(data, default=str)}\n\n"


# ── Fixed-path routes (before /{id}) ─────────────────────────────────────────


@router.post("", response_model=RedemptionResponse, status_code=status.HTTP_201_CREATED)
async def create_redemption(
    body: RedemptionCreate,
    current_user: CurrentUser = Depends(require_permission("create", "redemption")),
    db: AsyncSession = Depends(get_db),
):
    """Create a redemption request, optionally against a distribution."""
    svc = RedemptionService(db, current_user.org_id)
    try:
        redemption = await svc.create_request(body, current_user.user_id)
        await db.commit()
    except DomainError as exc:
        raise to_http(exc) from exc
    await publish_events(change_feed, svc.events)
    return redemption


@router.post("/bulk", response_model=BulkRedemptionResponse, status_code=status.HTTP_201_CREATED)
async def create_bulk_redemptions(
    body: BulkRedemptionCreate,
    current_user: CurrentUser = Depends(require_permission("create", "redemption")),
    db: AsyncSession = Depends(get_db),
):
    """Create many requests under one batch id; failures are reported per item."""
    svc = RedemptionService(db, current_user.org_id)
    batch_id, created, failures = await svc.create_bulk(body.requests, current_user.user_id)
    await db.commit()
    await publish_events(change_feed, svc.events)
    return BulkRedemptionResponse(
        batch_id=batch_id,
        requests=[RedemptionResponse.model_validate(r) for r in created],
        success_count=len(created),
        failed_count=len(failures),
        failures=failures,
    )


@router.get("", response_model=RedemptionListResponse)
async def list_redemptions(
    page: int = Query(1, ge=1),
    limit: int = Query(settings.REDEMPTION_PAGE_SIZE, ge=1, le=100),
    status_filter: RedemptionStatus | None = Query(None, alias="status"),
    investor_id: str | None = Query(None),
    token_type: str | None = Query(None),
    redemption_type: RedemptionType | None = Query(None),
    current_user: CurrentUser = Depends(require_permission("view", "redemption")),
    db: AsyncSession = Depends(get_db),
):
    """List redemption requests, newest first."""
    svc = RedemptionService(db, current_user.org_id)
    try:
        result = await svc.list_requests(
            page=page,
            limit=limit,
            status=status_filter,
            investor_id=investor_id,
            token_type=token_type,
            redemption_type=redemption_type,
        )
    except DomainError as exc:
        raise to_http(exc) from exc
    return RedemptionListResponse(**result)


@router.get("/metrics", response_model=RedemptionMetrics)
async def get_redemption_metrics(
    start_date: datetime | None = Query(None),
    end_date: datetime | None = Query(None),
    token_type: str | None = Query(None),
    redemption_type: RedemptionType | None = Query(None),
    current_user: CurrentUser = Depends(require_permission("view", "redemption")),
    db: AsyncSession = Depends(get_db),
):
    """Counts, volume, average processing time and success rate."""
    svc = RedemptionService(db, current_user.org_id)
    return await svc.get_metrics(start_date, end_date, token_type, redemption_type)


@router.get("/stream")
async def redemption_stream(
    investor_id: str | None = Query(None),
    status_filter: RedemptionStatus | None = Query(None, alias="status"),
    current_user: CurrentUser = Depends(require_permission("view", "redemption")),
):
    """SSE stream of list changes: an initial snapshot, then change events."""
    row_filter: dict[str, Any] = {"org_id": str(current_user.org_id)}
    if investor_id and not is_placeholder(investor_id):
        try:
            row_filter["investor_id"] = str(parse_investor_id(investor_id))
        except DomainError as exc:
            raise to_http(exc) from exc
    include_filter: dict[str, Any] = {}
    if status_filter is not None:
        include_filter["status"] = status_filter.value

    async def load_page() -> tuple[list[dict[str, Any]], int]:
        async with async_session_factory() as session:
            result = await RedemptionService(session, current_user.org_id).list_requests(
                limit=settings.REDEMPTION_PAGE_SIZE,
                status=status_filter,
                investor_id=row_filter.get("investor_id"),
            )
        items = [RedemptionResponse.model_validate(r).model_dump(mode="json") for r in result["items"]]
        return items, result["total"]

    relay = RedemptionListRelay(
        change_feed, load_page, row_filter=row_filter, include_filter=include_filter
    )

    async def event_generator():
        await relay.start()
        try:
            while True:
                try:
                    message = await asyncio.wait_for(
                        relay.queue.get(), timeout=settings.REALTIME_HEARTBEAT_SECONDS
                    )
                    yield _sse(message)
                except asyncio.TimeoutError:
                    yield _sse({"type": "heartbeat"})
        finally:
            await relay.stop()

    return StreamingResponse(
        event_generator(), media_type="text/event-stream", headers=_SSE_HEADERS
    )


# ── Parameterized routes (after fixed paths) ─────────────────────────────────


@router.get("/{redemption_id}", response_model=RedemptionResponse)
async def get_redemption(
    redemption_id: uuid.UUID,
    current_user: CurrentUser = Depends(require_permission("view", "redemption")),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await RedemptionService(db, current_user.org_id).get_request(redemption_id)
    except DomainError as exc:
        raise to_http(exc) from exc


@router.get("/{redemption_id}/status", response_model=RedemptionStatusView)
async def get_redemption_status(
    redemption_id: uuid.UUID,
    current_user: CurrentUser = Depends(require_permission("view", "redemption")),
    db: AsyncSession = Depends(get_db),
):
    """Progress, ETA, approval quorum and settlement details."""
    try:
        return await RedemptionService(db, current_user.org_id).status_view(redemption_id)
    except DomainError as exc:
        raise to_http(exc) from exc


@router.get("/{redemption_id}/status/stream")
async def redemption_status_stream(
    redemption_id: uuid.UUID,
    current_user: CurrentUser = Depends(require_permission("view", "redemption")),
    db: AsyncSession = Depends(get_db),
):
    """SSE stream of status snapshots until the redemption is terminal."""
    try:
        initial = await RedemptionService(db, current_user.org_id).status_view(redemption_id)
    except DomainError as exc:
        raise to_http(exc) from exc

    async def load() -> dict[str, Any]:
        async with async_session_factory() as session:
            view = await RedemptionService(session, current_user.org_id).status_view(redemption_id)
        return view.model_dump(mode="json")

    watcher = RedemptionStatusWatcher(str(redemption_id), load, change_feed)

    async def event_generator():
        await watcher.start(initial=initial.model_dump(mode="json"))
        try:
            while not watcher.finished:
                try:
                    snapshot = await asyncio.wait_for(
                        watcher.queue.get(), timeout=settings.REALTIME_HEARTBEAT_SECONDS
                    )
                    yield _sse({"type": "status", "data": snapshot, "history": watcher.history})
                except asyncio.TimeoutError:
                    yield _sse({"type": "heartbeat"})
        finally:
            await watcher.stop()

    return StreamingResponse(
        event_generator(), media_type="text/event-stream", headers=_SSE_HEADERS
    )


@router.get("/{redemption_id}/history", response_model=list[StatusEventResponse])
async def get_redemption_history(
    redemption_id: uuid.UUID,
    current_user: CurrentUser = Depends(require_permission("view", "redemption")),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await RedemptionService(db, current_user.org_id).status_history(redemption_id)
    except DomainError as exc:
        raise to_http(exc) from exc


@router.patch("/{redemption_id}/status", response_model=RedemptionResponse)
async def update_redemption_status(
    redemption_id: uuid.UUID,
    body: StatusUpdateRequest,
    current_user: CurrentUser = Depends(require_permission("edit", "redemption")),
    db: AsyncSession = Depends(get_db),
):
    """Move a redemption along its lifecycle."""
    svc = RedemptionService(db, current_user.org_id)
    try:
        redemption = await svc.update_status(
            redemption_id,
            body.status,
            reason=body.reason,
            actor_id=current_user.user_id,
            settlement_tx_hash=body.settlement_tx_hash,
        )
        await db.commit()
    except DomainError as exc:
        raise to_http(exc) from exc
    await publish_events(change_feed, svc.events)
    return redemption


@router.post("/{redemption_id}/cancel", response_model=RedemptionResponse)
async def cancel_redemption(
    redemption_id: uuid.UUID,
    body: CancelRequest | None = None,
    current_user: CurrentUser = Depends(require_permission("cancel", "redemption")),
    db: AsyncSession = Depends(get_db),
):
    svc = RedemptionService(db, current_user.org_id)
    try:
        redemption = await svc.cancel_request(
            redemption_id,
            reason=body.reason if body else None,
            actor_id=current_user.user_id,
        )
        await db.commit()
    except DomainError as exc:
        raise to_http(exc) from exc
    await publish_events(change_feed, svc.events)
    return redemption
