"""Distributions API router."""

import uuid

import structlog
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from tokenhub.auth.dependencies import require_permission
from tokenhub.core.database import get_db
from tokenhub.core.errors import DomainError, to_http
from tokenhub.modules.distributions.schemas import (
    DistributionRedemptionResponse,
    DistributionResponse,
    EnrichedDistribution,
    LinkRedemptionRequest,
)
from tokenhub.modules.distributions.service import DistributionService, parse_investor_id
from tokenhub.realtime.feed import change_feed, publish_events
from tokenhub.schemas.auth import CurrentUser

logger = structlog.get_logger()

router = APIRouter(prefix="/distributions", tags=["distributions"])


@router.get("", response_model=list[DistributionResponse])
async def list_available_distributions(
    current_user: CurrentUser = Depends(require_permission("view", "distribution")),
    db: AsyncSession = Depends(get_db),
):
    """Distributions with tokens left to redeem."""
    return await DistributionService(db, current_user.org_id).list_available()


@router.get("/enriched", response_model=list[EnrichedDistribution])
async def list_enriched_distributions(
    investor_id: str | None = Query(None),
    current_user: CurrentUser = Depends(require_permission("view", "distribution")),
    db: AsyncSession = Depends(get_db),
):
    """Available distributions with investor and subscription details."""
    try:
        return await DistributionService(db, current_user.org_id).enriched(investor_id)
    except DomainError as exc:
        raise to_http(exc) from exc


@router.get("/investor/{investor_id}", response_model=list[DistributionResponse])
async def list_investor_distributions(
    investor_id: str,
    current_user: CurrentUser = Depends(require_permission("view", "distribution")),
    db: AsyncSession = Depends(get_db),
):
    try:
        parsed = parse_investor_id(investor_id)
    except DomainError as exc:
        raise to_http(exc) from exc
    if parsed is None:
        return []
    return await DistributionService(db, current_user.org_id).available_for_investor(parsed)


@router.post(
    "/{distribution_id}/redemptions",
    response_model=DistributionRedemptionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def link_distribution_redemption(
    distribution_id: uuid.UUID,
    body: LinkRedemptionRequest,
    current_user: CurrentUser = Depends(require_permission("edit", "distribution")),
    db: AsyncSession = Depends(get_db),
):
    """Record a redemption against a distribution and reduce its balance."""
    svc = DistributionService(db, current_user.org_id)
    try:
        link = await svc.link_redemption(
            distribution_id, body.redemption_request_id, body.amount_redeemed
        )
        await db.commit()
    except DomainError as exc:
        raise to_http(exc) from exc
    await publish_events(change_feed, svc.events)
    return link
