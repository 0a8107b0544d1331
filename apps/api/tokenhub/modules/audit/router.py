"""Audit log API router (admin only)."""

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from tokenhub.auth.dependencies import require_permission
from tokenhub.core.database import get_db
from tokenhub.modules.audit import service
from tokenhub.modules.audit.schemas import AuditLogPage
from tokenhub.schemas.auth import CurrentUser

router = APIRouter(prefix="/audit-logs", tags=["audit"])


@router.get("", response_model=AuditLogPage)
async def list_audit_logs(
    search: str | None = Query(None),
    action: str | None = Query(None),
    entity_type: str | None = Query(None),
    entity_id: uuid.UUID | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: CurrentUser = Depends(require_permission("view", "audit_log")),
    db: AsyncSession = Depends(get_db),
) -> AuditLogPage:
    return await service.list_audit_logs(
        db,
        current_user.org_id,
        search=search,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        limit=limit,
        offset=offset,
    )
