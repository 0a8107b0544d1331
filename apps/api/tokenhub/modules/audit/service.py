"""Audit log reads, scoped to the caller's organisation."""

import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tokenhub.models.core import AuditLog, User
from tokenhub.modules.audit.schemas import AuditLogEntry, AuditLogPage


async def list_audit_logs(
    db: AsyncSession,
    org_id: uuid.UUID,
    search: str | None = None,
    action: str | None = None,
    entity_type: str | None = None,
    entity_id: uuid.UUID | None = None,
    limit: int = 50,
    offset: int = 0,
) -> AuditLogPage:
    base = (
        select(AuditLog, User.email.label("user_email"))
        .outerjoin(User, AuditLog.user_id == User.id)
        .where(AuditLog.org_id == org_id)
    )
    if search:
        base = base.where(
            AuditLog.action.ilike(f"%{search}%")
            | AuditLog.entity_type.ilike(f"%{search}%")
        )
    if action:
        base = base.where(AuditLog.action == action)
    if entity_type:
        base = base.where(AuditLog.entity_type == entity_type)
    if entity_id:
        base = base.where(AuditLog.entity_id == entity_id)

    count_stmt = select(func.count()).select_from(base.subquery())
    total = (await db.execute(count_stmt)).scalar_one()

    rows = (await db.execute(base.order_by(AuditLog.timestamp.desc()).offset(offset).limit(limit))).all()

    items = [
        AuditLogEntry(
            id=log.id,
            user_id=log.user_id,
            user_email=user_email,
            action=log.action,
            entity_type=log.entity_type,
            entity_id=log.entity_id,
            ip_address=log.ip_address,
            timestamp=log.timestamp,
        )
        for log, user_email in rows
    ]
    return AuditLogPage(items=items, total=total, limit=limit, offset=offset)
