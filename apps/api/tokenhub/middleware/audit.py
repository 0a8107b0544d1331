"""Audit logging middleware.

Records every successful mutating request (POST/PUT/PATCH/DELETE) to
audit_logs from a background task with its own DB session, so the write
never delays or fails the response.
"""

import asyncio
import uuid

import structlog
from sqlalchemy.exc import SQLAlchemyError
from starlette.requests import Request
from starlette.types import ASGIApp, Receive, Scope, Send

from tokenhub.core.database import async_session_factory
from tokenhub.models.core import AuditLog

logger = structlog.get_logger()

AUDITED_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})

AUDIT_EXEMPT_PATHS = frozenset({"/health", "/docs", "/redoc", "/openapi.json"})

_METHOD_ACTIONS = {
    "POST": "create",
    "PUT": "update",
    "PATCH": "update",
    "DELETE": "delete",
}

_background_tasks: set[asyncio.Task] = set()


class AuditMiddleware:
    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or scope["method"] not in AUDITED_METHODS:
            await self.app(scope, receive, send)
            return

        path = scope.get("path", "")
        if any(path.startswith(exempt) for exempt in AUDIT_EXEMPT_PATHS):
            await self.app(scope, receive, send)
            return

        response_status = 0

        async def capture_send(message: dict) -> None:
            nonlocal response_status
            if message["type"] == "http.response.start":
                response_status = message.get("status", 0)
            await send(message)

        await self.app(scope, receive, capture_send)

        if 200 <= response_status < 300:
            task = asyncio.create_task(_write_audit_log(scope, Request(scope), path))
            _background_tasks.add(task)
            task.add_done_callback(_background_tasks.discard)


async def _write_audit_log(scope: Scope, request: Request, path: str) -> None:
    state = scope.get("state", {})
    org_id = state.get("org_id")
    user_id = state.get("user_id")
    if not org_id or not user_id:
        return

    action, entity_type, entity_id = describe_request(scope["method"], path)

    ip_address = request.headers.get("x-forwarded-for")
    if ip_address:
        ip_address = ip_address.split(",")[0].strip()
    elif request.client:
        ip_address = request.client.host

    try:
        async with async_session_factory() as session:
            session.add(
                AuditLog(
                    org_id=org_id,
                    user_id=user_id,
                    action=f"{action}:{entity_type}",
                    entity_type=entity_type,
                    entity_id=entity_id,
                    ip_address=ip_address,
                    user_agent=request.headers.get("user-agent", "")[:500],
                )
            )
            await session.commit()
    except SQLAlchemyError:
        logger.exception("audit_log_write_failed", path=path)


def describe_request(method: str, path: str) -> tuple[str, str, uuid.UUID | None]:
    """Derive (action, entity_type, entity_id) from a request.

    Examples:
        POST  /v1/redemptions                    -> ("create", "redemption", None)
        PATCH /v1/redemptions/<id>/status        -> ("status", "redemption", UUID)
        POST  /v1/approvals/<id>/decision        -> ("decision", "approval", UUID)
    """
    parts = [p for p in path.strip("/").split("/") if p]
    if parts and parts[0] == "v1":
        parts = parts[1:]

    entity_type = parts[0].rstrip("s") if parts else "unknown"
    entity_id = None
    action = _METHOD_ACTIONS.get(method, method.lower())

    if len(parts) >= 2:
        try:
            entity_id = uuid.UUID(parts[1])
        except ValueError:
            action = parts[1]
    if entity_id is not None and len(parts) >= 3:
        action = parts[2]

    return action, entity_type, entity_id
