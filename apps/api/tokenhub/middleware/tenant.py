"""Initialises per-request tenant state.

get_current_user fills request.state.org_id / user_id once the caller is
known; the audit middleware reads them back after the response.
"""

from starlette.types import ASGIApp, Receive, Scope, Send


class TenantMiddleware:
    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http":
            scope.setdefault("state", {})
            scope["state"].setdefault("org_id", None)
            scope["state"].setdefault("user_id", None)
        await self.app(scope, receive, send)
