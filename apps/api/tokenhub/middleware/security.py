"""Security middleware: HTTP headers, rate limiting, body size enforcement.

All three are pure ASGI middleware (no BaseHTTPMiddleware) so the SSE
status streams pass through untouched.
"""

import base64
import json
import time

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError
from starlette.datastructures import MutableHeaders
from starlette.types import ASGIApp, Receive, Scope, Send

logger = structlog.get_logger()

# ── 1. Security Headers ───────────────────────────────────────────────────────


class SecurityHeadersMiddleware:
    """Append security headers to every HTTP response."""

    _STATIC_HEADERS = [
        ("x-content-type-options", "nosniff"),
        ("x-frame-options", "DENY"),
        ("x-xss-protection", "0"),
        ("referrer-policy", "strict-origin-when-cross-origin"),
        ("permissions-policy", "geolocation=(), microphone=(), camera=(), payment=()"),
    ]
    _HSTS_HEADER = ("strict-transport-security", "max-age=63072000; includeSubDomains; preload")

    def __init__(self, app: ASGIApp, is_production: bool = False) -> None:
        self.app = app
        self._headers = list(self._STATIC_HEADERS)
        if is_production:
            self._headers.append(self._HSTS_HEADER)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        async def _send(message: dict) -> None:
            if message["type"] == "http.response.start":
                raw = MutableHeaders(scope=message)
                for name, value in self._headers:
                    raw.append(name, value)
                raw.update({"server": "tokenhub"})
            await send(message)

        await self.app(scope, receive, _send)


# ── 2. Request Body Size Limiter ──────────────────────────────────────────────


class RequestBodySizeLimitMiddleware:
    """Reject requests whose Content-Length exceeds max_bytes before they hit handlers."""

    def __init__(self, app: ASGIApp, max_bytes: int = 5_242_880) -> None:  # 5 MB
        self.app = app
        self.max_bytes = max_bytes

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = dict(scope.get("headers", []))
        raw_cl = headers.get(b"content-length")
        if raw_cl and raw_cl.isdigit() and int(raw_cl) > self.max_bytes:
            body = json.dumps(
                {"detail": f"Request body too large. Maximum {self.max_bytes} bytes."}
            ).encode()
            await send(
                {
                    "type": "http.response.start",
                    "status": 413,
                    "headers": [
                        (b"content-type", b"application/json"),
                        (b"content-length", str(len(body)).encode()),
                    ],
                }
            )
            await send({"type": "http.response.body", "body": body, "more_body": False})
            return

        await self.app(scope, receive, send)


# ── 3. Redis Sliding-Window Rate Limiter ──────────────────────────────────────


# (path_prefix, requests_allowed, window_seconds)
# More specific prefixes must come before generic ones.
_RATE_RULES: list[tuple[str, int, int]] = [
    ("/auth/", 20, 60),              # brute-force protection
    ("/redemptions/bulk", 10, 60),
    ("/approvals/", 120, 60),
]
_DEFAULT_RATE: tuple[int, int] = (300, 60)

# Applied to authenticated requests on top of the IP limits
_ORG_RATE_RULES: list[tuple[str, int, int]] = [
    ("/redemptions/bulk", 30, 60),
    ("/", 1000, 60),
]

_SKIP_PATHS: frozenset[str] = frozenset(
    ["/health", "/docs", "/redoc", "/openapi.json", "/favicon.ico"]
)


def _match_rule(
    path: str, rules: list[tuple[str, int, int]], default: tuple[int, int]
) -> tuple[int, int]:
    for prefix, limit, window in rules:
        if path.startswith(prefix):
            return limit, window
    return default


class RateLimitMiddleware:
    """IP-based + org-based sliding-window rate limiter backed by Redis.

    The org_id is read from the unverified JWT payload; rate limiting is
    best-effort and real auth happens in the route dependency. Fails open
    when Redis is unavailable.
    """

    def __init__(self, app: ASGIApp, redis_url: str, enabled: bool = True) -> None:
        self.app = app
        self.enabled = enabled
        self._redis_url = redis_url
        self._redis: aioredis.Redis | None = None

    def _client(self) -> aioredis.Redis:
        if self._redis is None:
            self._redis = aioredis.from_url(
                self._redis_url,
                decode_responses=True,
                socket_connect_timeout=0.5,
                socket_timeout=0.5,
            )
        return self._redis

    @staticmethod
    def _extract_org_id(headers: dict[bytes, bytes]) -> str | None:
        """Peek at the JWT payload for an org_id claim; None if absent or malformed."""
        auth = headers.get(b"authorization", b"").decode("latin-1")
        if not auth.startswith("Bearer "):
            return None
        try:
            payload_b64 = auth[7:].split(".")[1]
            payload_b64 += "=" * (-len(payload_b64) % 4)
            claims = json.loads(base64.urlsafe_b64decode(payload_b64))
        except (IndexError, ValueError):
            return None
        if not isinstance(claims, dict):
            return None
        metadata = claims.get("metadata")
        return claims.get("org_id") or (metadata.get("org_id") if isinstance(metadata, dict) else None)

    @staticmethod
    async def _sliding_window(
        redis: aioredis.Redis,
        key: str,
        limit: int,
        window: int,
    ) -> tuple[bool, int]:
        """Execute sliding-window counter. Returns (allowed, remaining)."""
        now = time.time()
        pipe = redis.pipeline()
        pipe.zadd(key, {str(now): now})
        pipe.zremrangebyscore(key, 0, now - window)
        pipe.zcard(key)
        pipe.expire(key, window + 1)
        results = await pipe.execute()
        count: int = results[2]
        return count <= limit, max(0, limit - count)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or not self.enabled:
            await self.app(scope, receive, send)
            return

        path: str = scope.get("path", "")
        if path in _SKIP_PATHS:
            await self.app(scope, receive, send)
            return

        raw_headers: dict[bytes, bytes] = {k: v for k, v in scope.get("headers", [])}

        xff = raw_headers.get(b"x-forwarded-for", b"").decode("latin-1")
        ip = xff.split(",")[0].strip() if xff else (scope.get("client") or ["unknown"])[0]

        effective_path = path[3:] if path.startswith("/v1") else path
        segment = effective_path.strip("/").split("/")[0]

        ip_limit, ip_window = _match_rule(effective_path, _RATE_RULES, _DEFAULT_RATE)
        ip_allowed, ip_remaining = True, ip_limit
        try:
            ip_allowed, ip_remaining = await self._sliding_window(
                self._client(), f"rl:ip:{ip}:{segment}", ip_limit, ip_window
            )
        except (RedisError, OSError) as exc:
            logger.warning("rate_limit.ip_redis_error", error=str(exc))

        if not ip_allowed:
            return await self._send_429(send, ip_limit, ip_window, reason="ip_limit_exceeded")

        org_id = self._extract_org_id(raw_headers)
        org_limit, org_window = _match_rule(effective_path, _ORG_RATE_RULES, (1000, 60))
        org_remaining = org_limit
        if org_id:
            org_allowed = True
            try:
                org_allowed, org_remaining = await self._sliding_window(
                    self._client(), f"rl:org:{org_id}:{segment}", org_limit, org_window
                )
            except (RedisError, OSError) as exc:
                logger.warning("rate_limit.org_redis_error", error=str(exc))
            if not org_allowed:
                return await self._send_429(
                    send,
                    org_limit,
                    org_window,
                    reason="org_limit_exceeded",
                    extra_headers=[
                        (b"x-ratelimit-org-limit", str(org_limit).encode()),
                        (b"x-ratelimit-org-remaining", b"0"),
                    ],
                )

        async def _send_with_rl_headers(message: dict) -> None:
            if message["type"] == "http.response.start":
                h = MutableHeaders(scope=message)
                h.append("x-ratelimit-limit", str(ip_limit))
                h.append("x-ratelimit-remaining", str(ip_remaining))
                h.append("x-ratelimit-window", str(ip_window))
                if org_id:
                    h.append("x-ratelimit-org-limit", str(org_limit))
                    h.append("x-ratelimit-org-remaining", str(org_remaining))
            await send(message)

        await self.app(scope, receive, _send_with_rl_headers)

    @staticmethod
    async def _send_429(
        send: Send,
        limit: int,
        window: int,
        reason: str = "rate_limit_exceeded",
        extra_headers: list[tuple[bytes, bytes]] | None = None,
    ) -> None:
        body = json.dumps({"detail": "Too many requests. Please slow down.", "reason": reason}).encode()
        headers: list[tuple[bytes, bytes]] = [
            (b"content-type", b"application/json"),
            (b"content-length", str(len(body)).encode()),
            (b"retry-after", str(window).encode()),
            (b"x-ratelimit-limit", str(limit).encode()),
            (b"x-ratelimit-remaining", b"0"),
            (b"x-ratelimit-window", str(window).encode()),
            *(extra_headers or []),
        ]
        await send({"type": "http.response.start", "status": 429, "headers": headers})
        await send({"type": "http.response.body", "body": body, "more_body": False})
