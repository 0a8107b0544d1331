from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from tokenhub.core.config import settings
from tokenhub.core.database import async_session_factory
from tokenhub.core.errors import (
    DomainError,
    domain_exception_handler,
    global_exception_handler,
    http_exception_handler,
)
from tokenhub.core.redis import close_redis, get_redis
from tokenhub.core.sentry import init_sentry
from tokenhub.middleware.security import (
    RateLimitMiddleware,
    RequestBodySizeLimitMiddleware,
    SecurityHeadersMiddleware,
)

import tokenhub.models  # noqa: F401  register all models at startup

from tokenhub.auth.router import router as auth_router
from tokenhub.middleware.audit import AuditMiddleware
from tokenhub.middleware.tenant import TenantMiddleware
from tokenhub.modules.approvals.router import router as approvals_router
from tokenhub.modules.audit.router import router as audit_router
from tokenhub.modules.distributions.router import router as distributions_router
from tokenhub.modules.redemptions.router import router as redemptions_router

# ── Sentry: initialised BEFORE the FastAPI app is created ────────────────────
init_sentry(settings.SENTRY_DSN, settings.SENTRY_ENVIRONMENT, settings.APP_VERSION)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None]:
    logger.info("Starting Tokenhub API", env=settings.APP_ENV)
    yield
    logger.info("Shutting down Tokenhub API")
    await close_redis()


_is_prod = settings.APP_ENV == "production"

app = FastAPI(
    title="Tokenhub API",
    description="Token redemption requests, multi-party approvals and distribution tracking.",
    version="0.1.0",
    docs_url=None if _is_prod else "/docs",
    redoc_url=None if _is_prod else "/redoc",
    openapi_url=None if _is_prod else "/openapi.json",
    lifespan=lifespan,
)

app.add_exception_handler(DomainError, domain_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "Accept", "X-Request-ID", "Last-Event-ID"],
    expose_headers=["X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Window"],
)
app.add_middleware(AuditMiddleware)
app.add_middleware(TenantMiddleware)
# Added last = outermost = first to see requests, last to touch responses
app.add_middleware(
    RequestBodySizeLimitMiddleware,  # type: ignore[arg-type]
    max_bytes=settings.MAX_REQUEST_BODY_BYTES,
)
app.add_middleware(
    RateLimitMiddleware,  # type: ignore[arg-type]
    redis_url=settings.REDIS_URL,
    enabled=settings.RATE_LIMIT_ENABLED,
)
app.add_middleware(
    SecurityHeadersMiddleware,  # type: ignore[arg-type]
    is_production=_is_prod,
)


# ── X-API-Version response header ────────────────────────────────────────────


@app.middleware("http")
async def add_version_header(request: Request, call_next) -> Response:
    response = await call_next(request)
    response.headers["X-API-Version"] = "v1"
    return response


# ── Health check (root-level, not under /v1) ─────────────────────────────────


@app.get("/health")
async def health_check() -> dict:
    """Deep health check: checks PostgreSQL and the Redis change channel."""
    checks: dict[str, dict] = {}

    try:
        async with async_session_factory() as db:
            await db.execute(text("SELECT 1"))
        checks["postgresql"] = {"status": "healthy"}
    except (SQLAlchemyError, OSError) as exc:
        checks["postgresql"] = {"status": "unhealthy", "error": str(exc)}

    try:
        await get_redis().ping()
        checks["redis"] = {"status": "healthy"}
    except (RedisError, OSError) as exc:
        checks["redis"] = {"status": "unhealthy", "error": str(exc)}

    overall = (
        "healthy"
        if all(c["status"] == "healthy" for c in checks.values())
        else "degraded"
    )
    return {"status": overall, "service": "tokenhub-api", "checks": checks}


# ── /v1 versioned router ──────────────────────────────────────────────────────

api_v1 = APIRouter(prefix="/v1")

api_v1.include_router(auth_router)
api_v1.include_router(redemptions_router)
api_v1.include_router(distributions_router)
api_v1.include_router(approvals_router)
api_v1.include_router(audit_router)

app.include_router(api_v1)
