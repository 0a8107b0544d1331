"""Clerk RS256 JWT verification via JWKS.

Public keys come from Clerk's well-known JWKS endpoint and are cached in
Redis so every worker process shares one copy. A Redis outage only costs a
refetch.
"""

import json

import httpx
import structlog
from jose import JWTError, jwt
from redis.exceptions import RedisError

from tokenhub.core.config import settings
from tokenhub.core.redis import get_redis

logger = structlog.get_logger()

_REDIS_KEY = "clerk:jwks"


async def _cached_jwks() -> dict | None:
    try:
        cached = await get_redis().get(_REDIS_KEY)
    except (RedisError, OSError) as exc:
        logger.warning("clerk_jwks_cache_read_failed", error=str(exc))
        return None
    return json.loads(cached) if cached else None


async def _store_jwks(jwks: dict) -> None:
    try:
        await get_redis().setex(_REDIS_KEY, settings.CLERK_JWKS_CACHE_TTL, json.dumps(jwks))
    except (RedisError, OSError) as exc:
        logger.warning("clerk_jwks_cache_write_failed", error=str(exc))


async def _fetch_jwks() -> dict:
    cached = await _cached_jwks()
    if cached:
        return cached

    jwks_url = f"{settings.CLERK_ISSUER_URL}/.well-known/jwks.json"
    async with httpx.AsyncClient() as client:
        response = await client.get(jwks_url, timeout=10.0)
        response.raise_for_status()
        jwks = response.json()

    logger.info("clerk_jwks_refreshed", keys_count=len(jwks.get("keys", [])))
    await _store_jwks(jwks)
    return jwks


def _get_signing_key(jwks: dict, token: str) -> dict:
    """Match the JWT header's kid to the correct JWKS key."""
    unverified_header = jwt.get_unverified_header(token)
    kid = unverified_header.get("kid")
    for key in jwks.get("keys", []):
        if key.get("kid") == kid:
            return key
    raise JWTError(f"No matching key found for kid={kid}")


async def verify_clerk_token(token: str) -> dict:
    """
    Verify a Clerk-issued RS256 JWT.

    Returns the decoded payload with claims (sub, email, etc.).
    Raises JWTError on any validation failure.
    """
    jwks = await _fetch_jwks()
    signing_key = _get_signing_key(jwks, token)

    return jwt.decode(
        token,
        signing_key,
        algorithms=["RS256"],
        issuer=settings.CLERK_ISSUER_URL,
        options={
            "verify_aud": False,  # Clerk may not set aud
            "verify_iss": bool(settings.CLERK_ISSUER_URL),
            "verify_exp": True,
        },
    )
