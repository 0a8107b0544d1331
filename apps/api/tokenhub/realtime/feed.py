"""Redis pub/sub change feed: one channel per table."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable, Iterable
from contextlib import aclosing

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

from tokenhub.core.config import settings
from tokenhub.core.redis import get_redis
from tokenhub.realtime.events import ChangeEvent

logger = structlog.get_logger()


class RedisChangeFeed:
    """Publishes committed row changes and streams them back to listeners."""

    def __init__(
        self,
        redis: aioredis.Redis | None = None,
        prefix: str | None = None,
        subscribe_timeout: float | None = None,
    ) -> None:
        self._redis = redis
        self.prefix = prefix or settings.REALTIME_CHANNEL_PREFIX
        self.subscribe_timeout = subscribe_timeout or settings.REALTIME_SUBSCRIBE_TIMEOUT

    @property
    def redis(self) -> aioredis.Redis:
        return self._redis or get_redis()

    def channel(self, table: str) -> str:
        return f"{self.prefix}:{table}"

    async def publish(self, event: ChangeEvent) -> int:
        receivers = await self.redis.publish(self.channel(event.table), event.to_json())
        logger.debug(
            "realtime.published",
            table=event.table,
            event_type=event.event_type.value,
            receivers=receivers,
        )
        return receivers

    async def listen(
        self,
        table: str,
        on_subscribed: Callable[[], None] | None = None,
    ) -> AsyncIterator[ChangeEvent]:
        """Yield change events for ``table`` until the connection drops.

        Raises ``asyncio.TimeoutError`` when the subscribe handshake is not
        confirmed in time, and ``RedisError`` / ``OSError`` on a broken
        connection.
        """
        channel = self.channel(table)
        pubsub = self.redis.pubsub(ignore_subscribe_messages=True)
        try:
            await asyncio.wait_for(pubsub.subscribe(channel), timeout=self.subscribe_timeout)
            if on_subscribed is not None:
                on_subscribed()
            async with aclosing(pubsub.listen()) as messages:
                async for message in messages:
                    if message.get("type") != "message":
                        continue
                    try:
                        yield ChangeEvent.from_json(message["data"])
                    except (ValueError, KeyError) as exc:
                        logger.warning("realtime.malformed_event", channel=channel, error=str(exc))
        finally:
            await pubsub.aclose()


async def publish_events(feed: RedisChangeFeed, events: Iterable[ChangeEvent]) -> None:
    """Publish events after commit; the write already succeeded, so a Redis
    outage only costs listeners a refresh and is logged, not raised."""
    for event in events:
        try:
            await feed.publish(event)
        except (RedisError, OSError) as exc:
            logger.warning(
                "realtime.publish_failed",
                table=event.table,
                event_type=event.event_type.value,
                error=str(exc),
            )


change_feed = RedisChangeFeed()
