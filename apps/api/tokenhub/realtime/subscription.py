"""A self-healing subscription to one table's change channel."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from contextlib import aclosing
from typing import Any, Protocol

import structlog
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from tokenhub.realtime.events import ChangeEvent, ChannelState, matches
from tokenhub.realtime.policy import ReconnectPolicy

logger = structlog.get_logger()

Handler = Callable[[ChangeEvent], Awaitable[None]]


class ChangeFeed(Protocol):
    def listen(
        self, table: str, on_subscribed: Callable[[], None] | None = None
    ) -> Any: ...


class RealtimeSubscription:
    """Deliver a table's change events to ``handler``, reconnecting on failure.

    A dropped or failing channel is retried after
    ``policy.delay(attempt)``. A confirmed subscribe resets the attempt
    counter. Once ``policy.max_attempts`` reconnects have failed in a row
    ``on_exhausted`` runs (callers switch to polling there) and ``run``
    returns.
    """

    def __init__(
        self,
        feed: ChangeFeed,
        table: str,
        handler: Handler,
        *,
        row_filter: dict[str, Any] | None = None,
        policy: ReconnectPolicy | None = None,
        on_state: Callable[[ChannelState], None] | None = None,
        on_exhausted: Callable[[], Awaitable[None]] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.feed = feed
        self.table = table
        self.handler = handler
        self.row_filter = row_filter
        self.policy = policy or ReconnectPolicy.from_settings()
        self.on_state = on_state
        self.on_exhausted = on_exhausted
        self._sleep = sleep
        self.attempts = 0
        self.state: ChannelState | None = None
        self._stopped = False

    @property
    def connected(self) -> bool:
        return self.state == ChannelState.SUBSCRIBED

    def stop(self) -> None:
        self._stopped = True

    def _set_state(self, state: ChannelState) -> None:
        self.state = state
        if self.on_state is not None:
            self.on_state(state)

    def _subscribed(self) -> None:
        self.attempts = 0
        self._set_state(ChannelState.SUBSCRIBED)
        logger.info("realtime.subscribed", table=self.table, row_filter=self.row_filter)

    async def _consume(self) -> ChannelState:
        try:
            async with aclosing(self.feed.listen(self.table, on_subscribed=self._subscribed)) as events:
                async for event in events:
                    if self._stopped:
                        break
                    if matches(event.row, self.row_filter):
                        await self.handler(event)
        except (asyncio.TimeoutError, RedisTimeoutError):
            return ChannelState.TIMED_OUT
        except (RedisError, OSError) as exc:
            logger.warning("realtime.channel_error", table=self.table, error=str(exc))
            return ChannelState.CHANNEL_ERROR
        return ChannelState.CLOSED

    async def run(self) -> None:
        while not self._stopped:
            state = await self._consume()
            if self._stopped:
                self._set_state(ChannelState.CLOSED)
                return
            self._set_state(state)

            if self.policy.exhausted(self.attempts):
                logger.warning(
                    "realtime.reconnect_exhausted",
                    table=self.table,
                    attempts=self.attempts,
                )
                if self.on_exhausted is not None:
                    await self.on_exhausted()
                return

            delay = self.policy.delay(self.attempts)
            self.attempts += 1
            logger.info(
                "realtime.reconnecting",
                table=self.table,
                state=state.value,
                attempt=self.attempts,
                max_attempts=self.policy.max_attempts,
                delay=delay,
            )
            await self._sleep(delay)
