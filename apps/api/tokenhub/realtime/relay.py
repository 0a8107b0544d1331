"""Relay of the redemption list feed onto a per-client queue."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from tokenhub.core.config import settings
from tokenhub.realtime.collection import LiveCollection
from tokenhub.realtime.events import ChangeEvent, ChannelState, matches
from tokenhub.realtime.policy import ReconnectPolicy
from tokenhub.realtime.subscription import ChangeFeed, RealtimeSubscription

logger = structlog.get_logger()

# Returns (rows, total) for the first page of the list
PageLoader = Callable[[], Awaitable[tuple[list[dict[str, Any]], int]]]


class RedemptionListRelay:
    """Keeps a LiveCollection of the first list page current and queues
    client messages: ``change`` per merged event, ``status`` per channel
    state, and ``snapshot`` for every poll once reconnects are exhausted.

    ``row_filter`` scopes the channel (org, investor) and must only name
    columns that never change on a row. ``include_filter`` adds list filters
    such as status; it gates INSERTs into the cache while UPDATEs to cached
    rows always replace them, so a row that leaves the filter shows its new
    state until the next snapshot.
    """

    def __init__(
        self,
        feed: ChangeFeed,
        load_page: PageLoader,
        *,
        row_filter: dict[str, Any] | None = None,
        include_filter: dict[str, Any] | None = None,
        poll_interval: float | None = None,
        policy: ReconnectPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._load_page = load_page
        self._sleep = sleep
        self.row_filter = row_filter
        self.include_filter = {**(row_filter or {}), **(include_filter or {})}
        self.poll_interval = poll_interval or settings.FEED_POLL_INTERVAL
        self.collection = LiveCollection(include=lambda row: matches(row, self.include_filter))
        self.queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self.polling = False
        self._tasks: list[asyncio.Task] = []
        self.subscription = RealtimeSubscription(
            feed,
            "redemption_requests",
            self._on_change,
            row_filter=row_filter,
            policy=policy or ReconnectPolicy.from_settings(settings.REALTIME_FEED_MAX_RECONNECT_DELAY),
            on_state=self._on_state,
            on_exhausted=self._start_polling,
            sleep=sleep,
        )

    async def _on_change(self, event: ChangeEvent) -> None:
        if self.collection.apply(event):
            self.queue.put_nowait(
                {"type": "change", "event": event.to_dict(), "total": self.collection.total}
            )

    def _on_state(self, state: ChannelState) -> None:
        self.queue.put_nowait({"type": "status", "state": state.value})

    async def snapshot(self) -> dict[str, Any]:
        rows, total = await self._load_page()
        self.collection.reset(rows, total)
        message = {"type": "snapshot", "items": self.collection.rows, "total": self.collection.total}
        self.queue.put_nowait(message)
        return message

    async def _poll(self) -> None:
        while True:
            await self._sleep(self.poll_interval)
            await self.snapshot()

    async def _start_polling(self) -> None:
        self.polling = True
        logger.info("redemption_feed.polling_fallback", interval=self.poll_interval)
        self._tasks.append(asyncio.create_task(self._poll()))

    async def start(self) -> None:
        await self.snapshot()
        self._tasks.append(asyncio.create_task(self.subscription.run()))

    async def stop(self) -> None:
        self.subscription.stop()
        for task in self._tasks:
            task.cancel()
        results = await asyncio.gather(*self._tasks, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.warning("redemption_feed.task_failed", error=str(result))
        self._tasks = []
