"""Follow a single redemption until it settles, fails, or is cancelled."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from tokenhub.core.config import settings
from tokenhub.models.enums import RedemptionStatus
from tokenhub.modules.redemptions import lifecycle
from tokenhub.realtime.events import ChangeEvent, ChangeType
from tokenhub.realtime.policy import ReconnectPolicy
from tokenhub.realtime.subscription import ChangeFeed, RealtimeSubscription

logger = structlog.get_logger()

Loader = Callable[[], Awaitable[dict[str, Any]]]


class RedemptionStatusWatcher:
    """Produces status snapshots for one redemption.

    ``load`` returns the current status view as a JSON-safe dict with at
    least a ``status`` key. Snapshots are queued on every realtime UPDATE of
    the row and on every poll tick; polling runs alongside the realtime
    channel and also covers the gap once reconnects are exhausted. The
    watcher stops itself as soon as a terminal status is seen.
    """

    def __init__(
        self,
        redemption_id: str,
        load: Loader,
        feed: ChangeFeed,
        *,
        poll_interval: float | None = None,
        policy: ReconnectPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.redemption_id = str(redemption_id)
        self._load = load
        self._sleep = sleep
        self.poll_interval = poll_interval or settings.STATUS_POLL_INTERVAL
        self.snapshot: dict[str, Any] | None = None
        self.history: list[dict[str, Any]] = []
        self.queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self._done = asyncio.Event()
        self._tasks: list[asyncio.Task] = []
        self.subscription = RealtimeSubscription(
            feed,
            "redemption_requests",
            self._on_change,
            row_filter={"id": self.redemption_id},
            policy=policy,
            on_exhausted=self._on_exhausted,
            sleep=sleep,
        )

    @property
    def done(self) -> bool:
        return self._done.is_set()

    @property
    def finished(self) -> bool:
        """Terminal status seen and every queued snapshot consumed."""
        return self.done and self.queue.empty()

    def accept(self, snapshot: dict[str, Any]) -> None:
        previous = self.snapshot["status"] if self.snapshot else None
        current = snapshot["status"]
        if previous != current:
            self.history.append(
                {
                    "status": current,
                    "timestamp": lifecycle.utcnow().isoformat(),
                    "message": lifecycle.transition_message(
                        RedemptionStatus(previous) if previous else None,
                        RedemptionStatus(current),
                    ),
                }
            )
        self.snapshot = snapshot
        self.queue.put_nowait(snapshot)
        if lifecycle.is_terminal(RedemptionStatus(current)):
            self._done.set()

    async def refresh(self) -> dict[str, Any]:
        snapshot = await self._load()
        self.accept(snapshot)
        return snapshot

    async def _on_change(self, event: ChangeEvent) -> None:
        if event.event_type == ChangeType.UPDATE and not self.done:
            await self.refresh()

    async def _on_exhausted(self) -> None:
        logger.info(
            "redemption_watch.polling_only",
            redemption_id=self.redemption_id,
            interval=self.poll_interval,
        )

    async def _poll(self) -> None:
        while not self.done:
            await self._sleep(self.poll_interval)
            if self.done:
                break
            await self.refresh()

    async def start(self, initial: dict[str, Any] | None = None) -> None:
        if initial is not None:
            self.accept(initial)
        else:
            await self.refresh()
        if self.done:
            return
        self._tasks = [
            asyncio.create_task(self.subscription.run()),
            asyncio.create_task(self._poll()),
        ]

    async def stop(self) -> None:
        self.subscription.stop()
        for task in self._tasks:
            task.cancel()
        results = await asyncio.gather(*self._tasks, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.warning(
                    "redemption_watch.task_failed",
                    redemption_id=self.redemption_id,
                    error=str(result),
                )
        self._tasks = []
