"""Capped exponential backoff for realtime reconnects."""

from dataclasses import dataclass

from tokenhub.core.config import settings


@dataclass(frozen=True)
class ReconnectPolicy:
    base_delay: float = 2.0
    max_delay: float = 15.0
    max_attempts: int = 3

    def delay(self, attempt: int) -> float:
        """Seconds to wait before reconnect number ``attempt`` (0-based)."""
        return min(self.base_delay * (2 ** attempt), self.max_delay)

    def exhausted(self, attempts: int) -> bool:
        return attempts >= self.max_attempts

    @classmethod
    def from_settings(cls, max_delay: float | None = None) -> "ReconnectPolicy":
        return cls(
            base_delay=settings.REALTIME_BASE_RECONNECT_DELAY,
            max_delay=max_delay if max_delay is not None else settings.REALTIME_MAX_RECONNECT_DELAY,
            max_attempts=settings.REALTIME_MAX_RECONNECT_ATTEMPTS,
        )
