"""Local row cache kept current by applying change events."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from tokenhub.realtime.events import ChangeEvent, ChangeType

RowPredicate = Callable[[dict[str, Any]], bool]


class LiveCollection:
    """Ordered rows (newest first) plus a running total across all pages.

    INSERT prepends a row the filter accepts unless it is already cached,
    UPDATE replaces a cached row in place, DELETE drops it. The total never
    goes below zero.
    """

    def __init__(
        self,
        rows: list[dict[str, Any]] | None = None,
        total: int | None = None,
        *,
        key: str = "id",
        include: RowPredicate | None = None,
    ) -> None:
        self.rows: list[dict[str, Any]] = list(rows or [])
        self.total = total if total is not None else len(self.rows)
        self.key = key
        self.include = include or (lambda row: True)

    def __len__(self) -> int:
        return len(self.rows)

    def _index(self, row_id: Any) -> int | None:
        for index, row in enumerate(self.rows):
            if str(row.get(self.key)) == str(row_id):
                return index
        return None

    def reset(self, rows: list[dict[str, Any]], total: int) -> None:
        self.rows = list(rows)
        self.total = max(0, total)

    def apply(self, event: ChangeEvent) -> bool:
        """Merge one event; returns True when the cache changed."""
        if event.event_type == ChangeType.INSERT:
            row = event.new
            if not self.include(row) or self._index(row.get(self.key)) is not None:
                return False
            self.rows.insert(0, row)
            self.total += 1
            return True

        if event.event_type == ChangeType.UPDATE:
            index = self._index(event.new.get(self.key))
            if index is None:
                return False
            self.rows[index] = event.new
            return True

        index = self._index(event.old.get(self.key))
        if index is not None:
            del self.rows[index]
        elif not self.include(event.old):
            return False
        self.total = max(0, self.total - 1)
        return True
