"""Row-level change events carried on the realtime channel."""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


class ChangeType(str, enum.Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class ChannelState(str, enum.Enum):
    SUBSCRIBED = "SUBSCRIBED"
    CHANNEL_ERROR = "CHANNEL_ERROR"
    TIMED_OUT = "TIMED_OUT"
    CLOSED = "CLOSED"


@dataclass
class ChangeEvent:
    """A committed change to one row.

    ``new`` is the row image after the change (empty for DELETE), ``old`` the
    image before it (empty for INSERT).
    """

    event_type: ChangeType
    table: str
    new: dict[str, Any] = field(default_factory=dict)
    old: dict[str, Any] = field(default_factory=dict)
    commit_timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    @property
    def row(self) -> dict[str, Any]:
        """The image that identifies the row: ``new`` unless it was deleted."""
        return self.old if self.event_type == ChangeType.DELETE else self.new

    def to_dict(self) -> dict[str, Any]:
        return {
            "eventType": self.event_type.value,
            "table": self.table,
            "new": self.new,
            "old": self.old,
            "commit_timestamp": self.commit_timestamp,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    @classmethod
    def from_json(cls, raw: str | bytes) -> ChangeEvent:
        data = json.loads(raw)
        return cls(
            event_type=ChangeType(data["eventType"]),
            table=data["table"],
            new=data.get("new") or {},
            old=data.get("old") or {},
            commit_timestamp=data.get("commit_timestamp") or "",
        )


def matches(row: dict[str, Any], row_filter: dict[str, Any] | None) -> bool:
    """True when every ``column=value`` pair in the filter holds for the row."""
    if not row_filter:
        return True
    return all(str(row.get(column)) == str(value) for column, value in row_filter.items())
