"""Redemption lifecycle rules: allowed transitions, progress, ETA, wording.

Pure functions over RedemptionStatus; no I/O. The service layer calls
ensure_transition() before every status write so the table below is the
single source of truth for what may follow what.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from tokenhub.core.errors import InvalidTransitionError
from tokenhub.models.enums import RedemptionStatus as S

TRANSITIONS: dict[S, frozenset[S]] = {
    S.DRAFT: frozenset({S.PENDING, S.CANCELLED}),
    S.PENDING: frozenset({S.APPROVED, S.REJECTED, S.CANCELLED}),
    S.APPROVED: frozenset({S.PROCESSING, S.REJECTED, S.CANCELLED}),
    S.PROCESSING: frozenset({S.SETTLED, S.CANCELLED}),
    S.SETTLED: frozenset(),
    S.REJECTED: frozenset(),
    S.CANCELLED: frozenset(),
}

TERMINAL: frozenset[S] = frozenset({S.SETTLED, S.REJECTED, S.CANCELLED})
IN_PROGRESS: frozenset[S] = frozenset({S.PENDING, S.APPROVED, S.PROCESSING})
FAILED: frozenset[S] = frozenset({S.REJECTED, S.CANCELLED})
CANCELLABLE: frozenset[S] = frozenset({S.DRAFT, S.PENDING, S.APPROVED})

PROGRESS: dict[S, int] = {
    S.DRAFT: 0,
    S.PENDING: 20,
    S.APPROVED: 40,
    S.PROCESSING: 70,
    S.SETTLED: 100,
    S.REJECTED: 0,
    S.CANCELLED: 0,
}

# Typical hours until settlement from each non-terminal status
ESTIMATED_HOURS: dict[S, int] = {
    S.DRAFT: 72,
    S.PENDING: 48,
    S.APPROVED: 24,
    S.PROCESSING: 4,
}

STATUS_MESSAGES: dict[S, str] = {
    S.DRAFT: "Draft - Ready to submit",
    S.PENDING: "Pending approval",
    S.APPROVED: "Approved - Settlement pending",
    S.PROCESSING: "Processing settlement",
    S.SETTLED: "Completed successfully",
    S.REJECTED: "Request rejected",
    S.CANCELLED: "Request cancelled",
}

TRANSITION_MESSAGES: dict[tuple[S | None, S], str] = {
    (None, S.DRAFT): "Redemption request drafted",
    (None, S.PENDING): "Redemption request submitted for review",
    (S.DRAFT, S.PENDING): "Redemption request submitted for review",
    (S.PENDING, S.APPROVED): "Redemption request approved",
    (S.APPROVED, S.PROCESSING): "Settlement process initiated",
    (S.PROCESSING, S.SETTLED): "Redemption completed successfully",
    (S.PENDING, S.REJECTED): "Redemption request rejected",
    (S.APPROVED, S.REJECTED): "Redemption request rejected",
    (S.DRAFT, S.CANCELLED): "Redemption request cancelled",
    (S.PENDING, S.CANCELLED): "Redemption request cancelled",
    (S.APPROVED, S.CANCELLED): "Redemption request cancelled",
    (S.PROCESSING, S.CANCELLED): "Settlement process cancelled",
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so they compare with aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def can_transition(current: S, target: S) -> bool:
    return target in TRANSITIONS[current]


def ensure_transition(current: S, target: S) -> None:
    if not can_transition(current, target):
        raise InvalidTransitionError(current.value, target.value)


def is_terminal(status: S) -> bool:
    return status in TERMINAL


def is_in_progress(status: S) -> bool:
    return status in IN_PROGRESS


def is_completed(status: S) -> bool:
    return status == S.SETTLED


def is_failed(status: S) -> bool:
    return status in FAILED


def can_cancel(status: S) -> bool:
    return status in CANCELLABLE


def progress_percentage(status: S) -> int:
    return PROGRESS.get(status, 0)


def status_message(status: S) -> str:
    return STATUS_MESSAGES.get(status, status.value)


def transition_message(previous: S | None, current: S) -> str:
    message = TRANSITION_MESSAGES.get((previous, current))
    if message:
        return message
    if previous is None:
        return f"Status set to {current.value}"
    return f"Status changed from {previous.value} to {current.value}"


def estimated_completion(status: S, now: datetime | None = None) -> datetime | None:
    """Expected settlement time, or None once the redemption is terminal."""
    hours = ESTIMATED_HOURS.get(status)
    if hours is None:
        return None
    return (now or utcnow()) + timedelta(hours=hours)


def time_remaining(estimate: datetime | None, now: datetime | None = None) -> str | None:
    """Human wording for the gap between now and an estimated completion."""
    if estimate is None:
        return None
    remaining = as_utc(estimate) - as_utc(now or utcnow())
    if remaining <= timedelta(0):
        return "Soon"

    hours = int(remaining.total_seconds() // 3600)
    days = hours // 24
    if days > 0:
        return f"{days} day{'s' if days > 1 else ''}"
    if hours > 0:
        return f"{hours} hour{'s' if hours > 1 else ''}"
    return "Less than 1 hour"
