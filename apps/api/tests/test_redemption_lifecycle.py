"""Tests for the redemption lifecycle rules."""

from datetime import timedelta

import pytest

from tokenhub.core.errors import InvalidTransitionError
from tokenhub.models.enums import RedemptionStatus as S
from tokenhub.modules.redemptions import lifecycle
from tests.conftest import NOW


class TestTransitions:
    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (S.DRAFT, S.PENDING),
            (S.PENDING, S.APPROVED),
            (S.PENDING, S.REJECTED),
            (S.APPROVED, S.PROCESSING),
            (S.PROCESSING, S.SETTLED),
            (S.PENDING, S.CANCELLED),
        ],
    )
    def test_allowed(self, current, target):
        assert lifecycle.can_transition(current, target) is True
        lifecycle.ensure_transition(current, target)

    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (S.PENDING, S.SETTLED),
            (S.DRAFT, S.APPROVED),
            (S.APPROVED, S.PENDING),
            (S.SETTLED, S.CANCELLED),
            (S.REJECTED, S.PENDING),
        ],
    )
    def test_rejected(self, current, target):
        assert lifecycle.can_transition(current, target) is False
        with pytest.raises(InvalidTransitionError) as exc:
            lifecycle.ensure_transition(current, target)
        assert exc.value.from_status == current.value
        assert exc.value.to_status == target.value

    def test_terminal_statuses_have_no_exits(self):
        for status in lifecycle.TERMINAL:
            assert lifecycle.TRANSITIONS[status] == frozenset()
            assert lifecycle.is_terminal(status)

    def test_every_status_has_a_row(self):
        assert set(lifecycle.TRANSITIONS) == set(S)


class TestClassification:
    def test_in_progress(self):
        assert lifecycle.is_in_progress(S.PENDING)
        assert lifecycle.is_in_progress(S.PROCESSING)
        assert not lifecycle.is_in_progress(S.DRAFT)
        assert not lifecycle.is_in_progress(S.SETTLED)

    def test_completed_and_failed(self):
        assert lifecycle.is_completed(S.SETTLED)
        assert not lifecycle.is_failed(S.SETTLED)
        assert lifecycle.is_failed(S.REJECTED)
        assert lifecycle.is_failed(S.CANCELLED)

    def test_cancellable_until_processing(self):
        assert lifecycle.can_cancel(S.DRAFT)
        assert lifecycle.can_cancel(S.APPROVED)
        assert not lifecycle.can_cancel(S.PROCESSING)
        assert not lifecycle.can_cancel(S.SETTLED)


class TestProgressAndMessages:
    def test_progress_increases_along_happy_path(self):
        path = [S.DRAFT, S.PENDING, S.APPROVED, S.PROCESSING, S.SETTLED]
        values = [lifecycle.progress_percentage(s) for s in path]
        assert values == sorted(values)
        assert values[-1] == 100

    def test_failed_statuses_have_no_progress(self):
        assert lifecycle.progress_percentage(S.REJECTED) == 0
        assert lifecycle.progress_percentage(S.CANCELLED) == 0

    def test_status_message(self):
        assert lifecycle.status_message(S.PENDING) == "Pending approval"
        assert lifecycle.status_message(S.SETTLED) == "Completed successfully"

    def test_known_transition_message(self):
        assert lifecycle.transition_message(S.APPROVED, S.PROCESSING) == "Settlement process initiated"
        assert lifecycle.transition_message(None, S.PENDING) == "Redemption request submitted for review"

    def test_fallback_transition_message(self):
        assert lifecycle.transition_message(S.SETTLED, S.SETTLED) == "Status changed from settled to settled"
        assert lifecycle.transition_message(None, S.SETTLED) == "Status set to settled"


class TestEstimates:
    def test_terminal_has_no_estimate(self):
        assert lifecycle.estimated_completion(S.SETTLED, NOW) is None
        assert lifecycle.time_remaining(None, NOW) is None

    def test_pending_estimate(self):
        estimate = lifecycle.estimated_completion(S.PENDING, NOW)
        assert estimate == NOW + timedelta(hours=48)
        assert lifecycle.time_remaining(estimate, NOW) == "2 days"

    def test_processing_estimate_in_hours(self):
        estimate = lifecycle.estimated_completion(S.PROCESSING, NOW)
        assert lifecycle.time_remaining(estimate, NOW) == "4 hours"

    @pytest.mark.parametrize(
        ("delta", "expected"),
        [
            (timedelta(hours=-1), "Soon"),
            (timedelta(0), "Soon"),
            (timedelta(minutes=30), "Less than 1 hour"),
            (timedelta(hours=1, minutes=5), "1 hour"),
            (timedelta(hours=25), "1 day"),
        ],
    )
    def test_time_remaining_wording(self, delta, expected):
        assert lifecycle.time_remaining(NOW + delta, NOW) == expected

    def test_naive_estimate_treated_as_utc(self):
        naive = (NOW + timedelta(hours=3)).replace(tzinfo=None)
        assert lifecycle.time_remaining(naive, NOW) == "3 hours"
