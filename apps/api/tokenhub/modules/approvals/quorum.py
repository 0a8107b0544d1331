"""N-of-M approval quorum evaluation."""

import enum
from collections.abc import Iterable
from dataclasses import dataclass

from tokenhub.models.enums import ApproverStatus


class QuorumOutcome(str, enum.Enum):
    APPROVED = "approved"
    REJECTED = "rejected"
    PENDING = "pending"


@dataclass(frozen=True)
class QuorumResult:
    outcome: QuorumOutcome
    current: int
    required: int
    rejections: int

    @property
    def percentage(self) -> int:
        if self.required <= 0:
            return 0
        return round(self.current / self.required * 100)


def evaluate_quorum(decisions: Iterable[ApproverStatus | str], required: int) -> QuorumResult:
    """Any rejection rejects; ``required`` approvals approve; otherwise pending.

    Pending and delegated seats count toward neither side.
    """
    statuses = [ApproverStatus(d) for d in decisions]
    approvals = sum(1 for s in statuses if s == ApproverStatus.APPROVED)
    rejections = sum(1 for s in statuses if s == ApproverStatus.REJECTED)

    if rejections > 0:
        outcome = QuorumOutcome.REJECTED
    elif approvals >= required:
        outcome = QuorumOutcome.APPROVED
    else:
        outcome = QuorumOutcome.PENDING
    return QuorumResult(outcome=outcome, current=approvals, required=required, rejections=rejections)
