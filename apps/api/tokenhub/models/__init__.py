"""SQLAlchemy models package. Import all models so Base.metadata is populated."""

from tokenhub.models.base import AuditMixin, BaseModel, ModelMixin, TimestampedModel
from tokenhub.models.core import AuditLog, Organization, User
from tokenhub.models.enums import (
    ApprovalDecision,
    ApproverStatus,
    ConsensusType,
    OrgType,
    RedemptionStatus,
    RedemptionType,
    UserRole,
)
from tokenhub.models.investors import (
    Distribution,
    DistributionRedemption,
    Investor,
    Subscription,
)
from tokenhub.models.redemptions import (
    ApprovalConfig,
    ApprovalConfigApprover,
    RedemptionApprover,
    RedemptionRequest,
    RedemptionStatusEvent,
)

__all__ = [
    "ApprovalConfig",
    "ApprovalConfigApprover",
    "ApprovalDecision",
    "ApproverStatus",
    "AuditLog",
    "AuditMixin",
    "BaseModel",
    "ConsensusType",
    "Distribution",
    "DistributionRedemption",
    "Investor",
    "ModelMixin",
    "OrgType",
    "Organization",
    "RedemptionApprover",
    "RedemptionRequest",
    "RedemptionStatus",
    "RedemptionStatusEvent",
    "RedemptionType",
    "Subscription",
    "TimestampedModel",
    "User",
    "UserRole",
]
