"""PostgreSQL native enums for all domain models."""

import enum


# ── Core ─────────────────────────────────────────────────────────────────────


class OrgType(str, enum.Enum):
    ISSUER = "issuer"
    INVESTOR = "investor"
    ADMIN = "admin"


class UserRole(str, enum.Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    ANALYST = "analyst"
    VIEWER = "viewer"


# ── Redemptions ──────────────────────────────────────────────────────────────


class RedemptionStatus(str, enum.Enum):
    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    PROCESSING = "processing"
    SETTLED = "settled"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class RedemptionType(str, enum.Enum):
    STANDARD = "standard"
    INTERVAL = "interval"


class ApproverStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    DELEGATED = "delegated"


class ApprovalDecision(str, enum.Enum):
    APPROVED = "approved"
    REJECTED = "rejected"


class ConsensusType(str, enum.Enum):
    ALL = "all"
    MAJORITY = "majority"
    ANY = "any"
