"""baseline: organizations, users, investors, distributions, redemptions

Revision ID: 0a1b2c3d4e5f
Revises:
Create Date: 2026-10-17 09:00:00.000000

Changes:
  - CREATE: organizations, users, audit_logs
  - CREATE: investors, subscriptions, distributions
  - CREATE: redemption_requests, redemption_approvers, redemption_status_events
  - CREATE: distribution_redemptions
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers
revision: str = "0a1b2c3d4e5f"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# SQLAlchemy persists Python enum member names
_ENUMS: dict[str, tuple[str, ...]] = {
    "orgtype": ("ISSUER", "INVESTOR", "ADMIN"),
    "userrole": ("ADMIN", "MANAGER", "ANALYST", "VIEWER"),
    "redemptionstatus": (
        "DRAFT", "PENDING", "APPROVED", "PROCESSING", "SETTLED", "REJECTED", "CANCELLED",
    ),
    "redemptiontype": ("STANDARD", "INTERVAL"),
    "approverstatus": ("PENDING", "APPROVED", "REJECTED", "DELEGATED"),
}

_AMOUNT = sa.Numeric(38, 18)


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*_ENUMS[name], name=name, create_type=False)


def _uuid(name: str, nullable: bool = True) -> sa.Column:
    return sa.Column(name, postgresql.UUID(as_uuid=True), nullable=nullable)


def _base_columns() -> list[sa.Column]:
    return [
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("is_deleted", sa.Boolean, server_default="false", nullable=False),
    ]


def upgrade() -> None:
    conn = op.get_bind()
    for name, values in _ENUMS.items():
        postgresql.ENUM(*values, name=name).create(conn, checkfirst=True)

    # ── Core ──────────────────────────────────────────────────────────────────
    op.create_table(
        "organizations",
        *_base_columns(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(255), nullable=False),
        sa.Column("type", _enum("orgtype"), nullable=False),
        sa.Column("settings", postgresql.JSONB, server_default=sa.text("'{}'::jsonb"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_organizations_slug", "organizations", ["slug"], unique=True)

    op.create_table(
        "users",
        *_base_columns(),
        _uuid("org_id", nullable=False),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("full_name", sa.String(255), nullable=False),
        sa.Column("role", _enum("userrole"), nullable=False),
        sa.Column("external_auth_id", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean, server_default="true", nullable=False),
        sa.ForeignKeyConstraint(["org_id"], ["organizations.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_org_id", "users", ["org_id"])
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_external_auth_id", "users", ["external_auth_id"], unique=True)

    op.create_table(
        "audit_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        _uuid("org_id", nullable=False),
        _uuid("user_id"),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("entity_type", sa.String(100), nullable=False),
        _uuid("entity_id"),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.Text, nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["org_id"], ["organizations.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_logs_org_id", "audit_logs", ["org_id"])
    op.create_index("ix_audit_logs_entity", "audit_logs", ["entity_type", "entity_id"])
    op.create_index("ix_audit_logs_timestamp", "audit_logs", ["timestamp"])

    # ── Investors ─────────────────────────────────────────────────────────────
    op.create_table(
        "investors",
        *_base_columns(),
        _uuid("org_id", nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("investor_type", sa.String(50), nullable=False),
        sa.Column("company", sa.String(255), nullable=True),
        sa.Column("wallet_address", sa.String(128), nullable=True),
        sa.Column("kyc_status", sa.String(30), nullable=False),
        sa.Column("investor_status", sa.String(30), nullable=False),
        sa.Column("accreditation_status", sa.String(30), nullable=False),
        sa.Column("onboarding_completed", sa.Boolean, server_default="false", nullable=False),
        sa.ForeignKeyConstraint(["org_id"], ["organizations.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_investors_org_id", "investors", ["org_id"])
    op.create_index("ix_investors_email", "investors", ["email"])

    op.create_table(
        "subscriptions",
        *_base_columns(),
        _uuid("org_id", nullable=False),
        _uuid("investor_id", nullable=False),
        sa.Column("subscription_ref", sa.String(100), nullable=False),
        sa.Column("fiat_amount", sa.Numeric(19, 4), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("confirmed", sa.Boolean, nullable=False),
        sa.Column("allocated", sa.Boolean, nullable=False),
        sa.Column("distributed", sa.Boolean, nullable=False),
        sa.Column("subscription_date", sa.Date, nullable=False),
        sa.Column("notes", sa.Text, nullable=True),
        sa.ForeignKeyConstraint(["org_id"], ["organizations.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["investor_id"], ["investors.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_subscriptions_investor_id", "subscriptions", ["investor_id"])

    op.create_table(
        "distributions",
        *_base_columns(),
        _uuid("org_id", nullable=False),
        _uuid("investor_id", nullable=False),
        _uuid("subscription_id"),
        _uuid("project_id"),
        sa.Column("token_type", sa.String(50), nullable=False),
        sa.Column("token_amount", _AMOUNT, nullable=False),
        sa.Column("distribution_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("distribution_tx_hash", sa.String(66), nullable=True),
        sa.Column("blockchain", sa.String(50), nullable=False),
        sa.Column("token_address", sa.String(128), nullable=True),
        sa.Column("token_symbol", sa.String(20), nullable=True),
        sa.Column("to_address", sa.String(128), nullable=False),
        sa.Column("status", sa.String(30), nullable=False),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("remaining_amount", _AMOUNT, nullable=False),
        sa.Column("fully_redeemed", sa.Boolean, server_default="false", nullable=False),
        sa.Column("standard", sa.String(20), nullable=True),
        sa.Column("redemption_status", sa.String(30), nullable=True),
        sa.ForeignKeyConstraint(["org_id"], ["organizations.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["investor_id"], ["investors.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["subscription_id"], ["subscriptions.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_distributions_org_id", "distributions", ["org_id"])
    op.create_index("ix_distributions_investor_id", "distributions", ["investor_id"])
    op.create_index(
        "ix_distributions_available", "distributions", ["org_id", "fully_redeemed", "remaining_amount"]
    )

    # ── Redemptions ───────────────────────────────────────────────────────────
    op.create_table(
        "redemption_requests",
        *_base_columns(),
        _uuid("created_by"),
        _uuid("updated_by"),
        _uuid("org_id", nullable=False),
        sa.Column("token_amount", _AMOUNT, nullable=False),
        sa.Column("token_type", sa.String(50), nullable=False),
        sa.Column("redemption_type", _enum("redemptiontype"), nullable=False),
        sa.Column("status", _enum("redemptionstatus"), nullable=False),
        sa.Column("source_wallet_address", sa.String(128), nullable=False),
        sa.Column("destination_wallet_address", sa.String(128), nullable=False),
        sa.Column("conversion_rate", _AMOUNT, nullable=False),
        _uuid("investor_id"),
        sa.Column("investor_name", sa.String(255), nullable=True),
        _uuid("distribution_id"),
        sa.Column("required_approvals", sa.Integer, nullable=False),
        sa.Column("is_bulk_redemption", sa.Boolean, server_default="false", nullable=False),
        sa.Column("investor_count", sa.Integer, nullable=False),
        sa.Column("batch_id", sa.String(64), nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("rejection_reason", sa.Text, nullable=True),
        _uuid("rejected_by"),
        sa.Column("rejection_timestamp", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processing_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("settled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("settlement_tx_hash", sa.String(66), nullable=True),
        sa.Column("escalated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("escalation_reason", sa.Text, nullable=True),
        sa.ForeignKeyConstraint(["org_id"], ["organizations.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["investor_id"], ["investors.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["distribution_id"], ["distributions.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_redemption_requests_org_id_status", "redemption_requests", ["org_id", "status"])
    op.create_index("ix_redemption_requests_investor_id", "redemption_requests", ["investor_id"])
    op.create_index("ix_redemption_requests_batch_id", "redemption_requests", ["batch_id"])

    op.create_table(
        "redemption_approvers",
        *_base_columns(),
        _uuid("redemption_id", nullable=False),
        _uuid("approver_id", nullable=False),
        sa.Column("approver_name", sa.String(255), nullable=False),
        sa.Column("approver_role", sa.String(50), nullable=True),
        sa.Column("status", _enum("approverstatus"), nullable=False),
        sa.Column("comments", sa.Text, nullable=True),
        sa.Column("decision_date", sa.DateTime(timezone=True), nullable=True),
        _uuid("delegated_to"),
        sa.ForeignKeyConstraint(["redemption_id"], ["redemption_requests.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_redemption_approvers_redemption_id", "redemption_approvers", ["redemption_id"])
    op.create_index(
        "ix_redemption_approvers_approver_status", "redemption_approvers", ["approver_id", "status"]
    )

    op.create_table(
        "redemption_status_events",
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        _uuid("redemption_id", nullable=False),
        sa.Column("from_status", sa.String(20), nullable=True),
        sa.Column("to_status", sa.String(20), nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        _uuid("actor_id"),
        sa.ForeignKeyConstraint(["redemption_id"], ["redemption_requests.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_redemption_status_events_redemption_id",
        "redemption_status_events",
        ["redemption_id", "created_at"],
    )

    op.create_table(
        "distribution_redemptions",
        *_base_columns(),
        _uuid("distribution_id", nullable=False),
        _uuid("redemption_request_id", nullable=False),
        sa.Column("amount_redeemed", _AMOUNT, nullable=False),
        sa.ForeignKeyConstraint(["distribution_id"], ["distributions.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["redemption_request_id"], ["redemption_requests.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_distribution_redemptions_distribution_id", "distribution_redemptions", ["distribution_id"]
    )
    op.create_index(
        "ix_distribution_redemptions_redemption_id", "distribution_redemptions", ["redemption_request_id"]
    )


def downgrade() -> None:
    for table in [
        "distribution_redemptions",
        "redemption_status_events",
        "redemption_approvers",
        "redemption_requests",
        "distributions",
        "subscriptions",
        "investors",
        "audit_logs",
        "users",
        "organizations",
    ]:
        op.drop_table(table)

    conn = op.get_bind()
    for name in reversed(list(_ENUMS)):
        postgresql.ENUM(name=name).drop(conn, checkfirst=True)
