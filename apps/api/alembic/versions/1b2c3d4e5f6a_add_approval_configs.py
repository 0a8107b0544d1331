"""add approval configs

Revision ID: 1b2c3d4e5f6a
Revises: 0a1b2c3d4e5f
Create Date: 2026-10-17 12:00:00.000000

Changes:
  - CREATE: approval_configs, approval_config_approvers
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers
revision: str = "1b2c3d4e5f6a"
down_revision: Union[str, None] = "0a1b2c3d4e5f"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_CONSENSUS = ("ALL", "MAJORITY", "ANY")


def _base_columns() -> list[sa.Column]:
    return [
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("is_deleted", sa.Boolean, server_default="false", nullable=False),
    ]


def upgrade() -> None:
    postgresql.ENUM(*_CONSENSUS, name="consensustype").create(op.get_bind(), checkfirst=True)

    op.create_table(
        "approval_configs",
        *_base_columns(),
        sa.Column("org_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("config_name", sa.String(255), nullable=False),
        sa.Column("config_description", sa.Text, nullable=True),
        sa.Column(
            "consensus_type",
            postgresql.ENUM(*_CONSENSUS, name="consensustype", create_type=False),
            nullable=False,
        ),
        sa.Column("required_approvals", sa.Integer, nullable=False),
        sa.Column("active", sa.Boolean, server_default="true", nullable=False),
        sa.Column("created_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("updated_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.ForeignKeyConstraint(["org_id"], ["organizations.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_approval_configs_org_id", "approval_configs", ["org_id"], unique=True)

    op.create_table(
        "approval_config_approvers",
        *_base_columns(),
        sa.Column("config_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("approver_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("approver_name", sa.String(255), nullable=False),
        sa.Column("approver_role", sa.String(50), nullable=True),
        sa.ForeignKeyConstraint(["config_id"], ["approval_configs.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_approval_config_approvers_config_id", "approval_config_approvers", ["config_id"]
    )


def downgrade() -> None:
    op.drop_index("ix_approval_config_approvers_config_id", table_name="approval_config_approvers")
    op.drop_table("approval_config_approvers")
    op.drop_index("ix_approval_configs_org_id", table_name="approval_configs")
    op.drop_table("approval_configs")
    postgresql.ENUM(name="consensustype").drop(op.get_bind(), checkfirst=True)
