"""Per-organisation approval config: default approvers and consensus rule."""

import uuid
from dataclasses import dataclass, field

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tokenhub.core.config import settings
from tokenhub.core.errors import ValidationError
from tokenhub.models.enums import ConsensusType
from tokenhub.models.redemptions import ApprovalConfig, ApprovalConfigApprover
from tokenhub.modules.approvals.schemas import (
    ApprovalConfigResponse,
    ApprovalConfigUpdate,
    ApproverAssignment,
    ConfigApproverResponse,
)

logger = structlog.get_logger()

DEFAULT_CONFIG_NAME = "Default Redemption Approval Config"


def effective_required(consensus: ConsensusType, required: int, approver_count: int) -> int:
    """Approvals needed from ``approver_count`` seats under ``consensus``."""
    if approver_count < 1:
        return required
    if consensus == ConsensusType.ALL:
        return approver_count
    if consensus == ConsensusType.MAJORITY:
        return approver_count // 2 + 1
    return max(1, min(required, approver_count))


@dataclass
class ApprovalDefaults:
    consensus_type: ConsensusType
    required_approvals: int
    approvers: list[ApproverAssignment] = field(default_factory=list)

    def required_for(self, approver_count: int | None = None) -> int:
        count = len(self.approvers) if approver_count is None else approver_count
        return effective_required(self.consensus_type, self.required_approvals, count)


def to_response(
    config: ApprovalConfig | None, approvers: list[ApprovalConfigApprover]
) -> ApprovalConfigResponse:
    if config is None:
        required = settings.REDEMPTION_DEFAULT_REQUIRED_APPROVALS
        return ApprovalConfigResponse(
            config_name=DEFAULT_CONFIG_NAME,
            consensus_type=ConsensusType.ANY,
            required_approvals=required,
            effective_required_approvals=required,
            active=False,
        )
    return ApprovalConfigResponse(
        id=config.id,
        config_name=config.config_name,
        config_description=config.config_description,
        consensus_type=config.consensus_type,
        required_approvals=config.required_approvals,
        effective_required_approvals=effective_required(
            config.consensus_type, config.required_approvals, len(approvers)
        ),
        active=config.active,
        approvers=[ConfigApproverResponse.model_validate(a) for a in approvers],
        updated_at=config.updated_at,
        updated_by=config.updated_by,
    )


class ApprovalConfigService:
    def __init__(self, db: AsyncSession, org_id: uuid.UUID) -> None:
        self.db = db
        self.org_id = org_id

    async def _config(self) -> ApprovalConfig | None:
        result = await self.db.execute(
            select(ApprovalConfig).where(
                ApprovalConfig.org_id == self.org_id,
                ApprovalConfig.is_deleted.is_(False),
            )
        )
        return result.scalar_one_or_none()

    async def _approvers(self, config_id: uuid.UUID) -> list[ApprovalConfigApprover]:
        result = await self.db.execute(
            select(ApprovalConfigApprover)
            .where(
                ApprovalConfigApprover.config_id == config_id,
                ApprovalConfigApprover.is_deleted.is_(False),
            )
            .order_by(ApprovalConfigApprover.created_at.asc())
        )
        return list(result.scalars().all())

    async def get(self) -> tuple[ApprovalConfig | None, list[ApprovalConfigApprover]]:
        config = await self._config()
        if config is None:
            return None, []
        return config, await self._approvers(config.id)

    async def defaults(self) -> ApprovalDefaults | None:
        """The active config as assignment defaults, or None without one."""
        config, approvers = await self.get()
        if config is None or not config.active:
            return None
        return ApprovalDefaults(
            consensus_type=config.consensus_type,
            required_approvals=config.required_approvals,
            approvers=[
                ApproverAssignment(
                    approver_id=a.approver_id,
                    approver_name=a.approver_name,
                    approver_role=a.approver_role,
                )
                for a in approvers
            ],
        )

    async def save(
        self, body: ApprovalConfigUpdate, actor_id: uuid.UUID | None = None
    ) -> tuple[ApprovalConfig, list[ApprovalConfigApprover]]:
        """Create or replace the organisation's config and its approver list."""
        name = body.config_name.strip()
        if not name:
            raise ValidationError("Configuration name is required")
        if not body.approvers:
            raise ValidationError("At least one approver must be selected")
        ids = [a.approver_id for a in body.approvers]
        if len(set(ids)) != len(ids):
            raise ValidationError("Each approver may only be assigned once")
        if body.required_approvals > len(body.approvers):
            raise ValidationError(
                "Required approvals cannot exceed the number of selected approvers"
            )

        config, previous = await self.get()
        if config is None:
            config = ApprovalConfig(org_id=self.org_id, created_by=actor_id)
            self.db.add(config)
        config.config_name = name
        config.config_description = body.config_description
        config.consensus_type = body.consensus_type
        config.required_approvals = body.required_approvals
        config.active = body.active
        config.updated_by = actor_id
        await self.db.flush()

        for old in previous:
            old.is_deleted = True
        approvers = [
            ApprovalConfigApprover(
                config_id=config.id,
                approver_id=a.approver_id,
                approver_name=a.approver_name,
                approver_role=a.approver_role,
            )
            for a in body.approvers
        ]
        self.db.add_all(approvers)
        await self.db.flush()
        await self.db.refresh(config)

        logger.info(
            "approval.config_saved",
            org_id=str(self.org_id),
            consensus_type=config.consensus_type.value,
            required_approvals=config.required_approvals,
            approvers=len(approvers),
        )
        return config, approvers
