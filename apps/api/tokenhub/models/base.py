"""Base model classes and mixins for all SQLAlchemy models."""

import enum as python_enum
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import DateTime, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from tokenhub.core.database import Base


def _jsonable(value: Any) -> Any:
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, python_enum.Enum):
        return value.value
    return value


class ModelMixin:
    """Provides to_dict() and __repr__ for all models.

    to_dict() yields the JSON-safe row image that realtime change events
    carry as their ``new`` / ``old`` payloads.
    """

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        for attr in self.__mapper__.column_attrs:  # type: ignore[attr-defined]
            result[attr.columns[0].name] = _jsonable(getattr(self, attr.key))
        return result

    def __repr__(self) -> str:
        pk = getattr(self, "id", None)
        return f"<{self.__class__.__name__}(id={pk})>"


class BaseModel(Base, ModelMixin):
    """Abstract base for CRUD models: UUID pk, timestamps, soft delete."""

    __abstract__ = True

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=func.gen_random_uuid(),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
    is_deleted: Mapped[bool] = mapped_column(
        default=False,
        server_default="false",
        nullable=False,
    )


class TimestampedModel(Base, ModelMixin):
    """Abstract base for append-only tables: UUID pk + created_at only."""

    __abstract__ = True

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=func.gen_random_uuid(),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )


class AuditMixin:
    """Adds created_by and updated_by tracking (no FK constraints)."""

    created_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), nullable=True
    )
    updated_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), nullable=True
    )
