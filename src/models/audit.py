"""
Audit Logging Model.

Every referral pipeline action that reads or changes patient-bearing data
appends one row here: who, which practice, what action, which document,
plus structured metadata (model used, token counts, confidences).
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import DateTime, Enum, Index, func
from sqlalchemy.dialects.postgresql import JSONB, UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.core.enums import AuditAction, AuditResourceType
from src.models.base import Base


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


class AuditLog(Base):
    """Append-only audit trail entry."""

    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(
        primary_key=True,
        autoincrement=True,
        comment="Auto-incrementing ID",
    )
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        index=True,
        comment="When the action occurred",
    )

    # Actor Information
    user_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        nullable=False,
        index=True,
        comment="User who performed the action",
    )
    practice_id: Mapped[Optional[UUID]] = mapped_column(
        PG_UUID(as_uuid=True),
        nullable=True,
        index=True,
        comment="Practice context of the action",
    )

    # Action Information
    action: Mapped[AuditAction] = mapped_column(
        Enum(
            AuditAction,
            native_enum=False,
            length=64,
            values_callable=_enum_values,
        ),
        nullable=False,
        index=True,
        comment="Type of action performed",
    )
    resource_type: Mapped[AuditResourceType] = mapped_column(
        Enum(
            AuditResourceType,
            native_enum=False,
            length=64,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=AuditResourceType.REFERRAL_DOCUMENT,
        comment="Type of resource affected",
    )
    resource_id: Mapped[Optional[UUID]] = mapped_column(
        PG_UUID(as_uuid=True),
        nullable=True,
        index=True,
        comment="ID of affected resource",
    )

    metadata_: Mapped[Optional[dict]] = mapped_column(
        "metadata",
        JSONB,
        nullable=True,
        comment="Structured context about the action",
    )

    __table_args__ = (
        Index("ix_audit_logs_resource", "resource_type", "resource_id"),
        Index("ix_audit_logs_action_timestamp", "action", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, action='{self.action}', resource='{self.resource_id}')>"
