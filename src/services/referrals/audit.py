"""
Referral Audit Trail.

Audit writes are fire-and-forget: a failed write is logged and never
interrupts the pipeline step that triggered it.
"""

from typing import Any, Optional, Protocol
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from src.core.enums import AuditAction, AuditResourceType
from src.models.audit import AuditLog
from src.utils.logging import get_logger

logger = get_logger(__name__)


class AuditSink(Protocol):
    async def record(
        self,
        user_id: UUID,
        practice_id: Optional[UUID],
        action: AuditAction,
        resource_id: Optional[UUID],
        metadata: Optional[dict[str, Any]] = None,
    ) -> None: ...


class SqlAuditSink:
    """Appends AuditLog rows."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def record(
        self,
        user_id: UUID,
        practice_id: Optional[UUID],
        action: AuditAction,
        resource_id: Optional[UUID],
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        entry = AuditLog(
            user_id=user_id,
            practice_id=practice_id,
            action=action,
            resource_type=AuditResourceType.REFERRAL_DOCUMENT,
            resource_id=resource_id,
            metadata_=metadata or {},
        )
        try:
            self.session.add(entry)
            await self.session.commit()
        except Exception as e:
            await self.session.rollback()
            logger.bind(action=action.value, document_id=str(resource_id)).error(
                f"Failed to write audit log: {e}"
            )
