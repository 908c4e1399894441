"""
Referral Persistence.

SQLAlchemy-backed stores used by the referral services. Each mutating call
commits on its own: pipeline status changes (PROCESSING, FAILED) must be
visible to concurrent requests and must survive an exception raised later
in the same request.

The conditional update ``update_if`` is the compare-and-swap primitive
behind the extraction locks: it applies only when the named status column
currently holds one of the expected values and reports the affected-row
count.
"""

from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Protocol
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.enums import ContactType, ReferralDocumentStatus
from src.models.patient import Patient, PatientContact
from src.models.referral import ReferralDocument
from src.models.referrer import Referrer
from src.services.referrals.errors import NotFoundError
from src.utils.logging import get_logger

logger = get_logger(__name__)

LOCKABLE_STATUS_FIELDS = ("fast_extraction_status", "full_extraction_status", "status")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Store Interfaces
# =============================================================================


class ReferralDocumentStore(Protocol):
    async def create(self, **fields: Any) -> ReferralDocument: ...

    async def get(
        self, document_id: UUID, practice_id: Optional[UUID] = None
    ) -> Optional[ReferralDocument]: ...

    async def get_many(
        self, document_ids: Iterable[UUID], practice_id: UUID
    ) -> list[ReferralDocument]: ...

    async def update(self, document_id: UUID, fields: dict[str, Any]) -> ReferralDocument: ...

    async def update_if(
        self,
        document_id: UUID,
        expected: Iterable[Any],
        fields: dict[str, Any],
        status_field: str = "fast_extraction_status",
    ) -> int: ...

    async def delete(self, document_id: UUID) -> None: ...

    async def list(
        self,
        practice_id: UUID,
        status: Optional[ReferralDocumentStatus] = None,
        patient_id: Optional[UUID] = None,
        consultation_id: Optional[UUID] = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[ReferralDocument], int]: ...


class PatientStore(Protocol):
    async def list_for_practice(self, practice_id: UUID) -> list[Patient]: ...

    async def create(self, practice_id: UUID, encrypted_data: str) -> Patient: ...


class ReferrerStore(Protocol):
    async def find_by_name(self, practice_id: UUID, name: str) -> Optional[Referrer]: ...

    async def create(self, practice_id: UUID, **fields: Any) -> Referrer: ...


class ContactStore(Protocol):
    async def find_by_name(
        self, patient_id: UUID, contact_type: ContactType, full_name: str
    ) -> Optional[PatientContact]: ...

    async def create(
        self, patient_id: UUID, contact_type: ContactType, **fields: Any
    ) -> PatientContact: ...


# =============================================================================
# SQLAlchemy Implementations
# =============================================================================


class SqlReferralDocumentStore:
    """Referral document store over an AsyncSession."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **fields: Any) -> ReferralDocument:
        document = ReferralDocument(**fields)
        self.session.add(document)
        await self.session.commit()
        await self.session.refresh(document)
        return document

    async def get(
        self, document_id: UUID, practice_id: Optional[UUID] = None
    ) -> Optional[ReferralDocument]:
        query = select(ReferralDocument).where(ReferralDocument.id == document_id)
        if practice_id is not None:
            query = query.where(ReferralDocument.practice_id == practice_id)
        # Conditional updates bypass the identity map
        query = query.execution_options(populate_existing=True)
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_many(
        self, document_ids: Iterable[UUID], practice_id: UUID
    ) -> list[ReferralDocument]:
        ids = list(document_ids)
        if not ids:
            return []
        query = (
            select(ReferralDocument)
            .where(ReferralDocument.id.in_(ids), ReferralDocument.practice_id == practice_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def update(self, document_id: UUID, fields: dict[str, Any]) -> ReferralDocument:
        document = await self.get(document_id)
        if document is None:
            raise NotFoundError()
        for key, value in fields.items():
            setattr(document, key, value)
        document.updated_at = utcnow()
        await self.session.commit()
        return document

    async def update_if(
        self,
        document_id: UUID,
        expected: Iterable[Any],
        fields: dict[str, Any],
        status_field: str = "fast_extraction_status",
    ) -> int:
        if status_field not in LOCKABLE_STATUS_FIELDS:
            raise ValueError(f"Not a status column: {status_field}")

        column = getattr(ReferralDocument, status_field)
        statement = (
            update(ReferralDocument)
            .where(ReferralDocument.id == document_id, column.in_(list(expected)))
            .values(**fields, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(statement)
        await self.session.commit()
        return result.rowcount or 0

    async def delete(self, document_id: UUID) -> None:
        await self.session.execute(
            delete(ReferralDocument).where(ReferralDocument.id == document_id)
        )
        await self.session.commit()

    async def list(
        self,
        practice_id: UUID,
        status: Optional[ReferralDocumentStatus] = None,
        patient_id: Optional[UUID] = None,
        consultation_id: Optional[UUID] = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[ReferralDocument], int]:
        filters = [ReferralDocument.practice_id == practice_id]
        if status is not None:
            filters.append(ReferralDocument.status == status)
        if patient_id is not None:
            filters.append(ReferralDocument.patient_id == patient_id)
        if consultation_id is not None:
            filters.append(ReferralDocument.consultation_id == consultation_id)

        total = await self.session.scalar(
            select(func.count()).select_from(ReferralDocument).where(*filters)
        )
        result = await self.session.execute(
            select(ReferralDocument)
            .where(*filters)
            .order_by(ReferralDocument.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all()), total or 0


class SqlPatientStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_for_practice(self, practice_id: UUID) -> list[Patient]:
        result = await self.session.execute(
            select(Patient).where(Patient.practice_id == practice_id).order_by(Patient.created_at)
        )
        return list(result.scalars().all())

    async def create(self, practice_id: UUID, encrypted_data: str) -> Patient:
        patient = Patient(practice_id=practice_id, encrypted_data=encrypted_data)
        self.session.add(patient)
        await self.session.commit()
        await self.session.refresh(patient)
        return patient


class SqlReferrerStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_by_name(self, practice_id: UUID, name: str) -> Optional[Referrer]:
        result = await self.session.execute(
            select(Referrer)
            .where(
                Referrer.practice_id == practice_id,
                func.lower(Referrer.name) == name.strip().lower(),
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def create(self, practice_id: UUID, **fields: Any) -> Referrer:
        referrer = Referrer(practice_id=practice_id, **fields)
        self.session.add(referrer)
        await self.session.commit()
        await self.session.refresh(referrer)
        return referrer


class SqlContactStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_by_name(
        self, patient_id: UUID, contact_type: ContactType, full_name: str
    ) -> Optional[PatientContact]:
        result = await self.session.execute(
            select(PatientContact)
            .where(
                PatientContact.patient_id == patient_id,
                PatientContact.type == contact_type,
                func.lower(PatientContact.full_name) == full_name.strip().lower(),
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def create(
        self, patient_id: UUID, contact_type: ContactType, **fields: Any
    ) -> PatientContact:
        contact = PatientContact(patient_id=patient_id, type=contact_type, **fields)
        self.session.add(contact)
        await self.session.commit()
        await self.session.refresh(contact)
        return contact
