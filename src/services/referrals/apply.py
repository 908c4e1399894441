"""
Apply-to-Consultation Orchestrator.

Commits reviewed referral data (EXTRACTED -> APPLIED):
    1. Match the patient, or create one with an encrypted identity payload
    2. GP: find-or-create a practice referrer and a patient GP contact
    3. Referrer: find-or-create a patient REFERRER contact, unless it is the GP
    4. Link the document to the patient and consultation

Steps are committed one by one, not in a single transaction. If a later
step fails after a patient was created, that patient is left without a
linked document; the orphan is logged.
"""

from typing import Any, Optional
from uuid import UUID

from src.core.enums import AuditAction, ContactType, ReferralDocumentStatus
from src.schemas.referral import (
    ApplyGPInput,
    ApplyPatientInput,
    ApplyReferralInput,
    ApplyReferralResult,
    ApplyReferrerInput,
)
from src.services.referrals.audit import AuditSink
from src.services.referrals.errors import NotFoundError
from src.services.referrals.matching import PatientIdentity, PatientMatcher
from src.services.referrals.parsing import normalize_date
from src.services.referrals.repository import (
    ContactStore,
    PatientStore,
    ReferralDocumentStore,
    ReferrerStore,
    utcnow,
)
from src.services.referrals.state_machine import LifecycleEvent, get_lifecycle_machine
from src.services.security.encryption import PatientCipher
from src.utils.logging import get_logger

logger = get_logger(__name__)


def build_patient_payload(patient: ApplyPatientInput) -> dict[str, Any]:
    """Identity payload stored encrypted on the patient record."""
    payload = {
        "name": patient.full_name.strip(),
        "dateOfBirth": normalize_date(patient.date_of_birth) or patient.date_of_birth,
        "sex": patient.sex.value if patient.sex else None,
        "medicareNumber": patient.medicare,
        "mrn": patient.mrn,
        "address": patient.address,
        "phone": patient.phone,
        "email": patient.email,
    }
    return {key: value for key, value in payload.items() if value is not None}


def _same_person(referrer: ApplyReferrerInput, gp: Optional[ApplyGPInput]) -> bool:
    """A referrer named like the GP is the GP; no separate contact is made."""
    if gp is None:
        return False
    return referrer.full_name.strip().casefold() == gp.full_name.strip().casefold()


class ApplyService:
    def __init__(
        self,
        documents: ReferralDocumentStore,
        patients: PatientStore,
        referrers: ReferrerStore,
        contacts: ContactStore,
        matcher: PatientMatcher,
        cipher: PatientCipher,
        audit: AuditSink,
    ):
        self.documents = documents
        self.patients = patients
        self.referrers = referrers
        self.contacts = contacts
        self.matcher = matcher
        self.cipher = cipher
        self.audit = audit

    async def apply(
        self,
        user_id: UUID,
        practice_id: UUID,
        document_id: UUID,
        payload: ApplyReferralInput,
    ) -> ApplyReferralResult:
        """
        Apply a reviewed referral to a patient and consultation.

        Raises:
            NotFoundError: Unknown document or other practice
            StateError: Document is not EXTRACTED
        """
        log = logger.bind(
            document_id=str(document_id), practice_id=str(practice_id), action="apply"
        )

        document = await self.documents.get(document_id, practice_id)
        if document is None:
            raise NotFoundError()

        get_lifecycle_machine().require(
            document.status,
            LifecycleEvent.APPLY,
            f"Cannot apply referral with status: {document.status.value}",
        )

        patient_id, patient_created = await self._resolve_patient(practice_id, payload.patient)

        try:
            referrer_id = None
            if payload.gp is not None:
                referrer_id = await self._apply_gp(practice_id, patient_id, payload.gp)
            if payload.referrer is not None and not _same_person(payload.referrer, payload.gp):
                await self._apply_referrer(patient_id, payload.referrer)

            await self.documents.update(
                document_id,
                {
                    "patient_id": patient_id,
                    "consultation_id": payload.consultation_id,
                    "status": ReferralDocumentStatus.APPLIED,
                    "processed_at": utcnow(),
                },
            )
        except Exception as e:
            if patient_created:
                log.error(f"Apply failed after creating patient {patient_id}; patient is orphaned: {e}")
            raise

        await self.audit.record(
            user_id,
            practice_id,
            AuditAction.REFERRAL_APPLY,
            document_id,
            {
                "patient_id": str(patient_id),
                "referrer_id": str(referrer_id) if referrer_id else None,
                "consultation_id": str(payload.consultation_id) if payload.consultation_id else None,
                "patient_created": patient_created,
            },
        )
        log.info(f"Referral applied to patient {patient_id}")

        return ApplyReferralResult(
            patient_id=patient_id,
            referrer_id=referrer_id,
            consultation_id=payload.consultation_id,
        )

    async def _resolve_patient(
        self, practice_id: UUID, patient: ApplyPatientInput
    ) -> tuple[UUID, bool]:
        match = await self.matcher.find_matching_patient(
            practice_id,
            PatientIdentity(
                full_name=patient.full_name,
                date_of_birth=patient.date_of_birth,
                medicare=patient.medicare,
                mrn=patient.mrn,
            ),
        )
        if match.patient_id is not None:
            return match.patient_id, False

        encrypted = self.cipher.encrypt_patient_data(build_patient_payload(patient))
        created = await self.patients.create(practice_id, encrypted)
        logger.bind(practice_id=str(practice_id)).info(f"Created patient {created.id}")
        return created.id, True

    async def _apply_gp(self, practice_id: UUID, patient_id: UUID, gp: ApplyGPInput) -> UUID:
        name = gp.full_name.strip()

        referrer = await self.referrers.find_by_name(practice_id, name)
        if referrer is None:
            referrer = await self.referrers.create(
                practice_id,
                name=name,
                practice_name=gp.practice_name,
                address=gp.address,
                phone=gp.phone,
                fax=gp.fax,
                email=gp.email,
            )

        existing = await self.contacts.find_by_name(patient_id, ContactType.GP, name)
        if existing is None:
            await self.contacts.create(
                patient_id,
                ContactType.GP,
                full_name=name,
                organisation=gp.practice_name,
                address=gp.address,
                phone=gp.phone,
                fax=gp.fax,
                email=gp.email,
            )
        return referrer.id

    async def _apply_referrer(self, patient_id: UUID, referrer: ApplyReferrerInput) -> Optional[UUID]:
        name = referrer.full_name.strip()
        existing = await self.contacts.find_by_name(patient_id, ContactType.REFERRER, name)
        if existing is not None:
            return existing.id

        contact = await self.contacts.create(
            patient_id,
            ContactType.REFERRER,
            full_name=name,
            role=referrer.specialty,
            organisation=referrer.organisation,
            address=referrer.address,
            phone=referrer.phone,
            fax=referrer.fax,
            email=referrer.email,
        )
        return contact.id
