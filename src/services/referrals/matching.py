"""
Patient Matching Engine.

Resolves an extracted identity against a practice's existing patients.
Rules are tried in priority order across the whole practice; a
higher-priority hit on any patient beats a lower-priority hit on another:
    1. MRN, exact
    2. Medicare number, whitespace removed and case-folded
    3. Full name (case-folded, trimmed) together with ISO date of birth

Identity fields exist only inside each patient's encrypted payload, so this
is a linear scan with one decrypt per candidate. Nothing prevents two
concurrent requests from creating the same patient.
"""

from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel

from src.core.enums import MatchConfidence, MatchType
from src.schemas.referral import PatientMatchResult
from src.services.referrals.parsing import normalize_date
from src.services.referrals.repository import PatientStore
from src.services.security.encryption import DecryptionError, PatientCipher
from src.utils.logging import get_logger

logger = get_logger(__name__)


class PatientIdentity(BaseModel):
    """Partial identity to look up; every field is optional."""

    full_name: Optional[str] = None
    date_of_birth: Optional[str] = None
    medicare: Optional[str] = None
    mrn: Optional[str] = None


def normalize_medicare(value: Optional[str]) -> str:
    if not value:
        return ""
    return "".join(value.split()).casefold()


def _normalize_name(value: Optional[str]) -> str:
    return (value or "").strip().casefold()


_RULE_PRIORITY = (MatchType.MRN, MatchType.MEDICARE, MatchType.NAME_DOB)


def _match_rule(identity: PatientIdentity, stored: dict[str, Any]) -> Optional[MatchType]:
    mrn = (identity.mrn or "").strip()
    if mrn and mrn == str(stored.get("mrn") or "").strip():
        return MatchType.MRN

    medicare = normalize_medicare(identity.medicare)
    if medicare and medicare == normalize_medicare(stored.get("medicareNumber")):
        return MatchType.MEDICARE

    # Name alone never matches
    name = _normalize_name(identity.full_name)
    dob = normalize_date(identity.date_of_birth)
    if name and dob:
        if name == _normalize_name(stored.get("name")) and dob == normalize_date(
            stored.get("dateOfBirth")
        ):
            return MatchType.NAME_DOB

    return None


class PatientMatcher:
    """Linear-scan identity matcher over decrypted patient payloads."""

    def __init__(self, patients: PatientStore, cipher: PatientCipher):
        self.patients = patients
        self.cipher = cipher

    async def find_matching_patient(
        self,
        practice_id: UUID,
        identity: PatientIdentity,
    ) -> PatientMatchResult:
        log = logger.bind(practice_id=str(practice_id), action="find_matching_patient")

        # First hit per rule, in storage order
        hits: dict[MatchType, tuple[UUID, Optional[str]]] = {}

        candidates = await self.patients.list_for_practice(practice_id)
        for patient in candidates:
            try:
                stored = self.cipher.decrypt_patient_data(patient.encrypted_data)
            except DecryptionError as e:
                log.warning(f"Skipping patient {patient.id}: {e}")
                continue

            match_type = _match_rule(identity, stored)
            if match_type is not None and match_type not in hits:
                hits[match_type] = (patient.id, stored.get("name"))
                if match_type == MatchType.MRN:
                    break

        for match_type in _RULE_PRIORITY:
            if match_type in hits:
                patient_id, patient_name = hits[match_type]
                log.info(f"Matched existing patient by {match_type.value}")
                return PatientMatchResult(
                    match_type=match_type,
                    patient_id=patient_id,
                    patient_name=patient_name,
                    confidence=MatchConfidence.EXACT,
                )

        log.debug(f"No match among {len(candidates)} patients")
        return PatientMatchResult()
