"""
Multi-document Patient Conflict Detection.

When several referral documents are uploaded together, their fast
extraction results are compared to flag documents that appear to belong to
different patients.
"""

from typing import Iterable, Optional

from src.core.enums import ConflictType
from src.schemas.referral import FastExtractedData, PatientConflictResult, SuggestedPatient
from src.services.referrals.parsing import normalize_dob, normalize_patient_name


def _unique(keys: Iterable[str]) -> list[str]:
    """Distinct non-empty keys in first-seen order."""
    return list(dict.fromkeys(key for key in keys if key))


def detect_patient_conflicts(
    extractions: Iterable[Optional[FastExtractedData]],
) -> PatientConflictResult:
    """
    Compare patient identities across documents.

    ``None`` entries (documents whose fast extraction has not finished) are
    skipped. ``unique_names`` and ``unique_dobs`` hold normalised values;
    only ``suggested_patient`` carries a name as extracted.
    """
    present = [data for data in extractions if data is not None]

    unique_names = _unique(normalize_patient_name(d.patient_name.value) for d in present)
    unique_dobs = _unique(normalize_dob(d.date_of_birth.value) for d in present)

    name_conflict = len(unique_names) > 1
    dob_conflict = len(unique_dobs) > 1

    suggested = None
    named = [d for d in present if d.patient_name.value]
    if named:
        best = max(named, key=lambda d: d.overall_confidence)
        suggested = SuggestedPatient(name=best.patient_name.value, confidence=best.overall_confidence)

    if not (name_conflict or dob_conflict):
        return PatientConflictResult(
            has_conflict=False,
            unique_names=unique_names,
            unique_dobs=unique_dobs,
            suggested_patient=suggested,
        )

    if name_conflict and dob_conflict:
        conflict_type = ConflictType.BOTH
    elif name_conflict:
        conflict_type = ConflictType.NAME
    else:
        conflict_type = ConflictType.DOB

    parts = []
    if name_conflict:
        parts.append(f"different patient names ({', '.join(unique_names)})")
    if dob_conflict:
        parts.append(f"different dates of birth ({', '.join(unique_dobs)})")
    description = "Documents contain " + " and ".join(parts)

    return PatientConflictResult(
        has_conflict=True,
        conflict_type=conflict_type,
        unique_names=unique_names,
        unique_dobs=unique_dobs,
        suggested_patient=suggested,
        conflict_description=description,
    )
