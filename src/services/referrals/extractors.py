"""
Referral Extraction Prompts and Parsers.

Two extraction phases share the decoding helpers in ``parsing``:

- Fast (phase 1): patient name, date of birth and MRN only, each with a
  per-field confidence. Small output for sub-5-second turnaround.
- Full (phase 2): patient, GP, optional referrer and clinical context
  sections, each with a section confidence.

Overall confidence is always recomputed from what was actually extracted;
a model-supplied ``overallConfidence`` is ignored.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from src.core.enums import ExtractionErrorCode
from src.schemas.referral import (
    ExtractedGPInfo,
    ExtractedPatientInfo,
    ExtractedReferralContext,
    ExtractedReferrerInfo,
    FastExtractedData,
    FieldConfidence,
    ReferralExtractedData,
)
from src.services.referrals.parsing import (
    coerce_confidence,
    coerce_sex,
    coerce_string,
    coerce_string_list,
    coerce_urgency,
    load_json_object,
    normalize_date,
    weighted_confidence,
)

# =============================================================================
# Prompts
# =============================================================================

FAST_EXTRACTION_SYSTEM_PROMPT = (
    "Extract patient identifiers from medical documents. Return only JSON."
)

FAST_PATIENT_EXTRACTION_PROMPT = """Extract the patient identifiers from this medical document and reply with a single JSON object.

JSON format:
{
  "name": <string or null>,
  "dob": <YYYY-MM-DD or null>,
  "mrn": <string or null>,
  "nameConfidence": <number 0-1>,
  "dobConfidence": <number 0-1>,
  "mrnConfidence": <number 0-1>
}

Rules:
- Copy the patient name as written, including any title
- Write the date of birth as YYYY-MM-DD
- The MRN may be labelled MRN, URN, UR No., patient ID or hospital number
- Confidence: 0.9 or above when clearly labelled, 0.7-0.9 when clear but unlabelled, below 0.7 when unsure
- Use null for anything not found

Reply with the JSON object only."""

FULL_EXTRACTION_SYSTEM_PROMPT = (
    "You are a medical document parser. "
    "Extract structured data from referral letters accurately."
)

REFERRAL_EXTRACTION_PROMPT = """Read this referral letter and extract its structured contents.

Only extract what the letter states explicitly. Use null for anything not clearly present.

JSON structure:
{
  "patient": {
    "fullName": <string or null>,
    "dateOfBirth": <YYYY-MM-DD or null>,
    "sex": <"male"|"female"|"other" or null>,
    "medicare": <string or null>,
    "mrn": <string or null>,
    "urn": <string or null>,
    "address": <string or null>,
    "phone": <string or null>,
    "email": <string or null>,
    "confidence": <number 0-1>
  },
  "gp": {
    "fullName": <string or null>,
    "practiceName": <string or null>,
    "address": <string or null>,
    "phone": <string or null>,
    "fax": <string or null>,
    "email": <string or null>,
    "providerNumber": <string or null>,
    "confidence": <number 0-1>
  },
  "referrer": <null when the referrer is the GP, otherwise {
    "fullName": <string or null>,
    "specialty": <string or null>,
    "organisation": <string or null>,
    "address": <string or null>,
    "phone": <string or null>,
    "fax": <string or null>,
    "email": <string or null>,
    "confidence": <number 0-1>
  }>,
  "referralContext": {
    "reasonForReferral": <1-3 sentence summary or null>,
    "keyProblems": [<conditions mentioned>],
    "investigationsMentioned": [<tests or procedures mentioned>],
    "medicationsMentioned": [<medications mentioned>],
    "urgency": <"routine"|"urgent"|"emergency" or null>,
    "referralDate": <YYYY-MM-DD or null>,
    "confidence": <number 0-1>
  }
}

Rules:
1. Copy the patient name as written, including titles such as Mr or Mrs
2. Write dates as YYYY-MM-DD where possible
3. Include every phone number, email and address found
4. Set referrer to null when the GP wrote the referral
5. List key problems as separate short items
6. Confidence per section:
   - 0.9-1.0: labelled and clearly stated
   - 0.7-0.9: clearly stated but unlabelled
   - 0.5-0.7: implied or partial
   - below 0.5: inferred

Reply with the JSON object only."""

FAST_FIELD_WEIGHTS = {"name": 0.40, "dob": 0.35, "mrn": 0.25}
SECTION_WEIGHTS = {"patient": 2.0, "gp": 1.0, "referralContext": 1.0, "referrer": 1.0}


def build_fast_extraction_prompt(document_text: str) -> str:
    return f"{FAST_PATIENT_EXTRACTION_PROMPT}\n\n---\n\nDOCUMENT:\n{document_text}"


def build_full_extraction_prompt(document_text: str) -> str:
    return f"{REFERRAL_EXTRACTION_PROMPT}\n\n---\n\nREFERRAL LETTER TEXT:\n{document_text}"


def _now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Fast Extraction
# =============================================================================


def parse_fast_extraction(
    raw_text: str,
    model_used: str,
    processing_time_ms: int,
) -> FastExtractedData:
    """
    Decode a fast-extraction reply into FastExtractedData.

    Raises:
        ParseError: no JSON in the reply.
        ExtractionError: VALIDATION_ERROR when the JSON is not an object.
    """
    obj = load_json_object(raw_text, ExtractionErrorCode.VALIDATION_ERROR)

    name = coerce_string(obj.get("name"))
    dob = normalize_date(obj.get("dob"))
    mrn = coerce_string(obj.get("mrn"))
    name_confidence = coerce_confidence(obj.get("nameConfidence"))
    dob_confidence = coerce_confidence(obj.get("dobConfidence"))
    mrn_confidence = coerce_confidence(obj.get("mrnConfidence"))

    present = []
    if name:
        present.append((name_confidence, FAST_FIELD_WEIGHTS["name"]))
    if dob:
        present.append((dob_confidence, FAST_FIELD_WEIGHTS["dob"]))
    if mrn:
        present.append((mrn_confidence, FAST_FIELD_WEIGHTS["mrn"]))

    return FastExtractedData(
        patient_name=FieldConfidence.create(name, name_confidence),
        date_of_birth=FieldConfidence.create(dob, dob_confidence),
        mrn=FieldConfidence.create(mrn, mrn_confidence),
        overall_confidence=weighted_confidence(present),
        extracted_at=_now(),
        model_used=model_used,
        processing_time_ms=max(0, int(processing_time_ms)),
    )


def has_fast_extraction_data(data: FastExtractedData) -> bool:
    """Any of name, DOB or MRN was found."""
    return (
        data.patient_name.value is not None
        or data.date_of_birth.value is not None
        or data.mrn.value is not None
    )


def has_minimum_fast_extraction_data(data: FastExtractedData) -> bool:
    """A patient name was found; enough to pre-fill the form."""
    return data.patient_name.value is not None


def get_fast_extraction_summary(data: FastExtractedData) -> str:
    parts = []
    if data.patient_name.value:
        parts.append(f"Name: {data.patient_name.value}")
    if data.date_of_birth.value:
        parts.append(f"DOB: {data.date_of_birth.value}")
    if data.mrn.value:
        parts.append(f"MRN: {data.mrn.value}")

    if not parts:
        return "No patient identifiers extracted"
    return ", ".join(parts)


# =============================================================================
# Full Extraction
# =============================================================================


def _section(obj: dict[str, Any], key: str) -> Optional[dict[str, Any]]:
    value = obj.get(key)
    return value if isinstance(value, dict) and value else None


def _parse_patient(data: dict[str, Any]) -> ExtractedPatientInfo:
    return ExtractedPatientInfo(
        full_name=coerce_string(data.get("fullName")),
        date_of_birth=normalize_date(data.get("dateOfBirth")),
        sex=coerce_sex(data.get("sex")),
        medicare=coerce_string(data.get("medicare")),
        mrn=coerce_string(data.get("mrn")),
        urn=coerce_string(data.get("urn")),
        address=coerce_string(data.get("address")),
        phone=coerce_string(data.get("phone")),
        email=coerce_string(data.get("email")),
        confidence=coerce_confidence(data.get("confidence")),
    )


def _parse_gp(data: dict[str, Any]) -> ExtractedGPInfo:
    return ExtractedGPInfo(
        full_name=coerce_string(data.get("fullName")),
        practice_name=coerce_string(data.get("practiceName")),
        address=coerce_string(data.get("address")),
        phone=coerce_string(data.get("phone")),
        fax=coerce_string(data.get("fax")),
        email=coerce_string(data.get("email")),
        provider_number=coerce_string(data.get("providerNumber")),
        confidence=coerce_confidence(data.get("confidence")),
    )


def _parse_referrer(data: dict[str, Any]) -> ExtractedReferrerInfo:
    return ExtractedReferrerInfo(
        full_name=coerce_string(data.get("fullName")),
        specialty=coerce_string(data.get("specialty")),
        organisation=coerce_string(data.get("organisation")),
        address=coerce_string(data.get("address")),
        phone=coerce_string(data.get("phone")),
        fax=coerce_string(data.get("fax")),
        email=coerce_string(data.get("email")),
        confidence=coerce_confidence(data.get("confidence")),
    )


def _parse_context(data: dict[str, Any]) -> ExtractedReferralContext:
    return ExtractedReferralContext(
        reason_for_referral=coerce_string(data.get("reasonForReferral")),
        key_problems=coerce_string_list(data.get("keyProblems")),
        investigations_mentioned=coerce_string_list(data.get("investigationsMentioned")),
        medications_mentioned=coerce_string_list(data.get("medicationsMentioned")),
        urgency=coerce_urgency(data.get("urgency")),
        referral_date=normalize_date(data.get("referralDate")),
        confidence=coerce_confidence(data.get("confidence")),
    )


def parse_referral_extraction(raw_text: str, model_used: str) -> ReferralExtractedData:
    """
    Decode a full-extraction reply into ReferralExtractedData.

    Missing sections decode to empty sections with confidence 0 but do not
    contribute to the overall confidence.

    Raises:
        ParseError: no JSON in the reply.
        ExtractionError: SCHEMA_ERROR when the JSON is not an object.
    """
    obj = load_json_object(raw_text, ExtractionErrorCode.SCHEMA_ERROR)

    patient_raw = _section(obj, "patient")
    gp_raw = _section(obj, "gp")
    referrer_raw = _section(obj, "referrer")
    context_raw = _section(obj, "referralContext")

    patient = _parse_patient(patient_raw or {})
    gp = _parse_gp(gp_raw or {})
    referrer = _parse_referrer(referrer_raw) if referrer_raw else None
    context = _parse_context(context_raw or {})

    present = []
    if patient_raw:
        present.append((patient.confidence, SECTION_WEIGHTS["patient"]))
    if gp_raw:
        present.append((gp.confidence, SECTION_WEIGHTS["gp"]))
    if context_raw:
        present.append((context.confidence, SECTION_WEIGHTS["referralContext"]))
    if referrer is not None:
        present.append((referrer.confidence, SECTION_WEIGHTS["referrer"]))

    return ReferralExtractedData(
        patient=patient,
        gp=gp,
        referrer=referrer,
        referral_context=context,
        overall_confidence=weighted_confidence(present),
        extracted_at=_now(),
        model_used=model_used,
    )


def has_low_confidence(data: ReferralExtractedData, threshold: float = 0.3) -> bool:
    return data.overall_confidence < threshold


def get_low_confidence_sections(
    data: ReferralExtractedData,
    threshold: float = 0.7,
) -> list[str]:
    """Section names whose confidence falls below ``threshold``, for review highlighting."""
    sections = []
    if data.patient.confidence < threshold:
        sections.append("patient")
    if data.gp.confidence < threshold:
        sections.append("gp")
    if data.referrer is not None and data.referrer.confidence < threshold:
        sections.append("referrer")
    if data.referral_context.confidence < threshold:
        sections.append("referralContext")
    return sections
