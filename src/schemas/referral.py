"""
Referral Schemas
Pydantic models for referral extraction data and API contracts
Source: https://docs.pydantic.dev/latest/
"""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from src.core.enums import (
    ConfidenceLevel,
    ConflictType,
    ExtractionStatus,
    MatchConfidence,
    MatchType,
    ReferralDocumentStatus,
    Sex,
    Urgency,
)

HIGH_CONFIDENCE_THRESHOLD = 0.85
MEDIUM_CONFIDENCE_THRESHOLD = 0.70


def confidence_level(confidence: float) -> ConfidenceLevel:
    """Map a 0-1 confidence onto its display level."""
    if confidence >= HIGH_CONFIDENCE_THRESHOLD:
        return ConfidenceLevel.HIGH
    if confidence >= MEDIUM_CONFIDENCE_THRESHOLD:
        return ConfidenceLevel.MEDIUM
    return ConfidenceLevel.LOW


# =============================================================================
# Extraction Data
# =============================================================================


class FieldConfidence(BaseModel):
    """A single extracted value with its confidence and derived level."""

    value: Optional[str] = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    level: ConfidenceLevel = ConfidenceLevel.LOW

    @classmethod
    def create(cls, value: Optional[str], confidence: float) -> "FieldConfidence":
        return cls(value=value, confidence=confidence, level=confidence_level(confidence))


class FastExtractedData(BaseModel):
    """Phase-1 result: patient identifiers only."""

    patient_name: FieldConfidence
    date_of_birth: FieldConfidence
    mrn: FieldConfidence
    overall_confidence: float = Field(..., ge=0.0, le=1.0)
    extracted_at: datetime
    model_used: str
    processing_time_ms: int = Field(default=0, ge=0)


class ExtractedPatientInfo(BaseModel):
    """Patient demographics and identifiers from a referral letter"""

    full_name: Optional[str] = None
    date_of_birth: Optional[str] = Field(None, description="ISO date YYYY-MM-DD")
    sex: Optional[Sex] = None
    medicare: Optional[str] = None
    mrn: Optional[str] = None
    urn: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


class ExtractedGPInfo(BaseModel):
    """General practitioner details"""

    full_name: Optional[str] = None
    practice_name: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    fax: Optional[str] = None
    email: Optional[str] = None
    provider_number: Optional[str] = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


class ExtractedReferrerInfo(BaseModel):
    """Referring clinician, when different from the GP"""

    full_name: Optional[str] = None
    specialty: Optional[str] = None
    organisation: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    fax: Optional[str] = None
    email: Optional[str] = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


class ExtractedReferralContext(BaseModel):
    """Clinical context of the referral"""

    reason_for_referral: Optional[str] = None
    key_problems: Optional[list[str]] = None
    investigations_mentioned: Optional[list[str]] = None
    medications_mentioned: Optional[list[str]] = None
    urgency: Optional[Urgency] = None
    referral_date: Optional[str] = Field(None, description="ISO date YYYY-MM-DD")
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


class ReferralExtractedData(BaseModel):
    """Phase-2 result: the complete structured referral."""

    patient: ExtractedPatientInfo
    gp: ExtractedGPInfo
    referrer: Optional[ExtractedReferrerInfo] = None
    referral_context: ExtractedReferralContext
    overall_confidence: float = Field(..., ge=0.0, le=1.0)
    extracted_at: datetime
    model_used: str


# =============================================================================
# Pipeline Results
# =============================================================================


class FastExtractionResult(BaseModel):
    """Outcome of a fast extraction attempt; failures are reported, not raised."""

    document_id: UUID
    status: ExtractionStatus
    data: Optional[FastExtractedData] = None
    error: Optional[str] = None


class StructuredExtractionResult(BaseModel):
    id: UUID
    status: ReferralDocumentStatus = ReferralDocumentStatus.EXTRACTED
    extracted_data: ReferralExtractedData


class TextExtractionResult(BaseModel):
    id: UUID
    status: ReferralDocumentStatus = ReferralDocumentStatus.TEXT_EXTRACTED
    text_length: int
    preview: str
    is_short_text: bool = False


class PatientMatchResult(BaseModel):
    """Outcome of resolving an extracted identity against existing patients"""

    match_type: MatchType = MatchType.NONE
    patient_id: Optional[UUID] = None
    patient_name: Optional[str] = None
    confidence: MatchConfidence = MatchConfidence.NONE


class SuggestedPatient(BaseModel):
    name: str
    confidence: float


class PatientConflictResult(BaseModel):
    """Cross-document identity comparison for one intake batch"""

    has_conflict: bool = False
    conflict_type: Optional[ConflictType] = None
    unique_names: list[str] = Field(default_factory=list)
    unique_dobs: list[str] = Field(default_factory=list)
    suggested_patient: Optional[SuggestedPatient] = None
    conflict_description: Optional[str] = None


# =============================================================================
# Apply
# =============================================================================


class ApplyPatientInput(BaseModel):
    full_name: str = Field(..., min_length=1, description="Patient name is required")
    date_of_birth: Optional[str] = None
    sex: Optional[Sex] = None
    medicare: Optional[str] = None
    mrn: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None


class ApplyGPInput(BaseModel):
    full_name: str = Field(..., min_length=1)
    practice_name: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    fax: Optional[str] = None
    email: Optional[str] = None


class ApplyReferrerInput(BaseModel):
    full_name: str = Field(..., min_length=1)
    specialty: Optional[str] = None
    organisation: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    fax: Optional[str] = None
    email: Optional[str] = None


class ApplyReferralContextInput(BaseModel):
    reason_for_referral: Optional[str] = None
    key_problems: Optional[list[str]] = None


class ApplyReferralInput(BaseModel):
    """Reviewed referral data confirmed by the clinician"""

    consultation_id: Optional[UUID] = None
    patient: ApplyPatientInput
    gp: Optional[ApplyGPInput] = None
    referrer: Optional[ApplyReferrerInput] = None
    referral_context: Optional[ApplyReferralContextInput] = None


class ApplyReferralResult(BaseModel):
    patient_id: UUID
    referrer_id: Optional[UUID] = None
    consultation_id: Optional[UUID] = None
    status: ReferralDocumentStatus = ReferralDocumentStatus.APPLIED


# =============================================================================
# Documents
# =============================================================================


class ReferralCreate(BaseModel):
    """Schema for creating a referral document before upload"""

    filename: str = Field(..., min_length=1, max_length=255)
    mime_type: str = Field(..., min_length=1)
    size_bytes: int


class ReferralCreateResponse(BaseModel):
    id: UUID
    upload_url: str
    expires_at: datetime


class ReferralBatchCreate(BaseModel):
    files: list[ReferralCreate] = Field(..., min_length=1)


class ReferralBatchCreateResponse(BaseModel):
    documents: list[ReferralCreateResponse]


class ConfirmUploadRequest(BaseModel):
    size_bytes: int = Field(..., gt=0)


class ReferralDocumentResponse(BaseModel):
    """Schema for referral document responses"""

    id: UUID
    user_id: UUID
    practice_id: UUID
    patient_id: Optional[UUID] = None
    consultation_id: Optional[UUID] = None
    filename: str
    mime_type: str
    size_bytes: int
    storage_key: str
    status: ReferralDocumentStatus
    content_text: Optional[str] = None
    extracted_data: Optional[dict[str, Any]] = None
    processing_error: Optional[str] = None
    processed_at: Optional[datetime] = None
    fast_extraction_status: ExtractionStatus = ExtractionStatus.PENDING
    full_extraction_status: ExtractionStatus = ExtractionStatus.PENDING
    created_at: datetime
    updated_at: datetime
    download_url: Optional[str] = None

    model_config = {"from_attributes": True}


class ReferralListQuery(BaseModel):
    status: Optional[ReferralDocumentStatus] = None
    patient_id: Optional[UUID] = None
    consultation_id: Optional[UUID] = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1)


class ReferralListResponse(BaseModel):
    documents: list[ReferralDocumentResponse]
    total: int
    page: int
    limit: int
    has_more: bool


class ReferralStatusResponse(BaseModel):
    """Polling view of all three status channels for one document"""

    document_id: UUID
    filename: str
    status: ReferralDocumentStatus
    fast_extraction_status: ExtractionStatus
    fast_extraction_data: Optional[FastExtractedData] = None
    fast_extraction_error: Optional[str] = None
    full_extraction_status: ExtractionStatus
    full_extraction_error: Optional[str] = None
    extracted_data: Optional[ReferralExtractedData] = None
    processing_error: Optional[str] = None


class ConflictCheckRequest(BaseModel):
    document_ids: list[UUID] = Field(..., min_length=1)
