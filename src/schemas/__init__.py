"""
Pydantic Schemas for the Referral Intake Service.

This module exports all request/response schemas for the API.
"""

from src.schemas.referral import (
    ApplyGPInput,
    ApplyPatientInput,
    ApplyReferralContextInput,
    ApplyReferralInput,
    ApplyReferralResult,
    ApplyReferrerInput,
    ConfirmUploadRequest,
    ConflictCheckRequest,
    ExtractedGPInfo,
    ExtractedPatientInfo,
    ExtractedReferralContext,
    ExtractedReferrerInfo,
    FastExtractedData,
    FastExtractionResult,
    FieldConfidence,
    PatientConflictResult,
    PatientMatchResult,
    ReferralBatchCreate,
    ReferralBatchCreateResponse,
    ReferralCreate,
    ReferralCreateResponse,
    ReferralDocumentResponse,
    ReferralExtractedData,
    ReferralListQuery,
    ReferralListResponse,
    ReferralStatusResponse,
    StructuredExtractionResult,
    SuggestedPatient,
    TextExtractionResult,
    confidence_level,
)

__all__ = [
    # Extraction data
    "ExtractedGPInfo",
    "ExtractedPatientInfo",
    "ExtractedReferralContext",
    "ExtractedReferrerInfo",
    "FastExtractedData",
    "FieldConfidence",
    "ReferralExtractedData",
    "confidence_level",
    # Pipeline results
    "FastExtractionResult",
    "StructuredExtractionResult",
    "TextExtractionResult",
    # Matching and conflicts
    "PatientConflictResult",
    "PatientMatchResult",
    "SuggestedPatient",
    "ConflictCheckRequest",
    # Apply
    "ApplyGPInput",
    "ApplyPatientInput",
    "ApplyReferralContextInput",
    "ApplyReferralInput",
    "ApplyReferralResult",
    "ApplyReferrerInput",
    # Documents
    "ConfirmUploadRequest",
    "ReferralBatchCreate",
    "ReferralBatchCreateResponse",
    "ReferralCreate",
    "ReferralCreateResponse",
    "ReferralDocumentResponse",
    "ReferralListQuery",
    "ReferralListResponse",
    "ReferralStatusResponse",
]
