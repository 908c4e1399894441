"""
Core Enumerations for Referral Intake.

A referral document carries three independent status fields:
the lifecycle (ReferralDocumentStatus) plus one ExtractionStatus each
for the fast and the full extraction side-channels.
"""

from enum import Enum


# =============================================================================
# Provider Configuration Enums
# =============================================================================


class LLMProvider(str, Enum):
    """Available LLM providers for referral extraction."""

    ANTHROPIC = "anthropic"  # Primary: Claude via litellm
    OPENAI = "openai"
    OLLAMA = "ollama"  # Local development
    BEDROCK = "bedrock"


# =============================================================================
# Referral Document Enums
# =============================================================================


class ReferralDocumentStatus(str, Enum):
    """Lifecycle status of a referral document."""

    UPLOADED = "UPLOADED"
    TEXT_EXTRACTED = "TEXT_EXTRACTED"
    EXTRACTED = "EXTRACTED"
    APPLIED = "APPLIED"
    FAILED = "FAILED"


class ExtractionStatus(str, Enum):
    """Status of the fast or full extraction side-channel."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"


class ExtractionErrorCode(str, Enum):
    """Failure codes raised while decoding model output."""

    PARSE_ERROR = "PARSE_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    SCHEMA_ERROR = "SCHEMA_ERROR"
    NO_DATA = "NO_DATA"


class ConfidenceLevel(str, Enum):
    """Display bucket for a confidence score."""

    HIGH = "high"  # >= 0.85
    MEDIUM = "medium"  # >= 0.70
    LOW = "low"


class Sex(str, Enum):
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"


class Urgency(str, Enum):
    ROUTINE = "routine"
    URGENT = "urgent"
    EMERGENCY = "emergency"


# =============================================================================
# Patient Matching & Conflict Enums
# =============================================================================


class MatchType(str, Enum):
    """Which identifier produced a patient match."""

    MRN = "mrn"
    MEDICARE = "medicare"
    NAME_DOB = "name_dob"
    NONE = "none"


class MatchConfidence(str, Enum):
    EXACT = "exact"
    PARTIAL = "partial"
    NONE = "none"


class ConflictType(str, Enum):
    """Kind of disagreement between documents in one intake batch."""

    NAME = "name"
    DOB = "dob"
    BOTH = "both"


class ContactType(str, Enum):
    """Patient-level contact roles created when applying a referral."""

    GP = "GP"
    REFERRER = "REFERRER"


# =============================================================================
# Audit Enums
# =============================================================================


class AuditAction(str, Enum):
    """Audit trail actions recorded by the referral pipeline."""

    REFERRAL_CREATE = "referral.create"
    REFERRAL_UPLOAD_CONFIRM = "referral.upload_confirm"
    REFERRAL_EXTRACT_TEXT = "referral.extract_text"
    REFERRAL_EXTRACT_TEXT_FAILED = "referral.extract_text_failed"
    REFERRAL_EXTRACT_FAST = "referral.extract_fast"
    REFERRAL_EXTRACT_STRUCTURED = "referral.extract_structured"
    REFERRAL_APPLY = "referral.apply"
    REFERRAL_DELETE = "referral.delete"


class AuditResourceType(str, Enum):
    REFERRAL_DOCUMENT = "referral_document"
