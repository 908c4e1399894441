"""
Referral Pipeline Configuration
Tuning knobs for the referral intake and extraction pipeline.

Provides:
- Model selection per extraction phase
- Token and retry budgets per phase
- Upload boundary limits and the extended-upload feature flag
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.core.enums import LLMProvider


class ReferralSettings(BaseSettings):
    """
    Referral pipeline configuration settings.

    Every value can be overridden with a REFERRAL_-prefixed environment variable.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_prefix="REFERRAL_",
    )

    # =========================================================================
    # LLM Provider Configuration
    # =========================================================================
    LLM_PROVIDER: LLMProvider = Field(
        default=LLMProvider.ANTHROPIC,
        description="Provider used for all referral extraction calls",
    )
    LLM_API_KEY: Optional[str] = Field(
        default=None,
        description="API key passed through to litellm (provider env vars also work)",
    )
    LLM_API_BASE: Optional[str] = Field(
        default=None,
        description="Custom API base, e.g. an Ollama endpoint",
    )
    LLM_TIMEOUT_SECONDS: float = Field(
        default=60.0,
        gt=0,
        description="Per-attempt timeout for a single completion call",
    )

    FAST_EXTRACTION_MODEL: str = Field(
        default="anthropic/claude-sonnet-4-20250514",
        description="Model for phase-1 identifier extraction",
    )
    FULL_EXTRACTION_MODEL: str = Field(
        default="anthropic/claude-sonnet-4-20250514",
        description="Model for phase-2 structured extraction",
    )
    HIGH_ACCURACY_MODEL: str = Field(
        default="anthropic/claude-opus-4-20250514",
        description="More capable model used for higher-accuracy re-extraction",
    )
    VISION_MODEL: str = Field(
        default="anthropic/claude-sonnet-4-20250514",
        description="Model used to transcribe photographed or scanned images",
    )

    # =========================================================================
    # Fast Extraction (phase 1)
    # =========================================================================
    FAST_MAX_TOKENS: int = Field(default=256, gt=0, description="Fast response token budget")
    FAST_MAX_TEXT_LENGTH: int = Field(
        default=50_000,
        gt=0,
        description="Document text is truncated to this many characters",
    )
    FAST_TARGET_MS: int = Field(default=5_000, description="Latency target for fast extraction")
    FAST_MAX_RETRIES: int = Field(default=2, ge=0)
    FAST_INITIAL_DELAY_MS: int = Field(default=500, ge=0)
    FAST_MAX_DELAY_MS: int = Field(default=2_000, ge=0)

    # =========================================================================
    # Full Extraction (phase 2)
    # =========================================================================
    FULL_MAX_TOKENS: int = Field(default=4_096, gt=0, description="Full response token budget")
    FULL_MAX_RETRIES: int = Field(default=3, ge=0)
    FULL_INITIAL_DELAY_MS: int = Field(default=1_000, ge=0)
    FULL_MAX_DELAY_MS: int = Field(default=10_000, ge=0)

    HIGH_ACCURACY_MAX_RETRIES: int = Field(default=3, ge=0)
    HIGH_ACCURACY_INITIAL_DELAY_MS: int = Field(default=2_000, ge=0)
    HIGH_ACCURACY_MAX_DELAY_MS: int = Field(default=15_000, ge=0)

    LOW_CONFIDENCE_WARNING_THRESHOLD: float = Field(
        default=0.3,
        ge=0.0,
        le=1.0,
        description="Full extractions below this overall confidence are logged as warnings",
    )
    SECTION_REVIEW_THRESHOLD: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Sections below this confidence are highlighted for review",
    )

    # =========================================================================
    # Text Extraction
    # =========================================================================
    VISION_MAX_TOKENS: int = Field(default=4_096, gt=0)
    SHORT_TEXT_THRESHOLD: int = Field(
        default=100,
        description="Extracted text shorter than this is flagged as suspicious",
    )
    PREVIEW_LENGTH: int = Field(default=500, description="Characters returned as preview")
    MAX_IMAGE_PIXELS: int = Field(default=50_000_000, description="Largest decodable image")
    JPEG_QUALITY: int = Field(default=90, ge=1, le=100)

    # =========================================================================
    # Upload Boundary
    # =========================================================================
    MAX_FILE_SIZE_BYTES: int = Field(default=20 * 1024 * 1024, description="20 MB")
    MAX_BATCH_FILES: int = Field(default=10, gt=0)
    FEATURE_EXTENDED_UPLOAD_TYPES: bool = Field(
        default=False,
        description="Accept images, DOCX and RTF in addition to PDF and plain text",
    )


_referral_settings: Optional[ReferralSettings] = None


def get_referral_settings() -> ReferralSettings:
    """Get cached referral settings instance."""
    global _referral_settings
    if _referral_settings is None:
        _referral_settings = ReferralSettings()
    return _referral_settings


def reset_referral_settings() -> None:
    """Drop the cached instance (for testing)."""
    global _referral_settings
    _referral_settings = None
