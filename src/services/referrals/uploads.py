"""
Upload Boundary Rules.

MIME allow-lists, size limits and storage key layout for referral uploads.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from src.core.config import ReferralSettings, get_referral_settings

PDF_MIME_TYPE = "application/pdf"
TEXT_MIME_TYPE = "text/plain"
DOCX_MIME_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

IMAGE_MIME_TYPES = frozenset({"image/jpeg", "image/png", "image/heic", "image/heif"})
RTF_MIME_TYPES = frozenset({"application/rtf", "text/rtf"})

BASE_MIME_TYPES = (PDF_MIME_TYPE, TEXT_MIME_TYPE)
EXTENDED_MIME_TYPES = (
    PDF_MIME_TYPE,
    TEXT_MIME_TYPE,
    "image/jpeg",
    "image/png",
    "image/heic",
    "image/heif",
    DOCX_MIME_TYPE,
    "application/rtf",
    "text/rtf",
)

BASE_FILE_EXTENSIONS = ".pdf,.txt"
EXTENDED_FILE_EXTENSIONS = ".pdf,.txt,.jpg,.jpeg,.png,.heic,.heif,.docx,.rtf"

_EXTENSIONS = {
    PDF_MIME_TYPE: "pdf",
    TEXT_MIME_TYPE: "txt",
    DOCX_MIME_TYPE: "docx",
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/heic": "heic",
    "image/heif": "heif",
    "application/rtf": "rtf",
    "text/rtf": "rtf",
}


def allowed_mime_types(settings: Optional[ReferralSettings] = None) -> tuple[str, ...]:
    settings = settings or get_referral_settings()
    return EXTENDED_MIME_TYPES if settings.FEATURE_EXTENDED_UPLOAD_TYPES else BASE_MIME_TYPES


def accepted_file_extensions(settings: Optional[ReferralSettings] = None) -> str:
    """Extension list for a file picker's ``accept`` attribute."""
    settings = settings or get_referral_settings()
    if settings.FEATURE_EXTENDED_UPLOAD_TYPES:
        return EXTENDED_FILE_EXTENSIONS
    return BASE_FILE_EXTENSIONS


def is_allowed_mime_type(mime_type: str, settings: Optional[ReferralSettings] = None) -> bool:
    return mime_type in allowed_mime_types(settings)


def is_file_size_valid(size_bytes: int, settings: Optional[ReferralSettings] = None) -> bool:
    settings = settings or get_referral_settings()
    return 0 < size_bytes <= settings.MAX_FILE_SIZE_BYTES


def format_file_size(size_bytes: int) -> str:
    """Human-readable size: B below 1 KB, KB below 1 MB, MB above."""
    if size_bytes < 1024:
        return f"{size_bytes} B"
    if size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    return f"{size_bytes / (1024 * 1024):.1f} MB"


def extension_for_mime(mime_type: str) -> str:
    return _EXTENSIONS.get(mime_type, "bin")


def build_storage_key(
    practice_id: UUID,
    document_id: UUID,
    mime_type: str,
    now: Optional[datetime] = None,
) -> str:
    """``referrals/{practice}/{YYYY}/{MM}/{document}.{ext}``"""
    now = now or datetime.now(timezone.utc)
    return (
        f"referrals/{practice_id}/{now.year:04d}/{now.month:02d}/"
        f"{document_id}.{extension_for_mime(mime_type)}"
    )
