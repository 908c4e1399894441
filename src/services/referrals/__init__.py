"""
Referral Intake Pipeline.

UPLOADED -> TEXT_EXTRACTED -> EXTRACTED -> APPLIED, with fast identifier
extraction running alongside once text is available.

Services are imported from their modules (``documents``, ``text_extraction``,
``fast_extraction``, ``full_extraction``, ``apply``); the package itself only
exports the error taxonomy, which storage and the API layer share.
"""

from src.services.referrals.errors import (
    ExternalServiceError,
    ExtractionError,
    LockNotAcquired,
    NotFoundError,
    ParseError,
    ReferralError,
    StateError,
    ValidationError,
)

__all__ = [
    "ExternalServiceError",
    "ExtractionError",
    "LockNotAcquired",
    "NotFoundError",
    "ParseError",
    "ReferralError",
    "StateError",
    "ValidationError",
]
