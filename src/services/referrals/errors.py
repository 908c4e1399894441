"""
Referral Pipeline Exceptions.

Provides:
- ReferralError base and the pipeline taxonomy
- ExtractionError raised by the model-output parsers
- LockNotAcquired, the "already running" signal for fast extraction
"""

from typing import Optional

from src.core.enums import ExtractionErrorCode


class ReferralError(Exception):
    """Base exception for the referral pipeline."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ReferralError):
    """Bad MIME type, size, identifier or request payload."""

    pass


class NotFoundError(ReferralError):
    """Document missing or outside the caller's practice."""

    def __init__(self, message: str = "Referral document not found"):
        super().__init__(message)


class StateError(ReferralError):
    """An operation's status precondition is not met."""

    def __init__(
        self,
        message: str,
        current_status: Optional[str] = None,
        expected_status: Optional[str] = None,
    ):
        super().__init__(message)
        self.current_status = current_status
        self.expected_status = expected_status


class ExtractionError(ReferralError):
    """Model output could not be decoded into the expected shape."""

    def __init__(
        self,
        message: str,
        code: ExtractionErrorCode = ExtractionErrorCode.PARSE_ERROR,
    ):
        super().__init__(message)
        self.code = code


class ParseError(ExtractionError):
    """Model output had no recoverable JSON."""

    def __init__(self, message: str):
        super().__init__(message, ExtractionErrorCode.PARSE_ERROR)


class ExternalServiceError(ReferralError):
    """Storage or LLM transport failure after the retry budget is spent."""

    def __init__(
        self,
        message: str,
        service: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.service = service
        self.original_error = original_error


class LockNotAcquired(ReferralError):
    """Another request already holds the fast-extraction lock. Not a failure."""

    def __init__(self, document_id: str):
        super().__init__("Extraction already in progress")
        self.document_id = document_id
