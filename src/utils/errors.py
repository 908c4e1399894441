"""
Custom Exceptions
HTTP-level errors and the mapping from referral pipeline errors to status codes
Source: https://fastapi.tiangolo.com/tutorial/handling-errors/
"""

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse

from src.services.referrals.errors import (
    ExternalServiceError,
    ExtractionError,
    LockNotAcquired,
    NotFoundError,
    ReferralError,
    StateError,
    ValidationError,
)
from src.utils.logging import get_logger

logger = get_logger(__name__)


class AuthenticationError(HTTPException):
    """Raised when the caller cannot be identified"""

    def __init__(self, detail: str = "Could not identify caller"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
        )


class InvalidIdentifierError(HTTPException):
    """Raised when a path identifier is not a UUID"""

    def __init__(self, detail: str = "Invalid document ID format"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
        )


# Order matters: LockNotAcquired and ExtractionError subclasses are checked
# before their bases.
_STATUS_CODES: tuple[tuple[type[ReferralError], int], ...] = (
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (LockNotAcquired, status.HTTP_409_CONFLICT),
    (StateError, status.HTTP_409_CONFLICT),
    (ExtractionError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ExternalServiceError, status.HTTP_502_BAD_GATEWAY),
)


def status_code_for(error: ReferralError) -> int:
    for error_type, code in _STATUS_CODES:
        if isinstance(error, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def referral_error_handler(request: Request, exc: ReferralError) -> JSONResponse:
    """Render a pipeline error as ``{"detail": ..., "error": ...}``."""
    code = status_code_for(exc)
    body: dict = {"detail": exc.message, "error": type(exc).__name__}
    if isinstance(exc, ExtractionError):
        body["code"] = exc.code.value
    if isinstance(exc, StateError) and exc.current_status:
        body["current_status"] = exc.current_status

    if code >= 500:
        logger.bind(action=request.url.path).error(f"{type(exc).__name__}: {exc.message}")
    else:
        logger.bind(action=request.url.path).info(f"{code} {type(exc).__name__}: {exc.message}")
    return JSONResponse(status_code=code, content=body)
