"""
Unit tests for the pipeline error taxonomy and its HTTP mapping.
"""

import json

import pytest
from starlette.requests import Request

from src.core.enums import ExtractionErrorCode
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
from src.utils.errors import referral_error_handler, status_code_for


def _request(path: str = "/api/v1/referrals/x") -> Request:
    return Request({"type": "http", "method": "POST", "path": path, "headers": []})


@pytest.mark.unit
class TestStatusMapping:
    """Test error class to HTTP status mapping"""

    @pytest.mark.parametrize(
        "error,code",
        [
            (ValidationError("bad"), 400),
            (NotFoundError(), 404),
            (StateError("wrong state"), 409),
            (LockNotAcquired("doc"), 409),
            (ExtractionError("empty", ExtractionErrorCode.NO_DATA), 422),
            (ParseError("no json"), 422),
            (ExternalServiceError("down", "llm"), 502),
            (ReferralError("unexpected"), 500),
        ],
    )
    def test_status_code_for(self, error, code):
        assert status_code_for(error) == code

    def test_not_found_default_message(self):
        assert NotFoundError().message == "Referral document not found"

    def test_parse_error_code(self):
        assert ParseError("x").code == ExtractionErrorCode.PARSE_ERROR


@pytest.mark.unit
class TestErrorHandler:
    """Test the JSON error body"""

    @pytest.mark.asyncio
    async def test_extraction_error_body(self):
        response = await referral_error_handler(
            _request(), ExtractionError("No text", ExtractionErrorCode.NO_DATA)
        )
        assert response.status_code == 422
        assert json.loads(response.body) == {
            "detail": "No text",
            "error": "ExtractionError",
            "code": "NO_DATA",
        }

    @pytest.mark.asyncio
    async def test_state_error_body(self):
        response = await referral_error_handler(
            _request(), StateError("Cannot apply", current_status="UPLOADED")
        )
        body = json.loads(response.body)
        assert response.status_code == 409
        assert body["current_status"] == "UPLOADED"
        assert "code" not in body
