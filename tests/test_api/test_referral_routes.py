"""API tests for referral routes.
Drives the HTTP surface over in-memory stores and a scripted LLM gateway.
"""

from __future__ import annotations

from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from src.api.deps import (
    get_apply_service,
    get_document_service,
    get_fast_extraction_service,
    get_full_extraction_service,
    get_text_extraction_service,
)
from src.api.main import app
from src.core.enums import ExtractionStatus, ReferralDocumentStatus
from src.services.referrals.apply import ApplyService
from src.services.referrals.documents import ReferralDocumentService
from src.services.referrals.fast_extraction import FastExtractionService
from src.services.referrals.full_extraction import FullExtractionService
from src.services.referrals.matching import PatientMatcher
from src.services.referrals.text_extraction import TextExtractionService

client = TestClient(app)

LETTER = (
    "Dear Dr Sattler,\n\nRe: Mr. John Smith, DOB 15/05/1990, MRN 445566.\n\n"
    "Thank you for seeing this gentleman with exertional chest pain. "
    "Yours sincerely, Dr Alan Grant, Harbour Medical."
)
FAST_REPLY = (
    '{"name": "Mr. John Smith", "nameConfidence": 0.95, "dob": "15/05/1990", '
    '"dobConfidence": 0.95, "mrn": "445566", "mrnConfidence": 0.9}'
)
FULL_REPLY = (
    '{"patient": {"fullName": "Mr. John Smith", "dateOfBirth": "1990-05-15", "mrn": "445566", '
    '"confidence": 0.95}, "gp": {"fullName": "Dr Alan Grant", "practiceName": "Harbour Medical", '
    '"confidence": 0.9}, "referrer": null, "referralContext": {"reasonForReferral": '
    '"Exertional chest pain", "urgency": "routine", "confidence": 0.85}}'
)


@pytest.fixture(autouse=True)
def wire_services(
    document_store,
    patient_store,
    referrer_store,
    contact_store,
    storage,
    gateway,
    audit_sink,
    cipher,
    referral_settings,
):
    """Route every service dependency to the in-memory fakes."""
    app.dependency_overrides[get_document_service] = lambda: ReferralDocumentService(
        document_store, storage, audit_sink, referral_settings
    )
    app.dependency_overrides[get_text_extraction_service] = lambda: TextExtractionService(
        document_store, storage, gateway, audit_sink, referral_settings
    )
    app.dependency_overrides[get_fast_extraction_service] = lambda: FastExtractionService(
        document_store, gateway, audit_sink, referral_settings
    )
    app.dependency_overrides[get_full_extraction_service] = lambda: FullExtractionService(
        document_store, gateway, audit_sink, referral_settings
    )
    app.dependency_overrides[get_apply_service] = lambda: ApplyService(
        documents=document_store,
        patients=patient_store,
        referrers=referrer_store,
        contacts=contact_store,
        matcher=PatientMatcher(patient_store, cipher),
        cipher=cipher,
        audit=audit_sink,
    )
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def headers(user_id, practice_id) -> dict[str, str]:
    return {"X-User-Id": str(user_id), "X-Practice-Id": str(practice_id)}


@pytest.mark.api
class TestReferralLifecycle:
    """End-to-end flow through the HTTP API."""

    def test_upload_extract_and_apply(self, headers, storage, gateway, llm_response, audit_sink):
        created = client.post(
            "/api/v1/referrals/",
            json={"filename": "letter.txt", "mime_type": "text/plain", "size_bytes": len(LETTER)},
            headers=headers,
        )
        assert created.status_code == 201
        document_id = created.json()["id"]
        assert created.json()["upload_url"].startswith("https://storage.test/upload/")

        document = client.get(f"/api/v1/referrals/{document_id}", headers=headers).json()
        storage.objects[document["storage_key"]] = LETTER.encode("utf-8")

        confirmed = client.post(
            f"/api/v1/referrals/{document_id}/confirm",
            json={"size_bytes": len(LETTER)},
            headers=headers,
        )
        assert confirmed.status_code == 200

        text = client.post(f"/api/v1/referrals/{document_id}/extract-text", headers=headers)
        assert text.status_code == 200
        assert text.json()["status"] == "TEXT_EXTRACTED"
        assert text.json()["text_length"] == len(LETTER)

        gateway.generate.return_value = llm_response(FAST_REPLY)
        fast = client.post(f"/api/v1/referrals/{document_id}/extract-fast", headers=headers)
        assert fast.status_code == 200
        fast_body = fast.json()
        assert fast_body["status"] == "COMPLETE"
        assert fast_body["data"]["patient_name"]["level"] == "high"
        assert fast_body["data"]["date_of_birth"]["value"] == "1990-05-15"

        gateway.generate.return_value = llm_response(FULL_REPLY)
        full = client.post(f"/api/v1/referrals/{document_id}/extract-structured", headers=headers)
        assert full.status_code == 200
        assert full.json()["status"] == "EXTRACTED"

        status = client.get(f"/api/v1/referrals/{document_id}/status", headers=headers).json()
        assert status["fast_extraction_status"] == "COMPLETE"
        assert status["full_extraction_status"] == "COMPLETE"
        assert status["extracted_data"]["gp"]["practice_name"] == "Harbour Medical"

        consultation_id = str(uuid4())
        applied = client.post(
            f"/api/v1/referrals/{document_id}/apply",
            json={
                "consultation_id": consultation_id,
                "patient": {"full_name": "John Smith", "date_of_birth": "1990-05-15", "mrn": "445566"},
                "gp": {"full_name": "Dr Alan Grant", "practice_name": "Harbour Medical"},
            },
            headers=headers,
        )
        assert applied.status_code == 200
        assert applied.json()["status"] == "APPLIED"
        assert applied.json()["consultation_id"] == consultation_id

        deleted = client.delete(f"/api/v1/referrals/{document_id}", headers=headers)
        assert deleted.status_code == 409
        assert deleted.json()["current_status"] == "APPLIED"

        assert audit_sink.actions() == [
            "referral.create",
            "referral.upload_confirm",
            "referral.extract_text",
            "referral.extract_fast",
            "referral.extract_structured",
            "referral.apply",
        ]


@pytest.mark.api
class TestReferralRoutes:
    """Status codes and error bodies for individual routes."""

    def test_missing_identity_headers(self):
        response = client.get("/api/v1/referrals/")
        assert response.status_code == 401
        assert response.json()["detail"] == "Missing X-User-Id header"

    def test_malformed_document_id(self, headers):
        response = client.get("/api/v1/referrals/not-a-uuid", headers=headers)
        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid document ID format"

    def test_unknown_document(self, headers):
        response = client.get(f"/api/v1/referrals/{uuid4()}", headers=headers)
        assert response.status_code == 404
        assert response.json()["error"] == "NotFoundError"

    def test_invalid_mime_type(self, headers):
        response = client.post(
            "/api/v1/referrals/",
            json={"filename": "a.zip", "mime_type": "application/zip", "size_bytes": 10},
            headers=headers,
        )
        assert response.status_code == 400
        assert response.json()["detail"].startswith("Invalid file type")

    def test_batch(self, headers):
        response = client.post(
            "/api/v1/referrals/batch",
            json={
                "files": [
                    {"filename": "a.pdf", "mime_type": "application/pdf", "size_bytes": 10},
                    {"filename": "b.txt", "mime_type": "text/plain", "size_bytes": 10},
                ]
            },
            headers=headers,
        )
        assert response.status_code == 201
        assert len(response.json()["documents"]) == 2

    @pytest.mark.asyncio
    async def test_list_with_status_filter(self, headers, make_document):
        await make_document(status=ReferralDocumentStatus.EXTRACTED)
        await make_document()

        response = client.get("/api/v1/referrals/?status=EXTRACTED&limit=10", headers=headers)

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 1
        assert body["has_more"] is False

    @pytest.mark.asyncio
    async def test_structured_extraction_wrong_status(self, headers, make_document):
        document = await make_document()

        response = client.post(
            f"/api/v1/referrals/{document.id}/extract-structured", headers=headers
        )

        assert response.status_code == 409
        assert response.json()["detail"] == (
            "Cannot extract structured data from document with status: UPLOADED. "
            "Expected: TEXT_EXTRACTED"
        )

    @pytest.mark.asyncio
    async def test_structured_extraction_without_text(self, headers, make_document):
        document = await make_document(status=ReferralDocumentStatus.TEXT_EXTRACTED)

        response = client.post(
            f"/api/v1/referrals/{document.id}/extract-structured", headers=headers
        )

        assert response.status_code == 422
        assert response.json()["code"] == "NO_DATA"

    @pytest.mark.asyncio
    async def test_fast_extraction_in_progress(self, headers, make_document, gateway):
        document = await make_document(
            status=ReferralDocumentStatus.TEXT_EXTRACTED,
            content_text=LETTER,
            fast_extraction_status=ExtractionStatus.PROCESSING,
        )

        response = client.post(f"/api/v1/referrals/{document.id}/extract-fast", headers=headers)

        assert response.status_code == 200
        assert response.json()["status"] == "PROCESSING"
        gateway.generate.assert_not_called()

    @pytest.mark.asyncio
    async def test_retry_structured_high_accuracy(
        self, headers, make_document, gateway, llm_response, referral_settings
    ):
        document = await make_document(
            status=ReferralDocumentStatus.EXTRACTED,
            content_text=LETTER,
            full_extraction_status=ExtractionStatus.COMPLETE,
        )
        gateway.generate.return_value = llm_response(FULL_REPLY)

        response = client.post(
            f"/api/v1/referrals/{document.id}/retry-structured?high_accuracy=true",
            headers=headers,
        )

        assert response.status_code == 200
        request = gateway.generate.call_args.args[0]
        assert request.model == referral_settings.HIGH_ACCURACY_MODEL

    @pytest.mark.asyncio
    async def test_conflicts(self, headers, make_document):
        one = await make_document()
        response = client.post(
            "/api/v1/referrals/conflicts",
            json={"document_ids": [str(one.id)]},
            headers=headers,
        )
        assert response.status_code == 200
        assert response.json()["has_conflict"] is False

    @pytest.mark.asyncio
    async def test_delete(self, headers, make_document, document_store):
        document = await make_document()

        response = client.delete(f"/api/v1/referrals/{document.id}", headers=headers)

        assert response.status_code == 204
        assert document.id not in document_store.documents


def test_health():
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "service": "referral-intake-api"}
