"""
Pytest Configuration and Fixtures.
Shared test fixtures for all test modules: in-memory stores, audit sink,
object storage and a scripted LLM gateway.
"""

import os
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Optional
from unittest.mock import AsyncMock
from uuid import UUID, uuid4

import pytest

os.environ.setdefault("ENVIRONMENT", "testing")

from src.core.config import ReferralSettings  # noqa: E402
from src.core.enums import (  # noqa: E402
    ContactType,
    ExtractionStatus,
    ReferralDocumentStatus,
)
from src.gateways.llm_gateway import GenerationResponse  # noqa: E402
from src.models.patient import Patient, PatientContact  # noqa: E402
from src.models.referral import ReferralDocument  # noqa: E402
from src.models.referrer import Referrer  # noqa: E402
from src.services.referrals.errors import ExternalServiceError, NotFoundError  # noqa: E402
from src.services.security.encryption import PatientCipher  # noqa: E402


def _now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# In-memory stores
# =============================================================================


class InMemoryDocumentStore:
    """Dict-backed ReferralDocumentStore with the same conditional-update semantics."""

    def __init__(self):
        self.documents: dict[UUID, ReferralDocument] = {}
        self.update_calls: list[dict[str, Any]] = []

    async def create(self, **fields: Any) -> ReferralDocument:
        now = _now()
        fields.setdefault("id", uuid4())
        fields.setdefault("status", ReferralDocumentStatus.UPLOADED)
        fields.setdefault("fast_extraction_status", ExtractionStatus.PENDING)
        fields.setdefault("full_extraction_status", ExtractionStatus.PENDING)
        fields.setdefault("created_at", now + timedelta(microseconds=len(self.documents)))
        fields.setdefault("updated_at", now)
        document = ReferralDocument(**fields)
        self.documents[document.id] = document
        return document

    async def get(
        self, document_id: UUID, practice_id: Optional[UUID] = None
    ) -> Optional[ReferralDocument]:
        document = self.documents.get(document_id)
        if document is None:
            return None
        if practice_id is not None and document.practice_id != practice_id:
            return None
        return document

    async def get_many(
        self, document_ids: Iterable[UUID], practice_id: UUID
    ) -> list[ReferralDocument]:
        wanted = set(document_ids)
        return [
            d for d in self.documents.values() if d.id in wanted and d.practice_id == practice_id
        ]

    async def update(self, document_id: UUID, fields: dict[str, Any]) -> ReferralDocument:
        document = self.documents.get(document_id)
        if document is None:
            raise NotFoundError()
        self.update_calls.append(dict(fields))
        for key, value in fields.items():
            setattr(document, key, value)
        document.updated_at = _now()
        return document

    async def update_if(
        self,
        document_id: UUID,
        expected: Iterable[Any],
        fields: dict[str, Any],
        status_field: str = "fast_extraction_status",
    ) -> int:
        document = self.documents.get(document_id)
        if document is None or getattr(document, status_field) not in set(expected):
            return 0
        self.update_calls.append(dict(fields))
        for key, value in fields.items():
            setattr(document, key, value)
        document.updated_at = _now()
        return 1

    async def delete(self, document_id: UUID) -> None:
        self.documents.pop(document_id, None)

    async def list(
        self,
        practice_id: UUID,
        status: Optional[ReferralDocumentStatus] = None,
        patient_id: Optional[UUID] = None,
        consultation_id: Optional[UUID] = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[ReferralDocument], int]:
        rows = [
            d
            for d in self.documents.values()
            if d.practice_id == practice_id
            and (status is None or d.status == status)
            and (patient_id is None or d.patient_id == patient_id)
            and (consultation_id is None or d.consultation_id == consultation_id)
        ]
        rows.sort(key=lambda d: d.created_at, reverse=True)
        return rows[offset : offset + limit], len(rows)


class InMemoryPatientStore:
    def __init__(self):
        self.patients: list[Patient] = []

    async def list_for_practice(self, practice_id: UUID) -> list[Patient]:
        return [p for p in self.patients if p.practice_id == practice_id]

    async def create(self, practice_id: UUID, encrypted_data: str) -> Patient:
        patient = Patient(
            id=uuid4(), practice_id=practice_id, encrypted_data=encrypted_data, created_at=_now()
        )
        self.patients.append(patient)
        return patient


class InMemoryReferrerStore:
    def __init__(self):
        self.referrers: list[Referrer] = []

    async def find_by_name(self, practice_id: UUID, name: str) -> Optional[Referrer]:
        wanted = name.strip().lower()
        for referrer in self.referrers:
            if referrer.practice_id == practice_id and referrer.name.lower() == wanted:
                return referrer
        return None

    async def create(self, practice_id: UUID, **fields: Any) -> Referrer:
        referrer = Referrer(id=uuid4(), practice_id=practice_id, **fields)
        self.referrers.append(referrer)
        return referrer


class InMemoryContactStore:
    def __init__(self):
        self.contacts: list[PatientContact] = []

    async def find_by_name(
        self, patient_id: UUID, contact_type: ContactType, full_name: str
    ) -> Optional[PatientContact]:
        wanted = full_name.strip().lower()
        for contact in self.contacts:
            if (
                contact.patient_id == patient_id
                and contact.type == contact_type
                and contact.full_name.lower() == wanted
            ):
                return contact
        return None

    async def create(
        self, patient_id: UUID, contact_type: ContactType, **fields: Any
    ) -> PatientContact:
        contact = PatientContact(id=uuid4(), patient_id=patient_id, type=contact_type, **fields)
        self.contacts.append(contact)
        return contact


class RecordingAuditSink:
    def __init__(self):
        self.entries: list[dict[str, Any]] = []

    async def record(self, user_id, practice_id, action, resource_id, metadata=None) -> None:
        self.entries.append(
            {
                "user_id": user_id,
                "practice_id": practice_id,
                "action": action,
                "resource_id": resource_id,
                "metadata": metadata or {},
            }
        )

    def actions(self) -> list[str]:
        return [entry["action"].value for entry in self.entries]


class InMemoryStorage:
    """DocumentStorage over a dict; ``fail_deletes`` simulates an unreachable bucket."""

    def __init__(self):
        self.objects: dict[str, bytes] = {}
        self.deleted: list[str] = []
        self.fail_deletes = False

    async def sign_upload(self, key: str, content_type: str) -> tuple[str, datetime]:
        return f"https://storage.test/upload/{key}", _now() + timedelta(minutes=15)

    async def sign_download(self, key: str) -> str:
        return f"https://storage.test/download/{key}"

    async def delete(self, key: str) -> None:
        if self.fail_deletes:
            raise ExternalServiceError("Failed to delete object: connection refused", "storage")
        self.deleted.append(key)
        self.objects.pop(key, None)

    async def fetch_bytes(self, key: str) -> bytes:
        if key not in self.objects:
            raise ExternalServiceError(f"Failed to fetch document: {key} missing", "storage")
        return self.objects[key]


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def practice_id() -> UUID:
    return uuid4()


@pytest.fixture
def user_id() -> UUID:
    return uuid4()


@pytest.fixture
def referral_settings() -> ReferralSettings:
    """Pipeline settings with zero retry delays so retry tests run instantly."""
    return ReferralSettings(
        FAST_INITIAL_DELAY_MS=0,
        FAST_MAX_DELAY_MS=0,
        FULL_INITIAL_DELAY_MS=0,
        FULL_MAX_DELAY_MS=0,
        HIGH_ACCURACY_INITIAL_DELAY_MS=0,
        HIGH_ACCURACY_MAX_DELAY_MS=0,
        FEATURE_EXTENDED_UPLOAD_TYPES=True,
    )


@pytest.fixture
def document_store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def patient_store() -> InMemoryPatientStore:
    return InMemoryPatientStore()


@pytest.fixture
def referrer_store() -> InMemoryReferrerStore:
    return InMemoryReferrerStore()


@pytest.fixture
def contact_store() -> InMemoryContactStore:
    return InMemoryContactStore()


@pytest.fixture
def audit_sink() -> RecordingAuditSink:
    return RecordingAuditSink()


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def cipher() -> PatientCipher:
    return PatientCipher(PatientCipher.generate_key())


@pytest.fixture
def make_document(document_store, practice_id, user_id):
    """Factory creating a stored document in any state."""

    async def _make(**overrides: Any) -> ReferralDocument:
        document_id = overrides.pop("id", uuid4())
        fields = {
            "id": document_id,
            "user_id": user_id,
            "practice_id": practice_id,
            "filename": "referral.pdf",
            "mime_type": "application/pdf",
            "size_bytes": 1024,
            "storage_key": f"referrals/{practice_id}/2026/01/{document_id}.pdf",
        }
        fields.update(overrides)
        return await document_store.create(**fields)

    return _make


@pytest.fixture
def llm_response():
    """Build a GenerationResponse for a scripted gateway."""

    def _response(content: str, model: str = "test-model") -> GenerationResponse:
        return GenerationResponse(
            content=content, model=model, input_tokens=120, output_tokens=40
        )

    return _response


@pytest.fixture
def gateway(llm_response):
    """LLM gateway mock; set ``gateway.generate.return_value`` or ``side_effect`` per test."""
    mock = AsyncMock()
    mock.generate = AsyncMock(return_value=llm_response("{}"))
    return mock


# Configure pytest markers
def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "integration: mark test as an integration test")
    config.addinivalue_line("markers", "api: mark test as an API test")
    config.addinivalue_line("markers", "slow: mark test as slow running")
