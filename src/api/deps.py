"""
FastAPI Dependencies
Caller identity, database-backed stores and referral service wiring
Source: https://fastapi.tiangolo.com/tutorial/dependencies/
"""

from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.config import settings
from src.core.config import ReferralSettings, get_referral_settings
from src.db.connection import get_session
from src.gateways.llm_gateway import LLMGateway, get_llm_gateway
from src.services.referrals.apply import ApplyService
from src.services.referrals.audit import SqlAuditSink
from src.services.referrals.documents import ReferralDocumentService
from src.services.referrals.fast_extraction import FastExtractionService
from src.services.referrals.full_extraction import FullExtractionService
from src.services.referrals.matching import PatientMatcher
from src.services.referrals.repository import (
    SqlContactStore,
    SqlPatientStore,
    SqlReferralDocumentStore,
    SqlReferrerStore,
)
from src.services.referrals.text_extraction import TextExtractionService
from src.services.security.encryption import PatientCipher, get_patient_cipher
from src.services.storage import DocumentStorage, get_referral_storage
from src.utils.errors import AuthenticationError


@dataclass(frozen=True)
class RequestContext:
    """Who is calling: the acting user and the practice that scopes every read."""

    user_id: UUID
    practice_id: UUID


def _parse_uuid(value: Optional[str], header: str) -> UUID:
    if not value:
        raise AuthenticationError(f"Missing {header} header")
    try:
        return UUID(value)
    except ValueError as err:
        raise AuthenticationError(f"Invalid {header} header") from err


async def get_request_context(
    x_user_id: Optional[str] = Header(None),
    x_practice_id: Optional[str] = Header(None),
) -> RequestContext:
    """
    Resolve the caller from identity headers set by the upstream gateway.

    Raises:
        AuthenticationError: Header missing or not a UUID
    """
    return RequestContext(
        user_id=_parse_uuid(x_user_id, "X-User-Id"),
        practice_id=_parse_uuid(x_practice_id, "X-Practice-Id"),
    )


# =============================================================================
# Collaborators
# =============================================================================


def get_storage() -> DocumentStorage:
    return get_referral_storage()


def get_gateway() -> LLMGateway:
    return get_llm_gateway()


def get_cipher() -> PatientCipher:
    return get_patient_cipher(settings.PATIENT_ENCRYPTION_KEY)


def get_pipeline_settings() -> ReferralSettings:
    return get_referral_settings()


# =============================================================================
# Services
# =============================================================================


def get_document_service(
    session: AsyncSession = Depends(get_session),
    storage: DocumentStorage = Depends(get_storage),
    pipeline_settings: ReferralSettings = Depends(get_pipeline_settings),
) -> ReferralDocumentService:
    return ReferralDocumentService(
        SqlReferralDocumentStore(session), storage, SqlAuditSink(session), pipeline_settings
    )


def get_text_extraction_service(
    session: AsyncSession = Depends(get_session),
    storage: DocumentStorage = Depends(get_storage),
    gateway: LLMGateway = Depends(get_gateway),
    pipeline_settings: ReferralSettings = Depends(get_pipeline_settings),
) -> TextExtractionService:
    return TextExtractionService(
        SqlReferralDocumentStore(session),
        storage,
        gateway,
        SqlAuditSink(session),
        pipeline_settings,
    )


def get_fast_extraction_service(
    session: AsyncSession = Depends(get_session),
    gateway: LLMGateway = Depends(get_gateway),
    pipeline_settings: ReferralSettings = Depends(get_pipeline_settings),
) -> FastExtractionService:
    return FastExtractionService(
        SqlReferralDocumentStore(session), gateway, SqlAuditSink(session), pipeline_settings
    )


def get_full_extraction_service(
    session: AsyncSession = Depends(get_session),
    gateway: LLMGateway = Depends(get_gateway),
    pipeline_settings: ReferralSettings = Depends(get_pipeline_settings),
) -> FullExtractionService:
    return FullExtractionService(
        SqlReferralDocumentStore(session), gateway, SqlAuditSink(session), pipeline_settings
    )


def get_apply_service(
    session: AsyncSession = Depends(get_session),
    cipher: PatientCipher = Depends(get_cipher),
) -> ApplyService:
    patients = SqlPatientStore(session)
    return ApplyService(
        documents=SqlReferralDocumentStore(session),
        patients=patients,
        referrers=SqlReferrerStore(session),
        contacts=SqlContactStore(session),
        matcher=PatientMatcher(patients, cipher),
        cipher=cipher,
        audit=SqlAuditSink(session),
    )
