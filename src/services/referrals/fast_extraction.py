"""
Fast Extraction Service (phase 1).

Pulls only patient name, date of birth and MRN from a document's text so a
form can be pre-filled while full extraction is still running.

The move into PROCESSING is a conditional update that only applies when the
fast-extraction status is PENDING or FAILED. A second concurrent request
sees "already in progress" and touches nothing.

Failures never propagate: they are written to the document and returned as
a FAILED result. Callers poll the status instead of catching exceptions.
"""

import time
from typing import Optional
from uuid import UUID

from src.core.config import ReferralSettings, get_referral_settings
from src.core.enums import AuditAction, ExtractionErrorCode, ExtractionStatus
from src.gateways.base import RetryConfig
from src.gateways.llm_gateway import GenerationRequest, LLMGateway
from src.schemas.referral import FastExtractedData, FastExtractionResult
from src.services.referrals.audit import AuditSink
from src.services.referrals.errors import ExtractionError, LockNotAcquired, NotFoundError
from src.services.referrals.extractors import (
    FAST_EXTRACTION_SYSTEM_PROMPT,
    build_fast_extraction_prompt,
    has_fast_extraction_data,
    parse_fast_extraction,
)
from src.services.referrals.repository import ReferralDocumentStore, utcnow
from src.services.referrals.state_machine import ExtractionEvent, get_extraction_machine
from src.utils.logging import get_logger

logger = get_logger(__name__)


class FastExtractionService:
    def __init__(
        self,
        documents: ReferralDocumentStore,
        gateway: LLMGateway,
        audit: AuditSink,
        settings: Optional[ReferralSettings] = None,
    ):
        self.documents = documents
        self.gateway = gateway
        self.audit = audit
        self.settings = settings or get_referral_settings()

    @property
    def retry_config(self) -> RetryConfig:
        return RetryConfig(
            max_retries=self.settings.FAST_MAX_RETRIES,
            initial_delay_ms=self.settings.FAST_INITIAL_DELAY_MS,
            max_delay_ms=self.settings.FAST_MAX_DELAY_MS,
        )

    async def _acquire_lock(self, document_id: UUID) -> None:
        """
        PENDING/FAILED -> PROCESSING, or LockNotAcquired.

        Raises:
            LockNotAcquired: Status was neither PENDING nor FAILED
        """
        expected = get_extraction_machine().sources(ExtractionEvent.START)
        updated = await self.documents.update_if(
            document_id,
            expected,
            {
                "fast_extraction_status": ExtractionStatus.PROCESSING,
                "fast_extraction_started_at": utcnow(),
            },
            status_field="fast_extraction_status",
        )
        if updated == 0:
            raise LockNotAcquired(str(document_id))

    async def extract(
        self,
        user_id: UUID,
        practice_id: UUID,
        document_id: UUID,
    ) -> FastExtractionResult:
        """
        Run fast extraction for one document.

        Returns:
            COMPLETE with data, FAILED with an error message, or PROCESSING
            when another request already holds the lock.

        Raises:
            NotFoundError: Unknown document or other practice. Checked before
                the lock so a foreign document is never mutated.
        """
        log = logger.bind(
            document_id=str(document_id), practice_id=str(practice_id), action="extract_fast"
        )
        started = time.monotonic()

        document = await self.documents.get(document_id, practice_id)
        if document is None:
            raise NotFoundError()

        try:
            await self._acquire_lock(document_id)
        except LockNotAcquired as e:
            log.info("Fast extraction already in progress, skipping")
            return FastExtractionResult(
                document_id=document_id,
                status=ExtractionStatus.PROCESSING,
                error=e.message,
            )

        try:
            text = document.content_text or ""
            if not text.strip():
                raise ExtractionError(
                    "Document has no extracted text content", ExtractionErrorCode.NO_DATA
                )

            max_length = self.settings.FAST_MAX_TEXT_LENGTH
            if len(text) > max_length:
                log.warning(
                    f"Document text truncated for fast extraction ({len(text)} > {max_length} chars)"
                )
                text = text[:max_length]

            model = self.settings.FAST_EXTRACTION_MODEL
            response = await self.gateway.generate(
                GenerationRequest(
                    prompt=build_fast_extraction_prompt(text),
                    model=model,
                    max_tokens=self.settings.FAST_MAX_TOKENS,
                    temperature=0.0,
                    system_prompt=FAST_EXTRACTION_SYSTEM_PROMPT,
                ),
                self.retry_config,
            )
            processing_time_ms = int((time.monotonic() - started) * 1000)
            data = parse_fast_extraction(response.content, model, processing_time_ms)

            await self.documents.update(
                document_id,
                {
                    "fast_extraction_status": ExtractionStatus.COMPLETE,
                    "fast_extraction_data": data.model_dump(mode="json"),
                    "fast_extraction_completed_at": utcnow(),
                    "fast_extraction_error": None,
                },
            )
        except Exception as e:
            message = getattr(e, "message", None) or str(e) or "Unknown fast extraction error"
            code = e.code.value if isinstance(e, ExtractionError) else "UNKNOWN"
            log.error(f"Fast patient extraction failed [{code}]: {message}")
            await self.documents.update(
                document_id,
                {
                    "fast_extraction_status": ExtractionStatus.FAILED,
                    "fast_extraction_error": message,
                    "fast_extraction_completed_at": utcnow(),
                },
            )
            return FastExtractionResult(
                document_id=document_id,
                status=ExtractionStatus.FAILED,
                error=message,
            )

        meets_target = processing_time_ms < self.settings.FAST_TARGET_MS
        await self.audit.record(
            user_id,
            practice_id,
            AuditAction.REFERRAL_EXTRACT_FAST,
            document_id,
            {
                "model": model,
                "input_tokens": response.input_tokens,
                "output_tokens": response.output_tokens,
                "processing_time_ms": processing_time_ms,
                "meets_target": meets_target,
                "has_data": has_fast_extraction_data(data),
                "overall_confidence": data.overall_confidence,
                "has_name": data.patient_name.value is not None,
                "has_dob": data.date_of_birth.value is not None,
                "has_mrn": data.mrn.value is not None,
            },
        )
        if not meets_target:
            log.warning(f"Fast extraction took {processing_time_ms}ms")
        log.info(f"Fast patient extraction complete (confidence {data.overall_confidence:.2f})")

        return FastExtractionResult(
            document_id=document_id,
            status=ExtractionStatus.COMPLETE,
            data=data,
        )

    async def retry(
        self,
        user_id: UUID,
        practice_id: UUID,
        document_id: UUID,
    ) -> FastExtractionResult:
        """
        Clear a finished attempt (COMPLETE or FAILED) back to PENDING and rerun.

        A document still PROCESSING is not reset; the rerun then reports it
        as already in progress.
        """
        document = await self.documents.get(document_id, practice_id)
        if document is None:
            raise NotFoundError()

        reset = await self.documents.update_if(
            document_id,
            get_extraction_machine().sources(ExtractionEvent.RESET),
            {
                "fast_extraction_status": ExtractionStatus.PENDING,
                "fast_extraction_data": None,
                "fast_extraction_error": None,
                "fast_extraction_started_at": None,
                "fast_extraction_completed_at": None,
            },
            status_field="fast_extraction_status",
        )
        if reset:
            logger.bind(document_id=str(document_id), action="retry_fast").info(
                "Fast extraction reset for retry"
            )

        return await self.extract(user_id, practice_id, document_id)


def load_fast_extraction_data(raw: Optional[dict]) -> Optional[FastExtractedData]:
    """Rehydrate stored fast-extraction JSON."""
    if not raw:
        return None
    return FastExtractedData.model_validate(raw)
