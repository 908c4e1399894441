"""
Full Extraction Service (phase 2).

TEXT_EXTRACTED -> EXTRACTED: patient, GP, referrer and clinical context
sections from the document text. Unlike fast extraction, failures are
recorded on the document and then re-raised to the caller.

Re-extraction resets a document back to TEXT_EXTRACTED, drops the previous
result and reruns, optionally with the higher-accuracy model and its slower
retry schedule.
"""

from typing import Optional
from uuid import UUID

from src.core.config import ReferralSettings, get_referral_settings
from src.core.enums import (
    AuditAction,
    ExtractionErrorCode,
    ExtractionStatus,
    ReferralDocumentStatus,
)
from src.gateways.base import GatewayError, RetryConfig
from src.gateways.llm_gateway import GenerationRequest, LLMGateway
from src.schemas.referral import ReferralExtractedData, StructuredExtractionResult
from src.services.referrals.audit import AuditSink
from src.services.referrals.errors import (
    ExternalServiceError,
    ExtractionError,
    LockNotAcquired,
    NotFoundError,
    StateError,
)
from src.services.referrals.extractors import (
    FULL_EXTRACTION_SYSTEM_PROMPT,
    build_full_extraction_prompt,
    get_low_confidence_sections,
    has_low_confidence,
    parse_referral_extraction,
)
from src.services.referrals.repository import ReferralDocumentStore, utcnow
from src.services.referrals.state_machine import (
    ExtractionEvent,
    LifecycleEvent,
    get_extraction_machine,
    get_lifecycle_machine,
)
from src.utils.logging import get_logger

logger = get_logger(__name__)


class FullExtractionService:
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

    def _model_and_retry(self, high_accuracy: bool) -> tuple[str, RetryConfig]:
        s = self.settings
        if high_accuracy:
            return s.HIGH_ACCURACY_MODEL, RetryConfig(
                max_retries=s.HIGH_ACCURACY_MAX_RETRIES,
                initial_delay_ms=s.HIGH_ACCURACY_INITIAL_DELAY_MS,
                max_delay_ms=s.HIGH_ACCURACY_MAX_DELAY_MS,
            )
        return s.FULL_EXTRACTION_MODEL, RetryConfig(
            max_retries=s.FULL_MAX_RETRIES,
            initial_delay_ms=s.FULL_INITIAL_DELAY_MS,
            max_delay_ms=s.FULL_MAX_DELAY_MS,
        )

    async def extract(
        self,
        user_id: UUID,
        practice_id: UUID,
        document_id: UUID,
        high_accuracy: bool = False,
        reextraction: bool = False,
    ) -> StructuredExtractionResult:
        """
        Extract structured referral data.

        Raises:
            NotFoundError: Unknown document or other practice
            StateError: Document is not TEXT_EXTRACTED
            ExtractionError: No text (before any mutation) or unusable model output
            LockNotAcquired: A full extraction is already running
            ExternalServiceError: LLM failure after retries
        """
        log = logger.bind(
            document_id=str(document_id),
            practice_id=str(practice_id),
            action="extract_structured",
        )

        document = await self.documents.get(document_id, practice_id)
        if document is None:
            raise NotFoundError()

        get_lifecycle_machine().require(
            document.status,
            LifecycleEvent.EXTRACT_STRUCTURED,
            f"Cannot extract structured data from document with status: "
            f"{document.status.value}. Expected: TEXT_EXTRACTED",
        )

        text = document.content_text or ""
        if not text.strip():
            raise ExtractionError(
                "Document has no extracted text content", ExtractionErrorCode.NO_DATA
            )

        acquired = await self.documents.update_if(
            document_id,
            get_extraction_machine().sources(ExtractionEvent.START),
            {
                "full_extraction_status": ExtractionStatus.PROCESSING,
                "full_extraction_started_at": utcnow(),
                "full_extraction_error": None,
            },
            status_field="full_extraction_status",
        )
        if not acquired:
            log.info("Full extraction already in progress")
            raise LockNotAcquired(str(document_id))

        model, retry_config = self._model_and_retry(high_accuracy)
        log.info(f"Starting structured extraction ({len(text)} chars, model {model})")

        try:
            try:
                response = await self.gateway.generate(
                    GenerationRequest(
                        prompt=build_full_extraction_prompt(text),
                        model=model,
                        max_tokens=self.settings.FULL_MAX_TOKENS,
                        temperature=0.0,
                        system_prompt=FULL_EXTRACTION_SYSTEM_PROMPT,
                    ),
                    retry_config,
                )
            except GatewayError as e:
                raise ExternalServiceError(f"LLM request failed: {e}", "llm", e) from e

            data = parse_referral_extraction(response.content, model)
        except Exception as e:
            message = getattr(e, "message", None) or str(e) or "Unknown extraction error"
            code = e.code.value if isinstance(e, ExtractionError) else "UNKNOWN"
            log.error(f"Structured extraction failed [{code}]: {message}")
            now = utcnow()
            await self.documents.update(
                document_id,
                {
                    "status": ReferralDocumentStatus.FAILED,
                    "processing_error": f"Structured extraction failed: {message}",
                    "processed_at": now,
                    "full_extraction_status": ExtractionStatus.FAILED,
                    "full_extraction_error": message,
                    "full_extraction_completed_at": now,
                },
            )
            raise

        threshold = self.settings.LOW_CONFIDENCE_WARNING_THRESHOLD
        if has_low_confidence(data, threshold):
            log.warning(
                f"Low confidence extraction: {data.overall_confidence:.2f} < {threshold}"
            )

        now = utcnow()
        await self.documents.update(
            document_id,
            {
                "status": ReferralDocumentStatus.EXTRACTED,
                "extracted_data": data.model_dump(mode="json"),
                "processing_error": None,
                "processed_at": now,
                "full_extraction_status": ExtractionStatus.COMPLETE,
                "full_extraction_error": None,
                "full_extraction_completed_at": now,
            },
        )

        metadata = {
            "model": model,
            "input_tokens": response.input_tokens,
            "output_tokens": response.output_tokens,
            "overall_confidence": data.overall_confidence,
            "patient_confidence": data.patient.confidence,
            "gp_confidence": data.gp.confidence,
            "context_confidence": data.referral_context.confidence,
            "low_confidence_sections": get_low_confidence_sections(
                data, self.settings.SECTION_REVIEW_THRESHOLD
            ),
        }
        if reextraction:
            metadata["reextraction"] = True
        await self.audit.record(
            user_id, practice_id, AuditAction.REFERRAL_EXTRACT_STRUCTURED, document_id, metadata
        )

        log.info(
            f"Structured extraction complete (confidence {data.overall_confidence:.2f}, "
            f"patient={bool(data.patient.full_name)}, gp={bool(data.gp.full_name)}, "
            f"referrer={data.referrer is not None})"
        )
        return StructuredExtractionResult(id=document_id, extracted_data=data)

    async def reextract(
        self,
        user_id: UUID,
        practice_id: UUID,
        document_id: UUID,
        high_accuracy: bool = False,
    ) -> StructuredExtractionResult:
        """
        Reset to TEXT_EXTRACTED, clear the previous result, and extract again.

        Allowed from TEXT_EXTRACTED, EXTRACTED or FAILED, provided text was
        extracted earlier. APPLIED documents are never reset.
        """
        log = logger.bind(
            document_id=str(document_id), practice_id=str(practice_id), action="reextract"
        )

        document = await self.documents.get(document_id, practice_id)
        if document is None:
            raise NotFoundError()

        get_lifecycle_machine().require(
            document.status,
            LifecycleEvent.RESET_FOR_REEXTRACTION,
            f"Cannot re-extract document with status: {document.status.value}",
        )
        if not (document.content_text or "").strip():
            raise StateError(
                "Document has no extracted text; run text extraction first",
                current_status=document.status.value,
            )

        reset = await self.documents.update_if(
            document_id,
            get_extraction_machine().sources(ExtractionEvent.RESET)
            | {ExtractionStatus.PENDING},
            {
                "status": ReferralDocumentStatus.TEXT_EXTRACTED,
                "extracted_data": None,
                "processing_error": None,
                "processed_at": None,
                "full_extraction_status": ExtractionStatus.PENDING,
                "full_extraction_error": None,
                "full_extraction_started_at": None,
                "full_extraction_completed_at": None,
            },
            status_field="full_extraction_status",
        )
        if not reset:
            raise LockNotAcquired(str(document_id))

        log.info(f"Document reset for re-extraction (high_accuracy={high_accuracy})")
        return await self.extract(
            user_id, practice_id, document_id, high_accuracy=high_accuracy, reextraction=True
        )


def load_extracted_data(raw: Optional[dict]) -> Optional[ReferralExtractedData]:
    """Rehydrate stored full-extraction JSON."""
    if not raw:
        return None
    return ReferralExtractedData.model_validate(raw)
