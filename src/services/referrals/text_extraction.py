"""
Text Extraction Service.

Turns an uploaded referral file into plain text (UPLOADED -> TEXT_EXTRACTED).

Dispatch by MIME type:
- application/pdf: PyMuPDF text layer
- text/plain: UTF-8 decode
- .docx: python-docx
- RTF: control-word stripping
- images: validate, normalise to JPEG, then vision-model transcription

A failure of any kind marks the document FAILED with the error message,
audits it and re-raises.
"""

from typing import Optional
from uuid import UUID

from anyio import to_thread

from src.core.config import ReferralSettings, get_referral_settings
from src.core.enums import AuditAction, ExtractionErrorCode, ReferralDocumentStatus
from src.gateways.base import GatewayError, RetryConfig
from src.gateways.llm_gateway import GenerationRequest, ImageContent, LLMGateway
from src.schemas.referral import TextExtractionResult
from src.services.referrals import decoders
from src.services.referrals.audit import AuditSink
from src.services.referrals.errors import (
    ExternalServiceError,
    ExtractionError,
    NotFoundError,
    ValidationError,
)
from src.services.referrals.repository import ReferralDocumentStore, utcnow
from src.services.referrals.state_machine import LifecycleEvent, get_lifecycle_machine
from src.services.referrals.uploads import DOCX_MIME_TYPE, IMAGE_MIME_TYPES, RTF_MIME_TYPES
from src.services.storage import DocumentStorage
from src.utils.logging import get_logger

logger = get_logger(__name__)

NO_READABLE_TEXT_MARKER = "[NO_READABLE_TEXT]"

VISION_TRANSCRIPTION_PROMPT = """This image is a photograph or scan of a medical document, most likely a referral letter.

Transcribe every piece of text in the image exactly as written:
- Keep the original layout and line breaks where you can
- Include headers, letterheads, dates, names, addresses and phone numbers
- Include handwritten text if it can be read
- Write [unclear] for any text you cannot make out
- Do not summarise, interpret or add commentary

If the image contains no readable text, reply with exactly: [NO_READABLE_TEXT]

Reply with the transcribed text only."""


def build_preview(text: str, length: int = 500) -> str:
    if len(text) <= length:
        return text
    return text[:length] + "..."


class TextExtractionService:
    """Phase 0: stored bytes to document text."""

    def __init__(
        self,
        documents: ReferralDocumentStore,
        storage: DocumentStorage,
        gateway: LLMGateway,
        audit: AuditSink,
        settings: Optional[ReferralSettings] = None,
    ):
        self.documents = documents
        self.storage = storage
        self.gateway = gateway
        self.audit = audit
        self.settings = settings or get_referral_settings()

    async def extract_text(
        self,
        user_id: UUID,
        practice_id: UUID,
        document_id: UUID,
    ) -> TextExtractionResult:
        """
        Extract and store the document's text.

        Raises:
            NotFoundError: Unknown document or other practice
            StateError: Document is not UPLOADED
            ValidationError: Unsupported MIME type (after marking FAILED)
            ExtractionError / ExternalServiceError: Decode or transcription failure
        """
        log = logger.bind(
            document_id=str(document_id), practice_id=str(practice_id), action="extract_text"
        )

        document = await self.documents.get(document_id, practice_id)
        if document is None:
            raise NotFoundError()

        get_lifecycle_machine().require(
            document.status,
            LifecycleEvent.EXTRACT_TEXT,
            f"Cannot extract text from document with status: {document.status.value}",
        )

        try:
            data = await self.storage.fetch_bytes(document.storage_key)
            text = await self._decode(document.mime_type, data)
            if not text or not text.strip():
                raise ExtractionError(
                    "No text could be extracted from the document", ExtractionErrorCode.NO_DATA
                )
        except Exception as e:
            message = getattr(e, "message", None) or str(e)
            log.error(f"Text extraction failed: {message}")
            await self.documents.update(
                document_id,
                {
                    "status": ReferralDocumentStatus.FAILED,
                    "processing_error": message,
                    "processed_at": utcnow(),
                },
            )
            await self.audit.record(
                user_id,
                practice_id,
                AuditAction.REFERRAL_EXTRACT_TEXT_FAILED,
                document_id,
                {"mime_type": document.mime_type, "error": message},
            )
            raise

        await self.documents.update(
            document_id,
            {
                "status": ReferralDocumentStatus.TEXT_EXTRACTED,
                "content_text": text,
                "processing_error": None,
            },
        )

        is_short_text = len(text) < self.settings.SHORT_TEXT_THRESHOLD
        if is_short_text:
            log.warning(
                f"Extracted text is unusually short ({len(text)} chars); "
                "document may be a scan without a text layer"
            )

        await self.audit.record(
            user_id,
            practice_id,
            AuditAction.REFERRAL_EXTRACT_TEXT,
            document_id,
            {
                "text_length": len(text),
                "mime_type": document.mime_type,
                "is_short_text": is_short_text,
            },
        )
        log.info(f"Extracted {len(text)} chars from {document.mime_type}")

        return TextExtractionResult(
            id=document_id,
            text_length=len(text),
            preview=build_preview(text, self.settings.PREVIEW_LENGTH),
            is_short_text=is_short_text,
        )

    async def _decode(self, mime_type: str, data: bytes) -> str:
        if mime_type == "application/pdf":
            try:
                pdf = await to_thread.run_sync(decoders.decode_pdf, data)
            except decoders.DecodeError as e:
                raise ExtractionError(str(e), ExtractionErrorCode.NO_DATA) from e
            logger.debug(f"PDF decoded: {pdf.page_count} pages")
            return pdf.text

        if mime_type == "text/plain":
            return decoders.decode_plain_text(data)

        if mime_type == DOCX_MIME_TYPE:
            try:
                docx = await to_thread.run_sync(decoders.decode_docx, data)
            except decoders.DecodeError as e:
                raise ExtractionError(str(e), ExtractionErrorCode.NO_DATA) from e
            for warning in docx.warnings:
                logger.warning(f"DOCX: {warning}")
            return docx.text

        if mime_type in RTF_MIME_TYPES:
            return decoders.decode_rtf(data)

        if mime_type in IMAGE_MIME_TYPES:
            return await self._transcribe_image(data)

        raise ValidationError(f"Unsupported MIME type for text extraction: {mime_type}")

    async def _transcribe_image(self, data: bytes) -> str:
        check = await to_thread.run_sync(
            decoders.validate_image, data, self.settings.MAX_IMAGE_PIXELS
        )
        if not check.valid:
            raise ValidationError(check.error or "Invalid image")

        try:
            jpeg = await to_thread.run_sync(
                decoders.normalize_image_to_jpeg, data, self.settings.JPEG_QUALITY
            )
        except decoders.DecodeError as e:
            raise ExtractionError(str(e), ExtractionErrorCode.NO_DATA) from e

        request = GenerationRequest(
            prompt=VISION_TRANSCRIPTION_PROMPT,
            model=self.settings.VISION_MODEL,
            max_tokens=self.settings.VISION_MAX_TOKENS,
            temperature=0.0,
            images=[ImageContent(image_data=jpeg, media_type="image/jpeg")],
        )
        retry = RetryConfig(
            max_retries=self.settings.FULL_MAX_RETRIES,
            initial_delay_ms=self.settings.FULL_INITIAL_DELAY_MS,
            max_delay_ms=self.settings.FULL_MAX_DELAY_MS,
        )
        try:
            response = await self.gateway.generate(request, retry)
        except GatewayError as e:
            raise ExternalServiceError(
                f"Image transcription failed: {e}", "llm", e
            ) from e

        text = response.content.strip()
        if not text or text == NO_READABLE_TEXT_MARKER:
            raise ExtractionError("No readable text found in image", ExtractionErrorCode.NO_DATA)

        logger.info(
            f"Transcribed {check.width}x{check.height} image "
            f"({response.input_tokens} in / {response.output_tokens} out tokens)"
        )
        return text
