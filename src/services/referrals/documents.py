"""
Referral Document Service.

Upload-side operations and read views for referral documents:
- create_document / create_batch: validate, persist UPLOADED, sign upload URL
- confirm_upload: record the confirmed size once the client has uploaded
- get_document / list_documents / get_status: practice-scoped reads
- delete_document: blocked once APPLIED
- detect_conflicts: compare fast-extraction identities across documents
"""

from typing import Optional
from uuid import UUID, uuid4

from src.core.config import ReferralSettings, get_referral_settings
from src.core.enums import AuditAction, ExtractionStatus, ReferralDocumentStatus
from src.models.referral import ReferralDocument
from src.schemas.referral import (
    PatientConflictResult,
    ReferralBatchCreate,
    ReferralCreate,
    ReferralCreateResponse,
    ReferralDocumentResponse,
    ReferralListQuery,
    ReferralListResponse,
    ReferralStatusResponse,
)
from src.services.referrals.audit import AuditSink
from src.services.referrals.conflicts import detect_patient_conflicts
from src.services.referrals.errors import (
    ExternalServiceError,
    NotFoundError,
    StateError,
    ValidationError,
)
from src.services.referrals.fast_extraction import load_fast_extraction_data
from src.services.referrals.full_extraction import load_extracted_data
from src.services.referrals.repository import ReferralDocumentStore
from src.services.referrals.state_machine import can_delete, has_extracted_data_status
from src.services.referrals.uploads import (
    allowed_mime_types,
    build_storage_key,
    is_allowed_mime_type,
    is_file_size_valid,
)
from src.services.storage import DocumentStorage
from src.utils.logging import get_logger

logger = get_logger(__name__)

MAX_PAGE_SIZE = 100


class ReferralDocumentService:
    def __init__(
        self,
        documents: ReferralDocumentStore,
        storage: DocumentStorage,
        audit: AuditSink,
        settings: Optional[ReferralSettings] = None,
    ):
        self.documents = documents
        self.storage = storage
        self.audit = audit
        self.settings = settings or get_referral_settings()

    # =========================================================================
    # Upload
    # =========================================================================

    def validate_upload(self, upload: ReferralCreate) -> None:
        """
        Raises:
            ValidationError: MIME type not allowed or size out of range
        """
        if not is_allowed_mime_type(upload.mime_type, self.settings):
            raise ValidationError(
                f"Invalid file type. Allowed types: {', '.join(allowed_mime_types(self.settings))}"
            )
        if not is_file_size_valid(upload.size_bytes, self.settings):
            max_mb = self.settings.MAX_FILE_SIZE_BYTES // (1024 * 1024)
            raise ValidationError(f"File size must be between 0 and {max_mb}MB")

    async def create_document(
        self,
        user_id: UUID,
        practice_id: UUID,
        upload: ReferralCreate,
    ) -> ReferralCreateResponse:
        """Persist an UPLOADED document and return a presigned upload URL."""
        self.validate_upload(upload)

        document_id = uuid4()
        storage_key = build_storage_key(practice_id, document_id, upload.mime_type)

        document = await self.documents.create(
            id=document_id,
            user_id=user_id,
            practice_id=practice_id,
            filename=upload.filename,
            mime_type=upload.mime_type,
            size_bytes=upload.size_bytes,
            storage_key=storage_key,
            status=ReferralDocumentStatus.UPLOADED,
            fast_extraction_status=ExtractionStatus.PENDING,
            full_extraction_status=ExtractionStatus.PENDING,
        )
        logger.bind(
            document_id=str(document.id), practice_id=str(practice_id), action="create"
        ).info("Referral document created")

        upload_url, expires_at = await self.storage.sign_upload(storage_key, upload.mime_type)

        await self.audit.record(
            user_id,
            practice_id,
            AuditAction.REFERRAL_CREATE,
            document.id,
            {
                "filename": upload.filename,
                "mime_type": upload.mime_type,
                "size_bytes": upload.size_bytes,
            },
        )
        return ReferralCreateResponse(id=document.id, upload_url=upload_url, expires_at=expires_at)

    async def create_batch(
        self,
        user_id: UUID,
        practice_id: UUID,
        batch: ReferralBatchCreate,
    ) -> list[ReferralCreateResponse]:
        """Create several documents. Every file is validated before any is created."""
        if len(batch.files) > self.settings.MAX_BATCH_FILES:
            raise ValidationError(
                f"Too many files: at most {self.settings.MAX_BATCH_FILES} per batch"
            )
        for index, upload in enumerate(batch.files):
            try:
                self.validate_upload(upload)
            except ValidationError as e:
                raise ValidationError(f"{upload.filename} (file {index + 1}): {e.message}") from e

        return [await self.create_document(user_id, practice_id, upload) for upload in batch.files]

    async def confirm_upload(
        self,
        user_id: UUID,
        practice_id: UUID,
        document_id: UUID,
        size_bytes: int,
    ) -> ReferralDocumentResponse:
        document = await self._get_scoped(document_id, practice_id)
        if document.status != ReferralDocumentStatus.UPLOADED:
            raise StateError(
                "Referral document has already been processed",
                current_status=document.status.value,
                expected_status=ReferralDocumentStatus.UPLOADED.value,
            )
        if not is_file_size_valid(size_bytes, self.settings):
            max_mb = self.settings.MAX_FILE_SIZE_BYTES // (1024 * 1024)
            raise ValidationError(f"File size must be between 0 and {max_mb}MB")

        document = await self.documents.update(document_id, {"size_bytes": size_bytes})
        logger.bind(document_id=str(document_id), action="confirm_upload").info(
            f"Referral upload confirmed ({size_bytes} bytes)"
        )

        await self.audit.record(
            user_id,
            practice_id,
            AuditAction.REFERRAL_UPLOAD_CONFIRM,
            document_id,
            {"size_bytes": size_bytes},
        )
        return await self._with_download_url(document)

    # =========================================================================
    # Reads
    # =========================================================================

    async def _get_scoped(self, document_id: UUID, practice_id: UUID) -> ReferralDocument:
        document = await self.documents.get(document_id, practice_id)
        if document is None:
            raise NotFoundError()
        return document

    async def _with_download_url(self, document: ReferralDocument) -> ReferralDocumentResponse:
        response = ReferralDocumentResponse.model_validate(document)
        if document.storage_key:
            response.download_url = await self.storage.sign_download(document.storage_key)
        return response

    async def get_document(self, practice_id: UUID, document_id: UUID) -> ReferralDocumentResponse:
        document = await self._get_scoped(document_id, practice_id)
        return await self._with_download_url(document)

    async def list_documents(
        self,
        practice_id: UUID,
        query: ReferralListQuery,
    ) -> ReferralListResponse:
        """Newest first; ``limit`` is capped at 100."""
        page = query.page
        limit = min(query.limit, MAX_PAGE_SIZE)
        offset = (page - 1) * limit

        documents, total = await self.documents.list(
            practice_id,
            status=query.status,
            patient_id=query.patient_id,
            consultation_id=query.consultation_id,
            offset=offset,
            limit=limit,
        )
        return ReferralListResponse(
            documents=[await self._with_download_url(d) for d in documents],
            total=total,
            page=page,
            limit=limit,
            has_more=offset + len(documents) < total,
        )

    async def get_status(self, practice_id: UUID, document_id: UUID) -> ReferralStatusResponse:
        """Polling view across the lifecycle and both extraction side-channels."""
        document = await self._get_scoped(document_id, practice_id)
        extracted_data = load_extracted_data(document.extracted_data)
        # FAILED keeps the result of an earlier successful extraction
        if extracted_data is not None and not (
            has_extracted_data_status(document.status)
            or document.status == ReferralDocumentStatus.FAILED
        ):
            logger.bind(document_id=str(document.id)).warning(
                f"Ignoring extracted data stored at status {document.status.value}"
            )
            extracted_data = None

        return ReferralStatusResponse(
            document_id=document.id,
            filename=document.filename,
            status=document.status,
            fast_extraction_status=document.fast_extraction_status,
            fast_extraction_data=load_fast_extraction_data(document.fast_extraction_data),
            fast_extraction_error=document.fast_extraction_error,
            full_extraction_status=document.full_extraction_status,
            full_extraction_error=document.full_extraction_error,
            extracted_data=extracted_data,
            processing_error=document.processing_error,
        )

    async def detect_conflicts(
        self,
        practice_id: UUID,
        document_ids: list[UUID],
    ) -> PatientConflictResult:
        """
        Compare fast-extraction identities of the given documents.

        Documents whose fast extraction is not COMPLETE count as pending.
        """
        documents = await self.documents.get_many(document_ids, practice_id)
        by_id = {d.id: d for d in documents}
        missing = [str(i) for i in document_ids if i not in by_id]
        if missing:
            raise NotFoundError(f"Referral document not found: {', '.join(missing)}")

        extractions = []
        for document_id in document_ids:
            document = by_id[document_id]
            if document.fast_extraction_status == ExtractionStatus.COMPLETE:
                extractions.append(load_fast_extraction_data(document.fast_extraction_data))
            else:
                extractions.append(None)
        return detect_patient_conflicts(extractions)

    # =========================================================================
    # Delete
    # =========================================================================

    async def delete_document(self, user_id: UUID, practice_id: UUID, document_id: UUID) -> None:
        """
        Delete a document and its stored object.

        A storage failure is logged and does not stop the row deletion.
        """
        log = logger.bind(
            document_id=str(document_id), practice_id=str(practice_id), action="delete"
        )
        document = await self._get_scoped(document_id, practice_id)

        if not can_delete(document.status):
            raise StateError(
                "Cannot delete a referral document that has been applied to a consultation",
                current_status=document.status.value,
            )

        if document.storage_key:
            try:
                await self.storage.delete(document.storage_key)
            except ExternalServiceError as e:
                log.error(f"Failed to delete stored object {document.storage_key}: {e.message}")

        filename, status = document.filename, document.status
        await self.documents.delete(document_id)
        log.info("Referral document deleted")

        await self.audit.record(
            user_id,
            practice_id,
            AuditAction.REFERRAL_DELETE,
            document_id,
            {"filename": filename, "status": status.value},
        )
