"""
Referral Intake API Endpoints.

Provides:
- Document creation with presigned upload URLs (single and batch)
- Upload confirmation, retrieval, listing and deletion
- Text, fast and full extraction, with retries
- Apply-to-consultation
- Status polling and multi-document conflict checks

Every operation is scoped to the caller's practice. Pipeline errors are
rendered by the handler registered in ``src.api.main``.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status

from src.api.deps import (
    RequestContext,
    get_apply_service,
    get_document_service,
    get_fast_extraction_service,
    get_full_extraction_service,
    get_request_context,
    get_text_extraction_service,
)
from src.core.enums import ReferralDocumentStatus
from src.schemas.referral import (
    ApplyReferralInput,
    ApplyReferralResult,
    ConfirmUploadRequest,
    ConflictCheckRequest,
    FastExtractionResult,
    PatientConflictResult,
    ReferralBatchCreate,
    ReferralBatchCreateResponse,
    ReferralCreate,
    ReferralCreateResponse,
    ReferralDocumentResponse,
    ReferralListQuery,
    ReferralListResponse,
    ReferralStatusResponse,
    StructuredExtractionResult,
    TextExtractionResult,
)
from src.services.referrals.apply import ApplyService
from src.services.referrals.documents import ReferralDocumentService
from src.services.referrals.fast_extraction import FastExtractionService
from src.services.referrals.full_extraction import FullExtractionService
from src.services.referrals.text_extraction import TextExtractionService
from src.utils.errors import InvalidIdentifierError
from src.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(
    prefix="/api/v1/referrals",
    tags=["referrals"],
)


def parse_document_id(document_id: str) -> UUID:
    """Path id as UUID; 400 rather than FastAPI's 422 for a malformed id."""
    try:
        return UUID(document_id)
    except ValueError as err:
        raise InvalidIdentifierError() from err


# =============================================================================
# Documents
# =============================================================================


@router.post(
    "/",
    response_model=ReferralCreateResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_referral(
    body: ReferralCreate,
    ctx: RequestContext = Depends(get_request_context),
    service: ReferralDocumentService = Depends(get_document_service),
) -> ReferralCreateResponse:
    """
    Create a referral document and return a presigned upload URL.

    The client PUTs the file to ``upload_url`` and then calls ``/confirm``.
    """
    return await service.create_document(ctx.user_id, ctx.practice_id, body)


@router.post(
    "/batch",
    response_model=ReferralBatchCreateResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_referral_batch(
    body: ReferralBatchCreate,
    ctx: RequestContext = Depends(get_request_context),
    service: ReferralDocumentService = Depends(get_document_service),
) -> ReferralBatchCreateResponse:
    documents = await service.create_batch(ctx.user_id, ctx.practice_id, body)
    return ReferralBatchCreateResponse(documents=documents)


@router.get("/", response_model=ReferralListResponse)
async def list_referrals(
    page: int = Query(1, ge=1, description="Page number"),
    limit: int = Query(20, ge=1, description="Items per page (capped at 100)"),
    status_filter: Optional[ReferralDocumentStatus] = Query(None, alias="status"),
    patient_id: Optional[UUID] = Query(None),
    consultation_id: Optional[UUID] = Query(None),
    ctx: RequestContext = Depends(get_request_context),
    service: ReferralDocumentService = Depends(get_document_service),
) -> ReferralListResponse:
    """List the practice's referral documents, newest first."""
    query = ReferralListQuery(
        status=status_filter,
        patient_id=patient_id,
        consultation_id=consultation_id,
        page=page,
        limit=limit,
    )
    return await service.list_documents(ctx.practice_id, query)


@router.post("/conflicts", response_model=PatientConflictResult)
async def check_conflicts(
    body: ConflictCheckRequest,
    ctx: RequestContext = Depends(get_request_context),
    service: ReferralDocumentService = Depends(get_document_service),
) -> PatientConflictResult:
    """Compare fast-extracted patient identities across documents."""
    return await service.detect_conflicts(ctx.practice_id, body.document_ids)


@router.get("/{document_id}", response_model=ReferralDocumentResponse)
async def get_referral(
    document_id: UUID = Depends(parse_document_id),
    ctx: RequestContext = Depends(get_request_context),
    service: ReferralDocumentService = Depends(get_document_service),
) -> ReferralDocumentResponse:
    return await service.get_document(ctx.practice_id, document_id)


@router.delete("/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_referral(
    document_id: UUID = Depends(parse_document_id),
    ctx: RequestContext = Depends(get_request_context),
    service: ReferralDocumentService = Depends(get_document_service),
) -> Response:
    await service.delete_document(ctx.user_id, ctx.practice_id, document_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{document_id}/confirm", response_model=ReferralDocumentResponse)
async def confirm_referral_upload(
    body: ConfirmUploadRequest,
    document_id: UUID = Depends(parse_document_id),
    ctx: RequestContext = Depends(get_request_context),
    service: ReferralDocumentService = Depends(get_document_service),
) -> ReferralDocumentResponse:
    return await service.confirm_upload(ctx.user_id, ctx.practice_id, document_id, body.size_bytes)


@router.get("/{document_id}/status", response_model=ReferralStatusResponse)
async def get_referral_status(
    document_id: UUID = Depends(parse_document_id),
    ctx: RequestContext = Depends(get_request_context),
    service: ReferralDocumentService = Depends(get_document_service),
) -> ReferralStatusResponse:
    """Poll lifecycle, fast and full extraction status in one call."""
    return await service.get_status(ctx.practice_id, document_id)


# =============================================================================
# Extraction
# =============================================================================


@router.post("/{document_id}/extract-text", response_model=TextExtractionResult)
async def extract_referral_text(
    document_id: UUID = Depends(parse_document_id),
    ctx: RequestContext = Depends(get_request_context),
    service: TextExtractionService = Depends(get_text_extraction_service),
) -> TextExtractionResult:
    return await service.extract_text(ctx.user_id, ctx.practice_id, document_id)


@router.post("/{document_id}/extract-fast", response_model=FastExtractionResult)
async def extract_referral_fast(
    document_id: UUID = Depends(parse_document_id),
    ctx: RequestContext = Depends(get_request_context),
    service: FastExtractionService = Depends(get_fast_extraction_service),
) -> FastExtractionResult:
    """
    Extract patient name, DOB and MRN.

    Always 200 once the document is found: the ``status`` field reports
    COMPLETE, FAILED, or PROCESSING when another request holds the lock.
    """
    result = await service.extract(ctx.user_id, ctx.practice_id, document_id)
    logger.bind(document_id=str(document_id), action="extract_fast").info(
        f"Fast extraction finished with status {result.status.value}"
    )
    return result


@router.post("/{document_id}/retry-fast", response_model=FastExtractionResult)
async def retry_referral_fast(
    document_id: UUID = Depends(parse_document_id),
    ctx: RequestContext = Depends(get_request_context),
    service: FastExtractionService = Depends(get_fast_extraction_service),
) -> FastExtractionResult:
    return await service.retry(ctx.user_id, ctx.practice_id, document_id)


@router.post("/{document_id}/extract-structured", response_model=StructuredExtractionResult)
async def extract_referral_structured(
    document_id: UUID = Depends(parse_document_id),
    ctx: RequestContext = Depends(get_request_context),
    service: FullExtractionService = Depends(get_full_extraction_service),
) -> StructuredExtractionResult:
    return await service.extract(ctx.user_id, ctx.practice_id, document_id)


@router.post("/{document_id}/retry-structured", response_model=StructuredExtractionResult)
async def retry_referral_structured(
    document_id: UUID = Depends(parse_document_id),
    high_accuracy: bool = Query(False, description="Use the higher-accuracy model"),
    ctx: RequestContext = Depends(get_request_context),
    service: FullExtractionService = Depends(get_full_extraction_service),
) -> StructuredExtractionResult:
    """Discard the previous result and extract again."""
    return await service.reextract(
        ctx.user_id, ctx.practice_id, document_id, high_accuracy=high_accuracy
    )


# =============================================================================
# Apply
# =============================================================================


@router.post("/{document_id}/apply", response_model=ApplyReferralResult)
async def apply_referral(
    body: ApplyReferralInput,
    document_id: UUID = Depends(parse_document_id),
    ctx: RequestContext = Depends(get_request_context),
    service: ApplyService = Depends(get_apply_service),
) -> ApplyReferralResult:
    """Link the reviewed referral to a (matched or new) patient and consultation."""
    return await service.apply(ctx.user_id, ctx.practice_id, document_id, body)
