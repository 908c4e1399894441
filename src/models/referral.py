"""
Referral Document Model.

One row per uploaded referral letter. Three independent status columns:
- status: document lifecycle (UPLOADED -> TEXT_EXTRACTED -> EXTRACTED -> APPLIED, or FAILED)
- fast_extraction_status: phase-1 identifier extraction side-channel
- full_extraction_status: phase-2 structured extraction side-channel
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import DateTime, Enum, ForeignKey, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB, UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.core.enums import ExtractionStatus, ReferralDocumentStatus
from src.models.base import Base, PracticeScopedModel, TimeStampedModel, UUIDModel


def _status_enum(enum_cls):
    return Enum(
        enum_cls,
        native_enum=False,
        length=32,
        values_callable=lambda e: [member.value for member in e],
    )


class ReferralDocument(Base, UUIDModel, PracticeScopedModel, TimeStampedModel):
    """Uploaded referral letter and its extraction state."""

    __tablename__ = "referral_documents"

    user_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        nullable=False,
        index=True,
        comment="Uploading user",
    )
    patient_id: Mapped[Optional[UUID]] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("patients.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="Patient linked on apply",
    )
    consultation_id: Mapped[Optional[UUID]] = mapped_column(
        PG_UUID(as_uuid=True),
        nullable=True,
        index=True,
        comment="Clinical encounter linked on apply",
    )

    # File
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(128), nullable=False)
    size_bytes: Mapped[int] = mapped_column(Integer, nullable=False)
    storage_key: Mapped[str] = mapped_column(
        String(512),
        nullable=False,
        comment="Object key: referrals/{practice}/{YYYY}/{MM}/{id}.{ext}",
    )

    # Lifecycle
    status: Mapped[ReferralDocumentStatus] = mapped_column(
        _status_enum(ReferralDocumentStatus),
        nullable=False,
        default=ReferralDocumentStatus.UPLOADED,
        index=True,
    )
    content_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    extracted_data: Mapped[Optional[dict]] = mapped_column(
        JSONB(none_as_null=True),
        nullable=True,
        comment="Full extraction result",
    )
    processing_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Fast extraction side-channel
    fast_extraction_status: Mapped[ExtractionStatus] = mapped_column(
        _status_enum(ExtractionStatus),
        nullable=False,
        default=ExtractionStatus.PENDING,
    )
    fast_extraction_data: Mapped[Optional[dict]] = mapped_column(
        JSONB(none_as_null=True), nullable=True
    )
    fast_extraction_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    fast_extraction_started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    fast_extraction_completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Full extraction side-channel
    full_extraction_status: Mapped[ExtractionStatus] = mapped_column(
        _status_enum(ExtractionStatus),
        nullable=False,
        default=ExtractionStatus.PENDING,
    )
    full_extraction_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    full_extraction_started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    full_extraction_completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        Index("ix_referral_documents_practice_created", "practice_id", "created_at"),
        Index("ix_referral_documents_practice_status", "practice_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<ReferralDocument(id={self.id}, status='{self.status}')>"
