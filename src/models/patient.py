"""
Patient and Patient Contact Models.

Patient identity lives only in ``encrypted_data`` (see
src.services.security.encryption); nothing identifying is stored in clear.
"""

from typing import Optional
from uuid import UUID

from sqlalchemy import Enum, ForeignKey, String, Text
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.core.enums import ContactType
from src.models.base import Base, PracticeScopedModel, TimeStampedModel, UUIDModel


class Patient(Base, UUIDModel, PracticeScopedModel, TimeStampedModel):
    __tablename__ = "patients"

    encrypted_data: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="Fernet token over JSON {name, dateOfBirth, medicareNumber, mrn, ...}",
    )

    def __repr__(self) -> str:
        return f"<Patient(id={self.id})>"


class PatientContact(Base, UUIDModel, TimeStampedModel):
    """A clinician attached to a patient: their GP or a referring specialist."""

    __tablename__ = "patient_contacts"

    patient_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("patients.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    type: Mapped[ContactType] = mapped_column(
        Enum(
            ContactType,
            native_enum=False,
            length=16,
            values_callable=lambda e: [member.value for member in e],
        ),
        nullable=False,
    )
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, comment="e.g. specialty")
    organisation: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    fax: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<PatientContact(id={self.id}, type='{self.type}')>"
