"""
Referrer Model.

Practice-level directory of referring doctors, deduplicated by
case-insensitive name when a referral is applied.
"""

from typing import Optional

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base, PracticeScopedModel, TimeStampedModel, UUIDModel


class Referrer(Base, UUIDModel, PracticeScopedModel, TimeStampedModel):
    __tablename__ = "referrers"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    practice_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    fax: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<Referrer(id={self.id}, name='{self.name}')>"
