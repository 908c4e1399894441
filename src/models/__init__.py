"""
SQLAlchemy Models for Referral Intake.

This module exports all database models for the application.
"""

from src.models.base import Base, PracticeScopedModel, TimeStampedModel, UUIDModel
from src.models.audit import AuditLog
from src.models.patient import Patient, PatientContact
from src.models.referral import ReferralDocument
from src.models.referrer import Referrer

__all__ = [
    "Base",
    "TimeStampedModel",
    "UUIDModel",
    "PracticeScopedModel",
    "AuditLog",
    "Patient",
    "PatientContact",
    "ReferralDocument",
    "Referrer",
]
