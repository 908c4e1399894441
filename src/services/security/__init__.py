"""
Security Services.

Provides encryption of patient identity data at rest.
"""

from src.services.security.encryption import (
    DecryptionError,
    PatientCipher,
    create_patient_cipher,
    get_patient_cipher,
)


__all__ = [
    "DecryptionError",
    "PatientCipher",
    "create_patient_cipher",
    "get_patient_cipher",
]
