"""
Patient Data Encryption Service.

Patient identity fields (name, date of birth, Medicare number, MRN, contact
details) are stored as a single encrypted JSON payload per patient row.
Tokens are Fernet (AES-128-CBC + HMAC-SHA256) from the cryptography package.

Because every field sits inside the token, identity lookups have to decrypt
each candidate; there is deliberately no searchable hash of the plaintext.
"""

import json
from typing import Any, Optional

from cryptography.fernet import Fernet, InvalidToken

from src.utils.logging import get_logger

logger = get_logger(__name__)


class DecryptionError(Exception):
    """Raised when a stored token cannot be decrypted or decoded."""

    pass


class PatientCipher:
    """Encrypts and decrypts patient payloads."""

    def __init__(self, key: str | bytes | None = None):
        """
        Args:
            key: URL-safe base64 Fernet key. A random key is generated when
                omitted (testing only; data will not survive a restart).
        """
        if key is None:
            logger.warning("No patient encryption key configured, using an ephemeral key")
            key = Fernet.generate_key()
        if isinstance(key, str):
            key = key.encode()
        self._fernet = Fernet(key)

    def encrypt_patient_data(self, data: dict[str, Any]) -> str:
        """Serialize ``data`` to JSON and encrypt it."""
        payload = json.dumps(data, separators=(",", ":"), default=str).encode("utf-8")
        return self._fernet.encrypt(payload).decode("ascii")

    def decrypt_patient_data(self, token: str) -> dict[str, Any]:
        """
        Decrypt a token produced by ``encrypt_patient_data``.

        Raises:
            DecryptionError: wrong key, tampered token, or non-object payload.
        """
        try:
            payload = self._fernet.decrypt(token.encode("ascii"))
            data = json.loads(payload)
        except (InvalidToken, ValueError, UnicodeError) as e:
            raise DecryptionError(f"Could not decrypt patient data: {e}") from e

        if not isinstance(data, dict):
            raise DecryptionError("Decrypted patient data is not an object")
        return data

    @staticmethod
    def generate_key() -> str:
        """Generate a new Fernet key for configuration."""
        return Fernet.generate_key().decode("ascii")


# =============================================================================
# Factory Functions
# =============================================================================


_patient_cipher: Optional[PatientCipher] = None


def get_patient_cipher(key: str | bytes | None = None) -> PatientCipher:
    """Get singleton PatientCipher instance."""
    global _patient_cipher
    if _patient_cipher is None:
        _patient_cipher = PatientCipher(key)
    return _patient_cipher


def create_patient_cipher(key: str | bytes | None = None) -> PatientCipher:
    """Create new PatientCipher instance."""
    return PatientCipher(key)
