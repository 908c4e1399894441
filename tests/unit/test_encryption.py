"""
Unit tests for patient payload encryption.
"""

import pytest

from src.services.security.encryption import (
    DecryptionError,
    PatientCipher,
    create_patient_cipher,
)


@pytest.mark.unit
class TestPatientCipher:
    """Tests for Fernet-backed patient payload encryption."""

    def test_payload_survives_encryption(self, cipher):
        payload = {"name": "Jane Doe", "dateOfBirth": "1975-03-02", "mrn": "MRN-001"}
        token = cipher.encrypt_patient_data(payload)

        assert "Jane Doe" not in token
        assert cipher.decrypt_patient_data(token) == payload

    def test_tokens_are_not_deterministic(self, cipher):
        payload = {"name": "Jane Doe"}
        assert cipher.encrypt_patient_data(payload) != cipher.encrypt_patient_data(payload)

    def test_wrong_key(self, cipher):
        token = cipher.encrypt_patient_data({"name": "Jane Doe"})
        other = PatientCipher(PatientCipher.generate_key())

        with pytest.raises(DecryptionError):
            other.decrypt_patient_data(token)

    def test_tampered_token(self, cipher):
        token = cipher.encrypt_patient_data({"name": "Jane Doe"})
        with pytest.raises(DecryptionError):
            cipher.decrypt_patient_data(token[:-4] + "AAAA")

    def test_non_object_payload(self):
        key = PatientCipher.generate_key()
        cipher = PatientCipher(key)
        token = cipher._fernet.encrypt(b"[1, 2]").decode("ascii")

        with pytest.raises(DecryptionError, match="not an object"):
            cipher.decrypt_patient_data(token)

    def test_ephemeral_key(self):
        cipher = create_patient_cipher()
        assert cipher.decrypt_patient_data(cipher.encrypt_patient_data({"a": 1})) == {"a": 1}
