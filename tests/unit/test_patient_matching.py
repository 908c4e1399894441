"""
Unit tests for patient matching and multi-document conflict detection.
"""

from datetime import datetime, timezone
from uuid import uuid4

import pytest
import pytest_asyncio

from src.core.enums import ConflictType, MatchConfidence, MatchType
from src.schemas.referral import FastExtractedData, FieldConfidence
from src.services.referrals.conflicts import detect_patient_conflicts
from src.services.referrals.matching import (
    PatientIdentity,
    PatientMatcher,
    normalize_medicare,
)


def fast_data(name=None, dob=None, overall=0.9) -> FastExtractedData:
    return FastExtractedData(
        patient_name=FieldConfidence.create(name, 0.9 if name else 0.0),
        date_of_birth=FieldConfidence.create(dob, 0.9 if dob else 0.0),
        mrn=FieldConfidence.create(None, 0.0),
        overall_confidence=overall,
        extracted_at=datetime.now(timezone.utc),
        model_used="test-model",
    )


@pytest.mark.unit
class TestPatientMatcher:
    """Tests for identity resolution against stored patients."""

    @pytest.fixture
    def matcher(self, patient_store, cipher):
        return PatientMatcher(patient_store, cipher)

    @pytest_asyncio.fixture
    async def stored_patient(self, patient_store, cipher, practice_id):
        return await patient_store.create(
            practice_id,
            cipher.encrypt_patient_data(
                {
                    "name": "Jane Doe",
                    "dateOfBirth": "1975-03-02",
                    "medicareNumber": "2123 45670 1",
                    "mrn": "MRN-001",
                }
            ),
        )

    @pytest.mark.asyncio
    async def test_match_by_mrn(self, matcher, stored_patient, practice_id):
        result = await matcher.find_matching_patient(practice_id, PatientIdentity(mrn="MRN-001"))
        assert result.match_type == MatchType.MRN
        assert result.patient_id == stored_patient.id
        assert result.patient_name == "Jane Doe"
        assert result.confidence == MatchConfidence.EXACT

    @pytest.mark.asyncio
    async def test_match_by_medicare_ignores_spacing(self, matcher, stored_patient, practice_id):
        result = await matcher.find_matching_patient(
            practice_id, PatientIdentity(medicare="2123456701")
        )
        assert result.match_type == MatchType.MEDICARE

    @pytest.mark.asyncio
    async def test_match_by_name_and_dob(self, matcher, stored_patient, practice_id):
        result = await matcher.find_matching_patient(
            practice_id, PatientIdentity(full_name="  JANE DOE ", date_of_birth="02/03/1975")
        )
        assert result.match_type == MatchType.NAME_DOB
        assert result.patient_id == stored_patient.id

    @pytest.mark.asyncio
    async def test_name_alone_never_matches(self, matcher, stored_patient, practice_id):
        result = await matcher.find_matching_patient(practice_id, PatientIdentity(full_name="Jane Doe"))
        assert result.match_type == MatchType.NONE
        assert result.patient_id is None
        assert result.confidence == MatchConfidence.NONE

    @pytest.mark.asyncio
    async def test_other_practice_is_invisible(self, matcher, stored_patient):
        result = await matcher.find_matching_patient(uuid4(), PatientIdentity(mrn="MRN-001"))
        assert result.match_type == MatchType.NONE

    @pytest.mark.asyncio
    async def test_undecryptable_patient_is_skipped(
        self, matcher, patient_store, stored_patient, practice_id
    ):
        await patient_store.create(practice_id, "not-a-fernet-token")
        result = await matcher.find_matching_patient(practice_id, PatientIdentity(mrn="MRN-001"))
        assert result.patient_id == stored_patient.id

    @pytest.mark.asyncio
    async def test_mrn_beats_earlier_name_and_dob(self, matcher, patient_store, cipher, practice_id):
        await patient_store.create(
            practice_id,
            cipher.encrypt_patient_data({"name": "John Smith", "dateOfBirth": "1990-05-15"}),
        )
        by_mrn = await patient_store.create(
            practice_id, cipher.encrypt_patient_data({"name": "J. Smith", "mrn": "445566"})
        )

        result = await matcher.find_matching_patient(
            practice_id,
            PatientIdentity(full_name="John Smith", date_of_birth="1990-05-15", mrn="445566"),
        )

        assert result.match_type == MatchType.MRN
        assert result.patient_id == by_mrn.id
        assert result.patient_name == "J. Smith"

    @pytest.mark.asyncio
    async def test_medicare_beats_earlier_name_and_dob(
        self, matcher, patient_store, cipher, practice_id
    ):
        await patient_store.create(
            practice_id,
            cipher.encrypt_patient_data({"name": "John Smith", "dateOfBirth": "1990-05-15"}),
        )
        by_medicare = await patient_store.create(
            practice_id, cipher.encrypt_patient_data({"medicareNumber": "2123 45670 1"})
        )

        result = await matcher.find_matching_patient(
            practice_id,
            PatientIdentity(
                full_name="John Smith", date_of_birth="1990-05-15", medicare="2123456701"
            ),
        )

        assert result.match_type == MatchType.MEDICARE
        assert result.patient_id == by_medicare.id

    @pytest.mark.asyncio
    async def test_same_rule_keeps_first_in_storage_order(
        self, matcher, patient_store, cipher, practice_id
    ):
        first = await patient_store.create(
            practice_id, cipher.encrypt_patient_data({"name": "A", "mrn": "X1"})
        )
        await patient_store.create(practice_id, cipher.encrypt_patient_data({"name": "B", "mrn": "X1"}))
        result = await matcher.find_matching_patient(practice_id, PatientIdentity(mrn="X1"))
        assert result.patient_id == first.id

    def test_normalize_medicare(self):
        assert normalize_medicare(" 2123 4567 01 ") == "2123456701"
        assert normalize_medicare(None) == ""


@pytest.mark.unit
class TestConflictDetection:
    """Tests for cross-document patient conflicts."""

    def test_same_patient_with_title_variation(self):
        result = detect_patient_conflicts(
            [
                fast_data("John Smith", "1990-05-15"),
                fast_data("Mr. John Smith", "15/05/1990"),
            ]
        )
        assert result.has_conflict is False
        assert result.conflict_type is None
        assert result.unique_names == ["john smith"]
        assert result.unique_dobs == ["1990-05-15"]

    def test_values_are_normalised(self):
        result = detect_patient_conflicts(
            [
                fast_data("Mr. John Smith", "15/05/1990"),
                fast_data("JOHN   SMITH", "1990-05-15"),
            ]
        )
        assert result.unique_names == ["john smith"]
        assert result.unique_dobs == ["1990-05-15"]
        assert result.suggested_patient.name == "Mr. John Smith"

    def test_name_conflict(self):
        result = detect_patient_conflicts([fast_data("John Smith"), fast_data("Jane Doe")])
        assert result.has_conflict is True
        assert result.conflict_type == ConflictType.NAME
        assert result.unique_names == ["john smith", "jane doe"]
        assert result.conflict_description == (
            "Documents contain different patient names (john smith, jane doe)"
        )

    def test_dob_conflict(self):
        result = detect_patient_conflicts(
            [fast_data("John Smith", "1990-05-15"), fast_data("John Smith", "1991-05-15")]
        )
        assert result.conflict_type == ConflictType.DOB
        assert result.conflict_description == (
            "Documents contain different dates of birth (1990-05-15, 1991-05-15)"
        )

    def test_both_conflict(self):
        result = detect_patient_conflicts(
            [fast_data("John Smith", "1990-05-15"), fast_data("Jane Doe", "1980-01-01")]
        )
        assert result.conflict_type == ConflictType.BOTH
        assert " and " in result.conflict_description

    def test_pending_documents_are_skipped(self):
        result = detect_patient_conflicts([None, fast_data("John Smith"), None])
        assert result.has_conflict is False
        assert result.unique_names == ["john smith"]

    def test_empty_input(self):
        result = detect_patient_conflicts([])
        assert result.has_conflict is False
        assert result.suggested_patient is None

    def test_suggested_patient_is_most_confident(self):
        result = detect_patient_conflicts(
            [fast_data("John Smith", overall=0.6), fast_data("Jane Doe", overall=0.95)]
        )
        assert result.suggested_patient.name == "Jane Doe"
        assert result.suggested_patient.confidence == pytest.approx(0.95)
