"""
Unit tests for model-output parsing and confidence scoring.
"""

import pytest

from src.core.enums import ConfidenceLevel, ExtractionErrorCode, Sex, Urgency
from src.services.referrals.errors import ExtractionError, ParseError
from src.services.referrals.extractors import (
    build_fast_extraction_prompt,
    build_full_extraction_prompt,
    get_fast_extraction_summary,
    get_low_confidence_sections,
    has_fast_extraction_data,
    has_low_confidence,
    has_minimum_fast_extraction_data,
    parse_fast_extraction,
    parse_referral_extraction,
)
from src.services.referrals.parsing import (
    coerce_confidence,
    coerce_sex,
    coerce_string_list,
    coerce_urgency,
    load_json_object,
    normalize_date,
    normalize_patient_name,
    strip_code_fences,
    weighted_confidence,
)


@pytest.mark.unit
class TestJsonLoading:
    """Tests for pulling a JSON object out of a model reply."""

    def test_strips_json_fence(self):
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_strips_bare_fence(self):
        assert strip_code_fences('```\n{"a": 1}\n```') == '{"a": 1}'

    def test_loads_object_surrounded_by_commentary(self):
        """Models sometimes wrap the JSON in prose."""
        data = load_json_object('Here you go:\n{"name": "Jane"}\nHope that helps.')
        assert data == {"name": "Jane"}

    def test_no_json_raises_parse_error(self):
        with pytest.raises(ParseError) as exc_info:
            load_json_object("I could not find anything")
        assert exc_info.value.code == ExtractionErrorCode.PARSE_ERROR

    def test_broken_json_raises_parse_error(self):
        with pytest.raises(ParseError):
            load_json_object('{"name": "Jane",')

    def test_array_raises_shape_error_with_given_code(self):
        with pytest.raises(ExtractionError) as exc_info:
            load_json_object("[1, 2, 3]", ExtractionErrorCode.SCHEMA_ERROR)
        assert exc_info.value.code == ExtractionErrorCode.SCHEMA_ERROR
        assert not isinstance(exc_info.value, ParseError)


@pytest.mark.unit
class TestCoercion:
    """Tests for scalar coercion helpers."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            (0.5, 0.5),
            (1.7, 1.0),
            (-0.2, 0.0),
            (1, 1.0),
            (0, 0.0),
            (10**400, 1.0),
            (-(10**400), 0.0),
            ("0.9", 0.0),
            (None, 0.0),
            (True, 0.0),
            (float("nan"), 0.0),
        ],
    )
    def test_coerce_confidence(self, value, expected):
        assert coerce_confidence(value) == expected

    def test_coerce_sex(self):
        assert coerce_sex("Male") == Sex.MALE
        assert coerce_sex("f") == Sex.FEMALE
        assert coerce_sex("other") == Sex.OTHER
        assert coerce_sex("unknown") is None
        assert coerce_sex(1) is None

    def test_coerce_urgency(self):
        assert coerce_urgency(" URGENT ") == Urgency.URGENT
        assert coerce_urgency("soon") is None

    def test_coerce_string_list_drops_blanks(self):
        assert coerce_string_list(["Asthma", " ", None, "Diabetes "]) == ["Asthma", "Diabetes"]
        assert coerce_string_list([" "]) is None
        assert coerce_string_list("Asthma") is None

    def test_weighted_confidence(self):
        assert weighted_confidence([]) == 0.0
        assert weighted_confidence([(0.9, 0.4)]) == pytest.approx(0.9)
        assert weighted_confidence([(1.0, 2.0), (0.4, 1.0)]) == pytest.approx(0.8)


@pytest.mark.unit
class TestNormalisation:
    """Tests for date and name normalisation."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("1990-05-15", "1990-05-15"),
            ("15/05/1990", "1990-05-15"),
            ("5/6/1990", "1990-06-05"),
            ("15-05-1990", "1990-05-15"),
            ("15.05.1990", "1990-05-15"),
            ("15 May 1990", "1990-05-15"),
            ("May 15, 1990", "1990-05-15"),
        ],
    )
    def test_normalize_date(self, value, expected):
        assert normalize_date(value) == expected

    @pytest.mark.parametrize("value", [None, "", "not a date", "1990"])
    def test_normalize_date_unusable(self, value):
        assert normalize_date(value) is None

    @pytest.mark.parametrize(
        "value",
        [
            "1990-05-15",
            "15/05/1990",
            "5/6/1990",
            "15-05-1990",
            "15.05.1990",
            "15 May 1990",
            "May 15, 1990",
            "  1990-05-15  ",
            None,
            "",
            "not a date",
            "1990",
            "31/02/1990",
        ],
    )
    def test_normalize_date_is_idempotent(self, value):
        once = normalize_date(value)
        assert normalize_date(once) == once

    def test_normalize_patient_name(self):
        assert normalize_patient_name("Mr. John Smith Jr") == "john smith"
        assert normalize_patient_name("  JOHN   SMITH ") == "john smith"
        assert normalize_patient_name("Dr Jane Doe") == "jane doe"
        assert normalize_patient_name(None) == ""


@pytest.mark.unit
class TestFastExtractionParsing:
    """Tests for the phase-1 (name, DOB, MRN) parser."""

    def test_fully_labelled_letter(self):
        raw = (
            '{"name": "Mr. John Smith", "nameConfidence": 0.95, '
            '"dob": "15/05/1990", "dobConfidence": 0.9, '
            '"mrn": "445566", "mrnConfidence": 0.92}'
        )
        data = parse_fast_extraction(raw, "fast-model", 850)

        assert data.patient_name.value == "Mr. John Smith"
        assert data.patient_name.level == ConfidenceLevel.HIGH
        assert data.date_of_birth.value == "1990-05-15"
        assert data.mrn.value == "445566"
        assert data.model_used == "fast-model"
        assert data.processing_time_ms == 850
        assert has_minimum_fast_extraction_data(data) is True
        expected = 0.95 * 0.40 + 0.9 * 0.35 + 0.92 * 0.25
        assert data.overall_confidence == pytest.approx(expected)

    def test_no_fields_scores_zero(self):
        data = parse_fast_extraction('{"name": null, "dob": null, "mrn": null}', "m", 10)
        assert data.overall_confidence == 0.0
        assert has_fast_extraction_data(data) is False
        assert get_fast_extraction_summary(data) == "No patient identifiers extracted"

    def test_name_only_scores_its_own_confidence(self):
        """Absent fields do not drag the overall score down."""
        data = parse_fast_extraction('{"name": "Jane Doe", "nameConfidence": 0.9}', "m", 10)
        assert data.overall_confidence == pytest.approx(0.9)
        assert data.date_of_birth.value is None
        assert data.date_of_birth.level == ConfidenceLevel.LOW

    def test_medium_level_boundary(self):
        data = parse_fast_extraction('{"mrn": "A1", "mrnConfidence": 0.7}', "m", 10)
        assert data.mrn.level == ConfidenceLevel.MEDIUM
        assert has_minimum_fast_extraction_data(data) is False

    def test_unparseable_dob_is_dropped(self):
        data = parse_fast_extraction('{"dob": "sometime in spring", "dobConfidence": 0.8}', "m", 10)
        assert data.date_of_birth.value is None
        assert data.overall_confidence == 0.0

    def test_negative_processing_time_clamped(self):
        data = parse_fast_extraction("{}", "m", -5)
        assert data.processing_time_ms == 0

    def test_non_object_is_validation_error(self):
        with pytest.raises(ExtractionError) as exc_info:
            parse_fast_extraction('"just a string"', "m", 10)
        assert exc_info.value.code == ExtractionErrorCode.VALIDATION_ERROR

    def test_summary_lists_found_fields(self):
        data = parse_fast_extraction(
            '{"name": "Jane Doe", "nameConfidence": 0.9, "mrn": "77", "mrnConfidence": 0.9}',
            "m",
            10,
        )
        assert get_fast_extraction_summary(data) == "Name: Jane Doe, MRN: 77"


@pytest.mark.unit
class TestFullExtractionParsing:
    """Tests for the phase-2 structured parser."""

    FULL_REPLY = """```json
{
  "patient": {"fullName": "Jane Doe", "dateOfBirth": "02/03/1975", "sex": "F",
              "medicare": "2123 45670 1", "mrn": null, "confidence": 0.9},
  "gp": {"fullName": "Dr Alan Grant", "practiceName": "Harbour Medical",
         "phone": "02 9999 0000", "confidence": 0.8},
  "referrer": null,
  "referralContext": {"reasonForReferral": "Chest pain on exertion.",
                      "keyProblems": ["Angina", " "], "urgency": "Urgent",
                      "referralDate": "10 January 2026", "confidence": 0.7}
}
```"""

    def test_parses_sections(self):
        data = parse_referral_extraction(self.FULL_REPLY, "full-model")

        assert data.patient.full_name == "Jane Doe"
        assert data.patient.date_of_birth == "1975-03-02"
        assert data.patient.sex == Sex.FEMALE
        assert data.gp.practice_name == "Harbour Medical"
        assert data.referrer is None
        assert data.referral_context.key_problems == ["Angina"]
        assert data.referral_context.urgency == Urgency.URGENT
        assert data.referral_context.referral_date == "2026-01-10"
        assert data.model_used == "full-model"

    def test_overall_confidence_weights_patient_double(self):
        data = parse_referral_extraction(self.FULL_REPLY, "full-model")
        expected = (0.9 * 2.0 + 0.8 * 1.0 + 0.7 * 1.0) / 4.0
        assert data.overall_confidence == pytest.approx(expected)

    def test_missing_sections_do_not_contribute(self):
        data = parse_referral_extraction('{"patient": {"fullName": "A B", "confidence": 0.6}}', "m")
        assert data.overall_confidence == pytest.approx(0.6)
        assert data.gp.confidence == 0.0
        assert data.referral_context.key_problems is None

    def test_referrer_section_included(self):
        reply = (
            '{"patient": {"confidence": 1.0}, '
            '"referrer": {"fullName": "Dr Ellie Sattler", "specialty": "Cardiology", "confidence": 0.5}}'
        )
        data = parse_referral_extraction(reply, "m")
        assert data.referrer is not None
        assert data.referrer.specialty == "Cardiology"
        assert data.overall_confidence == pytest.approx((2.0 + 0.5) / 3.0)
        assert "referrer" in get_low_confidence_sections(data)

    def test_oversized_integer_confidence_is_clamped(self):
        reply = '{"patient": {"fullName": "A B", "confidence": ' + "9" * 400 + "}}"
        data = parse_referral_extraction(reply, "m")
        assert data.patient.confidence == 1.0
        assert data.overall_confidence == pytest.approx(1.0)

    def test_non_object_is_schema_error(self):
        with pytest.raises(ExtractionError) as exc_info:
            parse_referral_extraction("[]", "m")
        assert exc_info.value.code == ExtractionErrorCode.SCHEMA_ERROR

    def test_low_confidence_helpers(self):
        data = parse_referral_extraction('{"patient": {"confidence": 0.2}}', "m")
        assert has_low_confidence(data) is True
        assert get_low_confidence_sections(data) == ["patient", "gp", "referralContext"]


@pytest.mark.unit
class TestPrompts:
    """Tests for prompt assembly."""

    def test_fast_prompt_appends_document(self):
        prompt = build_fast_extraction_prompt("Patient: Jane Doe")
        assert prompt.endswith("DOCUMENT:\nPatient: Jane Doe")

    def test_full_prompt_appends_letter(self):
        prompt = build_full_extraction_prompt("Dear Doctor")
        assert "referralContext" in prompt
        assert prompt.endswith("REFERRAL LETTER TEXT:\nDear Doctor")
