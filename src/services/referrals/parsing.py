"""
Model Output Decoding Helpers.

LLM output is untrusted input. Everything here either coerces a raw value
into a bounded, typed one or returns a documented fallback:
- JSON recovery from fenced or chatty responses
- scalar, list and enum coercion
- confidence clamping and weighted averaging
- date and patient-name normalisation
"""

import json
import math
import re
from datetime import datetime
from typing import Any, Iterable, Optional

from src.core.enums import ExtractionErrorCode, Sex, Urgency
from src.services.referrals.errors import ExtractionError, ParseError

_FENCE_OPEN = re.compile(r"^```(?:json)?\s*\n?", re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"\n?\s*```$")
_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_DAY_FIRST_DATE = re.compile(r"^(\d{1,2})([/.\-])(\d{1,2})\2(\d{4})$")

# Day-first only; month-first numeric dates are never guessed
_DATE_FORMATS = [
    "%d %b %Y",  # 15 May 1990
    "%d %B %Y",  # 15 May 1990
    "%d %b, %Y",
    "%d %B, %Y",
    "%b %d, %Y",  # May 15, 1990
    "%B %d, %Y",
    "%b %d %Y",
    "%B %d %Y",
    "%Y/%m/%d",
    "%Y.%m.%d",
    "%Y%m%d",
]

_NAME_PREFIX = re.compile(r"^(?:mr|mrs|ms|miss|dr|prof)\.?\s+")
_NAME_SUFFIX = re.compile(r",?\s+(?:jr|sr)\.?$|,?\s+(?:i{1,3}|iv|v|vi{1,3}|ix|x)$")
_WHITESPACE = re.compile(r"\s+")


# =============================================================================
# JSON Recovery
# =============================================================================


def strip_code_fences(text: str) -> str:
    """Remove a leading ```json / ``` fence and its closing fence."""
    cleaned = text.strip()
    cleaned = _FENCE_OPEN.sub("", cleaned)
    cleaned = _FENCE_CLOSE.sub("", cleaned)
    return cleaned.strip()


def load_json_object(
    text: str,
    shape_error_code: ExtractionErrorCode = ExtractionErrorCode.VALIDATION_ERROR,
) -> dict[str, Any]:
    """
    Decode the first JSON object in a model response.

    Tries the fence-stripped text directly, then the outermost ``{...}`` span
    (models sometimes add commentary around the JSON).

    Raises:
        ParseError: no decodable JSON.
        ExtractionError: JSON decoded but is not an object; carries
            ``shape_error_code``.
    """
    cleaned = strip_code_fences(text or "")

    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        match = _JSON_OBJECT.search(cleaned)
        if not match:
            raise ParseError("No valid JSON found in response")
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError:
            raise ParseError("Failed to parse extracted JSON")

    if not isinstance(data, dict):
        raise ExtractionError("Response is not a valid JSON object", shape_error_code)

    return data


# =============================================================================
# Scalar Coercion
# =============================================================================


def coerce_string(value: Any) -> Optional[str]:
    """Trimmed string, or None for null, blank or container values."""
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    return text or None


def coerce_string_list(value: Any) -> Optional[list[str]]:
    """Non-empty trimmed strings from a list; None when nothing survives."""
    if not isinstance(value, list):
        return None
    items = [s for s in (coerce_string(v) for v in value) if s]
    return items or None


def coerce_confidence(value: Any) -> float:
    """Clamp a numeric confidence into [0, 1]; anything non-numeric is 0."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    # JSON integers are unbounded and may not fit in a float
    if isinstance(value, int):
        return clamp_confidence(float(max(0, min(1, value))))
    if math.isnan(value):
        return 0.0
    return clamp_confidence(float(value))


def clamp_confidence(value: float) -> float:
    return max(0.0, min(1.0, value))


def coerce_sex(value: Any) -> Optional[Sex]:
    if not isinstance(value, str):
        return None
    lowered = value.strip().lower()
    if lowered in ("male", "m"):
        return Sex.MALE
    if lowered in ("female", "f"):
        return Sex.FEMALE
    if lowered == "other":
        return Sex.OTHER
    return None


def coerce_urgency(value: Any) -> Optional[Urgency]:
    if not isinstance(value, str):
        return None
    try:
        return Urgency(value.strip().lower())
    except ValueError:
        return None


def weighted_confidence(components: Iterable[tuple[float, float]]) -> float:
    """
    Weighted mean of ``(confidence, weight)`` pairs, clamped to [0, 1].

    Callers pass only components whose value is present, so absent fields
    never pull the mean down. No components yields 0.
    """
    total_weight = 0.0
    weighted_sum = 0.0
    for confidence, weight in components:
        total_weight += weight
        weighted_sum += confidence * weight

    if total_weight == 0:
        return 0.0
    return clamp_confidence(weighted_sum / total_weight)


# =============================================================================
# Normalisation
# =============================================================================


def normalize_date(value: Any) -> Optional[str]:
    """
    Normalise a date-like value to ISO ``YYYY-MM-DD``.

    ISO input passes through untouched. Numeric dates are read day-first
    (``15/05/1990``, ``15-05-1990``, ``15.05.1990``). Written-out dates such
    as ``15 May 1990`` or ``May 15, 1990`` are parsed against a fixed format
    list. Returns None when nothing matches; never raises.
    """
    text = coerce_string(value)
    if text is None:
        return None

    if _ISO_DATE.match(text):
        return text

    day_first = _DAY_FIRST_DATE.match(text)
    if day_first:
        day, _, month, year = day_first.groups()
        return f"{year}-{month.zfill(2)}-{day.zfill(2)}"

    try:
        return datetime.fromisoformat(text).date().isoformat()
    except ValueError:
        pass

    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date().isoformat()
        except ValueError:
            continue

    return None


def normalize_dob(value: Any) -> str:
    """Comparison key for a date of birth; empty string when unusable."""
    return normalize_date(value) or ""


def normalize_patient_name(value: Any) -> str:
    """
    Comparison key for a patient name.

    Lower-cased, trimmed, internal whitespace collapsed, honorific prefix
    and generational suffix removed. ``"Mr. John Smith Jr"`` and
    ``"JOHN   SMITH"`` both become ``"john smith"``.
    """
    text = coerce_string(value)
    if text is None:
        return ""

    name = _WHITESPACE.sub(" ", text.lower()).strip()
    name = _NAME_PREFIX.sub("", name)
    name = _NAME_SUFFIX.sub("", name)
    return name.strip()
