"""Value normalization and similarity for claim matching.

Extraction records arrive as loosely typed field dicts. Before two records
can be compared they are brought to a canonical form:
- keys lowercased with "_", "-" and spaces removed
- strings lowercased, whitespace collapsed
- numeric strings with currency symbols, thousands separators, percent
  signs or k/m/b suffixes converted to numbers ("$1,200" -> 1200.0,
  "2.5M" -> 2500000.0)
- lists normalized element-wise and sorted

Similarity then follows simple deterministic rules: word-set Jaccard for
strings, relative variance for numbers, set Jaccard for lists and
field-by-field comparison for records.
"""

import hashlib
import json
import re
from typing import Any, Dict

SIMILARITY_THRESHOLD = 0.8
NUMERIC_VARIANCE = 0.05

_KEY_STRIP = re.compile(r"[_\s-]+")
_WHITESPACE = re.compile(r"\s+")
_NUMERIC = re.compile(
    r"^(?P<sign>[-+])?[$€£¥]?\s*(?P<number>\d{1,3}(?:,\d{3})+|\d+)(?P<fraction>\.\d+)?\s*(?P<suffix>k|m|mm|b|bn|%)?$"
)
_SUFFIX_MULTIPLIERS = {"k": 1e3, "m": 1e6, "mm": 1e6, "b": 1e9, "bn": 1e9}


def normalize_key(key: str) -> str:
    """Canonical field name: lowercase, no separators."""
    return _KEY_STRIP.sub("", str(key).lower())


def parse_number(text: str) -> float | None:
    """
    Parse a human-formatted number.

    Returns:
        The numeric value, or None if the text is not a plain quantity
    """
    match = _NUMERIC.match(text.strip().lower())
    if not match:
        return None
    digits = match.group("number").replace(",", "") + (match.group("fraction") or "")
    value = float(digits)
    suffix = match.group("suffix")
    if suffix in _SUFFIX_MULTIPLIERS:
        value *= _SUFFIX_MULTIPLIERS[suffix]
    if match.group("sign") == "-":
        value = -value
    return value


def normalize_scalar(value: Any) -> Any:
    """Normalize a single extracted value."""
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        collapsed = _WHITESPACE.sub(" ", value).strip().lower()
        number = parse_number(collapsed)
        return number if number is not None else collapsed
    if isinstance(value, (list, tuple, set)):
        items = [normalize_scalar(v) for v in value]
        return sorted(items, key=lambda v: json.dumps(v, sort_keys=True, default=str))
    if isinstance(value, dict):
        return normalize_fields(value)
    return str(value).strip().lower()


def normalize_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    """
    Normalize an extraction's fields into the canonical comparable form.

    Empty values (None, "", []) are dropped so that a record missing an
    optional field still matches one that left it blank.
    """
    normalized: Dict[str, Any] = {}
    for key, value in fields.items():
        if value is None or value == "" or value == []:
            continue
        normalized[normalize_key(key)] = normalize_scalar(value)
    return normalized


def value_key(value: Any) -> str:
    """Stable string form of a normalized value (used for hashing and agreement)."""
    return json.dumps(value, sort_keys=True, default=str)


def snippet_hash(fields: Dict[str, Any]) -> str:
    """Short content hash of an extraction's raw fields."""
    return hashlib.sha256(value_key(fields).encode("utf-8")).hexdigest()[:16]


def render_text(fields: Dict[str, Any]) -> str:
    """Readable 'key: value; key: value' rendering of extraction fields."""
    parts = []
    for key, value in fields.items():
        if value is None or value == "":
            continue
        if isinstance(value, (list, tuple)):
            parts.append(f"{key}: {', '.join(str(v) for v in value)}")
        else:
            parts.append(f"{key}: {value}")
    return "; ".join(parts) or json.dumps(fields, default=str)


def _jaccard(a: set, b: set) -> float:
    if not a and not b:
        return 1.0
    union = a | b
    return len(a & b) / len(union) if union else 0.0


def values_similar(value1: Any, value2: Any) -> bool:
    """
    Decide whether two normalized values state the same fact.

    Args:
        value1: Normalized value
        value2: Normalized value

    Returns:
        True if the values are equivalent under the matching rules
    """
    if isinstance(value1, bool) or isinstance(value2, bool):
        return value1 == value2

    if isinstance(value1, float) and isinstance(value2, float):
        scale = max(abs(value1), abs(value2), 1.0)
        return abs(value1 - value2) / scale <= NUMERIC_VARIANCE

    if isinstance(value1, str) and isinstance(value2, str):
        return _jaccard(set(value1.split()), set(value2.split())) >= SIMILARITY_THRESHOLD

    if isinstance(value1, list) and isinstance(value2, list):
        set1 = {value_key(v) for v in value1}
        set2 = {value_key(v) for v in value2}
        return _jaccard(set1, set2) >= SIMILARITY_THRESHOLD

    if isinstance(value1, dict) and isinstance(value2, dict):
        # one record's fields must be a subset of the other's
        shared = set(value1) & set(value2)
        if not shared or shared not in (set(value1), set(value2)):
            return False
        return all(values_similar(value1[k], value2[k]) for k in shared)

    return value_key(value1) == value_key(value2)


def values_conflict(value1: Any, value2: Any) -> bool:
    """
    Decide whether two dissimilar normalized values contradict each other.

    Scalars and lists that are not similar conflict. Records conflict only
    when they describe the same thing differently: they agree on at least
    one shared field and differ on another, or they share exactly one
    field and differ on it. Records that differ on every one of several
    shared fields describe different things (two pricing plans, say).
    """
    if values_similar(value1, value2):
        return False

    if isinstance(value1, dict) and isinstance(value2, dict):
        shared = set(value1) & set(value2)
        if not shared:
            return False
        agreeing = {k for k in shared if values_similar(value1[k], value2[k])}
        differing = shared - agreeing
        if not differing:
            return False
        return bool(agreeing) or len(shared) == 1

    return True
