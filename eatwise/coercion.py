"""
Coercion of loosely-shaped model output into typed values.

Models return JSON that is only approximately right: enum names with spaces or
lowercase, numbers as strings, text wrapped in objects, code fences around the
payload. Everything here is total: bad input yields the caller's default.
"""
from __future__ import annotations
import json
import logging
import re
from enum import Enum
from typing import Any, Dict, List, Optional, Type, TypeVar

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=Enum)

_NON_ALNUM = re.compile(r"[^A-Z0-9]")
_TEXT_KEYS = ("text", "message", "content", "value", "reasoning")

MIN_CONTAINMENT_LENGTH = 4
_NEGATIONS = ("NOT", "NON")
_ALIASES = {
    "US": "UNITED_STATES",
    "USA": "UNITED_STATES",
    "FDA": "UNITED_STATES",
    "EU": "EUROPEAN_UNION",
    "EFSA": "EUROPEAN_UNION",
    "UK": "UNITED_KINGDOM",
    "GB": "UNITED_KINGDOM",
    "WHO": "GLOBAL_WHO",
    "NZ": "AUSTRALIA_NZ",
}


def clean_json(text: str) -> str:
    """Strip markdown fences and cut to the outermost {...} span."""
    cleaned = text.strip()
    cleaned = re.sub(r"^```(?:json)?\s*", "", cleaned)
    cleaned = re.sub(r"\s*```$", "", cleaned)
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start != -1 and end > start:
        cleaned = cleaned[start:end + 1]
    return cleaned.strip()


def parse_json_object(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """Parse model output into a dict, or None if it isn't a JSON object."""
    if not text or not text.strip():
        return None
    try:
        parsed = json.loads(clean_json(text))
    except json.JSONDecodeError as e:
        logger.warning(f"[COERCE] JSON parse failed: {e}")
        return None
    return parsed if isinstance(parsed, dict) else None


def _normalize_token(value: str) -> str:
    return _NON_ALNUM.sub("", value.upper())


def closest_enum(value: Any, enum_cls: Type[E], default: E) -> E:
    """
    Fuzzy-match a model-produced label onto an enum member.

    Matching works on uppercased alphanumerics only, so "Peer-reviewed research",
    "peer_reviewed_research" and "PEER REVIEWED RESEARCH" all resolve. Exact
    match on name or value wins, then the short-form aliases ("US", "EU", ...).
    Negated labels ("Not approved") fall back to the default. Otherwise the first
    member whose token contains, or is contained in, an input of at least
    MIN_CONTAINMENT_LENGTH characters.
    """
    if isinstance(value, enum_cls):
        return value
    if not isinstance(value, str) or not value.strip():
        return default

    token = _normalize_token(value)
    if not token:
        return default

    for member in enum_cls:
        if token in (_normalize_token(member.name), _normalize_token(str(member.value))):
            return member

    alias = _ALIASES.get(token)
    if alias is not None and alias in enum_cls.__members__:
        return enum_cls[alias]

    if token.startswith(_NEGATIONS) or len(token) < MIN_CONTAINMENT_LENGTH:
        return default

    for member in enum_cls:
        candidate = _normalize_token(member.name)
        if candidate and (candidate in token or token in candidate):
            return member

    return default


def coerce_number(value: Any, default: float, lo: float = 0.0, hi: float = 1.0) -> float:
    """Parse a number from int/float/str and clamp to [lo, hi]."""
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        match = re.search(r"-?\d+(?:\.\d+)?", value)
        if not match:
            return default
        number = float(match.group())
    else:
        return default
    if number != number:  # NaN
        return default
    return max(lo, min(hi, number))


def coerce_str(value: Any, default: str = "") -> str:
    """Extract text from strings, lists, or objects holding a text-ish field."""
    if value is None:
        return default
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float, bool)):
        return str(value)
    if isinstance(value, list):
        parts = [coerce_str(v) for v in value]
        joined = "; ".join(p for p in parts if p)
        return joined or default
    if isinstance(value, dict):
        for key in _TEXT_KEYS:
            if isinstance(value.get(key), str):
                return value[key]
        return json.dumps(value, ensure_ascii=False)
    return default


def coerce_optional_bool(value: Any) -> Optional[bool]:
    """Parse a boolean, keeping 'unknown' (None) distinct from False."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "yes", "1", "y"):
            return True
        if lowered in ("false", "no", "0", "n"):
            return False
    return None


def coerce_bool(value: Any, default: bool = False) -> bool:
    result = coerce_optional_bool(value)
    return default if result is None else result


def coerce_str_list(value: Any) -> List[str]:
    """Non-empty, stripped strings from a list (or a single string)."""
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    items = []
    for item in value:
        text = coerce_str(item).strip()
        if text:
            items.append(text)
    return items
