"""
Text and field normalization shared by every stage.

Archive records are loosely typed: a field may be missing, a single
string, a list of strings, or a nested mapping. Values are flattened into
plain string lists as soon as they are read so the stages downstream never
re-check shapes.
"""

from __future__ import annotations

import math
import re
import unicodedata
from typing import Any, Iterable, List, Mapping, Optional

from .constants import SpellingConstants

_WORD_SPLIT = re.compile(r"[^\w]+|_+")
_ASCII_TOKEN = re.compile(SpellingConstants.TOKEN_PATTERN)


def strip_diacritics(value: str) -> str:
    decomposed = unicodedata.normalize("NFD", value)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def tokenize(text: str) -> List[str]:
    """Lowercase letter/digit tokens with diacritics removed."""
    if not text:
        return []
    lowered = strip_diacritics(text).lower()
    return [token for token in _WORD_SPLIT.split(lowered) if token]


def ascii_tokens(text: str) -> List[str]:
    """Lowercase `[a-z0-9]+` tokens; everything else separates tokens."""
    if not text:
        return []
    return _ASCII_TOKEN.findall(text.lower())


def flatten_field(value: Any) -> List[str]:
    """
    Flatten a string-or-list field into trimmed, non-empty strings.

    Numbers are stringified; booleans, mappings and other shapes are skipped.
    """
    if value is None or isinstance(value, bool):
        return []
    if isinstance(value, str):
        trimmed = value.strip()
        return [trimmed] if trimmed else []
    if isinstance(value, (int, float)):
        return [str(value)] if math.isfinite(value) else []
    if isinstance(value, (list, tuple)):
        flattened: List[str] = []
        for entry in value:
            if isinstance(entry, (list, tuple, Mapping)):
                continue
            flattened.extend(flatten_field(entry))
        return flattened
    return []


def flatten_fields(record: Mapping[str, Any], fields: Iterable[str]) -> List[str]:
    values: List[str] = []
    for name in fields:
        values.extend(flatten_field(record.get(name)))
    return values


def nested_mapping(record: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    candidate = record.get(key)
    return candidate if isinstance(candidate, Mapping) else {}


def coerce_string(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def has_text(value: Any) -> bool:
    return len(flatten_field(value)) > 0


def normalize_list(value: Any) -> List[str]:
    """Lowercased entries of a list field, or of a comma/semicolon separated string."""
    if isinstance(value, str):
        parts = re.split(r"[,;]+", value)
    elif isinstance(value, (list, tuple)):
        parts = [entry for entry in value if isinstance(entry, str)]
    else:
        return []
    return [part.strip().lower() for part in parts if part.strip()]


def extract_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, str):
        cleaned = re.sub(r"[,\s]+", "", value)
        if not cleaned:
            return None
        try:
            parsed = float(cleaned)
        except ValueError:
            return None
        return parsed if math.isfinite(parsed) else None
    return None
