"""
Client-side advanced filters over annotated, scored records.

Filter values arrive as user-facing labels ("Curated", "archive",
"only-nsfw") and are normalized before matching. A record passes when it
satisfies every filter that is set; an unset or "any" filter matches
everything.
"""

from __future__ import annotations

import re
from typing import Any, List, Mapping, Optional, Union

from .content_safety import FilterMode, mode_admits, parse_filter_mode, resolve_record_severity
from .normalization import coerce_string, flatten_field, normalize_list

ANY = "any"

_TRUST_ALIASES = {
    "any": ANY,
    "all": ANY,
    "high": "high",
    "trusted": "high",
    "curated": "high",
    "medium": "medium",
    "standard": "medium",
    "default": "medium",
    "low": "low",
    "community": "low",
    "experimental": "low",
}

_AVAILABILITY_ALIASES = {
    "any": ANY,
    "all": ANY,
    "online": "online",
    "live": "online",
    "archived-only": "archived-only",
    "archived": "archived-only",
    "archive": "archived-only",
    "offline": "offline",
}

_FILTER_LIST_SEPARATOR = re.compile(r"[,\n]+")
_YEAR = re.compile(r"\b(\d{4})\b")


def _label(value: Any) -> Optional[str]:
    normalized = coerce_string(value)
    return normalized.lower() if normalized else None


def normalize_source_trust(value: Any) -> Optional[str]:
    """'high', 'medium', 'low', 'any', or None for unknown labels."""
    label = _label(value)
    return _TRUST_ALIASES.get(label) if label else None


def normalize_availability(value: Any) -> Optional[str]:
    """'online', 'archived-only', 'offline', 'any', or None for unknown labels."""
    label = _label(value)
    return _AVAILABILITY_ALIASES.get(label) if label else None


def normalize_nsfw_mode(value: Any) -> Optional[FilterMode]:
    return parse_filter_mode(value)


def extract_language_list(record: Mapping[str, Any]) -> List[str]:
    for name in ("language", "languages", "lang"):
        values = [value.lower() for value in flatten_field(record.get(name)) if not value.isdigit()]
        if values:
            return values
    return []


def matches_nsfw_mode(record: Mapping[str, Any], mode: Union[FilterMode, str]) -> bool:
    """Visibility of an annotated record under `mode`."""
    filter_mode = parse_filter_mode(mode)
    if filter_mode is None:
        return True
    flagged, severity = resolve_record_severity(record)
    return mode_admits(flagged, severity, filter_mode)


def _filter_value(filters: Mapping[str, Any], camel: str, snake: str) -> Any:
    value = filters.get(camel)
    return filters.get(snake) if value is None else value


def _filter_tokens(value: Any) -> List[str]:
    if isinstance(value, (list, tuple)):
        return normalize_list(value)
    if not isinstance(value, str):
        return []
    return [entry.strip().lower() for entry in _FILTER_LIST_SEPARATOR.split(value) if entry.strip()]


def _record_year(record: Mapping[str, Any]) -> Optional[int]:
    for name in ("year", "date", "publicdate"):
        for value in flatten_field(record.get(name)):
            match = _YEAR.search(value)
            if match:
                return int(match.group(1))
    return None


def _matches_language(record: Mapping[str, Any], wanted: Optional[str]) -> bool:
    if not wanted:
        return True
    return any(wanted in language for language in extract_language_list(record))


def _matches_label(record: Mapping[str, Any], wanted: Optional[str], *fields: str) -> bool:
    if not wanted or wanted == ANY:
        return True
    for name in fields:
        value = _label(record.get(name))
        if value:
            return value == wanted
    return False


def _as_year(value: Any) -> Optional[int]:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _matches_years(record: Mapping[str, Any], year_from: Any, year_to: Any) -> bool:
    lower, upper = _as_year(year_from), _as_year(year_to)
    if lower is None and upper is None:
        return True
    year = _record_year(record)
    if year is None:
        return False
    return (lower is None or year >= lower) and (upper is None or year <= upper)


def matches_advanced_filters(record: Mapping[str, Any], filters: Optional[Mapping[str, Any]]) -> bool:
    """
    True when `record` satisfies every filter in `filters`.

    Keys may be camelCase or snake_case. Collection and subject filters
    match when any listed value is present on the record; the uploader
    filter is a substring match over uploader, submitter and creator.
    """
    if not isinstance(record, Mapping):
        return False
    if not filters:
        return True

    media_type = _label(_filter_value(filters, "mediaType", "media_type"))
    if media_type and _label(record.get("mediatype")) != media_type:
        return False

    if not _matches_years(
        record,
        _filter_value(filters, "yearFrom", "year_from"),
        _filter_value(filters, "yearTo", "year_to"),
    ):
        return False

    if not _matches_language(record, _label(filters.get("language"))):
        return False

    trust = normalize_source_trust(_filter_value(filters, "sourceTrust", "source_trust"))
    if not _matches_label(record, trust, "source_trust", "source_trust_level", "trust_level"):
        return False

    availability = normalize_availability(filters.get("availability"))
    if not _matches_label(record, availability, "availability"):
        return False

    mode = normalize_nsfw_mode(_filter_value(filters, "nsfwMode", "nsfw_mode"))
    if mode is not None and not matches_nsfw_mode(record, mode):
        return False

    collections = _filter_tokens(filters.get("collection"))
    if collections and not set(collections) & set(normalize_list(record.get("collection"))):
        return False

    subjects = _filter_tokens(filters.get("subject"))
    if subjects:
        record_subjects = record.get("subject", record.get("subjects"))
        if not set(subjects) & set(normalize_list(record_subjects)):
            return False

    uploader = _label(filters.get("uploader"))
    if uploader:
        candidates: List[str] = []
        for name in ("uploader", "submitter", "creator"):
            candidates.extend(value.lower() for value in flatten_field(record.get(name)))
        if not any(uploader in candidate for candidate in candidates):
            return False

    return True
