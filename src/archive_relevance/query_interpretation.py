"""
Natural-language query interpretation and filter sanitization.

The interpreter reads structured hints out of a free-text request such as
"please find photographs of paris from the 1920s in french": year bounds,
a media type, a language, a source-trust level, curated collections and
subjects. Leading request phrases ("please find", "I am looking for") are
removed from the query that goes to the archive.

Anything produced here, or handed in by a client, passes through
QueryFilters before it reaches the search backend. Values that fail
validation are dropped silently rather than rejected.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, ConfigDict, ValidationInfo, field_validator
from pydantic.alias_generators import to_camel

from .config import INTERPRETER_FILE, load_optional_yaml, resolve_data_path
from .constants import FilterConstants
from .exceptions import InterpretationError
from .normalization import tokenize

logger = logging.getLogger(__name__)

Phrase = Tuple[str, ...]


def _phrases(values: Any) -> Tuple[Phrase, ...]:
    if not isinstance(values, (list, tuple)):
        return ()
    phrases: List[Phrase] = []
    for value in values:
        if not isinstance(value, str):
            continue
        parts = tuple(tokenize(value))
        if parts and parts not in phrases:
            phrases.append(parts)
    return tuple(phrases)


def contains_phrase(tokens: Sequence[str], phrase: Phrase) -> bool:
    """True when `phrase` occurs as a contiguous run of `tokens`."""
    width = len(phrase)
    if width == 0 or width > len(tokens):
        return False
    if width == 1:
        return phrase[0] in tokens
    return any(tuple(tokens[i : i + width]) == phrase for i in range(len(tokens) - width + 1))


@dataclass(frozen=True)
class InterpreterTables:
    """Keyword tables for media types, languages, trust hints, collections and subjects."""

    media_types: Mapping[str, Tuple[Phrase, ...]] = field(default_factory=dict)
    languages: Tuple[str, ...] = ()
    trust_high: Tuple[Phrase, ...] = ()
    trust_low: Tuple[Phrase, ...] = ()
    collections: Tuple[Tuple[Phrase, str], ...] = ()
    subjects: Tuple[Tuple[re.Pattern, str], ...] = ()
    curated_collections: FrozenSet[str] = frozenset()

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "InterpreterTables":
        media_types: Dict[str, Tuple[Phrase, ...]] = {}
        raw_media = payload.get("media_types")
        if isinstance(raw_media, Mapping):
            for media_type, keywords in raw_media.items():
                phrases = _phrases(keywords)
                if isinstance(media_type, str) and phrases:
                    media_types[media_type.strip().lower()] = phrases

        collections: List[Tuple[Phrase, str]] = []
        raw_collections = payload.get("collections")
        if isinstance(raw_collections, Mapping):
            for name, identifier in raw_collections.items():
                parts = tuple(tokenize(name)) if isinstance(name, str) else ()
                if parts and isinstance(identifier, str) and identifier.strip():
                    collections.append((parts, identifier.strip().lower()))

        subjects: List[Tuple[re.Pattern, str]] = []
        raw_subjects = payload.get("subjects")
        if isinstance(raw_subjects, Mapping):
            for pattern, subject in raw_subjects.items():
                try:
                    compiled = re.compile(str(pattern), re.IGNORECASE)
                except re.error as e:
                    logger.warning("Skipping invalid subject pattern %r: %s", pattern, e)
                    continue
                if isinstance(subject, str) and subject.strip():
                    subjects.append((compiled, subject.strip().lower()))

        return cls(
            media_types=media_types,
            languages=tuple(phrase[0] for phrase in _phrases(payload.get("languages")) if len(phrase) == 1),
            trust_high=_phrases(payload.get("trust_high")),
            trust_low=_phrases(payload.get("trust_low")),
            collections=tuple(collections),
            subjects=tuple(subjects),
            curated_collections=frozenset(phrase[0] for phrase in _phrases(payload.get("curated_collections"))),
        )

    @classmethod
    def from_file(cls, path: str | Path | None = None) -> "InterpreterTables":
        return cls.from_payload(load_optional_yaml(path or resolve_data_path(INTERPRETER_FILE)))

    def media_type_votes(self, tokens: Sequence[str]) -> Dict[str, int]:
        """Number of keywords per media type found in `tokens`, in table order."""
        votes: Dict[str, int] = {}
        for media_type, phrases in self.media_types.items():
            count = sum(1 for phrase in phrases if contains_phrase(tokens, phrase))
            if count:
                votes[media_type] = count
        return votes

    def implied_media_types(self, tokens: Sequence[str]) -> FrozenSet[str]:
        return frozenset(self.media_type_votes(tokens))


@lru_cache(maxsize=1)
def get_default_tables() -> InterpreterTables:
    return InterpreterTables.from_file()


@dataclass
class QueryInterpretation:
    query: str
    filters: Dict[str, str] = field(default_factory=dict)


@dataclass
class SafeInterpretationResult:
    """
    Outcome of a guarded interpretation.

    When interpretation fails `interpretation` is None, `filters` is empty
    and `error` carries the failure; callers then search the raw text.
    """

    interpretation: Optional[QueryInterpretation]
    filters: Dict[str, str] = field(default_factory=dict)
    error: Optional[InterpretationError] = None


# Year phrases, applied in this order
_BETWEEN = re.compile(r"\b(?:between|from)\s+(\d{3,4})\s+(?:and|to)\s+(\d{3,4})\b", re.IGNORECASE)
_BEFORE = re.compile(r"\b(?:before|earlier than|prior to)\s+(?:the\s+year\s+)?(\d{3,4})\b", re.IGNORECASE)
_AFTER = re.compile(r"\b(?:after|later than)\s+(?:the\s+year\s+)?(\d{3,4})\b", re.IGNORECASE)
_SINCE = re.compile(r"\bsince\s+(?:the\s+year\s+)?(\d{3,4})\b", re.IGNORECASE)
_DECADE = re.compile(r"\b(\d{4})s\b", re.IGNORECASE)
_CENTURY = re.compile(r"\b(\d{1,2})(?:st|nd|rd|th)\s+century\b", re.IGNORECASE)
_CIRCA = re.compile(r"\b(?:circa|c\.?|around|approximately)\s+(\d{3,4})\b", re.IGNORECASE)

_LEADING_PHRASES = (
    re.compile(r"^(?:please\s+)?(?:show|find|search|locate|pull up)\s+(?:me\s+)?", re.IGNORECASE),
    re.compile(r"^(?:can|could|would)\s+you\s+(?:please\s+)?(?:show|find|locate|search\s+for)\s+", re.IGNORECASE),
    re.compile(r"^i\s+(?:am\s+)?(?:looking|searching)\s+for\s+", re.IGNORECASE),
    re.compile(r"^i\s+(?:need|want|would\s+like)\s+", re.IGNORECASE),
)
_FILLER = (re.compile(r"\bplease\b", re.IGNORECASE), re.compile(r"\bthank you\b", re.IGNORECASE))


def _clamp_year(value: int) -> int:
    return max(0, min(9999, value))


def _strip_pattern(text: str, pattern: re.Pattern, on_match: Callable[[re.Match], None]) -> str:
    working = text
    match = pattern.search(working)
    while match is not None:
        on_match(match)
        working = f"{working[: match.start()]} {working[match.end():]}"
        match = pattern.search(working)
    return working


class _YearRange:
    """Narrowing year bounds; later phrases can only tighten the range."""

    def __init__(self) -> None:
        self.start: Optional[int] = None
        self.end: Optional[int] = None

    def lower(self, value: int) -> None:
        value = _clamp_year(value)
        self.start = value if self.start is None else max(self.start, value)

    def upper(self, value: int) -> None:
        value = _clamp_year(value)
        self.end = value if self.end is None else min(self.end, value)

    def between(self, first: int, second: int) -> None:
        self.lower(min(first, second))
        self.upper(max(first, second))

    def ordered(self) -> Tuple[Optional[int], Optional[int]]:
        if self.start is not None and self.end is not None and self.start > self.end:
            return self.end, self.start
        return self.start, self.end


class QueryInterpreter:
    """Extracts filters from a natural-language query."""

    def __init__(self, tables: Optional[InterpreterTables] = None) -> None:
        self.tables = tables if tables is not None else get_default_tables()

    def interpret(self, text: str) -> QueryInterpretation:
        if not isinstance(text, str) or not text.strip():
            return QueryInterpretation(query="")

        original = text.strip()
        years = _YearRange()
        working = self._strip_years(original, years)

        tokens = tokenize(original)
        filters: Dict[str, str] = {}

        year_from, year_to = years.ordered()
        if year_from is not None:
            filters["yearFrom"] = str(year_from)
        if year_to is not None:
            filters["yearTo"] = str(year_to)

        media_type = self.detect_media_type(tokens)
        if media_type:
            filters["mediaType"] = media_type
        language = self.detect_language(tokens)
        if language:
            filters["language"] = language
        trust = self.detect_source_trust(tokens)
        if trust:
            filters["sourceTrust"] = trust
        collections = self.detect_collections(tokens)
        if collections:
            filters["collection"] = ",".join(collections)
        subjects = self.detect_subjects(original)
        if subjects:
            filters["subject"] = ",".join(subjects)

        for pattern in _LEADING_PHRASES:
            working = pattern.sub("", working.strip(), count=1)
        for pattern in _FILLER:
            working = pattern.sub(" ", working)
        working = re.sub(r"\s+", " ", working).strip()

        return QueryInterpretation(query=working or original, filters=filters)

    def detect_media_type(self, tokens: Sequence[str]) -> Optional[str]:
        """Media type with the most keyword votes; the first listed wins ties."""
        selected: Optional[str] = None
        highest = 0
        for media_type, votes in self.tables.media_type_votes(tokens).items():
            if votes > highest:
                selected, highest = media_type, votes
        return selected

    def detect_language(self, tokens: Sequence[str]) -> Optional[str]:
        for language in self.tables.languages:
            if language in tokens:
                return language
        return None

    def detect_source_trust(self, tokens: Sequence[str]) -> Optional[str]:
        if any(contains_phrase(tokens, phrase) for phrase in self.tables.trust_high):
            return "high"
        if any(contains_phrase(tokens, phrase) for phrase in self.tables.trust_low):
            return "low"
        return None

    def detect_collections(self, tokens: Sequence[str]) -> List[str]:
        found: List[str] = []
        for phrase, identifier in self.tables.collections:
            if contains_phrase(tokens, phrase) and identifier not in found:
                found.append(identifier)
        return found

    def detect_subjects(self, text: str) -> List[str]:
        found: List[str] = []
        for pattern, subject in self.tables.subjects:
            if pattern.search(text) and subject not in found:
                found.append(subject)
        return found

    @staticmethod
    def _strip_years(text: str, years: _YearRange) -> str:
        working = _strip_pattern(text, _BETWEEN, lambda m: years.between(int(m.group(1)), int(m.group(2))))
        working = _strip_pattern(working, _BEFORE, lambda m: years.upper(int(m.group(1)) - 1))
        working = _strip_pattern(working, _AFTER, lambda m: years.lower(int(m.group(1)) + 1))
        working = _strip_pattern(working, _SINCE, lambda m: years.lower(int(m.group(1))))

        def decade(match: re.Match) -> None:
            base = int(match.group(1))
            # "1900s" reads as a century, "1950s" as a decade
            years.between(base, base + (99 if match.group(0).lower().endswith("00s") else 9))

        working = _strip_pattern(working, _DECADE, decade)

        def century(match: re.Match) -> None:
            value = int(match.group(1))
            if value > 0:
                start = (value - 1) * 100
                years.between(start, start + 99)

        working = _strip_pattern(working, _CENTURY, century)
        working = _strip_pattern(
            working, _CIRCA, lambda m: years.between(int(m.group(1)) - 5, int(m.group(1)) + 5)
        )
        return working


@lru_cache(maxsize=1)
def get_default_interpreter() -> QueryInterpreter:
    return QueryInterpreter()


def interpret_search_query(text: str) -> QueryInterpretation:
    return get_default_interpreter().interpret(text)


# ----------------------------------------------------------------------
# Filter sanitization
# ----------------------------------------------------------------------

_LANGUAGE = re.compile(FilterConstants.LANGUAGE_PATTERN)
_COLLECTION_TOKEN = re.compile(FilterConstants.COLLECTION_TOKEN_PATTERN)
_UPLOADER = re.compile(FilterConstants.UPLOADER_PATTERN)
_LIST_SEPARATOR = re.compile(r"[,;]+")


def _trimmed_lower(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    normalized = value.strip().lower()
    return normalized or None


def _context(info: ValidationInfo) -> Mapping[str, Any]:
    return info.context if isinstance(info.context, Mapping) else {}


def _dedupe(values: Iterable[str]) -> List[str]:
    unique: List[str] = []
    for value in values:
        if value not in unique:
            unique.append(value)
    return unique


class QueryFilters(BaseModel):
    """
    Allow-listed search filters.

    Every validator maps an unacceptable value to None instead of raising,
    so a dump with ``exclude_none`` holds only the values that survived.
    Validation context may carry ``allowed_media_types`` and
    ``year_pattern``.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    media_type: Optional[str] = None
    year_from: Optional[str] = None
    year_to: Optional[str] = None
    language: Optional[str] = None
    source_trust: Optional[str] = None
    availability: Optional[str] = None
    collection: Optional[str] = None
    subject: Optional[str] = None
    uploader: Optional[str] = None

    @field_validator("media_type", mode="before")
    @classmethod
    def validate_media_type(cls, v: Any, info: ValidationInfo) -> Optional[str]:
        allowed = _context(info).get("allowed_media_types")
        if allowed is None:
            allowed = FilterConstants.DEFAULT_ALLOWED_MEDIA_TYPES
        normalized = _trimmed_lower(v)
        return normalized if normalized in allowed else None

    @field_validator("year_from", "year_to", mode="before")
    @classmethod
    def validate_year(cls, v: Any, info: ValidationInfo) -> Optional[str]:
        if not isinstance(v, str) or not v.strip():
            return None
        trimmed = v.strip()
        pattern = _context(info).get("year_pattern") or FilterConstants.YEAR_PATTERN
        compiled = pattern if isinstance(pattern, re.Pattern) else re.compile(pattern)
        if compiled.fullmatch(trimmed):
            return trimmed
        match = compiled.search(trimmed)
        return match.group(0) if match else None

    @field_validator("language", mode="before")
    @classmethod
    def validate_language(cls, v: Any) -> Optional[str]:
        normalized = _trimmed_lower(v)
        if normalized is None or not _LANGUAGE.match(normalized):
            return None
        return re.sub(r"\s+", " ", normalized)

    @field_validator("source_trust", mode="before")
    @classmethod
    def validate_source_trust(cls, v: Any) -> Optional[str]:
        normalized = _trimmed_lower(v)
        return normalized if normalized in FilterConstants.TRUST_LEVELS else None

    @field_validator("availability", mode="before")
    @classmethod
    def validate_availability(cls, v: Any) -> Optional[str]:
        normalized = _trimmed_lower(v)
        return normalized if normalized in FilterConstants.AVAILABILITY_LEVELS else None

    @field_validator("collection", mode="before")
    @classmethod
    def validate_collection(cls, v: Any) -> Optional[str]:
        if not isinstance(v, str):
            return None
        tokens = [token.strip().lower() for token in _LIST_SEPARATOR.split(v)]
        valid = _dedupe(token for token in tokens if token and _COLLECTION_TOKEN.match(token))
        return ",".join(valid) or None

    @field_validator("subject", mode="before")
    @classmethod
    def validate_subject(cls, v: Any) -> Optional[str]:
        if not isinstance(v, str):
            return None
        cleaned: List[str] = []
        for token in _LIST_SEPARATOR.split(v):
            token = re.sub(r"\s+", " ", re.sub(r'["<>]', "", token.strip()))
            if token and len(token) <= FilterConstants.MAX_SUBJECT_LENGTH:
                cleaned.append(token.lower())
        return ",".join(_dedupe(cleaned)) or None

    @field_validator("uploader", mode="before")
    @classmethod
    def validate_uploader(cls, v: Any) -> Optional[str]:
        normalized = _trimmed_lower(v)
        if normalized is None or not _UPLOADER.match(normalized):
            return None
        return normalized


def sanitize_query_filters(
    filters: Union[Mapping[str, Any], QueryFilters, None],
    allowed_media_types: Optional[Iterable[str]] = None,
    year_pattern: Union[str, re.Pattern, None] = None,
) -> Dict[str, str]:
    """
    Validate client or interpreter filters.

    Returns a camelCase mapping holding only the values that passed; an
    unrecognized value is omitted, never reported.
    """
    if isinstance(filters, QueryFilters):
        filters = filters.model_dump(by_alias=True, exclude_none=True)
    if not isinstance(filters, Mapping):
        return {}
    context = {
        "allowed_media_types": frozenset(allowed_media_types) if allowed_media_types is not None else None,
        "year_pattern": year_pattern,
    }
    model = QueryFilters.model_validate(dict(filters), context=context)
    return model.model_dump(by_alias=True, exclude_none=True)


def safe_interpret_search_query(
    text: str,
    allowed_media_types: Optional[Iterable[str]] = None,
    year_pattern: Union[str, re.Pattern, None] = None,
    interpreter: Optional[Callable[[str], QueryInterpretation]] = None,
) -> SafeInterpretationResult:
    """Interpret `text`, converting any interpreter failure into a result."""
    interpret = interpreter or interpret_search_query
    try:
        interpretation = interpret(text)
        query = interpretation.query.strip() if isinstance(interpretation.query, str) else ""
        filters = sanitize_query_filters(interpretation.filters, allowed_media_types, year_pattern)
    except Exception as e:
        logger.warning("Query interpretation failed, searching raw text: %s", e)
        return SafeInterpretationResult(interpretation=None, filters={}, error=InterpretationError(str(e)))
    return SafeInterpretationResult(
        interpretation=QueryInterpretation(query=query, filters=filters),
        filters=dict(filters),
    )
