"""
Keyword-based content safety classification for archive records.

Records are flattened into candidate strings (title, description, subjects,
URLs and one level of nested ``metadata``/``links``), tokenized, and matched
against three keyword sets: explicit, adult (mild) and violent. Keywords
match whole words or whole multi-word phrases, never arbitrary substrings,
so "analysis" or "cumulative" are not mistaken for disallowed stems. Short
stems that begin many innocent words are governed by per-stem rules loaded
from the same configuration.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from .config import KEYWORDS_FILE, load_optional_yaml, resolve_data_path
from .constants import SafetyConstants
from .normalization import flatten_field, nested_mapping, tokenize

logger = logging.getLogger(__name__)


class Severity(str, Enum):
    """Ordered sensitivity of a record's content."""

    NONE = "none"
    MILD = "mild"
    VIOLENT = "violent"
    EXPLICIT = "explicit"

    @property
    def rank(self) -> int:
        return SafetyConstants.SEVERITY_RANK[self.value]


class FilterMode(str, Enum):
    """User-selected visibility policy over severities."""

    SAFE = "safe"
    MODERATE = "moderate"
    UNRESTRICTED = "unrestricted"
    NSFW_ONLY = "nsfw-only"


_MODE_ALIASES = {
    "safe": FilterMode.SAFE,
    "moderate": FilterMode.MODERATE,
    "unrestricted": FilterMode.UNRESTRICTED,
    "off": FilterMode.UNRESTRICTED,
    "none": FilterMode.UNRESTRICTED,
    "disabled": FilterMode.UNRESTRICTED,
    "no_filter": FilterMode.UNRESTRICTED,
    "nsfw-only": FilterMode.NSFW_ONLY,
    "only": FilterMode.NSFW_ONLY,
    "only-nsfw": FilterMode.NSFW_ONLY,
    "only_nsfw": FilterMode.NSFW_ONLY,
    "nsfw": FilterMode.NSFW_ONLY,
}

FLAGGED_SEVERITIES = frozenset({Severity.MILD, Severity.VIOLENT, Severity.EXPLICIT})

ANNOTATION_FIELDS = ("nsfw", "nsfwLevel", "nsfwMatches", "nsfw_level", "nsfw_matches")

RECORD_TEXT_FIELDS = (
    "title",
    "description",
    "identifier",
    "mediatype",
    "creator",
    "collection",
    "subject",
    "tags",
    "keywords",
    "topic",
    "topics",
    "originalUrl",
    "original_url",
    "archiveUrl",
    "archive_url",
)
METADATA_TEXT_FIELDS = ("title", "description", "tags", "subject", "keywords", "topic", "topics")
LINK_TEXT_FIELDS = ("archive", "original", "wayback")


def parse_filter_mode(value: Union[str, FilterMode, None]) -> Optional[FilterMode]:
    """FilterMode for a known label or alias, else None."""
    if isinstance(value, FilterMode):
        return value
    if isinstance(value, str):
        return _MODE_ALIASES.get(value.strip().lower())
    return None


def normalize_filter_mode(value: Union[str, FilterMode, None]) -> FilterMode:
    """Map a stored or user-supplied mode label to a FilterMode; unknown labels fall back to safe."""
    return parse_filter_mode(value) or FilterMode.SAFE


def mode_admits(flagged: bool, severity: Severity, mode: FilterMode) -> bool:
    """Visibility policy of each filter mode."""
    if mode is FilterMode.UNRESTRICTED:
        return True
    if mode is FilterMode.NSFW_ONLY:
        return flagged
    if mode is FilterMode.SAFE:
        return not flagged
    # Moderate admits flagged content up to mild; a flag without a known level stays hidden.
    return not flagged or Severity.NONE.rank < severity.rank <= Severity.MILD.rank


@dataclass(frozen=True)
class StemRule:
    """
    Matching rule for a short stem such as "cum" or "anal".

    A bare stem matches unless followed by a safe next word; when
    ``explicit_next`` is set, a bare stem only matches before one of those
    words or at the end of the text. A longer token starting with the stem
    matches on an explicit suffix, is cleared by a safe prefix, token or
    suffix, and otherwise matches only when the remainder is numeric or at
    most ``max_unknown_remainder`` characters long.
    """

    stem: str
    explicit_suffixes: Tuple[str, ...] = ()
    safe_suffixes: Tuple[str, ...] = ()
    safe_prefixes: Tuple[str, ...] = ()
    safe_tokens: FrozenSet[str] = frozenset()
    explicit_next: Optional[FrozenSet[str]] = None
    safe_next: FrozenSet[str] = frozenset()
    max_unknown_remainder: int = 2

    def matches(self, token: str, next_token: Optional[str]) -> bool:
        if token == self.stem:
            if next_token is not None and next_token in self.safe_next:
                return False
            if self.explicit_next is not None:
                return next_token is None or next_token in self.explicit_next
            return True

        if not token.startswith(self.stem):
            return False
        if token in self.safe_tokens or token.startswith(self.safe_prefixes):
            return False

        remainder = token[len(self.stem):]
        if remainder.startswith(self.explicit_suffixes):
            return True
        if remainder.startswith(self.safe_suffixes):
            return False
        if remainder[:1].isdigit():
            return True
        return len(remainder) <= self.max_unknown_remainder

    @classmethod
    def from_payload(cls, stem: str, payload: Mapping[str, Any]) -> "StemRule":
        explicit_next = payload.get("explicit_next")
        return cls(
            stem=stem,
            explicit_suffixes=tuple(_normalize_list(payload.get("explicit_suffixes"))),
            safe_suffixes=tuple(_normalize_list(payload.get("safe_suffixes"))),
            safe_prefixes=tuple(_normalize_list(payload.get("safe_prefixes"))),
            safe_tokens=frozenset(_normalize_list(payload.get("safe_tokens"))),
            explicit_next=frozenset(_normalize_list(explicit_next)) if explicit_next is not None else None,
            safe_next=frozenset(_normalize_list(payload.get("safe_next"))),
        )


@dataclass(frozen=True)
class KeywordSet:
    """Explicit, adult and violent phrases plus stem rules."""

    explicit: Tuple[str, ...] = ()
    adult: Tuple[str, ...] = ()
    violent: Tuple[str, ...] = ()
    stems: Mapping[str, StemRule] = field(default_factory=dict)

    @property
    def mild(self) -> Tuple[str, ...]:
        return self.adult

    def is_empty(self) -> bool:
        return not (self.explicit or self.adult or self.violent)


def _normalize_list(value: Any) -> List[str]:
    if not isinstance(value, (list, tuple)):
        return []
    result: List[str] = []
    for entry in value:
        if isinstance(entry, str) and entry.strip():
            normalized = entry.strip().lower()
            if normalized not in result:
                result.append(normalized)
    return result


def load_keyword_sets(payload: Optional[Mapping[str, Any]]) -> KeywordSet:
    """
    Build a KeywordSet from a configuration payload.

    Accepts the flat ``{explicit, adult, violent}`` schema and the older
    ``{categories: {explicit, mild}}`` schema. Entries are trimmed,
    lowercased and deduplicated; explicit phrases are removed from the adult
    set. Malformed entries are dropped.
    """
    if not isinstance(payload, Mapping):
        logger.warning("Keyword configuration is not a mapping; classification disabled")
        return KeywordSet()

    source: Mapping[str, Any] = payload
    categories = payload.get("categories")
    if isinstance(categories, Mapping):
        source = categories

    explicit = _normalize_list(source.get("explicit"))
    adult_raw = _normalize_list(source.get("adult")) + _normalize_list(source.get("mild"))
    explicit_lookup = set(explicit)
    adult: List[str] = []
    for keyword in adult_raw:
        if keyword not in explicit_lookup and keyword not in adult:
            adult.append(keyword)
    violent = _normalize_list(source.get("violent"))

    stems: Dict[str, StemRule] = {}
    raw_stems = payload.get("stems")
    if isinstance(raw_stems, Mapping):
        for stem, rule in raw_stems.items():
            if isinstance(stem, str) and stem.strip() and isinstance(rule, Mapping):
                normalized = stem.strip().lower()
                stems[normalized] = StemRule.from_payload(normalized, rule)
            else:
                logger.warning("Skipping malformed stem rule for %r", stem)

    return KeywordSet(explicit=tuple(explicit), adult=tuple(adult), violent=tuple(violent), stems=stems)


def load_keyword_config(path: str | Path | None = None) -> KeywordSet:
    return load_keyword_sets(load_optional_yaml(path or resolve_data_path(KEYWORDS_FILE)))


@dataclass(frozen=True)
class SafetyClassification:
    flagged: bool
    severity: Severity = Severity.NONE
    matches: Tuple[str, ...] = ()

    @classmethod
    def unflagged(cls) -> "SafetyClassification":
        return cls(flagged=False)


def collect_candidate_strings(record: Mapping[str, Any]) -> List[str]:
    """Flatten every text-bearing field of a record into a list of strings."""
    if not isinstance(record, Mapping):
        return []
    values: List[str] = []
    for name in RECORD_TEXT_FIELDS:
        values.extend(flatten_field(record.get(name)))
    metadata = nested_mapping(record, "metadata")
    for name in METADATA_TEXT_FIELDS:
        values.extend(flatten_field(metadata.get(name)))
    links = nested_mapping(record, "links")
    for name in LINK_TEXT_FIELDS:
        values.extend(flatten_field(links.get(name)))
    return values


class KeywordMatcher:
    """Whole-word and whole-phrase matching of a keyword list against text."""

    def __init__(self, keywords: Sequence[str], stems: Mapping[str, StemRule]) -> None:
        self.stems = stems
        self._compiled: List[Tuple[str, Tuple[str, ...]]] = []
        for keyword in keywords:
            parts = tuple(tokenize(keyword))
            if parts:
                self._compiled.append((keyword, parts))

    def detect(self, tokens: Sequence[str]) -> List[str]:
        if not tokens:
            return []
        return [keyword for keyword, parts in self._compiled if self._matches(tokens, parts)]

    def _matches(self, tokens: Sequence[str], parts: Tuple[str, ...]) -> bool:
        if len(parts) == 1:
            target = parts[0]
            rule = self.stems.get(target)
            for index, token in enumerate(tokens):
                next_token = tokens[index + 1] if index + 1 < len(tokens) else None
                if rule is not None:
                    if rule.matches(token, next_token):
                        return True
                elif token == target or (
                    len(target) >= SafetyConstants.PREFIX_MATCH_MIN_LENGTH and token.startswith(target)
                ):
                    return True
            return False

        width = len(parts)
        return any(tuple(tokens[i:i + width]) == parts for i in range(len(tokens) - width + 1))


class KeywordSafetyClassifier:
    """
    Classifies records into explicit / violent / mild / none.

    Priority: any explicit match wins, then violent, then mild. The reported
    match set for an explicit record also carries the milder matches found.
    """

    def __init__(self, keyword_set: Optional[KeywordSet] = None, max_workers: int = SafetyConstants.DEFAULT_BATCH_WORKERS) -> None:
        self.keyword_set = keyword_set if keyword_set is not None else load_keyword_config()
        self.max_workers = max_workers
        stems = self.keyword_set.stems
        self._explicit = KeywordMatcher(self.keyword_set.explicit, stems)
        self._adult = KeywordMatcher(self.keyword_set.adult, stems)
        self._violent = KeywordMatcher(self.keyword_set.violent, stems)

    def classify_strings(self, values: Iterable[str]) -> SafetyClassification:
        explicit: List[str] = []
        mild: List[str] = []
        violent: List[str] = []

        for value in values:
            tokens = tokenize(value)
            if not tokens:
                continue
            _extend_unique(explicit, self._explicit.detect(tokens))
            _extend_unique(mild, self._adult.detect(tokens))
            _extend_unique(violent, self._violent.detect(tokens))

        if explicit:
            return SafetyClassification(True, Severity.EXPLICIT, _merge(explicit, mild, violent))
        if violent:
            return SafetyClassification(True, Severity.VIOLENT, _merge(violent, mild))
        if mild:
            return SafetyClassification(True, Severity.MILD, tuple(mild))
        return SafetyClassification.unflagged()

    def classify_text(self, text: Union[str, Sequence[str]]) -> SafetyClassification:
        if isinstance(text, str):
            return self.classify_strings([text])
        return self.classify_strings(entry for entry in text if isinstance(entry, str))

    def classify(self, record: Mapping[str, Any]) -> SafetyClassification:
        return self.classify_strings(collect_candidate_strings(record))

    def annotate(self, record: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Copy of ``record`` with ``nsfw``, ``nsfwLevel`` and ``nsfwMatches``.

        An upstream ``nsfwLevel``/``nsfw_level`` label is trusted verbatim.
        Unflagged records are stripped of every nsfw field.
        """
        annotated: Dict[str, Any] = dict(record) if isinstance(record, Mapping) else {}

        existing_level = annotated.get("nsfwLevel", annotated.get("nsfw_level"))
        if isinstance(existing_level, str) and existing_level.strip():
            level = existing_level.strip().lower()
            existing_matches = annotated.get("nsfwMatches", annotated.get("nsfw_matches"))
            annotated["nsfw"] = annotated.get("nsfw") is True or level in {s.value for s in FLAGGED_SEVERITIES}
            annotated["nsfwLevel"] = level
            annotated["nsfwMatches"] = list(existing_matches) if isinstance(existing_matches, (list, tuple)) else []
            return annotated

        classification = self.classify(annotated)
        for name in ANNOTATION_FIELDS:
            annotated.pop(name, None)
        if classification.flagged:
            annotated["nsfw"] = True
            annotated["nsfwLevel"] = classification.severity.value
            annotated["nsfwMatches"] = list(classification.matches)
        return annotated

    def matches_mode(
        self,
        target: Union[SafetyClassification, Mapping[str, Any]],
        mode: Union[FilterMode, str],
    ) -> bool:
        filter_mode = normalize_filter_mode(mode)
        if isinstance(target, SafetyClassification):
            flagged, severity = target.flagged, target.severity
        else:
            flagged, severity = resolve_record_severity(target)
        return mode_admits(flagged, severity, filter_mode)

    def filter(self, records: Iterable[Mapping[str, Any]], mode: Union[FilterMode, str]) -> List[Dict[str, Any]]:
        filter_mode = normalize_filter_mode(mode)
        annotated = self.annotate_batch(list(records))
        return [record for record in annotated if self.matches_mode(record, filter_mode)]

    def count_hidden(self, records: Iterable[Mapping[str, Any]], mode: Union[FilterMode, str]) -> int:
        filter_mode = normalize_filter_mode(mode)
        if filter_mode in (FilterMode.UNRESTRICTED, FilterMode.NSFW_ONLY):
            return 0
        annotated = self.annotate_batch(list(records))
        return sum(1 for record in annotated if not self.matches_mode(record, filter_mode))

    def classify_batch(self, records: Sequence[Mapping[str, Any]]) -> List[SafetyClassification]:
        """Classify records on a thread pool; output order follows input order."""
        return self._map(self.classify, records)

    def annotate_batch(self, records: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]:
        return self._map(self.annotate, records)

    def _map(self, fn, records: Sequence[Mapping[str, Any]]) -> List[Any]:
        if len(records) <= 1 or self.max_workers <= 1:
            return [fn(record) for record in records]
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(records))) as executor:
            return list(executor.map(fn, records))


def resolve_record_severity(record: Mapping[str, Any]) -> Tuple[bool, Severity]:
    """Read the (flagged, severity) pair from an annotated record."""
    if not isinstance(record, Mapping):
        return False, Severity.NONE
    raw = record.get("nsfwLevel", record.get("nsfw_level"))
    severity = Severity.NONE
    if isinstance(raw, str):
        try:
            severity = Severity(raw.strip().lower())
        except ValueError:
            severity = Severity.NONE
    flagged = severity in FLAGGED_SEVERITIES or record.get("nsfw") is True
    return flagged, severity


def _extend_unique(target: List[str], values: Iterable[str]) -> None:
    for value in values:
        if value not in target:
            target.append(value)


def _merge(*groups: Sequence[str]) -> Tuple[str, ...]:
    merged: List[str] = []
    for group in groups:
        _extend_unique(merged, group)
    return tuple(merged)


@lru_cache(maxsize=1)
def get_default_classifier() -> KeywordSafetyClassifier:
    """Classifier over the bundled keyword configuration."""
    return KeywordSafetyClassifier()
