"""
Relevance scoring for archive search results.

RelevanceScorer turns a (record, query) pair into four component scores
and a weighted combination:

- keyword relevance: share of query terms found in the record, with title
  hits worth more than description/subject hits, plus a boost when the
  query names the record's media type;
- semantic relevance: per query term, the best of an exact hit, a synonym
  hit, or the Levenshtein similarity to the closest document token;
- document quality: structural authenticity signals (thumbnail, original
  URL, creator, plausible year, curated collection);
- popularity: a saturating log transform of the download count.

Scoring only reads raw record fields. Missing or oddly shaped fields
lower the matching component instead of raising.
"""

from __future__ import annotations

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Sequence

import numpy as np
from rapidfuzz import process
from rapidfuzz.distance import Levenshtein

from .constants import SafetyConstants, ScoringConstants
from .normalization import (
    coerce_string,
    extract_number,
    flatten_field,
    flatten_fields,
    has_text,
    nested_mapping,
    normalize_list,
    tokenize,
)
from .query_expansion import QueryExpander, get_default_expander
from .query_interpretation import InterpreterTables, get_default_tables

logger = logging.getLogger(__name__)

TITLE_FIELDS = ("title",)
BODY_FIELDS = ("description", "subject", "keywords", "tags", "topic", "topics")
DOCUMENT_FIELDS = (
    "title",
    "description",
    "identifier",
    "creator",
    "subject",
    "collection",
    "keywords",
    "tags",
    "topic",
    "topics",
)
METADATA_FIELDS = ("title", "description", "subject", "keywords")
THUMBNAIL_FIELDS = ("thumbnail", "image", "thumb")
ORIGINAL_URL_FIELDS = ("original_url", "originalUrl", "originalurl")
YEAR_FIELDS = ("year", "date", "publicdate")
POPULARITY_FIELDS = ("downloads", "downloads_count", "views")
LANGUAGE_FIELDS = ("language", "languages", "lang")

_YEAR = re.compile(r"\b(\d{4})\b")


@dataclass
class ScoringConfig:
    """
    Weights and thresholds for RelevanceScorer.

    Weights should sum to 1.0. Every weight must stay non-negative, which
    keeps the combined score monotonic in each component.
    """

    keyword_weight: float = ScoringConstants.KEYWORD_WEIGHT
    semantic_weight: float = ScoringConstants.SEMANTIC_WEIGHT
    quality_weight: float = ScoringConstants.QUALITY_WEIGHT
    popularity_weight: float = ScoringConstants.POPULARITY_WEIGHT

    title_match_weight: float = ScoringConstants.TITLE_MATCH_WEIGHT
    body_match_weight: float = ScoringConstants.BODY_MATCH_WEIGHT
    media_type_boost: float = ScoringConstants.MEDIA_TYPE_BOOST
    synonym_similarity: float = ScoringConstants.SYNONYM_SIMILARITY

    high_trust_threshold: float = ScoringConstants.HIGH_TRUST_THRESHOLD
    low_quality_threshold: float = ScoringConstants.LOW_QUALITY_THRESHOLD
    low_relevance_threshold: float = ScoringConstants.LOW_RELEVANCE_THRESHOLD

    # None uses the curated list from the interpreter tables
    curated_collections: Optional[FrozenSet[str]] = None
    max_workers: int = SafetyConstants.DEFAULT_BATCH_WORKERS

    def weights(self) -> np.ndarray:
        return np.array(
            [self.keyword_weight, self.semantic_weight, self.quality_weight, self.popularity_weight],
            dtype=float,
        )


@dataclass
class ScoreBreakdown:
    keyword_relevance: float = 0.0
    semantic_relevance: float = 0.0
    document_quality: float = 0.0
    popularity_score: float = 0.0
    combined_score: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


@dataclass
class ScoreResult:
    """Scores for one record plus the labels derived from them."""

    breakdown: ScoreBreakdown = field(default_factory=ScoreBreakdown)
    trust_level: str = "low"
    availability: str = "archived-only"
    language: Optional[str] = None


def closest_token_similarity(token: str, candidates: Sequence[str]) -> float:
    """
    Normalized Levenshtein similarity (1 - distance / longest length) of
    ``token`` to its closest candidate, or 0.0 when there are none.
    """
    if not candidates:
        return 0.0
    match = process.extractOne(token, candidates, scorer=Levenshtein.normalized_similarity)
    if match is None:
        return 0.0
    return float(np.clip(match[1], 0.0, 1.0))


def extract_language(record: Mapping[str, Any]) -> Optional[str]:
    """First non-empty language value, if any."""
    if not isinstance(record, Mapping):
        return None
    for name in LANGUAGE_FIELDS:
        values = flatten_field(record.get(name))
        if values:
            return values[0]
    return None


def original_url(record: Mapping[str, Any]) -> Optional[str]:
    for name in ORIGINAL_URL_FIELDS:
        url = coerce_string(record.get(name))
        if url:
            return url
    return coerce_string(nested_mapping(record, "links").get("original"))


def determine_availability(record: Mapping[str, Any]) -> str:
    return "online" if original_url(record) else "archived-only"


def _round(value: float) -> float:
    return round(float(value), ScoringConstants.SCORE_PRECISION)


class RelevanceScorer:
    """
    Multi-factor relevance scorer.

    Usage:
        scorer = RelevanceScorer()
        result = scorer.score(record, "apollo moon landing footage")
        ranked = scorer.rank(records, "apollo moon landing footage")
    """

    def __init__(
        self,
        config: Optional[ScoringConfig] = None,
        expander: Optional[QueryExpander] = None,
        tables: Optional[InterpreterTables] = None,
    ) -> None:
        self.config = config or ScoringConfig()
        self.expander = expander or get_default_expander()
        self.tables = tables or get_default_tables()
        self._weights = self.config.weights()
        if np.any(self._weights < 0):
            raise ValueError("Scoring weights must be non-negative")
        self._curated = (
            self.config.curated_collections
            if self.config.curated_collections is not None
            else self.tables.curated_collections
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def score(self, record: Mapping[str, Any], query: str) -> ScoreResult:
        if not isinstance(record, Mapping):
            return ScoreResult()
        query_tokens = self._query_terms(query)

        keyword = self.keyword_relevance(record, query_tokens)
        semantic = self.semantic_relevance(record, query_tokens)
        quality = self.document_quality(record)
        popularity = self.popularity(record)

        components = np.array([keyword, semantic, quality, popularity], dtype=float)
        combined = float(np.clip(np.dot(self._weights, components), 0.0, 1.0))

        breakdown = ScoreBreakdown(
            keyword_relevance=_round(keyword),
            semantic_relevance=_round(semantic),
            document_quality=_round(quality),
            popularity_score=_round(popularity),
            combined_score=_round(combined),
        )
        return ScoreResult(
            breakdown=breakdown,
            trust_level=self.trust_level(combined, quality, keyword),
            availability=determine_availability(record),
            language=extract_language(record),
        )

    def score_batch(self, records: Sequence[Mapping[str, Any]], query: str) -> List[ScoreResult]:
        """Score records in parallel; results keep input order."""
        if len(records) <= 1 or self.config.max_workers <= 1:
            return [self.score(record, query) for record in records]
        with ThreadPoolExecutor(max_workers=min(self.config.max_workers, len(records))) as executor:
            return list(executor.map(lambda record: self.score(record, query), records))

    def rank(self, records: Sequence[Mapping[str, Any]], query: str) -> List[Dict[str, Any]]:
        """
        Attach scores to records and sort by combined score, best first.

        The sort is stable, so equally scored records keep the archive's
        original order.
        """
        scored: List[Dict[str, Any]] = []
        for record, result in zip(records, self.score_batch(records, query)):
            enriched = dict(record) if isinstance(record, Mapping) else {}
            enriched["score"] = result.breakdown.combined_score
            enriched["score_breakdown"] = result.breakdown.to_dict()
            enriched["source_trust"] = result.trust_level
            enriched["availability"] = result.availability
            if result.language and "language" not in enriched:
                enriched["language"] = result.language
            scored.append(enriched)
        scored.sort(key=lambda item: item["score"], reverse=True)
        return scored

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    def keyword_relevance(self, record: Mapping[str, Any], query_tokens: Sequence[str]) -> float:
        if not query_tokens:
            return 0.0
        title_tokens = set(self._field_tokens(record, TITLE_FIELDS, "title"))
        body_tokens = set(self._field_tokens(record, BODY_FIELDS, "description", "subject", "keywords"))
        if not title_tokens and not body_tokens:
            return 0.0

        hits = np.array(
            [
                self.config.title_match_weight
                if token in title_tokens
                else self.config.body_match_weight if token in body_tokens else 0.0
                for token in query_tokens
            ],
            dtype=float,
        )
        relevance = float(hits.mean())

        media_type = coerce_string(record.get("mediatype"))
        if media_type and media_type.lower() in self.tables.implied_media_types(query_tokens):
            relevance += self.config.media_type_boost
        return float(np.clip(relevance, 0.0, 1.0))

    def semantic_relevance(self, record: Mapping[str, Any], query_tokens: Sequence[str]) -> float:
        if not query_tokens:
            return 0.0
        document = self._document_tokens(record)
        if not document:
            return 0.0
        # Every distinct token is a candidate, so field order never changes the score
        vocabulary = sorted(set(document))
        lookup = set(vocabulary)

        scores = []
        for token in query_tokens:
            if token in lookup:
                scores.append(1.0)
                continue
            best = 0.0
            if any(synonym in lookup for synonym in self.expander.lookup_synonyms(token)):
                best = self.config.synonym_similarity
            scores.append(max(best, closest_token_similarity(token, vocabulary)))
        return float(np.clip(np.mean(scores), 0.0, 1.0))

    def document_quality(self, record: Mapping[str, Any]) -> float:
        quality = 0.0
        links = nested_mapping(record, "links")
        if any(has_text(record.get(name)) for name in THUMBNAIL_FIELDS) or has_text(links.get("thumbnail")):
            quality += ScoringConstants.THUMBNAIL_INCREMENT
        if original_url(record):
            quality += ScoringConstants.ORIGINAL_URL_INCREMENT
        if has_text(record.get("creator")):
            quality += ScoringConstants.CREATOR_INCREMENT
        if self._has_plausible_year(record):
            quality += ScoringConstants.YEAR_INCREMENT
        if any(collection in self._curated for collection in normalize_list(record.get("collection"))):
            quality += ScoringConstants.COLLECTION_INCREMENT
        return float(np.clip(quality, 0.0, 1.0))

    def popularity(self, record: Mapping[str, Any]) -> float:
        for name in POPULARITY_FIELDS:
            count = extract_number(record.get(name))
            if count is not None:
                break
        else:
            return 0.0
        if count <= 0:
            return 0.0
        return float(np.clip(np.log10(count + 1.0) / ScoringConstants.POPULARITY_LOG_DIVISOR, 0.0, 1.0))

    def trust_level(self, combined: float, quality: float, keyword: float) -> str:
        high = self.config.high_trust_threshold
        if combined >= high and quality >= high:
            return "high"
        if quality < self.config.low_quality_threshold and keyword < self.config.low_relevance_threshold:
            return "low"
        return "medium"

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _query_terms(self, query: str) -> List[str]:
        tokens = tokenize(query) if isinstance(query, str) else []
        significant = [token for token in tokens if self.expander.is_significant(token)]
        return significant or tokens

    @staticmethod
    def _field_tokens(record: Mapping[str, Any], fields: Sequence[str], *metadata_fields: str) -> List[str]:
        values = flatten_fields(record, fields) + flatten_fields(nested_mapping(record, "metadata"), metadata_fields)
        return [token for value in values for token in tokenize(value)]

    @staticmethod
    def _document_tokens(record: Mapping[str, Any]) -> List[str]:
        values = flatten_fields(record, DOCUMENT_FIELDS)
        values += flatten_fields(nested_mapping(record, "metadata"), METADATA_FIELDS)
        return [token for value in values for token in tokenize(value)]

    @staticmethod
    def _has_plausible_year(record: Mapping[str, Any]) -> bool:
        for name in YEAR_FIELDS:
            for value in flatten_field(record.get(name)):
                match = _YEAR.search(value)
                if match and ScoringConstants.MIN_PLAUSIBLE_YEAR <= int(match.group(1)) <= ScoringConstants.MAX_PLAUSIBLE_YEAR:
                    return True
        return False
