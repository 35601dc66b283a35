"""
Heuristic query expansion for the archive search backend.

This module provides a deterministic QueryExpander that rewrites a user
query into a hybrid search expression (literal phrase, fuzzy clauses,
wildcard clauses and quoted synonyms) and proposes alternative phrasings.
Synonym, stop-word and plural tables are data loaded from YAML so they can
be audited without touching code; a missing entry simply yields no clause.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Tuple
import logging

from .config import SYNONYMS_FILE, load_optional_yaml, resolve_data_path
from .constants import ExpansionConstants
from .normalization import tokenize
from .spell_correction import SpellCorrector

logger = logging.getLogger(__name__)


@dataclass
class QueryExpanderConfig:
    """
    Configuration for QueryExpander.

    The defaults mirror the limits the archive backend handles well; raising
    them produces longer expressions without much recall gain.
    """

    enable_synonyms: bool = True
    wildcard_min_length: int = ExpansionConstants.WILDCARD_MIN_LENGTH
    max_synonyms_per_token: int = ExpansionConstants.MAX_SYNONYMS_PER_TOKEN
    max_suggestions: int = ExpansionConstants.MAX_SUGGESTIONS
    min_expandable_length: int = ExpansionConstants.MIN_EXPANDABLE_LENGTH


@dataclass(frozen=True)
class ExpansionTables:
    """Static lookup data driving the expander."""

    synonyms: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)
    stop_words: FrozenSet[str] = frozenset()
    irregular_plurals: Mapping[str, str] = field(default_factory=dict)
    uncountable: FrozenSet[str] = frozenset()

    @classmethod
    def from_payload(cls, payload: Mapping[str, object]) -> "ExpansionTables":
        """Build tables from a parsed payload, skipping malformed entries."""
        synonyms: Dict[str, Tuple[str, ...]] = {}
        raw_synonyms = payload.get("synonyms")
        if isinstance(raw_synonyms, Mapping):
            for term, alternatives in raw_synonyms.items():
                if not isinstance(term, str) or not isinstance(alternatives, (list, tuple)):
                    logger.warning("Skipping malformed synonym entry for %r", term)
                    continue
                cleaned = _unique_lower(alternatives)
                if cleaned:
                    synonyms[term.strip().lower()] = tuple(cleaned)

        plurals: Dict[str, str] = {}
        raw_plurals = payload.get("irregular_plurals")
        if isinstance(raw_plurals, Mapping):
            for singular, plural in raw_plurals.items():
                if isinstance(singular, str) and isinstance(plural, str):
                    plurals[singular.strip().lower()] = plural.strip().lower()

        return cls(
            synonyms=synonyms,
            stop_words=frozenset(_unique_lower(payload.get("stop_words"))),
            irregular_plurals=plurals,
            uncountable=frozenset(_unique_lower(payload.get("uncountable"))),
        )

    @classmethod
    def from_file(cls, path: str | Path | None = None) -> "ExpansionTables":
        return cls.from_payload(load_optional_yaml(path or resolve_data_path(SYNONYMS_FILE)))


def _unique_lower(values: object) -> List[str]:
    if not isinstance(values, (list, tuple)):
        return []
    seen: List[str] = []
    for value in values:
        if isinstance(value, str) and value.strip():
            normalized = value.strip().lower()
            if normalized not in seen:
                seen.append(normalized)
    return seen


@dataclass
class QueryTokens:
    original: List[str]
    normalized: List[str]


@dataclass
class QueryExpansion:
    """Expansion output handed to the search layer."""

    hybrid_expression: Optional[str]
    alternative_queries: List[str] = field(default_factory=list)


def tokenize_query(query: str) -> QueryTokens:
    if not isinstance(query, str):
        return QueryTokens(original=[], normalized=[])
    return QueryTokens(original=query.split(), normalized=tokenize(query))


class QueryExpander:
    """
    Deterministic query expander.

    Behaviour:
    - Multi-term (or long single-term) queries get a hybrid expression that
      ORs the literal phrase with fuzzy, wildcard and synonym clauses.
    - A single short token is left alone; expanding it only adds noise.
    - When a SpellCorrector is supplied its vocabulary contributes related
      word forms (e.g. "historic" -> "historical") and vets plural variants.
    """

    def __init__(
        self,
        tables: Optional[ExpansionTables] = None,
        config: Optional[QueryExpanderConfig] = None,
        vocabulary: Optional[SpellCorrector] = None,
    ) -> None:
        self.tables = tables if tables is not None else ExpansionTables.from_file()
        self.config = config or QueryExpanderConfig()
        self.vocabulary = vocabulary

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def is_significant(self, token: str) -> bool:
        return len(token) > 1 and token not in self.tables.stop_words

    def lookup_synonyms(self, token: str) -> List[str]:
        """Table synonyms first, then vocabulary-backed related forms."""
        found: List[str] = []
        for synonym in self.tables.synonyms.get(token, ()):
            if synonym != token and synonym not in found:
                found.append(synonym)
        for related in self._related_forms(token):
            if related not in found:
                found.append(related)
        return found[: self.config.max_synonyms_per_token]

    def pluralize(self, token: str) -> Optional[str]:
        if not self._inflectable(token):
            return None
        if token in self.tables.irregular_plurals:
            return self.tables.irregular_plurals[token]
        if token.endswith("y") and len(token) > 2 and token[-2] not in "aeiou":
            return token[:-1] + "ies"
        if token.endswith(ExpansionConstants.PLURAL_ES_SUFFIXES):
            return token + "es"
        return token + "s"

    def singularize(self, token: str) -> Optional[str]:
        if not self._inflectable(token):
            return None
        for singular, plural in self.tables.irregular_plurals.items():
            if plural == token:
                return singular
        if token.endswith("ies") and len(token) > 4:
            return token[:-3] + "y"
        if token.endswith(("ches", "shes", "xes", "zes", "sses")):
            return token[:-2]
        if token.endswith("s") and not token.endswith(("ss", "us", "is")) and len(token) > 3:
            return token[:-1]
        return None

    def inflect(self, token: str) -> Optional[str]:
        """Singular form of a plural token, plural form of anything else."""
        singular = self.singularize(token)
        variant = singular if singular else self.pluralize(token)
        if variant and self._acceptable_form(variant):
            return variant
        return None

    # ------------------------------------------------------------------
    # Expansion
    # ------------------------------------------------------------------

    def build_hybrid_search_expression(self, query: str, enable_synonyms: Optional[bool] = None) -> Optional[str]:
        """
        Build a disjunctive expression for the archive backend.

        Returns None when the query is empty or too trivial to expand.
        """
        if not isinstance(query, str):
            return None
        sanitized = " ".join(query.split())
        if not sanitized:
            return None

        tokens = tokenize_query(sanitized).normalized
        if self._is_trivial(tokens):
            return None

        significant = self._significant_terms(tokens)
        use_synonyms = self.config.enable_synonyms if enable_synonyms is None else enable_synonyms

        segments: List[str] = [f"({sanitized})"]

        if significant:
            segments.append("(" + " ".join(f"{token}~" for token in significant) + ")")

        wildcards = [f"{token}*" for token in significant if len(token) >= self.config.wildcard_min_length]
        if wildcards:
            segments.append("(" + " ".join(wildcards) + ")")

        if use_synonyms:
            synonyms: List[str] = []
            for token in significant:
                for synonym in self.lookup_synonyms(token):
                    if synonym not in tokens and synonym not in synonyms:
                        synonyms.append(synonym)
            if synonyms:
                segments.append("(" + " OR ".join(f'"{synonym}"' for synonym in synonyms) + ")")

        unique_segments: List[str] = []
        for segment in segments:
            if segment not in unique_segments:
                unique_segments.append(segment)
        return " OR ".join(unique_segments)

    def suggest_alternative_queries(self, query: str) -> List[str]:
        """
        Up to ``max_suggestions`` alternative phrasings, never the query itself.

        Inflected variants come first, then synonym substitutions taken
        round-robin across terms so one term cannot crowd out the others,
        then a wildcard variant as a last resort.
        """
        parsed = tokenize_query(query)
        normalized = parsed.normalized
        if not normalized:
            return []

        template = self._casing_template(parsed)
        original_key = " ".join(query.split()).lower()
        suggestions: List[str] = []
        seen = {original_key}

        def add(position: int, replacement: str) -> bool:
            words = list(template)
            words[position] = _match_case(template[position], replacement)
            candidate = " ".join(words)
            key = candidate.lower()
            if key not in seen:
                seen.add(key)
                suggestions.append(candidate)
            return len(suggestions) >= self.config.max_suggestions

        for position, token in enumerate(normalized):
            if not self.is_significant(token):
                continue
            variant = self.inflect(token)
            if variant and add(position, variant):
                return suggestions

        synonym_lists = [
            (position, self.lookup_synonyms(token))
            for position, token in enumerate(normalized)
            if self.is_significant(token)
        ]
        depth = max((len(entries) for _, entries in synonym_lists), default=0)
        for rank in range(depth):
            for position, entries in synonym_lists:
                if rank < len(entries) and add(position, entries[rank]):
                    return suggestions

        wildcard = " ".join(
            f"{token}*" if len(token) >= self.config.wildcard_min_length else token for token in normalized
        )
        if wildcard.lower() not in seen:
            suggestions.append(wildcard)

        return suggestions[: self.config.max_suggestions]

    def build_heuristic_refinement(self, query: str) -> Optional[str]:
        """
        Refined search expression for ``query``, or None for trivial input.

        The hybrid expression is extended with the top plain-phrase
        alternatives so the backend also matches common rephrasings.
        """
        expression = self.build_hybrid_search_expression(query, enable_synonyms=True)
        if expression is None:
            return None

        phrases = [
            f'"{alternative}"'
            for alternative in self.suggest_alternative_queries(query)
            if "*" not in alternative and " " in alternative
        ][:2]
        if phrases:
            expression = f"{expression} OR ({' OR '.join(phrases)})"
        return expression

    def expand(self, query: str) -> QueryExpansion:
        return QueryExpansion(
            hybrid_expression=self.build_hybrid_search_expression(query),
            alternative_queries=self.suggest_alternative_queries(query),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _is_trivial(self, tokens: Sequence[str]) -> bool:
        if not tokens:
            return True
        if not self._significant_terms(tokens):
            return True
        return len(tokens) == 1 and len(tokens[0]) < self.config.min_expandable_length

    def _significant_terms(self, tokens: Iterable[str]) -> List[str]:
        terms: List[str] = []
        for token in tokens:
            if self.is_significant(token) and token not in terms:
                terms.append(token)
        return terms

    def _inflectable(self, token: str) -> bool:
        return len(token) >= 3 and token.isalpha() and token not in self.tables.uncountable

    def _acceptable_form(self, word: str) -> bool:
        # Without a vocabulary every rule-built form is accepted.
        if self.vocabulary is None:
            return True
        return self.vocabulary.known(word)

    def _related_forms(self, token: str) -> List[str]:
        if self.vocabulary is None or not token.isalpha() or len(token) < 4:
            return []
        candidates = [token + "al", token + "ally"]
        if token.endswith("al"):
            candidates.append(token[:-2])
        if token.endswith("ical"):
            candidates.append(token[:-2])
        return [c for c in candidates if c != token and self.vocabulary.known(c)]

    def _casing_template(self, parsed: QueryTokens) -> List[str]:
        # Keep the user's casing when whitespace tokens line up with normalized ones.
        if len(parsed.original) == len(parsed.normalized) and all(
            tokenize(original) == [normalized]
            for original, normalized in zip(parsed.original, parsed.normalized)
        ):
            return [
                original if original.isalnum() else normalized
                for original, normalized in zip(parsed.original, parsed.normalized)
            ]
        return list(parsed.normalized)


def _match_case(template: str, word: str) -> str:
    if len(template) > 1 and template.isupper():
        return word.upper()
    if template[:1].isupper():
        return word[:1].upper() + word[1:]
    return word


@lru_cache(maxsize=1)
def get_default_expander() -> QueryExpander:
    """Process-wide expander over the bundled tables (no vocabulary)."""
    return QueryExpander()


def build_hybrid_search_expression(query: str, enable_synonyms: bool = True) -> Optional[str]:
    return get_default_expander().build_hybrid_search_expression(query, enable_synonyms)


def suggest_alternative_queries(query: str) -> List[str]:
    return get_default_expander().suggest_alternative_queries(query)


def build_heuristic_refinement(query: str) -> Optional[str]:
    return get_default_expander().build_heuristic_refinement(query)
