"""
Frequency-based spell correction for archive queries.

The corrector keeps a word-frequency model seeded from a vocabulary file and
proposes the most frequent known word within edit distance one (then two)
for out-of-vocabulary tokens. Every accepted correction is learned back into
the model, so the model is bounded with least-recently-used eviction to keep
long-running services from growing without limit.
"""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set

from cachetools import LRUCache

from .config import load_vocabulary
from .constants import SpellingConstants
from .normalization import ascii_tokens

logger = logging.getLogger(__name__)


def normalize_word(word: str) -> Optional[str]:
    """Lowercase and drop every character outside `[a-z0-9]`; None when nothing is left."""
    if not isinstance(word, str):
        return None
    cleaned = "".join(ascii_tokens(word))
    return cleaned or None


@dataclass
class FrequencyStats:
    """Frequency model statistics"""
    learned: int = 0
    hits: int = 0
    misses: int = 0
    evictions: int = 0


class _EvictingLRUCache(LRUCache):
    """LRUCache that reports the entries it evicts."""

    def __init__(self, maxsize: float, on_evict) -> None:
        super().__init__(maxsize=maxsize)
        self._on_evict = on_evict

    def popitem(self):
        key, value = super().popitem()
        self._on_evict(key, value)
        return key, value


class FrequencyModel:
    """
    Bounded, thread-safe token -> count mapping.

    Counts only grow while an entry is resident; once ``max_size`` distinct
    tokens are held, the least recently used token is evicted to make room.
    ``max_size=None`` keeps every token.
    """

    def __init__(self, max_size: Optional[int] = SpellingConstants.DEFAULT_MAX_VOCABULARY_SIZE) -> None:
        if max_size is not None and max_size <= 0:
            raise ValueError("max_size must be positive or None")
        self.max_size = max_size
        self._lock = threading.RLock()
        self._stats = FrequencyStats()
        self._counts = _EvictingLRUCache(
            maxsize=max_size if max_size is not None else math.inf,
            on_evict=self._record_eviction,
        )

    def _record_eviction(self, key: str, value: int) -> None:
        self._stats.evictions += 1
        logger.debug("Evicted '%s' (count=%d) from frequency model", key, value)

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def learn(self, token: str) -> None:
        with self._lock:
            self._counts[token] = self._counts.get(token, 0) + 1
            self._stats.learned += 1

    def count(self, token: str) -> int:
        with self._lock:
            return self._counts.get(token, 0)

    def record_lookup(self, hit: bool) -> None:
        with self._lock:
            if hit:
                self._stats.hits += 1
            else:
                self._stats.misses += 1

    def known_subset(self, tokens: Iterable[str]) -> Set[str]:
        """Tokens from ``tokens`` that are resident, checked under one lock acquisition."""
        with self._lock:
            counts = self._counts
            return {token for token in tokens if token in counts}

    def __contains__(self, token: object) -> bool:
        with self._lock:
            return token in self._counts

    def __len__(self) -> int:
        with self._lock:
            return len(self._counts)

    def tokens(self) -> List[str]:
        with self._lock:
            return list(self._counts.keys())

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "size": len(self._counts),
                "max_size": self.max_size,
                "learned": self._stats.learned,
                "hits": self._stats.hits,
                "misses": self._stats.misses,
                "evictions": self._stats.evictions,
            }


@dataclass
class Correction:
    """A single word-level change applied to a query."""

    original: str
    corrected: str


@dataclass
class SpellcheckResult:
    original_query: str
    corrected_query: str
    corrections: List[Correction] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.corrections)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "originalQuery": self.original_query,
            "correctedQuery": self.corrected_query,
            "corrections": [
                {"original": c.original, "corrected": c.corrected} for c in self.corrections
            ],
        }


@dataclass
class SpellCorrectorConfig:
    """Configuration for SpellCorrector."""

    max_vocabulary_size: Optional[int] = SpellingConstants.DEFAULT_MAX_VOCABULARY_SIZE
    max_edit_distance: int = SpellingConstants.MAX_EDIT_DISTANCE
    max_distance2_length: int = SpellingConstants.MAX_DISTANCE2_LENGTH
    alphabet: str = SpellingConstants.ALPHABET
    learn_corrections: bool = True


class SpellCorrector:
    """
    Norvig-style corrector over an owned FrequencyModel.

    Known words are never altered, even when a more frequent neighbour
    exists. Unknown words resolve to the most frequent known candidate at
    distance one, then distance two, with ties broken by the
    lexicographically smallest word.
    """

    def __init__(
        self,
        seed_words: Iterable[str] = (),
        model: Optional[FrequencyModel] = None,
        config: Optional[SpellCorrectorConfig] = None,
    ) -> None:
        self.config = config or SpellCorrectorConfig()
        self.model = model if model is not None else FrequencyModel(max_size=self.config.max_vocabulary_size)
        self.alphabet = self.config.alphabet
        self.learn_words(seed_words)

    @property
    def lock(self) -> threading.RLock:
        return self.model.lock

    def learn_text(self, text: str) -> None:
        """Increment the count of every token in ``text``."""
        if not isinstance(text, str):
            return
        self.learn_words(ascii_tokens(text))

    def learn_words(self, words: Iterable[str]) -> None:
        with self.lock:
            for word in words:
                normalized = normalize_word(word)
                if normalized:
                    self.model.learn(normalized)

    def known(self, word: str) -> bool:
        normalized = normalize_word(word)
        return normalized is not None and normalized in self.model

    def frequency(self, word: str) -> int:
        normalized = normalize_word(word)
        return self.model.count(normalized) if normalized else 0

    def vocabulary(self) -> List[str]:
        return self.model.tokens()

    def correct(self, word: str) -> Optional[str]:
        normalized = normalize_word(word)
        if not normalized:
            return None

        with self.lock:
            if normalized in self.model:
                self.model.record_lookup(hit=True)
                return normalized
            self.model.record_lookup(hit=False)

            if self.config.max_edit_distance >= 1:
                candidates = self._known(self._edits1(normalized))
                if candidates:
                    return self._highest_frequency(candidates)

            if self.config.max_edit_distance >= 2 and len(normalized) <= self.config.max_distance2_length:
                candidates = self._known_edits2(normalized)
                if candidates:
                    return self._highest_frequency(candidates)

        return normalized

    def check_query(self, query: str) -> SpellcheckResult:
        """
        Correct each whitespace-separated token of ``query``.

        Corrected tokens are learned back into the model. When nothing
        changes the original string is returned verbatim, spacing included.
        """
        if not isinstance(query, str) or not query.strip():
            return SpellcheckResult(original_query=query, corrected_query=query)

        corrected_tokens: List[str] = []
        corrections: List[Correction] = []

        with self.lock:
            for token in query.split():
                normalized = normalize_word(token)
                if not normalized:
                    corrected_tokens.append(token)
                    continue

                corrected = self.correct(token)
                if corrected and corrected != normalized:
                    corrections.append(Correction(original=token, corrected=corrected))
                    corrected_tokens.append(corrected)
                    if self.config.learn_corrections:
                        self.model.learn(corrected)
                else:
                    corrected_tokens.append(token)

        if corrections:
            logger.debug(
                "Spellcheck corrected %d token(s): %s",
                len(corrections),
                ", ".join(f"{c.original}->{c.corrected}" for c in corrections),
            )
            corrected_query = " ".join(corrected_tokens)
        else:
            corrected_query = query

        return SpellcheckResult(
            original_query=query,
            corrected_query=corrected_query,
            corrections=corrections,
        )

    def _known(self, words: Iterable[str]) -> Set[str]:
        return self.model.known_subset(words)

    def _known_edits2(self, word: str) -> Set[str]:
        return self.model.known_subset(edit2 for edit in self._edits1(word) for edit2 in self._edits1(edit))

    def _edits1(self, word: str) -> Set[str]:
        splits = [(word[:i], word[i:]) for i in range(len(word) + 1)]
        deletes = [left + right[1:] for left, right in splits if right]
        transposes = [left + right[1] + right[0] + right[2:] for left, right in splits if len(right) > 1]
        replaces = [left + c + right[1:] for left, right in splits if right for c in self.alphabet]
        inserts = [left + c + right for left, right in splits for c in self.alphabet]
        edits = set(deletes + transposes + replaces + inserts)
        edits.discard("")
        return edits

    def _highest_frequency(self, words: Iterable[str]) -> str:
        # Highest count first, then lexicographic minimum.
        return min(words, key=lambda w: (-self.model.count(w), w))


def create_default_spell_corrector(config: Optional[SpellCorrectorConfig] = None) -> SpellCorrector:
    """Corrector seeded from the bundled vocabulary file."""
    return SpellCorrector(seed_words=load_vocabulary(), config=config)
