"""
Constants and Configuration Values
Centralized constants to eliminate magic numbers
"""


class SpellingConstants:
    """
    Constants for the spell corrector.

    The alphabet is the set of characters tried by substitution and
    insertion edits; it matches the token pattern used everywhere else.
    """

    ALPHABET = "abcdefghijklmnopqrstuvwxyz0123456789"
    TOKEN_PATTERN = r"[a-z0-9]+"

    # Frequency model bounds (None disables eviction)
    DEFAULT_MAX_VOCABULARY_SIZE = 50_000
    MAX_EDIT_DISTANCE = 2
    # Longer tokens only get distance-1 candidates
    MAX_DISTANCE2_LENGTH = 12


class ExpansionConstants:
    """Constants for query expansion."""

    WILDCARD_MIN_LENGTH = 4
    MAX_SYNONYMS_PER_TOKEN = 4
    MAX_SUGGESTIONS = 5

    # A single token shorter than this is never expanded
    MIN_EXPANDABLE_LENGTH = 3

    # Suffix heuristics for plural/singular variants
    PLURAL_ES_SUFFIXES = ("s", "x", "z", "ch", "sh")


class ScoringConstants:
    """
    Constants for relevance scoring.

    The weights must sum to 1.0 so a perfect record scores exactly 1.0.
    """

    KEYWORD_WEIGHT = 0.45
    SEMANTIC_WEIGHT = 0.3
    QUALITY_WEIGHT = 0.15
    POPULARITY_WEIGHT = 0.1

    TITLE_MATCH_WEIGHT = 1.0
    BODY_MATCH_WEIGHT = 0.6
    MEDIA_TYPE_BOOST = 0.15

    SYNONYM_SIMILARITY = 0.85

    # Authenticity increments
    THUMBNAIL_INCREMENT = 0.2
    ORIGINAL_URL_INCREMENT = 0.2
    CREATOR_INCREMENT = 0.2
    YEAR_INCREMENT = 0.2
    COLLECTION_INCREMENT = 0.2

    # log10(downloads + 1) / POPULARITY_LOG_DIVISOR
    POPULARITY_LOG_DIVISOR = 4.0

    HIGH_TRUST_THRESHOLD = 0.7
    LOW_QUALITY_THRESHOLD = 0.4
    LOW_RELEVANCE_THRESHOLD = 0.5

    MIN_PLAUSIBLE_YEAR = 1000
    MAX_PLAUSIBLE_YEAR = 2100

    SCORE_PRECISION = 3


class SafetyConstants:
    """Constants for keyword safety classification."""

    SEVERITY_RANK = {"none": 0, "mild": 1, "violent": 2, "explicit": 3}

    # Single-word keywords at least this long also match as a word prefix
    PREFIX_MATCH_MIN_LENGTH = 6

    DEFAULT_BATCH_WORKERS = 8


class FilterConstants:
    """Constants for filter sanitization."""

    DEFAULT_ALLOWED_MEDIA_TYPES = frozenset(
        {"texts", "image", "movies", "audio", "software", "data", "web", "collection", "etree"}
    )
    YEAR_PATTERN = r"^\d{4}$"

    LANGUAGE_PATTERN = r"^[a-z][a-z\s-]{1,31}$"
    COLLECTION_TOKEN_PATTERN = r"^[a-z0-9][a-z0-9_-]{1,63}$"
    UPLOADER_PATTERN = r"^[a-z0-9][a-z0-9_.@-]{1,63}$"
    MAX_SUBJECT_LENGTH = 80

    TRUST_LEVELS = ("high", "medium", "low")
    AVAILABILITY_LEVELS = ("online", "archived-only")


class PipelineConstants:
    """Constants for the relevance pipeline."""

    DEFAULT_PAGE_SIZE = 20
    MAX_PAGE_SIZE = 100
    MAX_QUERY_LENGTH = 1000
    LATENCY_WINDOW = 1000


class MetricsConstants:
    """Buckets and limits for metrics histograms."""

    # Latency buckets in milliseconds for in-memory pipeline stages
    LATENCY_BUCKETS = [0.5, 1, 2.5, 5, 10, 25, 50, 100, 250]


class RefinementConstants:
    """Limits applied to parsed refinement plans."""

    MAX_PLAN_KEYWORDS = 8
    MAX_CONFIDENCE_PERCENT = 100
