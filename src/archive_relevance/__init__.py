"""
Archive Relevance
Query rewriting, spelling correction, content safety and ranking for archive search
"""

from .pipeline import (
    RelevancePipeline,
    PipelineConfig,
    PipelineStage,
    PreparedQuery,
    ProcessedResults
)

from .spell_correction import (
    SpellCorrector,
    SpellCorrectorConfig,
    FrequencyModel,
    Correction,
    SpellcheckResult,
    create_default_spell_corrector
)

from .query_expansion import (
    QueryExpander,
    QueryExpanderConfig,
    QueryExpansion,
    ExpansionTables,
    build_hybrid_search_expression,
    suggest_alternative_queries,
    build_heuristic_refinement
)

from .content_safety import (
    KeywordSafetyClassifier,
    KeywordSet,
    SafetyClassification,
    Severity,
    FilterMode,
    load_keyword_sets,
    normalize_filter_mode
)

from .scoring import (
    RelevanceScorer,
    ScoringConfig,
    ScoreBreakdown,
    ScoreResult
)

from .query_interpretation import (
    QueryInterpreter,
    QueryInterpretation,
    QueryFilters,
    SafeInterpretationResult,
    interpret_search_query,
    sanitize_query_filters,
    safe_interpret_search_query
)

from .filtering import (
    matches_advanced_filters,
    normalize_availability,
    normalize_nsfw_mode,
    normalize_source_trust
)

from .response_parsing import (
    RefinementPlan,
    coerce_response_text,
    parse_refinement_response
)

from .exceptions import (
    ArchiveRelevanceException,
    ConfigurationError,
    InterpretationError,
    PayloadParseError,
    ValidationError
)

__version__ = "1.0.0"

__all__ = [
    # Main pipeline
    "RelevancePipeline",
    "PipelineConfig",
    "PipelineStage",
    "PreparedQuery",
    "ProcessedResults",

    # Spelling
    "SpellCorrector",
    "SpellCorrectorConfig",
    "FrequencyModel",
    "Correction",
    "SpellcheckResult",
    "create_default_spell_corrector",

    # Expansion
    "QueryExpander",
    "QueryExpanderConfig",
    "QueryExpansion",
    "ExpansionTables",
    "build_hybrid_search_expression",
    "suggest_alternative_queries",
    "build_heuristic_refinement",

    # Content safety
    "KeywordSafetyClassifier",
    "KeywordSet",
    "SafetyClassification",
    "Severity",
    "FilterMode",
    "load_keyword_sets",
    "normalize_filter_mode",

    # Scoring
    "RelevanceScorer",
    "ScoringConfig",
    "ScoreBreakdown",
    "ScoreResult",

    # Interpretation and filters
    "QueryInterpreter",
    "QueryInterpretation",
    "QueryFilters",
    "SafeInterpretationResult",
    "interpret_search_query",
    "sanitize_query_filters",
    "safe_interpret_search_query",
    "matches_advanced_filters",
    "normalize_availability",
    "normalize_nsfw_mode",
    "normalize_source_trust",

    # Refinement payloads
    "RefinementPlan",
    "coerce_response_text",
    "parse_refinement_response",

    # Errors
    "ArchiveRelevanceException",
    "ConfigurationError",
    "InterpretationError",
    "PayloadParseError",
    "ValidationError",
]
