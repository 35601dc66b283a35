"""
Prometheus metrics for the relevance pipeline.

Metrics live on the default registry so an embedding service exposes them
with its own ``generate_latest`` endpoint.
"""

from prometheus_client import Counter, Histogram

from .constants import MetricsConstants

QUERIES_PREPARED = Counter(
    "archive_relevance_queries_prepared_total",
    "Queries run through interpretation, spellcheck and expansion",
    ["interpreted"],
)
SPELL_CORRECTIONS = Counter(
    "archive_relevance_spell_corrections_total",
    "Query tokens replaced by the spell corrector",
)
RECORDS_CLASSIFIED = Counter(
    "archive_relevance_records_classified_total",
    "Records annotated by the keyword safety classifier",
    ["severity"],
)
RECORDS_HIDDEN = Counter(
    "archive_relevance_records_hidden_total",
    "Records hidden by the content filter mode",
    ["mode"],
)
STAGE_LATENCY = Histogram(
    "archive_relevance_stage_latency_ms",
    "Pipeline stage latency (ms)",
    ["stage"],
    buckets=MetricsConstants.LATENCY_BUCKETS,
)
