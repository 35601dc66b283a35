"""
Archive Relevance Pipeline
Query preparation before the archive search and result post-processing after it
"""

import asyncio
import functools
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Sequence, Union

import numpy as np

from . import metrics
from .constants import FilterConstants, PipelineConstants, SafetyConstants
from .content_safety import (
    FilterMode,
    KeywordSafetyClassifier,
    get_default_classifier,
    normalize_filter_mode,
    resolve_record_severity,
)
from .exceptions import InterpretationError, ValidationError
from .filtering import matches_advanced_filters
from .query_expansion import QueryExpander, QueryExpansion
from .query_interpretation import (
    QueryInterpretation,
    QueryInterpreter,
    safe_interpret_search_query,
    sanitize_query_filters,
)
from .response_parsing import RefinementPlan, parse_refinement_response
from .scoring import RelevanceScorer, ScoringConfig
from .spell_correction import SpellCorrector, SpellcheckResult, create_default_spell_corrector

logger = logging.getLogger(__name__)


class PipelineStage(Enum):
    """Pipeline execution stages for telemetry"""
    INTERPRETATION = "interpretation"
    SPELLCHECK = "spellcheck"
    EXPANSION = "expansion"
    CLASSIFICATION = "classification"
    SCORING = "scoring"
    FILTERING = "filtering"


@dataclass
class PipelineConfig:
    """Configuration for the relevance pipeline"""
    # Query preparation
    enable_interpretation: bool = True
    enable_spellcheck: bool = True
    enable_expansion: bool = True
    max_query_length: int = PipelineConstants.MAX_QUERY_LENGTH

    # Filter sanitization
    allowed_media_types: FrozenSet[str] = FilterConstants.DEFAULT_ALLOWED_MEDIA_TYPES
    year_pattern: str = FilterConstants.YEAR_PATTERN

    # Result processing
    default_mode: str = FilterMode.SAFE.value
    default_page_size: int = PipelineConstants.DEFAULT_PAGE_SIZE
    max_page_size: int = PipelineConstants.MAX_PAGE_SIZE
    max_workers: int = SafetyConstants.DEFAULT_BATCH_WORKERS

    # Performance targets
    target_latency_ms: float = 50.0


@dataclass
class PreparedQuery:
    """Everything derived from a raw user query before it is sent to the archive"""
    raw: str
    interpretation: Optional[QueryInterpretation]
    spellcheck: SpellcheckResult
    expansion: QueryExpansion
    search_query: str
    filters: Dict[str, str] = field(default_factory=dict)
    error: Optional[InterpretationError] = None

    @property
    def intent(self) -> str:
        """Query text that results are scored against."""
        return self.spellcheck.corrected_query


@dataclass
class ProcessedResults:
    """One page of annotated, scored and filtered records"""
    records: List[Dict[str, Any]]
    total: int
    hidden_count: int
    page: int
    page_size: int


class RelevancePipeline:
    """
    Relevance pipeline around an external archive search.

    prepare_query: interpret -> spellcheck -> expand
    process_results: annotate -> mode filter -> score/rank -> advanced filters -> paginate
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        spell_corrector: Optional[SpellCorrector] = None,
        expander: Optional[QueryExpander] = None,
        classifier: Optional[KeywordSafetyClassifier] = None,
        scorer: Optional[RelevanceScorer] = None,
        interpreter: Optional[QueryInterpreter] = None,
    ):
        self.config = config or PipelineConfig()

        self.spell_corrector = spell_corrector or create_default_spell_corrector()
        self.expander = expander or QueryExpander(vocabulary=self.spell_corrector)
        self.classifier = classifier or get_default_classifier()
        self.scorer = scorer or RelevanceScorer(
            config=ScoringConfig(max_workers=self.config.max_workers),
            expander=self.expander,
        )
        self.interpreter = interpreter or QueryInterpreter()

        # Performance tracking
        self._latency_lock = threading.Lock()
        self.stage_latencies: Dict[PipelineStage, List[float]] = {
            stage: [] for stage in PipelineStage
        }

    def prepare_query(self, raw: str) -> PreparedQuery:
        """
        Turn a raw user query into the query sent to the archive.

        Interpretation failures fall back to the raw text; the returned
        PreparedQuery carries the error for the caller to report.
        """
        if not isinstance(raw, str):
            raise ValidationError(f"Query must be a string, got {type(raw).__name__}")
        text = raw.strip()[: self.config.max_query_length]

        interpretation: Optional[QueryInterpretation] = None
        filters: Dict[str, str] = {}
        error: Optional[InterpretationError] = None
        query_text = text

        if self.config.enable_interpretation and text:
            stage_start = datetime.now()
            result = safe_interpret_search_query(
                text,
                allowed_media_types=self.config.allowed_media_types,
                year_pattern=self.config.year_pattern,
                interpreter=self.interpreter.interpret,
            )
            self._record_latency(PipelineStage.INTERPRETATION, stage_start)
            interpretation, filters, error = result.interpretation, result.filters, result.error
            if interpretation is not None and interpretation.query:
                query_text = interpretation.query
        metrics.QUERIES_PREPARED.labels(interpreted=str(interpretation is not None).lower()).inc()

        stage_start = datetime.now()
        if self.config.enable_spellcheck:
            with self.spell_corrector.lock:
                spellcheck = self.spell_corrector.check_query(query_text)
            if spellcheck.corrections:
                metrics.SPELL_CORRECTIONS.inc(len(spellcheck.corrections))
        else:
            spellcheck = SpellcheckResult(original_query=query_text, corrected_query=query_text)
        self._record_latency(PipelineStage.SPELLCHECK, stage_start)

        stage_start = datetime.now()
        if self.config.enable_expansion:
            expansion = self.expander.expand(spellcheck.corrected_query)
        else:
            expansion = QueryExpansion(hybrid_expression=None)
        self._record_latency(PipelineStage.EXPANSION, stage_start)

        return PreparedQuery(
            raw=raw,
            interpretation=interpretation,
            spellcheck=spellcheck,
            expansion=expansion,
            search_query=expansion.hybrid_expression or spellcheck.corrected_query,
            filters=filters,
            error=error,
        )

    def process_results(
        self,
        records: Sequence[Mapping[str, Any]],
        query: Union[str, PreparedQuery],
        mode: Union[FilterMode, str, None] = None,
        filters: Optional[Mapping[str, Any]] = None,
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> ProcessedResults:
        """
        Annotate, filter, rank and paginate archive records.

        `filters` are sanitized first; a PreparedQuery contributes its
        interpreted filters, which explicit `filters` override.
        """
        pipeline_start = datetime.now()
        filter_mode = normalize_filter_mode(mode if mode is not None else self.config.default_mode)
        intent = query.intent if isinstance(query, PreparedQuery) else (query if isinstance(query, str) else "")

        merged: Dict[str, Any] = dict(query.filters) if isinstance(query, PreparedQuery) else {}
        if filters:
            merged.update(filters)
        active_filters = sanitize_query_filters(
            merged,
            allowed_media_types=self.config.allowed_media_types,
            year_pattern=self.config.year_pattern,
        )

        stage_start = datetime.now()
        annotated = self.classifier.annotate_batch(list(records))
        for record in annotated:
            _, severity = resolve_record_severity(record)
            metrics.RECORDS_CLASSIFIED.labels(severity=severity.value).inc()
        self._record_latency(PipelineStage.CLASSIFICATION, stage_start)

        visible = [record for record in annotated if self.classifier.matches_mode(record, filter_mode)]
        hidden_count = 0
        if filter_mode in (FilterMode.SAFE, FilterMode.MODERATE):
            hidden_count = len(annotated) - len(visible)
            if hidden_count:
                metrics.RECORDS_HIDDEN.labels(mode=filter_mode.value).inc(hidden_count)

        stage_start = datetime.now()
        ranked = self.scorer.rank(visible, intent)
        self._record_latency(PipelineStage.SCORING, stage_start)

        stage_start = datetime.now()
        matching = [record for record in ranked if matches_advanced_filters(record, active_filters)]
        self._record_latency(PipelineStage.FILTERING, stage_start)

        size = self._page_size(page_size)
        current = max(1, int(page)) if isinstance(page, int) else 1
        offset = (current - 1) * size

        total_latency = (datetime.now() - pipeline_start).total_seconds() * 1000
        if total_latency > self.config.target_latency_ms:
            logger.warning(
                "SLA violation - result processing took %.2fms (target %.2fms) for %d records",
                total_latency,
                self.config.target_latency_ms,
                len(annotated),
            )

        return ProcessedResults(
            records=matching[offset : offset + size],
            total=len(matching),
            hidden_count=hidden_count,
            page=current,
            page_size=size,
        )

    async def aprepare_query(self, raw: str) -> PreparedQuery:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.prepare_query, raw)

    async def aprocess_results(
        self,
        records: Sequence[Mapping[str, Any]],
        query: Union[str, PreparedQuery],
        mode: Union[FilterMode, str, None] = None,
        filters: Optional[Mapping[str, Any]] = None,
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> ProcessedResults:
        """process_results on the default executor, keeping the event loop free."""
        loop = asyncio.get_running_loop()
        call = functools.partial(
            self.process_results,
            records,
            query,
            mode=mode,
            filters=filters,
            page=page,
            page_size=page_size,
        )
        return await loop.run_in_executor(None, call)

    def plan_refinement(self, source: str, raw_response: Any = None, model: Optional[str] = None) -> RefinementPlan:
        """
        Refinement plan for `source` from a refinement-service response.

        Without a usable response the heuristic expansion of `source`
        stands in for the optimized query.
        """
        plan = parse_refinement_response(source, model, raw_response)
        if plan.optimized_query == plan.source and not plan.keywords:
            heuristic = self.expander.build_heuristic_refinement(plan.source)
            if heuristic:
                plan.optimized_query = heuristic
                plan.model = plan.model or "heuristic"
        return plan

    def get_performance_report(self) -> Dict[str, Any]:
        """Latency percentiles per stage plus frequency-model statistics"""
        report: Dict[str, Any] = {
            "stage_latencies": {},
            "spell_model": self.spell_corrector.model.get_stats(),
        }
        with self._latency_lock:
            snapshot = {stage: list(values) for stage, values in self.stage_latencies.items()}

        for stage, latencies in snapshot.items():
            if latencies:
                report["stage_latencies"][stage.value] = {
                    "p50": float(np.percentile(latencies, 50)),
                    "p95": float(np.percentile(latencies, 95)),
                    "p99": float(np.percentile(latencies, 99)),
                    "mean": float(np.mean(latencies)),
                    "count": len(latencies),
                }
        return report

    def _page_size(self, page_size: Optional[int]) -> int:
        if not isinstance(page_size, int) or page_size <= 0:
            return self.config.default_page_size
        return min(page_size, self.config.max_page_size)

    def _record_latency(self, stage: PipelineStage, started: datetime):
        """Record stage latency for telemetry"""
        latency_ms = (datetime.now() - started).total_seconds() * 1000
        metrics.STAGE_LATENCY.labels(stage=stage.value).observe(latency_ms)
        with self._latency_lock:
            latencies = self.stage_latencies[stage]
            latencies.append(latency_ms)
            # Keep only the most recent window
            if len(latencies) > PipelineConstants.LATENCY_WINDOW:
                del latencies[: -PipelineConstants.LATENCY_WINDOW]
