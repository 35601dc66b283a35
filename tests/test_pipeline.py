"""
Tests for the relevance pipeline

Tests cover:
- Query preparation (interpretation, spellcheck, expansion) and its fallbacks
- Result processing across filter modes
- Interpreted and explicit filters
- Pagination
- Async wrappers
- Refinement planning and performance reporting
"""

import pytest
from prometheus_client import REGISTRY

from archive_relevance.exceptions import InterpretationError, ValidationError
from archive_relevance.pipeline import (
    PipelineConfig,
    PipelineStage,
    PreparedQuery,
    ProcessedResults,
    RelevancePipeline,
)
from archive_relevance.spell_correction import SpellCorrector


SEED_WORDS = ["history", "of", "whaling", "logs", "moon", "landing", "apollo", "retrospective"]

RECORDS = [
    {"identifier": "filler", "title": "Gardening tips", "downloads": 10},
    {
        "identifier": "landing",
        "title": "Apollo 11 moon landing",
        "creator": "NASA",
        "year": "1969",
        "thumbnail": "https://archive.org/services/img/landing",
        "original_url": "https://nasa.gov/apollo11",
        "downloads": 50000,
    },
    {"identifier": "explicit", "title": "moon landing porn parody"},
    {"identifier": "mild", "title": "moon landing burlesque"},
]


def make_pipeline(**config_overrides):
    return RelevancePipeline(
        config=PipelineConfig(**config_overrides),
        spell_corrector=SpellCorrector(seed_words=SEED_WORDS),
    )


class BrokenInterpreter:
    def interpret(self, text):
        raise RuntimeError("interpreter offline")


class TestPrepareQuery:
    """Test query preparation"""

    def setup_method(self):
        self.pipeline = make_pipeline()

    def test_full_preparation(self):
        prepared = self.pipeline.prepare_query("please find histroy of whaling before 1900")
        assert isinstance(prepared, PreparedQuery)
        assert prepared.interpretation.query == "histroy of whaling"
        assert prepared.filters == {"yearTo": "1899"}
        assert prepared.spellcheck.corrected_query == "history of whaling"
        assert prepared.intent == "history of whaling"
        assert prepared.search_query.startswith("(history of whaling) OR ")
        assert prepared.search_query == prepared.expansion.hybrid_expression
        assert prepared.error is None

    def test_non_string_rejected(self):
        with pytest.raises(ValidationError):
            self.pipeline.prepare_query(123)

    def test_interpretation_disabled(self):
        pipeline = make_pipeline(enable_interpretation=False)
        prepared = pipeline.prepare_query("whaling logs before 1900")
        assert prepared.interpretation is None
        assert prepared.filters == {}
        assert prepared.intent == "whaling logs before 1900"

    def test_interpreter_failure_falls_back_to_raw_text(self):
        pipeline = RelevancePipeline(
            spell_corrector=SpellCorrector(seed_words=SEED_WORDS),
            interpreter=BrokenInterpreter(),
        )
        prepared = pipeline.prepare_query("  whaling logs  ")
        assert prepared.interpretation is None
        assert isinstance(prepared.error, InterpretationError)
        assert prepared.filters == {}
        assert prepared.intent == "whaling logs"

    def test_expansion_disabled(self):
        pipeline = make_pipeline(enable_expansion=False)
        prepared = pipeline.prepare_query("histroy of whaling")
        assert prepared.expansion.hybrid_expression is None
        assert prepared.search_query == "history of whaling"

    def test_spellcheck_disabled(self):
        pipeline = make_pipeline(enable_spellcheck=False)
        prepared = pipeline.prepare_query("histroy of whaling")
        assert prepared.spellcheck.corrections == []
        assert prepared.intent == "histroy of whaling"

    def test_trivial_query_searches_corrected_text(self):
        prepared = self.pipeline.prepare_query("of")
        assert prepared.expansion.hybrid_expression is None
        assert prepared.search_query == "of"

    def test_query_truncated(self):
        pipeline = make_pipeline(max_query_length=10, enable_interpretation=False)
        prepared = pipeline.prepare_query("moon landing apollo")
        assert prepared.spellcheck.original_query == "moon landi"


class TestProcessResults:
    """Test result processing"""

    def setup_method(self):
        self.pipeline = make_pipeline()

    def test_safe_mode(self):
        result = self.pipeline.process_results(RECORDS, "moon landing", mode="safe")
        assert isinstance(result, ProcessedResults)
        assert [r["identifier"] for r in result.records] == ["landing", "filler"]
        assert result.total == 2
        assert result.hidden_count == 2
        assert "nsfw" not in result.records[0]
        assert result.records[0]["source_trust"] == "high"

    def test_default_mode_is_safe(self):
        assert self.pipeline.process_results(RECORDS, "moon landing").hidden_count == 2

    def test_moderate_mode(self):
        result = self.pipeline.process_results(RECORDS, "moon landing", mode="moderate")
        assert result.total == 3
        assert result.hidden_count == 1
        mild = next(r for r in result.records if r["identifier"] == "mild")
        assert mild["nsfwLevel"] == "mild"

    @pytest.mark.parametrize("mode,total", [("unrestricted", 4), ("nsfw-only", 2)])
    def test_modes_without_hidden_count(self, mode, total):
        result = self.pipeline.process_results(RECORDS, "moon landing", mode=mode)
        assert result.total == total
        assert result.hidden_count == 0

    def test_input_records_not_mutated(self):
        self.pipeline.process_results(RECORDS, "moon landing", mode="unrestricted")
        assert "score" not in RECORDS[1]
        assert "nsfw" not in RECORDS[2]

    def test_classified_metric_uses_known_severities(self):
        metric = "archive_relevance_records_classified_total"
        before = REGISTRY.get_sample_value(metric, {"severity": "none"}) or 0.0
        record = {"identifier": "odd", "title": "moon landing", "nsfwLevel": "Spicy-Label-42"}

        self.pipeline.process_results([record], "moon landing", mode="unrestricted")

        assert REGISTRY.get_sample_value(metric, {"severity": "spicy-label-42"}) is None
        assert REGISTRY.get_sample_value(metric, {"severity": "none"}) == before + 1

    def test_explicit_filters_are_sanitized(self):
        result = self.pipeline.process_results(RECORDS, "moon landing", filters={"mediaType": "holograms"})
        assert result.total == 2
        result = self.pipeline.process_results(RECORDS, "moon landing", filters={"yearFrom": "1960"})
        assert [r["identifier"] for r in result.records] == ["landing"]


class TestPreparedQueryFilters:
    """Test filters carried over from query preparation"""

    def setup_method(self):
        self.pipeline = make_pipeline()
        self.records = [
            {"identifier": "1969", "title": "Moon landing", "year": "1969"},
            {"identifier": "1972", "title": "Moon landing retrospective", "year": "1972"},
        ]

    def test_interpreted_filters_apply(self):
        prepared = self.pipeline.prepare_query("moon landing before 1970")
        assert prepared.filters == {"yearTo": "1969"}
        result = self.pipeline.process_results(self.records, prepared)
        assert [r["identifier"] for r in result.records] == ["1969"]

    def test_explicit_filters_override(self):
        prepared = self.pipeline.prepare_query("moon landing before 1970")
        result = self.pipeline.process_results(self.records, prepared, filters={"yearTo": "1980"})
        assert result.total == 2


class TestPagination:
    """Test pagination"""

    def setup_method(self):
        self.pipeline = make_pipeline()
        self.records = [{"identifier": f"r{i}", "title": "moon"} for i in range(25)]

    def test_last_partial_page(self):
        result = self.pipeline.process_results(self.records, "moon", page=3, page_size=10)
        assert [r["identifier"] for r in result.records] == [f"r{i}" for i in range(20, 25)]
        assert result.total == 25
        assert result.page == 3

    def test_page_past_end(self):
        assert self.pipeline.process_results(self.records, "moon", page=9, page_size=10).records == []

    def test_page_size_bounds(self):
        assert self.pipeline.process_results(self.records, "moon", page_size=0).page_size == 20
        assert self.pipeline.process_results(self.records, "moon", page_size=1000).page_size == 100

    def test_invalid_page(self):
        assert self.pipeline.process_results(self.records, "moon", page=-2).page == 1
        assert self.pipeline.process_results(self.records, "moon", page="2").page == 1


class TestAsync:
    """Test async wrappers"""

    @pytest.mark.asyncio
    async def test_aprocess_results(self):
        pipeline = make_pipeline()
        result = await pipeline.aprocess_results(RECORDS, "moon landing", mode="moderate", page_size=2)
        assert result.total == 3
        assert len(result.records) == 2

    @pytest.mark.asyncio
    async def test_aprepare_query(self):
        pipeline = make_pipeline()
        prepared = await pipeline.aprepare_query("histroy of whaling")
        assert prepared.intent == "history of whaling"


class TestRefinementPlanning:
    """Test plan_refinement"""

    def setup_method(self):
        self.pipeline = make_pipeline()

    def test_parsed_response(self):
        plan = self.pipeline.plan_refinement(
            "whaling", {"text": '{"query": "whaling logbooks", "keywords": ["logbooks"]}'}, model="m1"
        )
        assert plan.optimized_query == "whaling logbooks"
        assert plan.keywords == ["logbooks"]
        assert plan.model == "m1"

    def test_heuristic_fallback(self):
        plan = self.pipeline.plan_refinement("whaling logs")
        assert plan.optimized_query.startswith("(whaling logs) OR ")
        assert plan.model == "heuristic"

    def test_trivial_source_echoed(self):
        plan = self.pipeline.plan_refinement("hi", "garbage")
        assert plan.optimized_query == "hi"
        assert plan.model is None


class TestPerformanceReport:
    """Test latency tracking"""

    def test_report_after_use(self):
        pipeline = make_pipeline()
        pipeline.process_results(RECORDS, pipeline.prepare_query("moon landing"))
        report = pipeline.get_performance_report()
        for stage in ("interpretation", "spellcheck", "expansion", "classification", "scoring", "filtering"):
            assert report["stage_latencies"][stage]["count"] == 1
        assert report["spell_model"]["size"] == len(set(SEED_WORDS))

    def test_empty_report(self):
        report = make_pipeline().get_performance_report()
        assert report["stage_latencies"] == {}

    def test_latency_window_is_bounded(self):
        from datetime import datetime

        pipeline = make_pipeline()
        for _ in range(1005):
            pipeline._record_latency(PipelineStage.SCORING, datetime.now())
        assert len(pipeline.stage_latencies[PipelineStage.SCORING]) == 1000
