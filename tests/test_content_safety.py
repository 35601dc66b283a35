"""
Tests for keyword safety classification

Tests cover:
- Severity priority (explicit > violent > mild)
- Whole-word matching and stem rules for innocent look-alikes
- Nested metadata and link fields
- Annotation, upstream labels and filter modes
- Keyword configuration loading
"""

import pytest

from archive_relevance.content_safety import (
    FilterMode,
    KeywordSafetyClassifier,
    Severity,
    StemRule,
    collect_candidate_strings,
    load_keyword_sets,
    mode_admits,
    normalize_filter_mode,
)


CLEAN = {"identifier": "clean", "title": "Apollo 11 moon landing footage"}
MILD = {"identifier": "mild", "title": "Burlesque revue 1952"}
EXPLICIT = {"identifier": "explicit", "title": "Vintage porn reel"}
VIOLENT = {"identifier": "violent", "description": "Graphic violence warning"}


class TestClassification:
    """Test record classification"""

    def setup_method(self):
        self.classifier = KeywordSafetyClassifier()

    def test_clean_record(self):
        result = self.classifier.classify(CLEAN)
        assert not result.flagged
        assert result.severity is Severity.NONE
        assert result.matches == ()

    def test_explicit_stem(self):
        result = self.classifier.classify({"title": "cumshot compilation"})
        assert result.flagged
        assert result.severity is Severity.EXPLICIT
        assert "cum" in result.matches

    def test_bare_stem_in_description(self):
        record = {
            "identifier": "compilation",
            "title": "Compilation reel",
            "description": "Compilation of cum scenes with explicit commentary",
        }
        result = self.classifier.classify(record)
        assert result.flagged
        assert result.severity is Severity.EXPLICIT
        assert "cum" in result.matches

    def test_scientific_record_not_flagged(self):
        record = {
            "identifier": "climate-study",
            "title": "Climate analysis of cumulative rainfall",
            "description": "Temperature reconstruction studies and analytical methods",
            "subject": ["climatology", "paleoclimate"],
        }
        result = self.classifier.classify(record)
        assert not result.flagged
        assert result.severity is Severity.NONE
        assert result.matches == ()

    @pytest.mark.parametrize(
        "title",
        [
            "Statistical analysis of rainfall",
            "Graduated cum laude in 1921",
            "Poems by E. E. Cummings",
            "Cumulative index of periodicals",
            "Cumin and other spices",
            "Canal boats of upstate New York",
        ],
    )
    def test_innocent_look_alikes(self, title):
        assert not self.classifier.classify({"title": title}).flagged

    def test_violent_phrase(self):
        result = self.classifier.classify(VIOLENT)
        assert result.severity is Severity.VIOLENT
        assert result.matches == ("graphic violence",)

    def test_mild(self):
        result = self.classifier.classify(MILD)
        assert result.severity is Severity.MILD
        assert result.matches == ("burlesque",)

    def test_explicit_wins_and_keeps_milder_matches(self):
        result = self.classifier.classify({"title": "porn", "description": "nude gore"})
        assert result.severity is Severity.EXPLICIT
        assert result.matches == ("porn", "nude", "gore")

    def test_violent_beats_mild(self):
        result = self.classifier.classify({"title": "nude", "description": "gore"})
        assert result.severity is Severity.VIOLENT
        assert result.matches == ("gore", "nude")

    def test_nested_metadata_and_links(self):
        assert self.classifier.classify({"metadata": {"subject": ["erotica"]}}).severity is Severity.MILD
        assert self.classifier.classify({"links": {"original": "http://example.com/xxx/1"}}).flagged

    def test_case_and_diacritics_insensitive(self):
        assert self.classifier.classify({"title": "NÚDE study"}).severity is Severity.MILD

    def test_classify_text(self):
        assert self.classifier.classify_text("snuff film").severity is Severity.VIOLENT
        assert self.classifier.classify_text(["fine", "xxx"]).severity is Severity.EXPLICIT
        assert not self.classifier.classify_text("").flagged

    def test_batch_preserves_order(self):
        results = self.classifier.classify_batch([CLEAN, MILD, EXPLICIT, VIOLENT])
        assert [r.severity for r in results] == [
            Severity.NONE,
            Severity.MILD,
            Severity.EXPLICIT,
            Severity.VIOLENT,
        ]

    def test_non_mapping_record(self):
        assert not self.classifier.classify("not a record").flagged


class TestStemRule:
    """Test stem rule matching"""

    def setup_method(self):
        self.rule = StemRule(
            stem="anal",
            explicit_suffixes=("sex",),
            safe_suffixes=("ysis",),
            explicit_next=frozenset({"video"}),
        )

    def test_bare_stem_needs_explicit_next_word(self):
        assert self.rule.matches("anal", "video")
        assert not self.rule.matches("anal", "retentive")
        assert self.rule.matches("anal", None)

    def test_suffixes(self):
        assert self.rule.matches("analsex", None)
        assert not self.rule.matches("analysis", None)
        assert self.rule.matches("anal2", None)
        assert not self.rule.matches("analogous", None)


class TestAnnotation:
    """Test record annotation"""

    def setup_method(self):
        self.classifier = KeywordSafetyClassifier()

    def test_flagged_record_gets_fields(self):
        annotated = self.classifier.annotate(MILD)
        assert annotated["nsfw"] is True
        assert annotated["nsfwLevel"] == "mild"
        assert annotated["nsfwMatches"] == ["burlesque"]
        assert "nsfw" not in MILD

    def test_unflagged_record_is_stripped(self):
        annotated = self.classifier.annotate({**CLEAN, "nsfw": True, "nsfw_matches": ["old"]})
        assert "nsfw" not in annotated
        assert "nsfwLevel" not in annotated
        assert "nsfw_matches" not in annotated

    def test_upstream_label_trusted(self):
        annotated = self.classifier.annotate({**CLEAN, "nsfw_level": "Explicit"})
        assert annotated["nsfw"] is True
        assert annotated["nsfwLevel"] == "explicit"
        assert annotated["nsfwMatches"] == []

    def test_upstream_none_label_kept(self):
        annotated = self.classifier.annotate({**EXPLICIT, "nsfwLevel": "none"})
        assert annotated["nsfw"] is False
        assert annotated["nsfwLevel"] == "none"


class TestFilterModes:
    """Test visibility policies"""

    def setup_method(self):
        self.classifier = KeywordSafetyClassifier()
        self.records = [CLEAN, MILD, EXPLICIT, VIOLENT]

    def test_safe(self):
        visible = self.classifier.filter(self.records, "safe")
        assert [r["identifier"] for r in visible] == ["clean"]
        assert self.classifier.count_hidden(self.records, "safe") == 3

    def test_moderate_admits_mild_only(self):
        visible = self.classifier.filter(self.records, FilterMode.MODERATE)
        assert [r["identifier"] for r in visible] == ["clean", "mild"]
        assert self.classifier.count_hidden(self.records, "moderate") == 2

    def test_unrestricted(self):
        assert len(self.classifier.filter(self.records, "off")) == 4
        assert self.classifier.count_hidden(self.records, "unrestricted") == 0

    def test_nsfw_only(self):
        visible = self.classifier.filter(self.records, "nsfw-only")
        assert [r["identifier"] for r in visible] == ["mild", "explicit", "violent"]
        assert self.classifier.count_hidden(self.records, "only") == 0

    def test_mode_aliases(self):
        assert normalize_filter_mode("OFF") is FilterMode.UNRESTRICTED
        assert normalize_filter_mode("only_nsfw") is FilterMode.NSFW_ONLY
        assert normalize_filter_mode("bogus") is FilterMode.SAFE
        assert normalize_filter_mode(None) is FilterMode.SAFE

    def test_mode_admits(self):
        assert mode_admits(False, Severity.NONE, FilterMode.SAFE)
        assert not mode_admits(True, Severity.MILD, FilterMode.SAFE)
        assert mode_admits(True, Severity.MILD, FilterMode.MODERATE)
        assert not mode_admits(True, Severity.VIOLENT, FilterMode.MODERATE)
        assert not mode_admits(False, Severity.NONE, FilterMode.NSFW_ONLY)

    def test_moderate_uses_severity_order(self):
        admitted = [s for s in Severity if mode_admits(True, s, FilterMode.MODERATE)]
        assert admitted == [Severity.MILD]
        assert Severity.NONE.rank < Severity.MILD.rank < Severity.VIOLENT.rank < Severity.EXPLICIT.rank
        assert mode_admits(False, Severity.NONE, FilterMode.MODERATE)

    def test_matches_mode_with_classification(self):
        classification = self.classifier.classify(EXPLICIT)
        assert not self.classifier.matches_mode(classification, "moderate")
        assert self.classifier.matches_mode(classification, "nsfw-only")


class TestKeywordConfiguration:
    """Test keyword set loading"""

    def test_flat_schema(self):
        keyword_set = load_keyword_sets(
            {"explicit": [" XXX ", "xxx"], "adult": ["nude", "xxx"], "violent": ["gore"]}
        )
        assert keyword_set.explicit == ("xxx",)
        assert keyword_set.adult == ("nude",)
        assert keyword_set.violent == ("gore",)

    def test_categories_schema(self):
        keyword_set = load_keyword_sets({"categories": {"explicit": ["xxx"], "mild": ["pinup"]}})
        assert keyword_set.mild == ("pinup",)
        assert keyword_set.violent == ()

    def test_malformed_payload(self):
        keyword_set = load_keyword_sets(["not", "a", "mapping"])
        assert keyword_set.is_empty()
        classifier = KeywordSafetyClassifier(keyword_set=keyword_set)
        assert not classifier.classify(EXPLICIT).flagged

    def test_missing_file_disables_classification(self, tmp_path, monkeypatch):
        monkeypatch.setenv("ARCHIVE_RELEVANCE_DATA_DIR", str(tmp_path))
        classifier = KeywordSafetyClassifier()
        assert classifier.keyword_set.is_empty()

    def test_collect_candidate_strings(self):
        values = collect_candidate_strings(
            {"title": "A", "subject": ["b", 3, None], "metadata": {"tags": "c"}, "links": {"wayback": "d"}}
        )
        assert values == ["A", "b", "3", "c", "d"]
