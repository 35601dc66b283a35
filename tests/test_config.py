"""
Tests for configuration loading

Tests cover:
- Data directory override through the environment
- Strict and optional YAML loading
- Seed vocabulary parsing
"""

import pytest

from archive_relevance.config import (
    DATA_DIR_ENV,
    get_data_dir,
    load_optional_yaml,
    load_vocabulary,
    load_yaml_config,
    resolve_data_path,
)
from archive_relevance.exceptions import ConfigurationError


class TestDataDir:
    """Test data directory resolution"""

    def test_bundled_default(self, monkeypatch):
        monkeypatch.delenv(DATA_DIR_ENV, raising=False)
        assert (get_data_dir() / "synonyms.yaml").is_file()

    def test_env_override(self, tmp_path, monkeypatch):
        monkeypatch.setenv(DATA_DIR_ENV, str(tmp_path))
        assert resolve_data_path("synonyms.yaml") == tmp_path / "synonyms.yaml"


class TestYamlLoading:
    """Test YAML loading"""

    def test_valid_mapping(self, tmp_path):
        path = tmp_path / "tables.yaml"
        path.write_text("synonyms:\n  ship: [boat]\n", encoding="utf-8")
        assert load_yaml_config(path) == {"synonyms": {"ship": ["boat"]}}

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")
        assert load_yaml_config(path) == {}

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("synonyms: [unclosed\n", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            load_yaml_config(path)

    def test_non_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            load_yaml_config(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_yaml_config(tmp_path / "missing.yaml")

    def test_optional_degrades_to_empty(self, tmp_path, caplog):
        path = tmp_path / "bad.yaml"
        path.write_text(": : :\n  - [", encoding="utf-8")
        assert load_optional_yaml(path) == {}
        assert "Ignoring configuration" in caplog.text


class TestVocabulary:
    """Test seed vocabulary parsing"""

    def test_comments_and_blanks_skipped(self, tmp_path):
        path = tmp_path / "vocab.txt"
        path.write_text("# header\nmoon\n\n  moon \nlanding\n", encoding="utf-8")
        assert load_vocabulary(path) == ["moon", "moon", "landing"]

    def test_missing_file(self, tmp_path):
        assert load_vocabulary(tmp_path / "missing.txt") == []

    def test_bundled_vocabulary(self, monkeypatch):
        monkeypatch.delenv(DATA_DIR_ENV, raising=False)
        words = load_vocabulary()
        assert "history" in words
        assert words.count("history") == 2
