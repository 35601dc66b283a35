"""
Configuration Loader
Parses the YAML data tables bundled with the package (synonyms, keyword
sets) and the plain-text seed vocabulary.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional, Union
import logging
import os

import yaml

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DATA_DIR_ENV = "ARCHIVE_RELEVANCE_DATA_DIR"

SYNONYMS_FILE = "synonyms.yaml"
KEYWORDS_FILE = "nsfw_keywords.yaml"
VOCABULARY_FILE = "vocabulary.txt"
INTERPRETER_FILE = "interpreter.yaml"


def get_data_dir() -> Path:
    """Directory holding the data tables; overridable through the environment."""
    override = os.getenv(DATA_DIR_ENV, "").strip()
    if override:
        return Path(override)
    return Path(__file__).resolve().parent / "data"


def resolve_data_path(file_name: str, data_dir: Optional[Path] = None) -> Path:
    return (data_dir or get_data_dir()) / file_name


def load_yaml_config(path: Union[str, Path]) -> Dict[str, Any]:
    """Load a YAML configuration file."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            payload = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Unable to read configuration {path}: {e}") from e
    if not isinstance(payload, dict):
        raise ConfigurationError(f"Configuration {path} must be a mapping")
    return payload


def load_optional_yaml(path: Union[str, Path]) -> Dict[str, Any]:
    """
    Load a YAML file, degrading to an empty mapping on any problem.

    Data tables are advisory; a broken file must not stop the pipeline.
    """
    try:
        return load_yaml_config(path)
    except ConfigurationError as e:
        logger.warning("Ignoring configuration: %s", e)
        return {}


def load_vocabulary(path: Union[str, Path, None] = None) -> List[str]:
    """
    Read the seed vocabulary, one word per line.

    Blank lines and lines starting with '#' are skipped; repeated words are
    kept so they weigh more in the frequency model.
    """
    vocab_path = Path(path) if path is not None else resolve_data_path(VOCABULARY_FILE)
    try:
        with open(vocab_path, "r", encoding="utf-8") as f:
            lines = f.read().splitlines()
    except OSError as e:
        logger.warning("Seed vocabulary unavailable at %s: %s", vocab_path, e)
        return []
    return [line.strip() for line in lines if line.strip() and not line.lstrip().startswith("#")]
