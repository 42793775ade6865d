"""
Configuration loader — reads deployline.yml into a PipelineConfig.

Reads YAML, applies environment overrides, validates against the
Pydantic schema, and returns a typed config.

Precedence (highest first):
    CLI option  >  DEPLOYLINE_* env var  >  deployline.yml  >  model default
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from deployline.core.models.config import PipelineConfig

logger = logging.getLogger(__name__)

# Default config filename
PIPELINE_CONFIG_FILE = "deployline.yml"

# Environment variable → top-level config key
ENV_OVERRIDES = {
    "DEPLOYLINE_REGION": "region",
    "DEPLOYLINE_CLUSTER": "cluster",
    "DEPLOYLINE_REPOSITORY": "repository",
    "DEPLOYLINE_ACCOUNT_ID": "fallback_account_id",
}


class ConfigError(Exception):
    """Raised when pipeline configuration is invalid or missing."""


def find_config_file(start_dir: Path | None = None) -> Path | None:
    """Search for deployline.yml starting from the given directory, walking up.

    Args:
        start_dir: Directory to start searching from (default: cwd).

    Returns:
        Path to deployline.yml, or None if not found.
    """
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / PIPELINE_CONFIG_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break  # filesystem root
        current = parent

    return None


def load_config(
    path: Path | None = None,
    overrides: Mapping[str, Any] | None = None,
    environ: Mapping[str, str] | None = None,
) -> PipelineConfig:
    """Load and validate pipeline configuration.

    Args:
        path: Explicit path to deployline.yml. If None, searches upward.
        overrides: Top-level keys set from the CLI. ``None`` values are ignored.
        environ: Environment mapping (default: ``os.environ``).

    Returns:
        Validated PipelineConfig.

    Raises:
        ConfigError: If the file is missing or invalid.
    """
    if path is None:
        path = find_config_file()

    if path is None:
        raise ConfigError(
            f"No {PIPELINE_CONFIG_FILE} found. Create one or specify --config."
        )

    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    logger.debug("Loading pipeline config from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    # The YAML may wrap everything under a "pipeline" key or be flat
    data = dict(data.get("pipeline", data))

    env = os.environ if environ is None else environ
    for var, key in ENV_OVERRIDES.items():
        value = env.get(var)
        if value:
            data[key] = value

    for key, value in (overrides or {}).items():
        if value is not None:
            data[key] = value

    try:
        config = PipelineConfig.model_validate(data)
    except Exception as e:
        raise ConfigError(f"Invalid pipeline configuration: {e}") from e

    logger.info(
        "Loaded pipeline '%s' (%s → %s/%s)",
        config.name,
        config.repository,
        config.region,
        config.cluster,
    )
    return config


def config_root(config_path: Path) -> Path:
    """Get the project directory from a config file path."""
    return config_path.parent.resolve()
