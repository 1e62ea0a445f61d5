"""Configuration loading for the analysis engine.

Settings come from a TOML file (``$PAIR_REVIEW_CONFIG`` or
``~/.pair-review/config.toml``) followed by environment overrides. Missing or
malformed files are not fatal: the defaults are used and a warning is logged.

Example config.toml::

    unrestricted = false
    timeout_seconds = 600

    [providers.claude]
    command = "devx claude"
    extra_args = ["--verbose"]

    [[providers.claude.models]]
    id = "opus"
    tier = "premium"
"""

from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path
from typing import Any, Dict, Optional

import pydantic as pd

from pair_review.analysis.constants import (
    AVAILABILITY_TIMEOUT_SECONDS,
    DEFAULT_TIMEOUT_SECONDS,
    EXTRACTION_TIMEOUT_SECONDS,
    MAX_FINISHED_RUNS,
    TEXT_PRIORITY_WINDOW_SECONDS,
    THROTTLE_WINDOW_SECONDS,
    get_default_config_path,
)
from pair_review.analysis.contracts import ProviderOverrides

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "PAIR_REVIEW_CONFIG"
YOLO_ENV_VAR = "PAIR_REVIEW_YOLO"
TIMEOUT_ENV_VAR = "PAIR_REVIEW_TIMEOUT"

TRUTHY = ("true", "1", "yes")


class AnalysisSettings(pd.BaseModel):
    """Tunable settings of the analysis engine."""

    unrestricted: bool = False
    timeout_seconds: float = pd.Field(default=DEFAULT_TIMEOUT_SECONDS, gt=0)
    extraction_timeout_seconds: float = pd.Field(default=EXTRACTION_TIMEOUT_SECONDS, gt=0)
    availability_timeout_seconds: float = pd.Field(default=AVAILABILITY_TIMEOUT_SECONDS, gt=0)
    throttle_window_seconds: float = pd.Field(default=THROTTLE_WINDOW_SECONDS, ge=0)
    text_priority_window_seconds: float = pd.Field(default=TEXT_PRIORITY_WINDOW_SECONDS, ge=0)
    subscriber_queue_size: int = pd.Field(default=100, ge=1)
    max_finished_runs: int = pd.Field(default=MAX_FINISHED_RUNS, ge=1)
    providers: Dict[str, ProviderOverrides] = pd.Field(default_factory=dict)

    model_config = pd.ConfigDict(extra="ignore")


def _read_toml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.debug(f"No config file at {path}")
        return {}

    try:
        with open(path, "rb") as f:
            content = tomllib.load(f)
        logger.debug(f"Loaded config from {path}")
        return content
    except (IOError, OSError, tomllib.TOMLDecodeError) as e:
        logger.warning(f"Failed to parse config {path}: {e}")
        return {}


def apply_env_overrides(data: Dict[str, Any], environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """Layer environment variable overrides on top of file settings."""
    env = os.environ if environ is None else environ
    result = dict(data)

    yolo = env.get(YOLO_ENV_VAR)
    if yolo is not None:
        result["unrestricted"] = yolo.strip().lower() in TRUTHY

    timeout = env.get(TIMEOUT_ENV_VAR)
    if timeout:
        try:
            seconds = float(timeout)
        except ValueError:
            seconds = 0.0
        if seconds > 0:
            result["timeout_seconds"] = seconds
        else:
            logger.warning(f"Ignoring invalid {TIMEOUT_ENV_VAR}={timeout!r}")

    return result


def load_settings(
    path: Optional[Path] = None, environ: Optional[Dict[str, str]] = None
) -> AnalysisSettings:
    """Load settings from a TOML file and the environment.

    Args:
        path: Explicit config file; defaults to $PAIR_REVIEW_CONFIG or
            ~/.pair-review/config.toml
        environ: Environment mapping, os.environ when omitted

    Returns:
        AnalysisSettings, falling back to defaults for anything invalid
    """
    env = os.environ if environ is None else environ
    if path is None:
        configured = env.get(CONFIG_ENV_VAR)
        path = Path(configured) if configured else get_default_config_path()

    data = apply_env_overrides(_read_toml(Path(path)), env)
    try:
        return AnalysisSettings.model_validate(data)
    except pd.ValidationError as e:
        logger.warning(f"Invalid settings in {path}, using defaults: {e}")
        return AnalysisSettings.model_validate(apply_env_overrides({}, env))
