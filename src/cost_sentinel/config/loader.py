"""Configuration loader for Cost Sentinel."""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable

import yaml

from cost_sentinel.config.schema import Config

logger = logging.getLogger(__name__)


def _as_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes", "on")


# Environment variable -> (config path, converter)
ENV_OVERRIDES: dict[str, tuple[tuple[str, ...], Callable[[str], Any]]] = {
    "AWS_REGION": (("aws", "region"), str),
    "SLACK_SECRET_NAME": (("aws", "secret_name"), str),
    "ANOMALY_THRESHOLD": (("anomaly_detection", "threshold"), float),
    "ANOMALY_REAL_TIME": (("anomaly_detection", "real_time"), _as_bool),
    "FORECAST_HORIZON": (("forecasting", "horizon"), int),
    "SLACK_ENABLED": (("slack", "enabled"), _as_bool),
    "CACHE_ENABLED": (("cache", "enabled"), _as_bool),
}


def _deep_merge(base: dict, override: dict) -> dict:
    """Merge override into a copy of base; nested dicts are merged, not replaced."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(merged.get(key), dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _read_yaml(path: Path) -> dict:
    if not path.is_file():
        return {}
    with path.open() as f:
        data = yaml.safe_load(f) or {}
    logger.debug("Loaded configuration from %s", path)
    return data


def _find_config_dir() -> Path:
    """CONFIG_DIR, or the nearest config/ directory above the working directory."""
    if config_dir := os.environ.get("CONFIG_DIR"):
        return Path(config_dir)

    for directory in (Path.cwd(), *Path.cwd().parents):
        candidate = directory / "config"
        if candidate.is_dir():
            return candidate
    return Path("config")


def _apply_env_overrides(config_data: dict) -> dict:
    """Overlay ENV_OVERRIDES values that are set in the environment."""
    for env_var, (path, convert) in ENV_OVERRIDES.items():
        raw = os.environ.get(env_var)
        if not raw:
            continue

        section = config_data
        for key in path[:-1]:
            section = section.setdefault(key, {})
        section[path[-1]] = convert(raw)
    return config_data


def load_config(
    config_path: str | Path | None = None,
    environment: str | None = None,
) -> Config:
    """
    Load configuration from YAML files and the environment.

    config.yaml is the base; config.<environment>.yaml is deep-merged on top,
    then environment variables from ENV_OVERRIDES are applied.

    Args:
        config_path: Config directory. If None, searches for a config/ directory.
        environment: dev, staging or prod. Defaults to CONFIG_ENV or 'dev'.

    Returns:
        Config: Validated configuration object.

    Raises:
        pydantic.ValidationError: If the merged configuration is invalid.
    """
    config_dir = Path(config_path) if config_path else _find_config_dir()
    environment = environment or os.environ.get("CONFIG_ENV", "dev")

    config_data = _deep_merge(
        _read_yaml(config_dir / "config.yaml"),
        _read_yaml(config_dir / f"config.{environment}.yaml"),
    )
    config_data = _apply_env_overrides(config_data)
    config_data["environment"] = environment

    return Config.model_validate(config_data)


@lru_cache(maxsize=1)
def get_cached_config() -> Config:
    """Configuration loaded once per process (reused on warm Lambda starts)."""
    return load_config()
