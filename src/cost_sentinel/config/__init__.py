"""Configuration management for Cost Sentinel."""

from cost_sentinel.config.schema import (
    AnomalyDetectionConfig,
    AWSConfig,
    CacheConfig,
    Config,
    ForecastConfig,
    RoutingConfig,
    SlackConfig,
)
from cost_sentinel.config.loader import get_cached_config, load_config

__all__ = [
    "Config",
    "AWSConfig",
    "AnomalyDetectionConfig",
    "ForecastConfig",
    "CacheConfig",
    "SlackConfig",
    "RoutingConfig",
    "load_config",
    "get_cached_config",
]
