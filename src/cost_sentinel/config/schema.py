"""Pydantic configuration schema for Cost Sentinel."""

from typing import Literal

from pydantic import BaseModel, Field

AnomalyAlgorithmName = Literal["zscore", "iqr", "regression", "seasonal"]
ForecastModelName = Literal["linear", "polynomial", "exponential", "seasonal"]


class AWSConfig(BaseModel):
    """AWS account configuration."""

    region: str = "us-east-1"
    secret_name: str | None = None  # Secrets Manager secret holding webhook URLs


class AnomalyDetectionConfig(BaseModel):
    """Anomaly detection configuration."""

    enabled: bool = True
    threshold: float = Field(default=2.5, gt=0)  # Z-score threshold
    algorithms: list[AnomalyAlgorithmName] = Field(
        default_factory=lambda: ["zscore", "iqr", "regression", "seasonal"]
    )
    min_data_points: int = Field(default=7, ge=1)
    real_time: bool = False

    # Algorithms that must agree before an index is reported
    min_algorithm_agreement: int = Field(default=1, ge=1, le=4)

    # Per-service detection is more sensitive and skips the seasonal pass
    service_threshold: float = Field(default=2.0, gt=0)
    service_algorithms: list[AnomalyAlgorithmName] = Field(
        default_factory=lambda: ["zscore", "iqr", "regression"]
    )

    report_limit: int = Field(default=50, ge=1)
    top_services: int = Field(default=5, ge=1)


class ForecastConfig(BaseModel):
    """Forecasting configuration."""

    enabled: bool = True
    horizon: int = Field(default=90, ge=1, le=365)  # Days
    confidence_level: float = Field(default=0.95, gt=0, lt=1)
    algorithms: list[ForecastModelName] = Field(
        default_factory=lambda: ["linear", "polynomial", "exponential", "seasonal"]
    )
    min_data_points: int = Field(default=14, ge=2)


class CacheConfig(BaseModel):
    """Result cache configuration."""

    enabled: bool = True
    ttl_seconds: int = Field(default=900, ge=1)  # Matches the 15 minute schedule
    max_entries: int = Field(default=256, ge=1)


class SlackChannelConfig(BaseModel):
    """Slack channel configuration."""

    name: str
    webhook_secret_key: str  # Key name in Secrets Manager


class SlackConfig(BaseModel):
    """Slack integration configuration."""

    enabled: bool = True
    channels: dict[str, SlackChannelConfig] = Field(
        default_factory=lambda: {
            "critical": SlackChannelConfig(
                name="#cost-alerts-critical",
                webhook_secret_key="webhook_url_critical",
            ),
            "heartbeat": SlackChannelConfig(
                name="#cost-alerts-general",
                webhook_secret_key="webhook_url_heartbeat",
            ),
        }
    )


class RoutingConfig(BaseModel):
    """Notification routing configuration."""

    anomaly_critical: str = "critical"
    forecast_change: str = "heartbeat"


class Config(BaseModel):
    """Root configuration for Cost Sentinel."""

    project_name: str = "cost-sentinel"
    environment: Literal["dev", "staging", "prod"] = "dev"

    aws: AWSConfig = Field(default_factory=AWSConfig)
    anomaly_detection: AnomalyDetectionConfig = Field(default_factory=AnomalyDetectionConfig)
    forecasting: ForecastConfig = Field(default_factory=ForecastConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    slack: SlackConfig = Field(default_factory=SlackConfig)
    routing: RoutingConfig = Field(default_factory=RoutingConfig)
