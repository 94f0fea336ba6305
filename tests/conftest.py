"""Pytest configuration and fixtures."""

import pytest
from datetime import date, timedelta

START_DATE = date(2024, 1, 1)  # A Monday

WEEKLY_JITTER = [0.0, 4.0, -3.0, 2.0, -1.0, 1.0, 3.0]


def make_records(
    values: list[float],
    service: str = "Amazon EC2",
    start: date = START_DATE,
) -> list[dict]:
    """Helper to build one daily billing record per value."""
    return [
        {
            "date": (start + timedelta(days=i)).isoformat(),
            "service_name": service,
            "cost_amount": value,
        }
        for i, value in enumerate(values)
    ]


@pytest.fixture
def spike_values():
    """Seven stable days with a spike on the fifth."""
    return [100, 105, 95, 102, 1000, 98, 101]


@pytest.fixture
def linear_values():
    """Thirty days of perfectly linear growth."""
    return [100.0 + i for i in range(30)]


@pytest.fixture
def linear_records(linear_values):
    return make_records(linear_values, service="Total")


@pytest.fixture
def multi_service_records():
    """Thirty days for two services; EC2 spikes on day 21."""
    ec2 = [100.0 + WEEKLY_JITTER[i % 7] for i in range(30)]
    ec2[20] = 900.0
    rds = [50.0] * 30
    return make_records(ec2, "Amazon EC2") + make_records(rds, "Amazon RDS")


@pytest.fixture
def sample_config_dict():
    """Sample configuration dictionary."""
    return {
        "project_name": "test-sentinel",
        "environment": "dev",
        "aws": {
            "region": "us-east-1",
            "secret_name": "cost-sentinel/test/slack",
        },
        "anomaly_detection": {
            "enabled": True,
            "threshold": 3.0,
            "algorithms": ["zscore", "iqr"],
            "min_data_points": 10,
            "real_time": True,
        },
        "forecasting": {
            "horizon": 30,
            "confidence_level": 0.90,
        },
        "slack": {
            "enabled": True,
            "channels": {
                "critical": {
                    "name": "#alerts-critical",
                    "webhook_secret_key": "webhook_url_critical",
                },
                "heartbeat": {
                    "name": "#alerts-general",
                    "webhook_secret_key": "webhook_url_heartbeat",
                },
            },
        },
    }
