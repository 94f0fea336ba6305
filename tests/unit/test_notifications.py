"""Tests for Slack formatting, delivery and alert dispatch."""

import json
import pytest
from datetime import UTC, datetime
from unittest.mock import MagicMock, patch
from urllib import error

from botocore.exceptions import ClientError, NoCredentialsError

from cost_sentinel.analysis.anomaly_algorithms import CandidateAnomaly
from cost_sentinel.analysis.anomaly_detector import EnsembleAnomaly
from cost_sentinel.config.schema import Config
from cost_sentinel.notifications.dispatcher import AlertDispatcher, DispatchResult
from cost_sentinel.notifications.slack.formatter import SlackFormatter
from cost_sentinel.notifications.slack.webhook import (
    SlackWebhook,
    SlackWebhookError,
    SlackWebhookManager,
)

WEBHOOK_URL = "https://hooks.slack.com/services/T000/B000/XXXX"


def create_anomaly(severity: str = "critical", immediate: bool = True) -> EnsembleAnomaly:
    """Helper to create a test anomaly."""
    return EnsembleAnomaly(
        series_index=4,
        timestamp=datetime(2024, 1, 5, tzinfo=UTC),
        label="Amazon EC2",
        value=1000.0,
        algorithms=("zscore", "iqr"),
        confidence=0.85,
        severity=severity,
        needs_immediate_alert=immediate,
        candidates=(
            CandidateAnomaly(4, 1000.0, "zscore", 1.0, "critical", {"z_score": 214.6}),
            CandidateAnomaly(4, 1000.0, "iqr", 1.0, "critical", {"q1": 98, "q3": 105}),
        ),
    )


def forecast_report(significant_changes=None) -> dict:
    """Helper to create a serialized forecast report."""
    return {
        "service_name": "Total",
        "horizon": 30,
        "ensemble_accuracy": 0.72,
        "model_weights": {"linear": 0.5, "seasonal": 0.5},
        "summary": {
            "predicted_total": 4500.0,
            "average_daily_cost": 150.0,
            "trend_direction": "increasing",
            "volatility": 0.05,
            "seasonality_strength": 0.1,
        },
        "insights": {
            "significant_changes": significant_changes or [],
            "recommendations": [],
            "alerts": [],
        },
    }


def secrets_client(secret: dict | None = None) -> MagicMock:
    client = MagicMock()
    client.get_secret_value.return_value = {
        "SecretString": json.dumps(secret or {"webhook_url_critical": WEBHOOK_URL})
    }
    return client


def slack_response(status: int = 200, body: bytes = b"ok") -> MagicMock:
    response = MagicMock()
    response.status = status
    response.read.return_value = body
    response.__enter__.return_value = response
    return response


class TestSlackWebhook:
    """Tests for SlackWebhook."""

    @pytest.fixture
    def webhook(self):
        return SlackWebhook(
            secret_name="cost-sentinel/test/slack",
            secret_key="webhook_url_critical",
            secrets_client=secrets_client(),
        )

    def test_webhook_url_from_secret(self, webhook):
        """Test that the URL is read once from Secrets Manager."""
        assert webhook.webhook_url == WEBHOOK_URL
        assert webhook.webhook_url == WEBHOOK_URL
        webhook.secrets_client.get_secret_value.assert_called_once_with(
            SecretId="cost-sentinel/test/slack"
        )

    def test_missing_secret_key(self):
        """Test a secret without the channel key."""
        webhook = SlackWebhook(
            secret_name="s", secret_key="webhook_url_heartbeat", secrets_client=secrets_client()
        )
        with pytest.raises(SlackWebhookError, match="webhook_url_heartbeat"):
            _ = webhook.webhook_url

    def test_secret_not_found(self):
        """Test a missing secret."""
        client = MagicMock()
        client.get_secret_value.side_effect = ClientError(
            {"Error": {"Code": "ResourceNotFoundException", "Message": "missing"}},
            "GetSecretValue",
        )
        webhook = SlackWebhook(secret_name="s", secret_key="k", secrets_client=client)

        with pytest.raises(SlackWebhookError, match="not found"):
            _ = webhook.webhook_url

    @patch("cost_sentinel.notifications.slack.webhook.request.urlopen")
    def test_send(self, mock_urlopen, webhook):
        """Test a successful post."""
        mock_urlopen.return_value = slack_response()

        assert webhook.send({"text": "hello"}) is True

        req = mock_urlopen.call_args[0][0]
        assert req.full_url == WEBHOOK_URL
        assert json.loads(req.data) == {"text": "hello"}

    @patch("cost_sentinel.notifications.slack.webhook.request.urlopen")
    def test_send_rejected(self, mock_urlopen, webhook):
        """Test that a non-ok body is an error."""
        mock_urlopen.return_value = slack_response(body=b"invalid_payload")

        with pytest.raises(SlackWebhookError, match="invalid_payload"):
            webhook.send({"text": "hello"})

    @patch("cost_sentinel.notifications.slack.webhook.request.urlopen")
    def test_send_url_error(self, mock_urlopen, webhook):
        """Test network failures."""
        mock_urlopen.side_effect = error.URLError("connection refused")

        with pytest.raises(SlackWebhookError, match="connection refused"):
            webhook.send_text("hello")


class TestSlackWebhookManager:
    """Tests for SlackWebhookManager."""

    def test_webhooks_cached_per_channel(self):
        """Test that one sender is kept per channel key."""
        manager = SlackWebhookManager(secret_name="s", secrets_client=MagicMock())

        first = manager.get_webhook("webhook_url_critical")
        assert manager.get_webhook("webhook_url_critical") is first
        assert manager.get_webhook("webhook_url_heartbeat") is not first


class TestSlackFormatter:
    """Tests for SlackFormatter."""

    def test_anomaly_alert(self):
        """Test the anomaly alert layout."""
        message = SlackFormatter().format_anomaly_alert(create_anomaly())

        assert message["username"] == "Cost Sentinel"
        header = message["blocks"][0]["text"]["text"]
        assert header.startswith(":rotating_light:")
        fields = " ".join(f["text"] for f in message["blocks"][1]["fields"])
        assert "Amazon EC2" in fields
        assert "$1,000.00" in fields
        assert "214.60" in fields
        algorithms_text = message["blocks"][2]["text"]["text"]
        assert "Flagged by 2 algorithms" in algorithms_text
        assert "zscore, iqr" in algorithms_text

    def test_forecast_change(self):
        """Test the forecast change layout."""
        report = forecast_report(
            [{"type": "trend_change", "description": "Predicted increase of 25.0%"}]
        )
        message = SlackFormatter().format_forecast_change(report)

        assert "Total" in message["blocks"][0]["text"]["text"]
        text = json.dumps(message["blocks"])
        assert "Predicted increase of 25.0%" in text
        assert "$4,500.00" in text


class TestAlertDispatcher:
    """Tests for AlertDispatcher."""

    @pytest.fixture
    def config(self, sample_config_dict):
        return Config(**sample_config_dict)

    @pytest.fixture
    def manager(self):
        return MagicMock(spec=SlackWebhookManager)

    def test_only_immediate_anomalies_sent(self, config, manager):
        """Test that routine anomalies don't page."""
        dispatcher = AlertDispatcher(config, webhook_manager=manager)
        result = dispatcher.dispatch_anomalies(
            [create_anomaly(), create_anomaly("medium", immediate=False)]
        )

        assert result == DispatchResult(sent=1)
        channel_key = manager.send_to_channel.call_args[0][0]
        assert channel_key == "webhook_url_critical"

    def test_delivery_failure_not_raised(self, config, manager):
        """Test that delivery errors are reported in the result."""
        manager.send_to_channel.side_effect = SlackWebhookError("boom")
        dispatcher = AlertDispatcher(config, webhook_manager=manager)

        result = dispatcher.dispatch_anomalies([create_anomaly()])

        assert result.sent == 0
        assert result.failed == 1
        assert "boom" in result.errors[0]

    def test_missing_credentials_not_raised(self, config):
        """Test that a Secrets Manager transport error is reported in the result."""
        client = MagicMock()
        client.get_secret_value.side_effect = NoCredentialsError()
        manager = SlackWebhookManager("cost-sentinel/slack", secrets_client=client)

        result = AlertDispatcher(config, webhook_manager=manager).dispatch_anomalies(
            [create_anomaly()]
        )

        assert result.sent == 0
        assert result.failed == 1
        assert "credentials" in result.errors[0]

    def test_malformed_webhook_url_not_raised(self, config):
        """Test that a stored URL without a scheme is reported in the result."""
        client = secrets_client({"webhook_url_critical": "hooks.slack.com/services/x"})
        manager = SlackWebhookManager("cost-sentinel/slack", secrets_client=client)

        result = AlertDispatcher(config, webhook_manager=manager).dispatch_anomalies(
            [create_anomaly()]
        )

        assert result.sent == 0
        assert result.failed == 1
        assert "unknown url type" in result.errors[0]

    def test_slack_disabled(self, config, manager):
        """Test that nothing is sent when Slack is disabled."""
        config.slack.enabled = False
        dispatcher = AlertDispatcher(config, webhook_manager=manager)

        assert dispatcher.dispatch_anomalies([create_anomaly()]) == DispatchResult()
        manager.send_to_channel.assert_not_called()

    def test_no_secret_configured(self, config):
        """Test a dispatcher without a webhook secret."""
        config.aws.secret_name = None
        result = AlertDispatcher(config).dispatch_anomalies([create_anomaly()])
        assert result.failed == 1

    def test_forecast_without_changes(self, config, manager):
        """Test that an unchanged forecast is not announced."""
        dispatcher = AlertDispatcher(config, webhook_manager=manager)

        assert dispatcher.dispatch_forecast_changes(forecast_report()) == DispatchResult()
        manager.send_to_channel.assert_not_called()

    def test_forecast_change_routed_to_heartbeat(self, config, manager):
        """Test that forecast changes go to the general channel."""
        dispatcher = AlertDispatcher(config, webhook_manager=manager)
        report = forecast_report([{"type": "trend_change", "description": "Up 25%"}])

        result = dispatcher.dispatch_forecast_changes(report)

        assert result.sent == 1
        assert manager.send_to_channel.call_args[0][0] == "webhook_url_heartbeat"

    def test_merge(self):
        """Test combining dispatch results."""
        merged = DispatchResult(sent=1).merge(DispatchResult(failed=1, errors=["x"]))
        assert merged.to_dict() == {"sent": 1, "failed": 1, "errors": ["x"]}
