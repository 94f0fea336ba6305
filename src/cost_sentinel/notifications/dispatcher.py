"""Route anomaly and forecast alerts to Slack channels."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from cost_sentinel.analysis.anomaly_detector import EnsembleAnomaly
from cost_sentinel.config.schema import Config
from cost_sentinel.notifications.slack.formatter import SlackFormatter
from cost_sentinel.notifications.slack.webhook import SlackWebhookError, SlackWebhookManager

logger = logging.getLogger(__name__)


@dataclass
class DispatchResult:
    """Outcome of a batch of notifications."""

    sent: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)

    def merge(self, other: "DispatchResult") -> "DispatchResult":
        return DispatchResult(
            sent=self.sent + other.sent,
            failed=self.failed + other.failed,
            errors=self.errors + other.errors,
        )

    def to_dict(self) -> dict[str, Any]:
        return {"sent": self.sent, "failed": self.failed, "errors": list(self.errors)}


class AlertDispatcher:
    """
    Send alerts for immediate anomalies and significant forecast changes.

    Delivery failures are counted and logged, never raised.
    """

    def __init__(
        self,
        config: Config,
        webhook_manager: SlackWebhookManager | None = None,
        formatter: SlackFormatter | None = None,
    ):
        """
        Initialize the dispatcher.

        Args:
            config: Root configuration (Slack channels and routing).
            webhook_manager: Webhook manager. Built from config.aws when omitted.
            formatter: Message formatter.
        """
        self.config = config
        self.formatter = formatter or SlackFormatter()
        if webhook_manager is None and config.aws.secret_name:
            webhook_manager = SlackWebhookManager(
                secret_name=config.aws.secret_name,
                region=config.aws.region,
            )
        self.webhook_manager = webhook_manager

    def _channel_key(self, route: str) -> str:
        return self.config.slack.channels[route].webhook_secret_key

    def _send(self, route: str, message: dict[str, Any], subject: str) -> DispatchResult:
        if self.webhook_manager is None:
            reason = f"{subject}: no webhook secret configured"
            logger.warning("Slack alert not sent - %s", reason)
            return DispatchResult(failed=1, errors=[reason])

        try:
            self.webhook_manager.send_to_channel(self._channel_key(route), message)
        except (SlackWebhookError, KeyError) as e:
            logger.error("Failed to send Slack alert for %s: %s", subject, e)
            return DispatchResult(failed=1, errors=[f"{subject}: {e}"])

        logger.info("Sent Slack alert for %s", subject)
        return DispatchResult(sent=1)

    def dispatch_anomalies(self, anomalies: Iterable[EnsembleAnomaly]) -> DispatchResult:
        """Alert on anomalies flagged for immediate attention."""
        result = DispatchResult()
        if not self.config.slack.enabled:
            return result

        for anomaly in anomalies:
            if not anomaly.needs_immediate_alert:
                continue
            message = self.formatter.format_anomaly_alert(anomaly)
            result = result.merge(
                self._send(self.config.routing.anomaly_critical, message, anomaly.unique_key)
            )
        return result

    def dispatch_forecast_changes(self, report: dict[str, Any]) -> DispatchResult:
        """Alert when a forecast report carries significant changes."""
        if not self.config.slack.enabled:
            return DispatchResult()
        if not report["insights"]["significant_changes"]:
            return DispatchResult()

        message = self.formatter.format_forecast_change(report)
        return self._send(
            self.config.routing.forecast_change,
            message,
            f"forecast {report['service_name']}",
        )
