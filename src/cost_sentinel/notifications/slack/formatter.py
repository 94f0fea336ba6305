"""Slack Block Kit message formatting."""

from datetime import UTC, datetime
from typing import Any
from zoneinfo import ZoneInfo

from cost_sentinel.analysis.anomaly_detector import EnsembleAnomaly


class SlackFormatter:
    """Format anomaly alerts and forecast changes using Slack Block Kit."""

    SEVERITY_EMOJI = {
        "critical": ":rotating_light:",
        "high": ":warning:",
        "medium": ":large_orange_diamond:",
        "low": ":information_source:",
    }

    TREND_EMOJI = {
        "increasing": ":chart_with_upwards_trend:",
        "decreasing": ":chart_with_downwards_trend:",
    }

    USERNAME = "Cost Sentinel"
    ICON = ":shield:"

    def __init__(self, timezone: str | None = None):
        """
        Initialize the formatter.

        Args:
            timezone: IANA timezone for message footers. Defaults to UTC.
        """
        self.tz = ZoneInfo(timezone) if timezone else UTC

    def _timestamp(self) -> str:
        return datetime.now(UTC).astimezone(self.tz).strftime("%b %d, %Y at %I:%M %p %Z")

    def _message(self, blocks: list[dict[str, Any]]) -> dict[str, Any]:
        return {"username": self.USERNAME, "icon_emoji": self.ICON, "blocks": blocks}

    def format_anomaly_alert(self, anomaly: EnsembleAnomaly) -> dict[str, Any]:
        """
        Format an alert for a single ensemble anomaly.

        Args:
            anomaly: The detected anomaly.

        Returns:
            Slack Block Kit message payload.
        """
        emoji = self.SEVERITY_EMOJI.get(anomaly.severity, ":grey_question:")

        fields = [
            {"type": "mrkdwn", "text": f"*Service*\n{anomaly.label}"},
            {"type": "mrkdwn", "text": f"*Date*\n{anomaly.date}"},
            {"type": "mrkdwn", "text": f"*Cost*\n${anomaly.value:,.2f}"},
            {"type": "mrkdwn", "text": f"*Confidence*\n{anomaly.confidence:.0%}"},
        ]
        if anomaly.z_score is not None:
            fields.append({"type": "mrkdwn", "text": f"*Z-score*\n{anomaly.z_score:.2f}"})

        blocks = [
            {
                "type": "header",
                "text": {
                    "type": "plain_text",
                    "text": f"{emoji} Cost Anomaly Detected",
                    "emoji": True,
                },
            },
            {"type": "section", "fields": fields},
            {
                "type": "section",
                "text": {
                    "type": "mrkdwn",
                    "text": (
                        f"*Flagged by {anomaly.algorithm_count} algorithms:* "
                        f"{', '.join(anomaly.algorithms)}"
                    ),
                },
            },
            {"type": "divider"},
            {
                "type": "context",
                "elements": [
                    {
                        "type": "mrkdwn",
                        "text": (
                            f"Anomaly ID: `{anomaly.anomaly_id}` | {self._timestamp()} | "
                            f"Severity: {anomaly.severity}"
                        ),
                    }
                ],
            },
        ]

        return self._message(blocks)

    def format_forecast_change(self, report: dict[str, Any]) -> dict[str, Any]:
        """
        Format the significant changes and alerts of a forecast report.

        Args:
            report: Serialized forecast report (ForecastReport.to_dict()).

        Returns:
            Slack Block Kit message payload.
        """
        summary = report["summary"]
        insights = report["insights"]
        trend = summary["trend_direction"]

        blocks = [
            {
                "type": "header",
                "text": {
                    "type": "plain_text",
                    "text": (
                        f"{self.TREND_EMOJI.get(trend, ':grey_question:')} "
                        f"Cost Forecast Change: {report['service_name']}"
                    ),
                    "emoji": True,
                },
            },
            {
                "type": "section",
                "fields": [
                    {
                        "type": "mrkdwn",
                        "text": f"*{report['horizon']}-day total*\n${summary['predicted_total']:,.2f}",
                    },
                    {
                        "type": "mrkdwn",
                        "text": f"*Daily average*\n${summary['average_daily_cost']:,.2f}",
                    },
                    {"type": "mrkdwn", "text": f"*Trend*\n{trend}"},
                    {
                        "type": "mrkdwn",
                        "text": f"*Accuracy*\n{report['ensemble_accuracy']:.0%}",
                    },
                ],
            },
        ]

        lines = [f"• {change['description']}" for change in insights["significant_changes"]]
        lines += [f"• :warning: {alert['description']}" for alert in insights["alerts"]]
        if lines:
            blocks.append({"type": "divider"})
            blocks.append(
                {"type": "section", "text": {"type": "mrkdwn", "text": "\n".join(lines)}}
            )

        if insights["recommendations"]:
            blocks.append(
                {
                    "type": "section",
                    "text": {
                        "type": "mrkdwn",
                        "text": "*Recommendations*\n"
                        + "\n".join(f"• {r['action']}" for r in insights["recommendations"]),
                    },
                }
            )

        blocks.append(
            {
                "type": "context",
                "elements": [
                    {
                        "type": "mrkdwn",
                        "text": f"Generated {self._timestamp()} | "
                        f"Models: {', '.join(report['model_weights'])}",
                    }
                ],
            }
        )

        return self._message(blocks)
