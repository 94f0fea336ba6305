"""Slack notification integration."""

from cost_sentinel.notifications.slack.formatter import SlackFormatter
from cost_sentinel.notifications.slack.webhook import (
    SlackWebhook,
    SlackWebhookError,
    SlackWebhookManager,
)

__all__ = ["SlackWebhook", "SlackWebhookError", "SlackWebhookManager", "SlackFormatter"]
