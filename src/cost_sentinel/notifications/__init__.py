"""Notification integrations for Cost Sentinel."""

from cost_sentinel.notifications.dispatcher import AlertDispatcher, DispatchResult
from cost_sentinel.notifications.slack import SlackFormatter, SlackWebhook, SlackWebhookManager

__all__ = [
    "AlertDispatcher",
    "DispatchResult",
    "SlackWebhook",
    "SlackWebhookManager",
    "SlackFormatter",
]
