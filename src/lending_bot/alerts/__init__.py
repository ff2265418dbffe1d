"""Alerting -- rate-crossing rules with cooldowns and webhook delivery."""

from lending_bot.alerts.engine import AlertEngine, format_rate_pct, render_message
from lending_bot.alerts.notifier import LogNotifier, Notifier, WebhookNotifier, build_notifier

__all__ = [
    "AlertEngine",
    "LogNotifier",
    "Notifier",
    "WebhookNotifier",
    "build_notifier",
    "format_rate_pct",
    "render_message",
]
