"""Alerting — plugin alert evaluation, threshold rules, and delivery."""

from src.alerts.channels import DiscordChannel, NotificationChannel, SlackChannel, WebhookChannel
from src.alerts.dispatcher import AlertDispatcher
from src.alerts.engine import AlertEvaluationEngine
from src.alerts.factory import create_alert_stack, create_channels
from src.alerts.thresholds import ThresholdEvaluator
from src.alerts.tunnel import DirectTunnelProvider, TunnelError, TunnelProvider
from src.alerts.types import AlertCandidate, FiredAlert

__all__ = [
    "AlertCandidate",
    "AlertDispatcher",
    "AlertEvaluationEngine",
    "DirectTunnelProvider",
    "DiscordChannel",
    "FiredAlert",
    "NotificationChannel",
    "SlackChannel",
    "ThresholdEvaluator",
    "TunnelError",
    "TunnelProvider",
    "WebhookChannel",
    "create_alert_stack",
    "create_channels",
]
