"""Convenience factory for wiring the alerting stack."""

from __future__ import annotations

from src.alerts.channels import (
    DiscordChannel,
    NotificationChannel,
    SlackChannel,
    WebhookChannel,
)
from src.alerts.dispatcher import AlertDispatcher
from src.alerts.thresholds import ThresholdEvaluator
from src.core.config import AlertsConfig


def create_channels(config: AlertsConfig) -> list[NotificationChannel]:
    """Enabled channels that also have a destination URL."""
    channels: list[NotificationChannel] = []

    if config.slack.enabled and config.slack.webhook_url.get_secret_value():
        channels.append(SlackChannel(config.slack))

    if config.discord.enabled and config.discord.webhook_url.get_secret_value():
        channels.append(DiscordChannel(config.discord))

    if config.webhook.enabled and config.webhook.url.get_secret_value():
        channels.append(WebhookChannel(config.webhook))

    return channels


def create_alert_stack(config: AlertsConfig) -> tuple[AlertDispatcher, ThresholdEvaluator]:
    """Build a dispatcher + threshold evaluator from config.

    Returns:
        (dispatcher, evaluator)
    """
    dispatcher = AlertDispatcher(
        channels=create_channels(config),
        cooldown_secs=config.cooldown_secs,
        history_size=config.history_size,
        plugin_alerts_enabled=config.plugin_alerts_enabled,
    )
    evaluator = ThresholdEvaluator(config.thresholds)
    return dispatcher, evaluator
