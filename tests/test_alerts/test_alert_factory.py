"""Tests for the alerting factory — channel selection from config."""

from __future__ import annotations

from pydantic import SecretStr

from src.alerts.channels import DiscordChannel, SlackChannel, WebhookChannel
from src.alerts.factory import create_alert_stack, create_channels
from src.core.config import (
    AlertsConfig,
    DiscordConfig,
    SlackConfig,
    ThresholdConfig,
    WebhookConfig,
)


class TestCreateChannels:
    def test_none_by_default(self) -> None:
        assert create_channels(AlertsConfig()) == []

    def test_enabled_with_url(self) -> None:
        cfg = AlertsConfig(
            slack=SlackConfig(enabled=True, webhook_url=SecretStr("https://hooks.slack.test/x")),
            discord=DiscordConfig(enabled=True, webhook_url=SecretStr("https://discord.test/x")),
            webhook=WebhookConfig(enabled=True, url=SecretStr("https://example.test/hook")),
        )
        channels = create_channels(cfg)
        assert [type(c) for c in channels] == [SlackChannel, DiscordChannel, WebhookChannel]

    def test_enabled_without_url_skipped(self) -> None:
        cfg = AlertsConfig(slack=SlackConfig(enabled=True))
        assert create_channels(cfg) == []

    def test_url_without_enabled_skipped(self) -> None:
        cfg = AlertsConfig(webhook=WebhookConfig(url=SecretStr("https://example.test/hook")))
        assert create_channels(cfg) == []


class TestCreateAlertStack:
    async def test_wires_config(self) -> None:
        cfg = AlertsConfig(
            cooldown_secs=60,
            plugin_alerts_enabled=False,
            thresholds=ThresholdConfig(cpu_threshold=75),
        )
        dispatcher, evaluator = create_alert_stack(cfg)
        assert evaluator.config.cpu_threshold == 75
        assert dispatcher.recent_alerts == []
        await dispatcher.close()
