"""Tests for src/core/config.py — YAML loading, defaults, SecretStr."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from src.core.config import (
    AgentConfig,
    AlertsConfig,
    LoggingConfig,
    N8nPluginConfig,
    Settings,
    SlackConfig,
    StreamClientConfig,
    ThresholdConfig,
    get_settings,
    load_settings,
    reset_settings,
)


@pytest.fixture(autouse=True)
def _clean_settings() -> None:
    """Reset the global settings cache before each test."""
    reset_settings()


class TestDefaults:
    """Settings should have sensible defaults when no YAML is provided."""

    def test_default_agent_config(self) -> None:
        cfg = AgentConfig()
        assert cfg.port == 7654
        assert cfg.auth_token.get_secret_value() == ""
        assert cfg.system_interval_secs == 1.0
        assert cfg.docker_interval_secs == 5.0
        assert cfg.services_interval_secs == 10.0
        assert cfg.keepalive_interval_secs == 30.0

    def test_default_stream_client_config(self) -> None:
        cfg = StreamClientConfig()
        assert cfg.reconnect_base_secs == 2.0
        assert cfg.reconnect_cap_secs == 30.0

    def test_default_n8n_config(self) -> None:
        cfg = N8nPluginConfig()
        assert cfg.service_port == 5678
        assert cfg.request_timeout_secs == 10.0
        assert cfg.executions_limit == 20
        assert cfg.failure_window_secs == 300.0
        assert cfg.poll_interval_secs == 60.0

    def test_default_thresholds(self) -> None:
        cfg = ThresholdConfig()
        assert cfg.cpu_threshold == 90.0
        assert cfg.memory_threshold == 95.0
        assert cfg.container_cpu_enabled is False
        assert cfg.container_restart_threshold == 5

    def test_default_alerts_config(self) -> None:
        cfg = AlertsConfig()
        assert cfg.cooldown_secs == 300.0
        assert cfg.history_size == 50
        assert cfg.slack.enabled is False

    def test_default_logging_config(self) -> None:
        cfg = LoggingConfig()
        assert cfg.level == "INFO"
        assert cfg.format == "json"

    def test_default_settings(self) -> None:
        s = Settings()
        assert s.agent.port == 7654
        assert s.plugins.n8n.service_port == 5678
        assert s.alerts.thresholds.disk_threshold == 90.0
        assert s.logging.level == "INFO"


class TestYamlLoading:
    """Settings should load correctly from YAML files."""

    def test_load_from_yaml(self, tmp_path: Path) -> None:
        config_data = {
            "agent": {
                "port": 9000,
                "auth_token": "agent-secret",
                "docker_interval_secs": 2,
            },
            "plugins": {"n8n": {"service_port": 5679}},
            "alerts": {
                "cooldown_secs": 60,
                "slack": {"enabled": True, "webhook_url": "https://hooks.slack.test/x"},
            },
            "logging": {
                "level": "DEBUG",
                "format": "console",
            },
        }
        config_file = tmp_path / "settings.yaml"
        config_file.write_text(yaml.dump(config_data))

        settings = load_settings(config_file)

        assert settings.agent.port == 9000
        assert settings.agent.auth_token.get_secret_value() == "agent-secret"
        assert settings.agent.docker_interval_secs == 2
        assert settings.plugins.n8n.service_port == 5679
        assert settings.alerts.cooldown_secs == 60
        assert settings.alerts.slack.enabled is True
        assert settings.alerts.slack.webhook_url.get_secret_value() == "https://hooks.slack.test/x"
        assert settings.logging.level == "DEBUG"
        assert settings.logging.format == "console"

    def test_load_missing_file_uses_defaults(self, tmp_path: Path) -> None:
        settings = load_settings(tmp_path / "nonexistent.yaml")
        assert settings.agent.port == 7654
        assert settings.alerts.history_size == 50

    def test_load_empty_file_uses_defaults(self, tmp_path: Path) -> None:
        config_file = tmp_path / "empty.yaml"
        config_file.write_text("")
        settings = load_settings(config_file)
        assert settings.agent.port == 7654

    def test_partial_yaml_merges_with_defaults(self, tmp_path: Path) -> None:
        config_data = {"alerts": {"thresholds": {"cpu_threshold": 75}}}
        config_file = tmp_path / "settings.yaml"
        config_file.write_text(yaml.dump(config_data))

        settings = load_settings(config_file)
        assert settings.alerts.thresholds.cpu_threshold == 75
        # Other defaults still intact
        assert settings.alerts.thresholds.memory_threshold == 95.0
        assert settings.agent.port == 7654

    def test_get_settings_caches(self, tmp_path: Path) -> None:
        config_file = tmp_path / "settings.yaml"
        config_file.write_text(yaml.dump({"agent": {"port": 1234}}))
        loaded = load_settings(config_file)
        assert get_settings() is loaded


class TestSecretStr:
    """Sensitive fields should use SecretStr to prevent leaking."""

    def test_secret_str_repr_does_not_leak(self) -> None:
        cfg = AgentConfig(auth_token="super-secret")  # type: ignore[arg-type]
        repr_str = repr(cfg)
        assert "super-secret" not in repr_str
        assert "**********" in repr_str

    def test_webhook_url_hidden(self) -> None:
        cfg = SlackConfig(webhook_url="https://hooks.slack.test/secret")  # type: ignore[arg-type]
        assert "secret" not in repr(cfg)
        assert cfg.webhook_url.get_secret_value() == "https://hooks.slack.test/secret"
