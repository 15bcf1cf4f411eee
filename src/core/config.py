"""Pydantic settings loaded from YAML configuration."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, SecretStr

_settings: Settings | None = None

_DEFAULT_CONFIG_PATH = Path("config/settings.yaml")


class AgentConfig(BaseModel):
    """Agent HTTP server and sampling configuration."""

    host: str = "0.0.0.0"
    port: int = 7654
    auth_token: SecretStr = SecretStr("")
    server_id: str = "local"
    docker_socket: str = "/var/run/docker.sock"
    docker_timeout_secs: float = 5.0
    system_interval_secs: float = 1.0
    docker_interval_secs: float = 5.0
    services_interval_secs: float = 10.0
    keepalive_interval_secs: float = 30.0
    top_processes: int = 10


class StreamClientConfig(BaseModel):
    """Client-side connection settings for talking to an agent."""

    host: str = "127.0.0.1"
    port: int = 7654
    token: SecretStr = SecretStr("")
    request_timeout_secs: float = 8.0
    action_timeout_secs: float = 35.0
    reconnect_base_secs: float = 2.0
    reconnect_cap_secs: float = 30.0


class N8nPluginConfig(BaseModel):
    """n8n workflow-automation plugin configuration."""

    service_port: int = 5678
    request_timeout_secs: float = 10.0
    executions_limit: int = 20
    failure_window_secs: float = 300.0
    poll_interval_secs: float = 60.0


class PluginsConfig(BaseModel):
    """Container for all plugin configurations."""

    n8n: N8nPluginConfig = N8nPluginConfig()


class ThresholdConfig(BaseModel):
    """Threshold rules for host and container alerts."""

    cpu_enabled: bool = True
    cpu_threshold: float = 90.0
    cpu_sustained_secs: float = 30.0

    memory_enabled: bool = True
    memory_threshold: float = 95.0
    memory_sustained_secs: float = 30.0

    disk_enabled: bool = True
    disk_threshold: float = 90.0

    container_down_enabled: bool = True

    container_cpu_enabled: bool = False
    container_cpu_threshold: float = 80.0
    container_cpu_sustained_secs: float = 60.0

    container_memory_enabled: bool = False
    container_memory_threshold: float = 90.0
    container_memory_sustained_secs: float = 30.0

    container_unhealthy_enabled: bool = True
    container_restart_spike_enabled: bool = True
    container_restart_threshold: int = 5


class SlackConfig(BaseModel):
    """Slack incoming-webhook channel configuration."""

    enabled: bool = False
    webhook_url: SecretStr = SecretStr("")


class DiscordConfig(BaseModel):
    """Discord webhook channel configuration."""

    enabled: bool = False
    webhook_url: SecretStr = SecretStr("")


class WebhookConfig(BaseModel):
    """Generic JSON webhook channel configuration."""

    enabled: bool = False
    url: SecretStr = SecretStr("")


class AlertsConfig(BaseModel):
    """Alert dispatch configuration."""

    cooldown_secs: float = 300.0
    history_size: int = 50
    plugin_alerts_enabled: bool = True
    thresholds: ThresholdConfig = ThresholdConfig()
    slack: SlackConfig = SlackConfig()
    discord: DiscordConfig = DiscordConfig()
    webhook: WebhookConfig = WebhookConfig()


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "json"


class Settings(BaseModel):
    """Root settings container."""

    agent: AgentConfig = AgentConfig()
    stream_client: StreamClientConfig = StreamClientConfig()
    plugins: PluginsConfig = PluginsConfig()
    alerts: AlertsConfig = AlertsConfig()
    logging: LoggingConfig = LoggingConfig()


def load_settings(path: str | Path | None = None) -> Settings:
    """Load settings from a YAML file and cache globally.

    Args:
        path: Path to YAML config. Defaults to config/settings.yaml.

    Returns:
        Parsed Settings instance.
    """
    global _settings  # noqa: PLW0603

    config_path = Path(path) if path else _DEFAULT_CONFIG_PATH

    data: dict[str, Any] = {}
    if config_path.exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f)
            if isinstance(raw, dict):
                data = raw

    _settings = Settings(**data)
    return _settings


def get_settings() -> Settings:
    """Return the cached settings, loading defaults if not yet loaded."""
    global _settings  # noqa: PLW0603
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Reset the cached settings (useful for testing)."""
    global _settings  # noqa: PLW0603
    _settings = None
