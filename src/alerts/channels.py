"""Notification channels — Slack, Discord and generic JSON webhook delivery."""

from __future__ import annotations

import abc
import datetime
from typing import Any

import aiohttp
import structlog

from src.alerts.types import FiredAlert
from src.core.config import DiscordConfig, SlackConfig, WebhookConfig

logger = structlog.get_logger(__name__)

_TIMEOUT = aiohttp.ClientTimeout(total=10)


class NotificationChannel(abc.ABC):
    """Base class for alert delivery channels."""

    @abc.abstractmethod
    async def send(self, alert: FiredAlert) -> bool:
        """Send an alert. Returns True on success."""

    @abc.abstractmethod
    async def close(self) -> None:
        """Release resources (HTTP sessions, etc.)."""


class _WebhookChannel(NotificationChannel):
    """Shared POST-a-JSON-payload delivery."""

    name = "webhook"
    ok_statuses: tuple[int, ...] = (200, 201, 202, 204)

    def __init__(self, url: str) -> None:
        self._url = url
        self._session: aiohttp.ClientSession | None = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=_TIMEOUT)
        return self._session

    @abc.abstractmethod
    def payload(self, alert: FiredAlert) -> dict[str, Any]:
        """Channel-specific JSON body."""

    async def send(self, alert: FiredAlert) -> bool:
        try:
            session = self._get_session()
            async with session.post(self._url, json=self.payload(alert)) as resp:
                if resp.status in self.ok_statuses:
                    return True
                body = await resp.text()
                logger.warning(
                    f"{self.name}_send_failed",
                    status=resp.status,
                    body=body[:200],
                )
                return False
        except Exception:
            logger.exception(f"{self.name}_send_error")
            return False

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None


class SlackChannel(_WebhookChannel):
    """Slack incoming webhook (mrkdwn text)."""

    name = "slack"

    def __init__(self, config: SlackConfig) -> None:
        super().__init__(config.webhook_url.get_secret_value())

    def payload(self, alert: FiredAlert) -> dict[str, Any]:
        return {"text": f"*{alert.server_name}* — {alert.title}\n{alert.body}"}


class DiscordChannel(_WebhookChannel):
    """Discord webhook (markdown content)."""

    name = "discord"

    def __init__(self, config: DiscordConfig) -> None:
        super().__init__(config.webhook_url.get_secret_value())

    def payload(self, alert: FiredAlert) -> dict[str, Any]:
        return {"content": f"**{alert.server_name}** — {alert.title}\n{alert.body}"}


class WebhookChannel(_WebhookChannel):
    """Generic JSON webhook for custom integrations."""

    name = "webhook"

    def __init__(self, config: WebhookConfig) -> None:
        super().__init__(config.url.get_secret_value())

    def payload(self, alert: FiredAlert) -> dict[str, Any]:
        timestamp = datetime.datetime.fromtimestamp(alert.timestamp, datetime.UTC)
        return {
            "serverName": alert.server_name,
            "title": alert.title,
            "body": alert.body,
            "timestamp": timestamp.isoformat().replace("+00:00", "Z"),
        }
