"""Central alert dispatcher — per-key cooldown, history, channel fan-out."""

from __future__ import annotations

import asyncio
import time
from collections import deque
from collections.abc import Callable

import structlog

from src.alerts.channels import NotificationChannel
from src.alerts.types import AlertCandidate, FiredAlert
from src.core.types import AlertMetricDefinition, AlertResult

logger = structlog.get_logger(__name__)


class AlertDispatcher:
    """Routes alerts to notification channels.

    - Each alert key fires at most once per ``cooldown_secs``.
    - Fired alerts are kept in a bounded, newest-first history.
    - Test alerts bypass the cooldown and are not recorded.
    - Plugin alerts can be switched off as a group.
    """

    def __init__(
        self,
        channels: list[NotificationChannel] | None = None,
        cooldown_secs: float = 300.0,
        history_size: int = 50,
        plugin_alerts_enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._channels: list[NotificationChannel] = channels or []
        self._cooldown_secs = cooldown_secs
        self._plugin_alerts_enabled = plugin_alerts_enabled
        self._clock = clock
        # Tracks the last dispatch time per alert key.
        self._last_fired: dict[str, float] = {}
        self._history: deque[FiredAlert] = deque(maxlen=history_size)

    @property
    def recent_alerts(self) -> list[FiredAlert]:
        """Newest first."""
        return list(self._history)

    @property
    def has_unacknowledged(self) -> bool:
        return bool(self._history)

    def clear(self) -> None:
        self._history.clear()

    def forget_server(self, server_id: str) -> None:
        """Drop cooldown state for a server that is no longer monitored."""
        self._last_fired = {
            k: v for k, v in self._last_fired.items() if not k.startswith(f"{server_id}-")
        }

    # ── Entry points ────────────────────────────────────────────

    async def fire(
        self,
        key: str,
        server_id: str,
        server_name: str,
        title: str,
        body: str = "",
    ) -> FiredAlert | None:
        """Dispatch unless *key* is still cooling down. Returns the fired alert."""
        now = self._clock()
        last = self._last_fired.get(key, -float("inf"))
        if now - last < self._cooldown_secs:
            return None

        self._last_fired[key] = now
        alert = FiredAlert(
            key=key,
            server_id=server_id,
            server_name=server_name,
            title=title,
            body=body,
        )
        self._history.appendleft(alert)
        logger.info(
            "alert_fired",
            key=key,
            server_name=server_name,
            title=title,
            body=body,
        )
        await self._dispatch_to_channels(alert)
        return alert

    async def fire_candidates(
        self,
        server_id: str,
        server_name: str,
        candidates: list[AlertCandidate],
    ) -> list[FiredAlert]:
        fired: list[FiredAlert] = []
        for c in candidates:
            alert = await self.fire(c.key, server_id, server_name, c.title, c.body)
            if alert is not None:
                fired.append(alert)
        return fired

    async def fire_plugin_alert(
        self,
        server_id: str,
        server_name: str,
        plugin_id: str,
        metric: AlertMetricDefinition,
        result: AlertResult,
    ) -> FiredAlert | None:
        if not self._plugin_alerts_enabled or not result.is_firing:
            return None
        return await self.fire(
            key=f"{server_id}-plugin-{plugin_id}-{metric.key}",
            server_id=server_id,
            server_name=server_name,
            title=metric.display_name,
            body=result.message,
        )

    async def send_test(self, server_id: str, server_name: str) -> FiredAlert:
        """Deliver a test alert immediately (bypasses cooldown)."""
        alert = FiredAlert(
            key=f"{server_id}-test",
            server_id=server_id,
            server_name=server_name,
            title="Test Alert",
            body="Notifications are working correctly.",
        )
        await self._dispatch_to_channels(alert)
        return alert

    # ── Internal routing ────────────────────────────────────────

    async def _dispatch_to_channels(self, alert: FiredAlert) -> None:
        results = await asyncio.gather(
            *(ch.send(alert) for ch in self._channels),
            return_exceptions=True,
        )
        for ch, result in zip(self._channels, results):
            if isinstance(result, BaseException):
                logger.error(
                    "channel_dispatch_error",
                    channel=type(ch).__name__,
                    title=alert.title,
                    error=str(result),
                )

    # ── Lifecycle ───────────────────────────────────────────────

    async def close(self) -> None:
        for ch in self._channels:
            try:
                await ch.close()
            except Exception:
                logger.exception("channel_close_error", channel=type(ch).__name__)
