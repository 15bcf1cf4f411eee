"""AlertEvaluationEngine — runs a plugin's alert check for one container.

Every failure along the chain (no plugin, unknown metric, tunnel down,
missing credential, request error, evaluator bug) resolves to ``ok``: an
inability to check is not a confirmed problem. The engine never raises.
"""

from __future__ import annotations

import asyncio

import structlog

from src.alerts.tunnel import TunnelProvider
from src.core.types import AlertResult
from src.plugins.base import ContainerPlugin, PluginAlertContext
from src.plugins.credentials import CredentialStore
from src.plugins.registry import PluginRegistry

logger = structlog.stdlib.get_logger()


class AlertEvaluationEngine:
    """Evaluates (server, container, metric) triples against plugins.

    Holds no per-evaluation state, so evaluations may run concurrently. It
    does not de-duplicate repeated ``firing`` results; that is the
    scheduler's or dispatcher's concern.

    Usage::

        engine = AlertEvaluationEngine(registry, tunnels, credentials)
        result = await engine.evaluate("srv-1", "n8nio/n8n:latest", "execution_failed")
        if result.is_firing:
            ...
    """

    def __init__(
        self,
        registry: PluginRegistry,
        tunnels: TunnelProvider,
        credentials: CredentialStore,
    ) -> None:
        self._registry = registry
        self._tunnels = tunnels
        self._credentials = credentials

    async def evaluate(self, server_id: str, container_image: str, metric_key: str) -> AlertResult:
        try:
            return await self._evaluate(server_id, container_image, metric_key)
        except Exception:
            logger.exception(
                "alert_evaluation_error",
                server_id=server_id,
                image=container_image,
                metric=metric_key,
            )
            return AlertResult.ok()

    async def evaluate_all(self, server_id: str, container_image: str) -> dict[str, AlertResult]:
        """Evaluate every metric the owning plugin declares, concurrently."""
        plugin = self._registry.resolve(container_image)
        if plugin is None:
            return {}
        keys = [m.key for m in plugin.alert_metrics]
        results = await asyncio.gather(
            *(self.evaluate(server_id, container_image, key) for key in keys)
        )
        return dict(zip(keys, results))

    async def _evaluate(self, server_id: str, container_image: str, metric_key: str) -> AlertResult:
        plugin = self._registry.resolve(container_image)
        if plugin is None or plugin.alert_metric(metric_key) is None:
            return AlertResult.ok()
        if plugin.service_port is None:
            return AlertResult.ok()

        base_url = await self._open_tunnel(plugin, server_id, plugin.service_port)
        if base_url is None:
            return AlertResult.ok()

        credential: str | None = None
        if plugin.credential_purpose is not None:
            credential = self._credentials.load(plugin.id, plugin.credential_purpose, server_id)
            if not credential:
                logger.debug("alert_plugin_unconfigured", plugin_id=plugin.id, server_id=server_id)
                return AlertResult.ok()

        context = PluginAlertContext(
            server_id=server_id,
            container_image=container_image,
            base_url=base_url,
            credential=credential,
        )
        result = await plugin.evaluate_alert(metric_key, context)
        if result.is_firing:
            logger.info(
                "alert_firing",
                plugin_id=plugin.id,
                server_id=server_id,
                metric=metric_key,
                message=result.message,
            )
        return result

    async def _open_tunnel(self, plugin: ContainerPlugin, server_id: str, port: int) -> str | None:
        try:
            return await self._tunnels.open(server_id, port)
        except Exception as exc:
            logger.info(
                "alert_tunnel_unavailable",
                plugin_id=plugin.id,
                server_id=server_id,
                port=port,
                error=str(exc),
            )
            return None
