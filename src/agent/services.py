"""Service detection — maps containers onto registered plugins."""

from __future__ import annotations

import structlog

from src.core.types import (
    ContainerSnapshot,
    ContainerStatus,
    ServiceInfo,
    ServiceStatus,
    StatItem,
)
from src.plugins.base import ContainerPlugin
from src.plugins.credentials import CredentialStore
from src.plugins.registry import PluginRegistry

logger = structlog.stdlib.get_logger()


class ServiceDetector:
    """Builds the ``services`` event from the latest container list.

    One entry per plugin: a running container wins over a stopped one, and
    among equals the first container in the list wins.
    """

    def __init__(
        self,
        registry: PluginRegistry,
        credentials: CredentialStore | None = None,
        server_id: str = "local",
    ) -> None:
        self._registry = registry
        self._credentials = credentials
        self._server_id = server_id

    def detect(self, containers: list[ContainerSnapshot]) -> list[ServiceInfo]:
        owners: dict[str, tuple[ContainerPlugin, ContainerSnapshot]] = {}
        for container in containers:
            plugin = self._registry.resolve(container.image)
            if plugin is None:
                continue
            current = owners.get(plugin.id)
            if current is None or (
                current[1].status != ContainerStatus.RUNNING
                and container.status == ContainerStatus.RUNNING
            ):
                owners[plugin.id] = (plugin, container)

        return [self._describe(plugin, container) for plugin, container in owners.values()]

    def is_configured(self, plugin: ContainerPlugin) -> bool:
        if plugin.credential_purpose is None:
            return True
        if self._credentials is None:
            return False
        return bool(self._credentials.load(plugin.id, plugin.credential_purpose, self._server_id))

    def _describe(self, plugin: ContainerPlugin, container: ContainerSnapshot) -> ServiceInfo:
        running = container.status == ContainerStatus.RUNNING
        configured = self.is_configured(plugin)
        summary = [
            StatItem(label="Container", value=container.name),
            StatItem(label="Status", value=container.status.value, type="status"),
            StatItem(label="CPU", value=f"{container.cpu_percent:.1f}", type="percent"),
        ]
        if plugin.service_port is not None:
            summary.append(StatItem(label="Port", value=str(plugin.service_port), type="number"))

        return ServiceInfo(
            plugin_id=plugin.id,
            name=plugin.display_name or plugin.id,
            icon=plugin.icon,
            status=ServiceStatus.RUNNING if running else ServiceStatus.STOPPED,
            summary=summary,
            stats={
                "containerId": container.id,
                "image": container.image,
                "configured": configured,
                "healthStatus": container.health_status.value,
            },
            error=None if running else f"{container.name} is {container.status.value}",
        )
