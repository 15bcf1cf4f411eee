"""PluginRegistry — maps container images to the plugin that owns them."""

from __future__ import annotations

from collections.abc import Iterator

import structlog

from src.plugins.base import ContainerPlugin

logger = structlog.stdlib.get_logger()


def normalize_image_name(image_name: str) -> str:
    """Lowercase and strip everything from the first ``:`` onward.

    ``"n8nio/n8n:1.2"`` → ``"n8nio/n8n"``. Idempotent.
    """
    return image_name.lower().split(":", 1)[0]


class PluginRegistry:
    """Insertion-ordered set of plugins keyed by id.

    Registration happens once at startup, before any ``resolve`` call; the
    registry is not synchronised for concurrent mutation.

    Usage::

        registry = PluginRegistry()
        registry.register(N8nPlugin())
        plugin = registry.resolve("docker.n8n.io/n8nio/n8n:latest")
    """

    def __init__(self, plugins: list[ContainerPlugin] | None = None) -> None:
        self._plugins: dict[str, ContainerPlugin] = {}
        for plugin in plugins or []:
            self.register(plugin)

    def register(self, plugin: ContainerPlugin) -> bool:
        """Add *plugin* unless its id is taken. Returns True if it was added."""
        if plugin.id in self._plugins:
            logger.debug("plugin_already_registered", plugin_id=plugin.id)
            return False
        self._plugins[plugin.id] = plugin
        logger.info("plugin_registered", plugin_id=plugin.id)
        return True

    def resolve(self, image_name: str) -> ContainerPlugin | None:
        """First plugin, in registration order, whose matcher accepts the image."""
        normalized = normalize_image_name(image_name)
        for plugin in self._plugins.values():
            if plugin.matches(normalized):
                return plugin
        return None

    def get(self, plugin_id: str) -> ContainerPlugin | None:
        return self._plugins.get(plugin_id)

    @property
    def plugins(self) -> tuple[ContainerPlugin, ...]:
        return tuple(self._plugins.values())

    def __len__(self) -> int:
        return len(self._plugins)

    def __contains__(self, plugin_id: object) -> bool:
        return plugin_id in self._plugins

    def __iter__(self) -> Iterator[ContainerPlugin]:
        return iter(self.plugins)
