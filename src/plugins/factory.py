"""Convenience factory for the built-in plugin set."""

from __future__ import annotations

from src.core.config import PluginsConfig
from src.plugins.n8n.plugin import N8nPlugin
from src.plugins.registry import PluginRegistry


def create_plugin_registry(config: PluginsConfig | None = None) -> PluginRegistry:
    """Registry with every built-in plugin, in matching priority order."""
    cfg = config or PluginsConfig()
    registry = PluginRegistry()
    registry.register(N8nPlugin(cfg.n8n))
    return registry
