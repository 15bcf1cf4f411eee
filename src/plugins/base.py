"""Plugin capability contract — image matching plus alert evaluation.

To add a plugin:

1. Subclass :class:`ContainerPlugin` and implement ``id`` and ``matches``.
2. Declare ``alert_metrics`` and implement ``evaluate_alert`` if the
   service can be checked for problems.
3. Register it at startup: ``registry.register(MyPlugin())``.

Plugins are stateless across invocations. Anything an evaluation needs
(base URL, credential) is handed in through :class:`PluginAlertContext`.
"""

from __future__ import annotations

import abc

from pydantic import BaseModel, ConfigDict

from src.core.types import AlertMetricDefinition, AlertResult


class PluginAlertContext(BaseModel):
    """Everything one alert evaluation may use."""

    model_config = ConfigDict(frozen=True)

    server_id: str
    container_image: str
    base_url: str
    credential: str | None = None


class ContainerPlugin(abc.ABC):
    """Base class for service plugins keyed on a container image."""

    # Display metadata used in service snapshots.
    display_name: str = ""
    icon: str = ""

    # Port the service listens on inside the monitored host; None means the
    # plugin has nothing to reach over the network.
    service_port: int | None = None

    # Credential purpose used to build the store key; None means no credential.
    credential_purpose: str | None = None

    @property
    @abc.abstractmethod
    def id(self) -> str:
        """Unique stable identifier, e.g. ``"n8n"``."""

    @abc.abstractmethod
    def matches(self, image_name: str) -> bool:
        """Whether this plugin handles a (normalised) image name."""

    @property
    def alert_metrics(self) -> list[AlertMetricDefinition]:
        return []

    def alert_metric(self, key: str) -> AlertMetricDefinition | None:
        for metric in self.alert_metrics:
            if metric.key == key:
                return metric
        return None

    async def evaluate_alert(self, metric_key: str, context: PluginAlertContext) -> AlertResult:
        """Evaluate one alert metric. Must collapse uncertainty to ``ok``."""
        return AlertResult.ok()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={self.id!r}>"
