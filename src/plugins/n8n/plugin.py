"""n8n plugin — matches n8n containers and alerts on failed executions."""

from __future__ import annotations

import datetime
from collections.abc import Callable

import httpx
import structlog

from src.core.config import N8nPluginConfig, get_settings
from src.core.types import AlertMetricDefinition, AlertResult
from src.plugins.base import ContainerPlugin, PluginAlertContext
from src.plugins.exceptions import ServiceClientError
from src.plugins.n8n.client import N8nClient, N8nExecution

logger = structlog.stdlib.get_logger()

EXECUTION_FAILED = "execution_failed"

_FAILED_STATUSES = frozenset({"error", "crashed"})


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


def find_failed_execution(
    executions: list[N8nExecution],
    now: datetime.datetime,
    window_secs: float = 300.0,
) -> N8nExecution | None:
    """First execution that errored or crashed and started inside the window.

    Executions without a parseable start time never qualify.
    """
    cutoff = now - datetime.timedelta(seconds=window_secs)
    for execution in executions:
        if execution.status not in _FAILED_STATUSES:
            continue
        started = execution.started_date
        if started is not None and started > cutoff:
            return execution
    return None


async def resolve_workflow_name(client: N8nClient, execution: N8nExecution) -> str:
    """Inline name, then a lookup by id, then the bare id, then ``unknown``."""
    if execution.workflow_data is not None and execution.workflow_data.name:
        return execution.workflow_data.name
    if not execution.workflow_id:
        return "unknown"
    try:
        return await client.fetch_workflow_name(execution.workflow_id)
    except ServiceClientError:
        logger.debug("n8n_workflow_name_lookup_failed", workflow_id=execution.workflow_id)
        return execution.workflow_id


class N8nPlugin(ContainerPlugin):
    """Workflow-automation plugin for ``n8nio/n8n`` style images."""

    id = "n8n"
    display_name = "n8n"
    icon = "flowchart"
    credential_purpose = "apikey"

    def __init__(
        self,
        config: N8nPluginConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], datetime.datetime] = _utcnow,
    ) -> None:
        self._config = config or get_settings().plugins.n8n
        self._transport = transport
        self._clock = clock
        self.service_port = self._config.service_port

    def matches(self, image_name: str) -> bool:
        # "n8nio/n8n", "docker.n8n.io/n8nio/n8n", "custom/n8n", ...
        return "n8n" in image_name

    @property
    def alert_metrics(self) -> list[AlertMetricDefinition]:
        return [AlertMetricDefinition(
            key=EXECUTION_FAILED,
            display_name="Workflow Execution Failed",
            description="Alert when a workflow execution fails or crashes (checks last 5 min)",
            poll_interval_secs=self._config.poll_interval_secs,
        )]

    def client(self, base_url: str, api_key: str) -> N8nClient:
        return N8nClient(
            base_url,
            api_key,
            timeout_secs=self._config.request_timeout_secs,
            transport=self._transport,
        )

    async def evaluate_alert(self, metric_key: str, context: PluginAlertContext) -> AlertResult:
        if metric_key != EXECUTION_FAILED or not context.credential:
            return AlertResult.ok()

        async with self.client(context.base_url, context.credential) as client:
            try:
                executions = await client.fetch_executions(limit=self._config.executions_limit)
            except ServiceClientError as exc:
                logger.info(
                    "n8n_executions_unavailable",
                    server_id=context.server_id,
                    error=str(exc),
                )
                return AlertResult.ok()

            failed = find_failed_execution(
                executions, self._clock(), self._config.failure_window_secs,
            )
            if failed is None:
                return AlertResult.ok()

            verb = "crashed" if failed.status == "crashed" else "failed"
            name = await resolve_workflow_name(client, failed)
            return AlertResult.firing(f"'{name}' {verb}")
