"""n8n REST API client — executions, workflows, webhook discovery."""

from __future__ import annotations

import datetime
from types import TracebackType
from typing import Any

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from src.plugins.exceptions import (
    HTTPStatusError,
    MalformedResponseError,
    UnauthorizedError,
    UnreachableError,
)

logger = structlog.stdlib.get_logger()

API_KEY_HEADER = "X-N8N-API-KEY"

_WEBHOOK_NODE_TYPE = "n8n-nodes-base.webhook"

# n8n emits milliseconds ("2024-01-01T10:00:00.000Z"); older builds omit them.
_TIMESTAMP_FORMATS = ("%Y-%m-%dT%H:%M:%S.%f%z", "%Y-%m-%dT%H:%M:%S%z")


def parse_n8n_timestamp(value: str | None) -> datetime.datetime | None:
    """Parse an n8n ISO-8601 timestamp, fractional-seconds format first."""
    if not value:
        return None
    for fmt in _TIMESTAMP_FORMATS:
        try:
            return datetime.datetime.strptime(value, fmt)
        except ValueError:
            continue
    return None


class _N8nModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class WorkflowRef(_N8nModel):
    id: str
    name: str

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_str(cls, v: Any) -> str:
        return str(v)


class N8nWorkflow(_N8nModel):
    id: str
    name: str
    active: bool = False
    updated_at: str | None = None
    is_archived: bool | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_str(cls, v: Any) -> str:
        return str(v)


class N8nExecution(_N8nModel):
    """One workflow execution as listed by ``/api/v1/executions``."""

    id: str
    finished: bool = False
    mode: str = ""
    status: str = ""  # "success", "error", "crashed", "running", "waiting"
    started_at: str | None = None
    stopped_at: str | None = None
    workflow_id: str | None = None
    workflow_data: WorkflowRef | None = None

    @field_validator("id", "workflow_id", mode="before")
    @classmethod
    def _id_as_str(cls, v: Any) -> str | None:
        return None if v is None else str(v)

    @property
    def started_date(self) -> datetime.datetime | None:
        return parse_n8n_timestamp(self.started_at)


class WebhookInfo(BaseModel):
    path: str
    method: str = "GET"


def _parse_list(body: Any, model: type[_N8nModel]) -> list[Any]:
    if not isinstance(body, dict) or not isinstance(body.get("data"), list):
        raise MalformedResponseError("expected an object with a 'data' list")
    try:
        return [model.model_validate(item) for item in body["data"]]
    except ValidationError as exc:
        raise MalformedResponseError(str(exc)) from exc


def _find_webhook(body: Any) -> WebhookInfo | None:
    if not isinstance(body, dict) or not isinstance(body.get("nodes"), list):
        raise MalformedResponseError("workflow detail has no 'nodes' list")
    for node in body["nodes"]:
        if not isinstance(node, dict) or node.get("type") != _WEBHOOK_NODE_TYPE:
            continue
        params = node.get("parameters") or {}
        path = params.get("path")
        if not path:
            return None
        return WebhookInfo(path=str(path), method=str(params.get("httpMethod") or "GET"))
    return None


class N8nClient:
    """Async client for one n8n instance.

    Every authenticated request carries the API key header; webhook
    triggers do not (the workflow owns webhook auth).

    Usage::

        async with N8nClient(base_url, api_key) as client:
            executions = await client.fetch_executions(limit=20)
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout_secs: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._http = httpx.AsyncClient(
            base_url=self._base_url,
            headers={"Accept": "application/json"},
            timeout=httpx.Timeout(timeout_secs),
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    async def close(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> N8nClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    # ── Requests ────────────────────────────────────────────────

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        authenticated: bool = True,
    ) -> httpx.Response:
        headers = {API_KEY_HEADER: self._api_key} if authenticated else None
        try:
            response = await self._http.request(method, path, params=params, headers=headers)
        except httpx.HTTPError as exc:
            raise UnreachableError(f"n8n request failed: {method} {path}: {exc}") from exc
        check_status(response)
        return response

    async def _get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        response = await self._request("GET", path, params=params)
        try:
            return response.json()
        except ValueError as exc:
            raise MalformedResponseError(f"n8n returned invalid JSON for {path}") from exc

    # ── Endpoints ───────────────────────────────────────────────

    async def fetch_workflows(self, limit: int = 25) -> list[N8nWorkflow]:
        """Non-archived workflows."""
        body = await self._get_json("/api/v1/workflows", params={"limit": limit})
        workflows: list[N8nWorkflow] = _parse_list(body, N8nWorkflow)
        return [w for w in workflows if w.is_archived is not True]

    async def fetch_executions(self, limit: int = 10) -> list[N8nExecution]:
        body = await self._get_json(
            "/api/v1/executions",
            params={"limit": limit, "includeData": "false"},
        )
        return _parse_list(body, N8nExecution)

    async def fetch_running_executions(self, limit: int = 10) -> list[N8nExecution]:
        body = await self._get_json(
            "/api/v1/executions",
            params={"status": "running", "limit": limit, "includeData": "false"},
        )
        return _parse_list(body, N8nExecution)

    async def fetch_workflow_name(self, workflow_id: str) -> str:
        body = await self._get_json(f"/api/v1/workflows/{workflow_id}")
        name = body.get("name") if isinstance(body, dict) else None
        if not isinstance(name, str) or not name:
            raise MalformedResponseError(f"workflow {workflow_id} has no name")
        return name

    async def fetch_webhook_info(self, workflow_id: str) -> WebhookInfo | None:
        """Path and HTTP method of the workflow's webhook trigger, if any."""
        body = await self._get_json(f"/api/v1/workflows/{workflow_id}")
        return _find_webhook(body)

    async def trigger_webhook(self, path: str, method: str = "POST") -> None:
        await self._request(method.upper(), f"/webhook/{path.lstrip('/')}", authenticated=False)
        logger.info("n8n_webhook_triggered", path=path, method=method)


def check_status(response: httpx.Response) -> None:
    """Map HTTP status codes onto the service error taxonomy."""
    if response.status_code == 401:
        raise UnauthorizedError("invalid API key")
    if not 200 <= response.status_code <= 299:
        raise HTTPStatusError(response.status_code)
