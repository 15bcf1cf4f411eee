"""Agent API client — one-shot requests plus the SSE event stream."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from enum import StrEnum
from types import TracebackType
from typing import Any

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from src.client.exceptions import (
    AgentClientError,
    AgentHTTPError,
    AgentUnauthorizedError,
    AgentUnreachableError,
)
from src.core.config import StreamClientConfig
from src.core.types import ContainerSnapshot, ProcessInfo, ServiceInfo, SystemSnapshot

logger = structlog.stdlib.get_logger()


class AgentStats(BaseModel):
    """Body of ``GET /stats``."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    system: SystemSnapshot
    containers: list[ContainerSnapshot] = Field(default_factory=list)
    processes: list[ProcessInfo] | None = None
    services: list[ServiceInfo] | None = None


class ServerEventType(StrEnum):
    SYSTEM = "system"
    DOCKER = "docker"
    SERVICES = "services"
    KEEPALIVE = "keepalive"


class ServerEvent(BaseModel):
    """One decoded stream event. Only the fields of its ``type`` are set."""

    type: ServerEventType
    system: SystemSnapshot | None = None
    processes: list[ProcessInfo] = Field(default_factory=list)
    containers: list[ContainerSnapshot] = Field(default_factory=list)
    services: list[ServiceInfo] = Field(default_factory=list)


class ConnectionStatus(StrEnum):
    SUCCESS = "success"
    UNAUTHORIZED = "unauthorized"
    UNREACHABLE = "unreachable"
    ERROR = "error"


class ConnectionResult(BaseModel):
    status: ConnectionStatus
    stats: AgentStats | None = None
    error: str | None = None


KEEPALIVE_EVENT = ServerEvent(type=ServerEventType.KEEPALIVE)


def decode_event(event_type: str, data: str) -> ServerEvent | None:
    """Decode one SSE frame. Unknown types and bad payloads yield None."""
    try:
        payload = json.loads(data)
        if event_type == ServerEventType.SYSTEM:
            return ServerEvent(
                type=ServerEventType.SYSTEM,
                system=SystemSnapshot.model_validate(payload["system"]),
                processes=[ProcessInfo.model_validate(p) for p in payload.get("processes") or []],
            )
        if event_type == ServerEventType.DOCKER:
            return ServerEvent(
                type=ServerEventType.DOCKER,
                containers=[ContainerSnapshot.model_validate(c) for c in payload],
            )
        if event_type == ServerEventType.SERVICES:
            return ServerEvent(
                type=ServerEventType.SERVICES,
                services=[ServiceInfo.model_validate(s) for s in payload],
            )
    except (ValueError, KeyError, TypeError, ValidationError):
        logger.debug("sse_event_undecodable", event_type=event_type, exc_info=True)
        return None
    return None


async def parse_sse(lines: AsyncIterator[str]) -> AsyncIterator[ServerEvent]:
    """Turn SSE text lines into events; comment lines become keepalives."""
    current_event = ""
    data = ""
    async for line in lines:
        if line.startswith("event: "):
            current_event = line[7:]
        elif line.startswith("data: "):
            data = line[6:]
        elif line.startswith(":"):
            yield KEEPALIVE_EVENT
        elif not line and current_event:
            event = decode_event(current_event, data)
            if event is not None:
                yield event
            current_event = ""
            data = ""


class AgentClient:
    """Async client for one agent.

    Usage::

        async with AgentClient("10.0.0.5", 7654, token) as client:
            result = await client.verify_connection()
            async for event in client.stream_events():
                ...
    """

    def __init__(
        self,
        host: str,
        port: int = 7654,
        token: str = "",
        request_timeout_secs: float = 8.0,
        action_timeout_secs: float = 35.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._host = host.strip()
        self._port = port
        self._request_timeout = request_timeout_secs
        self._action_timeout = action_timeout_secs
        token = token.strip()
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=httpx.Timeout(request_timeout_secs),
            transport=transport,
        )

    @classmethod
    def from_config(
        cls,
        config: StreamClientConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> AgentClient:
        return cls(
            config.host,
            config.port,
            config.token.get_secret_value(),
            request_timeout_secs=config.request_timeout_secs,
            action_timeout_secs=config.action_timeout_secs,
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return f"http://{self._host}:{self._port}"

    async def close(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> AgentClient:
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
        timeout: float | None = None,
        json_body: Any = None,
    ) -> httpx.Response:
        logger.debug("agent_request", method=method, url=f"{self.base_url}{path}")
        try:
            return await self._http.request(
                method,
                path,
                json=json_body,
                timeout=timeout if timeout is not None else self._request_timeout,
            )
        except httpx.HTTPError as exc:
            raise AgentUnreachableError(f"{method} {path}: {exc}") from exc

    async def _control(
        self,
        path: str,
        default_message: str,
        timeout: float | None = None,
        json_body: Any = None,
    ) -> str:
        """POST a control action and return the agent's ``message``."""
        response = await self._request("POST", path, timeout=timeout, json_body=json_body)
        if response.status_code == 401:
            raise AgentUnauthorizedError()
        try:
            body = response.json()
        except ValueError as exc:
            raise AgentHTTPError(response.status_code, "invalid JSON response") from exc
        if not isinstance(body, dict):
            raise AgentHTTPError(response.status_code, "unexpected response shape")
        if body.get("error") or response.is_error:
            raise AgentHTTPError(response.status_code, str(body.get("error") or ""))
        return str(body.get("message") or default_message)

    # ── Endpoints ───────────────────────────────────────────────

    async def check_health(self) -> bool:
        """True if ``/health`` answers 200. Never raises."""
        try:
            response = await self._request("GET", "/health", timeout=10.0)
        except AgentUnreachableError as exc:
            logger.warning("agent_health_failed", host=self._host, error=str(exc))
            return False
        return response.status_code == 200

    async def fetch_stats(self) -> AgentStats:
        response = await self._request("GET", "/stats")
        if response.status_code == 401:
            raise AgentUnauthorizedError()
        if response.status_code != 200:
            raise AgentHTTPError(response.status_code)
        try:
            return AgentStats.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise AgentClientError(f"invalid /stats payload: {exc}") from exc

    async def verify_connection(self) -> ConnectionResult:
        """Health check (reachable?) then a stats fetch (token valid?)."""
        if not await self.check_health():
            return ConnectionResult(status=ConnectionStatus.UNREACHABLE)
        try:
            stats = await self.fetch_stats()
        except AgentUnauthorizedError:
            return ConnectionResult(status=ConnectionStatus.UNAUTHORIZED)
        except AgentClientError as exc:
            return ConnectionResult(status=ConnectionStatus.ERROR, error=str(exc))
        return ConnectionResult(status=ConnectionStatus.SUCCESS, stats=stats)

    async def perform_container_action(self, container_id: str, action: str) -> str:
        return await self._control(
            f"/containers/{container_id}/{action}",
            default_message=action,
            timeout=self._action_timeout,
        )

    async def kill_process(self, pid: int) -> str:
        return await self._control(
            f"/processes/{pid}/kill",
            default_message="killed",
            timeout=self._action_timeout,
        )

    async def configure_service(self, plugin_id: str, password: str) -> str:
        return await self._control(
            f"/services/{plugin_id}/configure",
            default_message="configured",
            timeout=10.0,
            json_body={"password": password},
        )

    async def restart_agent(self) -> str:
        return await self._control("/agent/restart", default_message="restarting", timeout=10.0)

    async def stream_events(self) -> AsyncIterator[ServerEvent]:
        """Yield events from ``/stats/stream`` until the server closes it."""
        timeout = httpx.Timeout(self._request_timeout, read=None)
        try:
            async with self._http.stream("GET", "/stats/stream", timeout=timeout) as response:
                if response.status_code == 401:
                    raise AgentUnauthorizedError()
                if response.status_code != 200:
                    raise AgentHTTPError(response.status_code)
                logger.info("agent_stream_connected", host=self._host, port=self._port)
                async for event in parse_sse(response.aiter_lines()):
                    yield event
        except httpx.HTTPError as exc:
            raise AgentUnreachableError(f"stream: {exc}") from exc
