"""Docker Engine API client over the local unix socket, plus response parsing."""

from __future__ import annotations

import asyncio
import datetime
import re
from typing import Any

import aiohttp
import structlog

from src.agent.exceptions import DockerAPIError, DockerUnavailableError
from src.core.types import ContainerStatus, HealthStatus, PortMapping

logger = structlog.stdlib.get_logger()

# Docker container State → normalised status.
_STATE_MAP: dict[str, ContainerStatus] = {
    "running": ContainerStatus.RUNNING,
    "restarting": ContainerStatus.RESTARTING,
    "exited": ContainerStatus.STOPPED,
    "dead": ContainerStatus.STOPPED,
    "created": ContainerStatus.STOPPED,
    "paused": ContainerStatus.STOPPED,
    "removing": ContainerStatus.STOPPED,
}

_HEALTH_MAP: dict[str, HealthStatus] = {
    "healthy": HealthStatus.HEALTHY,
    "unhealthy": HealthStatus.UNHEALTHY,
    "starting": HealthStatus.STARTING,
}

# Docker timestamps carry nanoseconds; datetime only takes microseconds.
_FRACTION_PATTERN = re.compile(r"\.(\d{6})\d*")

CONTAINER_ACTIONS = ("start", "stop", "restart")


def map_docker_state(state: str) -> ContainerStatus:
    return _STATE_MAP.get(state.lower(), ContainerStatus.STOPPED)


def parse_health(inspect: dict[str, Any]) -> HealthStatus:
    health = (inspect.get("State") or {}).get("Health")
    if not isinstance(health, dict):
        return HealthStatus.NONE
    return _HEALTH_MAP.get(str(health.get("Status", "")).lower(), HealthStatus.NONE)


def parse_docker_time(value: str | None) -> datetime.datetime | None:
    """Parse a Docker RFC 3339 timestamp. The zero time (year 1) means unset."""
    if not value or value.startswith("0001-"):
        return None
    trimmed = _FRACTION_PATTERN.sub(lambda m: "." + m.group(1), value)
    trimmed = trimmed.replace("Z", "+00:00")
    try:
        return datetime.datetime.fromisoformat(trimmed)
    except ValueError:
        return None


def parse_ports(raw: Any) -> list[PortMapping] | None:
    """Parse the ``Ports`` list of a container summary, deduplicating IPv4/IPv6 binds."""
    if not isinstance(raw, list) or not raw:
        return None
    seen: set[tuple[int, int | None, str]] = set()
    ports: list[PortMapping] = []
    for entry in raw:
        if not isinstance(entry, dict) or "PrivatePort" not in entry:
            continue
        key = (int(entry["PrivatePort"]), entry.get("PublicPort"), str(entry.get("Type", "tcp")))
        if key in seen:
            continue
        seen.add(key)
        ports.append(PortMapping(private_port=key[0], public_port=key[1], type=key[2]))
    return ports or None


def container_name(summary: dict[str, Any]) -> str:
    names = summary.get("Names") or []
    if names:
        return str(names[0]).lstrip("/")
    return str(summary.get("Id", ""))[:12]


def network_totals(stats: dict[str, Any]) -> tuple[int, int]:
    """Sum rx/tx bytes across all container interfaces."""
    rx = tx = 0
    for iface in (stats.get("networks") or {}).values():
        rx += int(iface.get("rx_bytes", 0))
        tx += int(iface.get("tx_bytes", 0))
    return rx, tx


def block_io_totals(stats: dict[str, Any]) -> tuple[int, int]:
    """Sum block read/write bytes from blkio (cgroup v1 and v2 layouts)."""
    entries = (stats.get("blkio_stats") or {}).get("io_service_bytes_recursive") or []
    read = write = 0
    for entry in entries:
        op = str(entry.get("op", "")).lower()
        if op == "read":
            read += int(entry.get("value", 0))
        elif op == "write":
            write += int(entry.get("value", 0))
    return read, write


def memory_usage_bytes(stats: dict[str, Any]) -> int:
    """Usage minus page cache, the way ``docker stats`` reports it."""
    mem = stats.get("memory_stats") or {}
    usage = int(mem.get("usage", 0))
    detail = mem.get("stats") or {}
    cache = detail.get("inactive_file", detail.get("total_inactive_file", 0))
    return max(usage - int(cache), 0)


def cpu_counters(stats: dict[str, Any]) -> tuple[int, int, int]:
    """Return (container_cpu_ns, system_cpu_ns, online_cpus) from a stats body."""
    cpu = stats.get("cpu_stats") or {}
    usage = cpu.get("cpu_usage") or {}
    online = int(cpu.get("online_cpus") or len(usage.get("percpu_usage") or []) or 0)
    return int(usage.get("total_usage", 0)), int(cpu.get("system_cpu_usage", 0)), online


class DockerClient:
    """Async Docker Engine API client speaking HTTP over the unix socket.

    Usage::

        client = DockerClient("/var/run/docker.sock")
        containers = await client.list_containers()
        await client.close()
    """

    def __init__(
        self,
        socket_path: str = "/var/run/docker.sock",
        timeout_secs: float = 5.0,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._socket_path = socket_path
        self._timeout = aiohttp.ClientTimeout(total=timeout_secs)
        self._session = session

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            connector = aiohttp.UnixConnector(path=self._socket_path)
            self._session = aiohttp.ClientSession(connector=connector, timeout=self._timeout)
        return self._session

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, str] | None = None,
    ) -> Any:
        try:
            session = self._get_session()
            async with session.request(method, f"http://docker{path}", params=params) as resp:
                if resp.status in (204, 304):
                    return None
                body = await resp.json(content_type=None)
                if resp.status >= 400:
                    message = body.get("message", "") if isinstance(body, dict) else ""
                    raise DockerAPIError(resp.status, message)
                return body
        except aiohttp.ClientConnectionError as exc:
            raise DockerUnavailableError(str(exc)) from exc
        except (FileNotFoundError, PermissionError) as exc:
            raise DockerUnavailableError(str(exc)) from exc
        except asyncio.TimeoutError as exc:
            raise DockerUnavailableError(f"Docker API timed out: {method} {path}") from exc
        except (aiohttp.ContentTypeError, ValueError) as exc:
            raise DockerAPIError(0, "invalid JSON from Docker API") from exc
        except aiohttp.ClientResponseError as exc:
            raise DockerAPIError(exc.status, exc.message) from exc
        except aiohttp.ClientError as exc:
            raise DockerAPIError(0, f"Docker API request failed: {exc!r}") from exc

    async def list_containers(self, include_stopped: bool = True) -> list[dict[str, Any]]:
        params = {"all": "1"} if include_stopped else None
        body = await self._request("GET", "/containers/json", params=params)
        return body if isinstance(body, list) else []

    async def inspect_container(self, container_id: str) -> dict[str, Any]:
        body = await self._request("GET", f"/containers/{container_id}/json")
        return body if isinstance(body, dict) else {}

    async def container_stats(self, container_id: str) -> dict[str, Any]:
        """One-shot stats read; deltas are computed by the caller."""
        body = await self._request(
            "GET",
            f"/containers/{container_id}/stats",
            params={"stream": "false", "one-shot": "true"},
        )
        return body if isinstance(body, dict) else {}

    async def container_action(self, container_id: str, action: str) -> None:
        if action not in CONTAINER_ACTIONS:
            raise ValueError(f"unknown container action: {action}")
        await self._request("POST", f"/containers/{container_id}/{action}")
        logger.info("docker_container_action", container_id=container_id, action=action)

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None
