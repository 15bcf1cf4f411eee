"""Sampler — reads raw OS and container counters and derives rate metrics.

Host counters come from ``psutil``; container counters from the Docker
Engine API. A failed read degrades only the affected field to its default
(0, empty list or None) and never aborts the rest of the snapshot.
"""

from __future__ import annotations

import asyncio
import threading
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import psutil
import structlog

from src.agent.counters import CounterStore, container_cpu_percent, cpu_busy_percent
from src.agent.docker import (
    DockerClient,
    block_io_totals,
    container_name,
    cpu_counters,
    map_docker_state,
    memory_usage_bytes,
    network_totals,
    parse_docker_time,
    parse_health,
    parse_ports,
)
from src.agent.exceptions import DockerAPIError, DockerUnavailableError
from src.core.types import (
    ContainerSnapshot,
    ContainerStatus,
    CpuStats,
    DiskStats,
    HealthStatus,
    MemoryStats,
    NetworkStats,
    ProcessInfo,
    SystemSnapshot,
)

logger = structlog.stdlib.get_logger()

T = TypeVar("T")

_MB = 1024 * 1024

# Preferred sensor chips for the CPU temperature, in order.
_TEMPERATURE_SENSORS = ("coretemp", "k10temp", "zenpower", "cpu_thermal", "cpu-thermal", "acpitz")

_PROCESS_ATTRS = ["pid", "name", "cpu_percent", "memory_info", "memory_percent", "cmdline", "username"]

# Loopback interface names on Linux and BSD/macOS.
_LOOPBACK_IFACES = frozenset({"lo", "lo0"})


def _read(field: str, fn: Callable[[], T], default: T) -> T:
    """Run a single counter read, degrading to *default* on failure."""
    try:
        return fn()
    except Exception:
        logger.warning("sampler_read_failed", field=field, exc_info=True)
        return default


async def _read_docker(
    field: str,
    container_id: str,
    request: Awaitable[dict[str, Any]],
) -> dict[str, Any]:
    """Await one Docker read for a container, degrading to ``{}`` on failure."""
    try:
        return await request
    except Exception:
        logger.warning("docker_read_failed", field=field, container_id=container_id, exc_info=True)
        return {}


def read_temperature() -> float:
    """Best-effort CPU temperature in °C; 0 when no sensor is readable."""
    reader = getattr(psutil, "sensors_temperatures", None)
    if reader is None:
        return 0.0
    try:
        sensors = reader() or {}
    except (OSError, RuntimeError):
        return 0.0
    for chip in (*_TEMPERATURE_SENSORS, *sensors):
        entries = sensors.get(chip)
        if entries:
            return float(entries[0].current or 0.0)
    return 0.0


class Sampler:
    """Produces system and container snapshots from consecutive raw readings.

    Host and container counters live in separate stores so the system and
    docker producers can run concurrently. The system half is read in
    worker threads and serialized by a lock.

    Usage::

        sampler = Sampler(DockerClient())
        system, containers = await sampler.sample()
    """

    def __init__(
        self,
        docker: DockerClient | None = None,
        disk_path: str = "/",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._docker = docker
        self._disk_path = disk_path
        self._clock = clock
        self._host_counters = CounterStore(clock)
        # sample_system runs in worker threads; one host sample at a time.
        self._host_lock = threading.Lock()
        self._container_counters = CounterStore(clock)
        self._last_containers: list[ContainerSnapshot] = []
        self._docker_available: bool | None = None

    @property
    def last_containers(self) -> list[ContainerSnapshot]:
        """Container list from the most recent container sample."""
        return list(self._last_containers)

    @property
    def host_counters(self) -> CounterStore:
        return self._host_counters

    @property
    def container_counters(self) -> CounterStore:
        return self._container_counters

    async def sample(self) -> tuple[SystemSnapshot, list[ContainerSnapshot]]:
        system = await asyncio.to_thread(self.sample_system)
        containers = await self.sample_containers()
        return system, containers

    # ── System ──────────────────────────────────────────────────

    def sample_system(self) -> SystemSnapshot:
        with self._host_lock:
            return self._sample_system()

    def _sample_system(self) -> SystemSnapshot:
        now = self._clock()
        cores = _read("cpu.core_count", lambda: psutil.cpu_count(logical=True) or 0, 0)
        cpu = CpuStats(
            usage_percent=_read("cpu.usage", lambda: self._cpu_percent(now), 0.0),
            core_count=cores,
            temperature=_read("cpu.temperature", read_temperature, 0.0),
        )
        memory = _read("memory", self._memory, MemoryStats())
        disk = _read("disk", self._disk, DiskStats())
        network = _read("network", lambda: self._network(now), NetworkStats())
        uptime = _read("uptime", lambda: int(time.time() - psutil.boot_time()), 0)
        return SystemSnapshot(
            cpu=cpu,
            memory=memory,
            disk=disk,
            network=network,
            uptime_seconds=max(uptime, 0),
        )

    def _cpu_percent(self, now: float) -> float:
        times = psutil.cpu_times()._asdict()
        prev: dict[str, float] = {}
        cur: dict[str, float] = {}
        complete = True
        for field, value in times.items():
            pair = self._host_counters.observe(("cpu", field), value, now)
            if pair is None:
                complete = False
                continue
            prev[field], cur[field] = pair[0].value, pair[1].value
        if not complete:
            return 0.0
        return cpu_busy_percent(prev, cur)

    def _memory(self) -> MemoryStats:
        vm = psutil.virtual_memory()
        return MemoryStats(used_bytes=int(vm.total - vm.available), total_bytes=int(vm.total))

    def _disk(self) -> DiskStats:
        du = psutil.disk_usage(self._disk_path)
        return DiskStats(used_bytes=int(du.used), total_bytes=int(du.total))

    def _network(self, now: float) -> NetworkStats:
        counters = psutil.net_io_counters(pernic=True)
        down = up = 0.0
        live: set[str] = set()
        for iface, c in counters.items():
            if iface in _LOOPBACK_IFACES:
                continue
            live.add(iface)
            down += self._host_counters.rate(("net", iface, "rx"), c.bytes_recv, now) or 0.0
            up += self._host_counters.rate(("net", iface, "tx"), c.bytes_sent, now) or 0.0
        self._host_counters.retain(lambda k: k[0] != "net" or k[1] in live)
        return NetworkStats(download_bytes_per_sec=down, upload_bytes_per_sec=up)

    # ── Processes ───────────────────────────────────────────────

    def top_processes(self, limit: int = 10) -> list[ProcessInfo]:
        """Processes sorted by CPU usage, highest first."""
        rows: list[ProcessInfo] = []
        for proc in psutil.process_iter(_PROCESS_ATTRS):
            try:
                info = proc.info
                mem = info.get("memory_info")
                cmdline = info.get("cmdline") or []
                rows.append(ProcessInfo(
                    pid=int(info["pid"]),
                    name=info.get("name") or "",
                    cpu_percent=float(info.get("cpu_percent") or 0.0),
                    memory_mb=(mem.rss / _MB) if mem else 0.0,
                    memory_percent=float(info.get("memory_percent") or 0.0),
                    command=" ".join(cmdline) or None,
                    user=info.get("username"),
                ))
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                continue
        rows.sort(key=lambda p: p.cpu_percent, reverse=True)
        return rows[:limit]

    # ── Containers ──────────────────────────────────────────────

    async def sample_containers(self) -> list[ContainerSnapshot]:
        """Snapshot every container; an unreachable daemon yields ``[]``."""
        docker = self._docker
        if docker is None:
            return []
        try:
            summaries = await docker.list_containers()
        except (DockerUnavailableError, DockerAPIError) as exc:
            if self._docker_available is not False:
                logger.warning("docker_unavailable", error=str(exc))
            self._docker_available = False
            self._last_containers = []
            return []

        if self._docker_available is not True:
            logger.info("docker_available", containers=len(summaries))
        self._docker_available = True

        host_cores = _read("cpu.core_count", lambda: psutil.cpu_count(logical=True) or 1, 1)
        results = await asyncio.gather(
            *(self._snapshot_container(docker, s, host_cores) for s in summaries),
            return_exceptions=True,
        )
        snapshots: list[ContainerSnapshot] = []
        for summary, result in zip(summaries, results):
            if isinstance(result, BaseException):
                logger.warning(
                    "container_snapshot_failed",
                    container_id=str(summary.get("Id", ""))[:12],
                    error=repr(result),
                )
                continue
            snapshots.append(result)

        live = {s.id for s in snapshots}
        self._container_counters.retain(lambda k: k[1] in live)
        self._last_containers = snapshots
        return list(snapshots)

    async def _snapshot_container(
        self,
        docker: DockerClient,
        summary: dict[str, Any],
        host_cores: int,
    ) -> ContainerSnapshot:
        full_id = str(summary.get("Id", ""))
        short_id = full_id[:12]
        status = map_docker_state(str(summary.get("State", "")))

        inspect = await _read_docker("inspect", short_id, docker.inspect_container(full_id))
        state = inspect.get("State") or {}
        host_config = inspect.get("HostConfig") or {}
        fields: dict[str, Any] = {
            "id": short_id,
            "name": container_name(summary),
            "image": str(summary.get("Image", "")),
            "status": status,
            "ports": _read("container.ports", lambda: parse_ports(summary.get("Ports")), None),
            "restart_count": _read(
                "container.restart_count", lambda: int(inspect.get("RestartCount", 0) or 0), 0,
            ),
            "health_status": _read("container.health", lambda: parse_health(inspect), HealthStatus.NONE),
            "memory_limit_mb": _read(
                "container.memory_limit", lambda: int(host_config.get("Memory", 0) or 0) / _MB, 0.0,
            ),
        }
        if status == ContainerStatus.RUNNING:
            fields["started_at"] = _read(
                "container.started_at", lambda: parse_docker_time(state.get("StartedAt")), None,
            )

        if status != ContainerStatus.STOPPED:
            stats = await _read_docker("stats", short_id, docker.container_stats(full_id))
            if stats:
                fields.update(_read(
                    "container.usage",
                    lambda: self._container_usage(short_id, stats, host_cores),
                    {},
                ))

        return ContainerSnapshot(**fields)

    def _container_usage(self, short_id: str, stats: dict[str, Any], host_cores: int) -> dict[str, Any]:
        now = self._clock()
        container_ns, system_ns, online = cpu_counters(stats)
        d_container = self._container_counters.delta(("container", short_id, "cpu"), container_ns, now)
        d_system = self._container_counters.delta(("container", short_id, "system"), system_ns, now)
        cpu = 0.0
        if d_container is not None and d_system is not None:
            cpu = container_cpu_percent(d_container, d_system, online or host_cores)

        rx, tx = network_totals(stats)
        read, write = block_io_totals(stats)
        return {
            "cpu_percent": cpu,
            "memory_usage_mb": memory_usage_bytes(stats) / _MB,
            "network_rx_bytes": rx,
            "network_tx_bytes": tx,
            "block_read_bytes": read,
            "block_write_bytes": write,
            "pids": int((stats.get("pids_stats") or {}).get("current", 0) or 0),
        }
