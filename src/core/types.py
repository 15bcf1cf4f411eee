"""Domain and wire types — snapshots, services, alert definitions and results.

Wire models serialize with camelCase aliases (``usagePercent``,
``memoryUsageMB``) and accept either the alias or the field name on input.
"""

from __future__ import annotations

import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _WireModel(BaseModel):
    """Immutable model serialized with camelCase keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    def to_wire(self) -> dict[str, Any]:
        """JSON-ready dict using wire (camelCase) keys."""
        return self.model_dump(mode="json", by_alias=True)


# ── System Snapshot ──────────────────────────────────────────────


class CpuStats(_WireModel):
    usage_percent: float = 0.0
    core_count: int = 0
    temperature: float = 0.0


class MemoryStats(_WireModel):
    used_bytes: int = 0
    total_bytes: int = 0

    @property
    def usage_percent(self) -> float:
        if self.total_bytes <= 0:
            return 0.0
        return self.used_bytes / self.total_bytes * 100


class DiskStats(_WireModel):
    used_bytes: int = 0
    total_bytes: int = 0

    @property
    def usage_percent(self) -> float:
        if self.total_bytes <= 0:
            return 0.0
        return self.used_bytes / self.total_bytes * 100


class NetworkStats(_WireModel):
    download_bytes_per_sec: float = 0.0
    upload_bytes_per_sec: float = 0.0


class SystemSnapshot(_WireModel):
    """Point-in-time host metrics produced once per sampling tick."""

    cpu: CpuStats = Field(default_factory=CpuStats)
    memory: MemoryStats = Field(default_factory=MemoryStats)
    disk: DiskStats = Field(default_factory=DiskStats)
    network: NetworkStats = Field(default_factory=NetworkStats)
    uptime_seconds: int = 0


# ── Containers ───────────────────────────────────────────────────


class ContainerStatus(StrEnum):
    """Normalised container status."""

    RUNNING = "running"
    STOPPED = "stopped"
    RESTARTING = "restarting"


class HealthStatus(StrEnum):
    """Container health-check status."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    STARTING = "starting"
    NONE = "none"


class PortMapping(_WireModel):
    private_port: int
    public_port: int | None = None
    type: str = "tcp"


class ContainerSnapshot(_WireModel):
    """Per-container metrics. Byte counters are cumulative since start."""

    id: str
    name: str
    image: str
    status: ContainerStatus
    cpu_percent: float = 0.0
    memory_usage_mb: float = Field(default=0.0, alias="memoryUsageMB")
    memory_limit_mb: float = Field(default=0.0, alias="memoryLimitMB")
    network_rx_bytes: int = 0
    network_tx_bytes: int = 0
    block_read_bytes: int = 0
    block_write_bytes: int = 0
    pids: int = 0
    started_at: datetime.datetime | None = None
    ports: list[PortMapping] | None = None
    restart_count: int = 0
    health_status: HealthStatus = HealthStatus.NONE

    @property
    def memory_percent(self) -> float:
        """Memory usage as a share of the limit; 0 when unlimited."""
        if self.memory_limit_mb <= 0:
            return 0.0
        return self.memory_usage_mb / self.memory_limit_mb * 100


# ── Processes & Services ─────────────────────────────────────────


class ProcessInfo(_WireModel):
    pid: int
    name: str
    cpu_percent: float = 0.0
    memory_mb: float = Field(default=0.0, alias="memoryMB")
    memory_percent: float = 0.0
    command: str | None = None
    user: str | None = None


class ServiceStatus(StrEnum):
    RUNNING = "running"
    STOPPED = "stopped"
    ERROR = "error"


class StatItem(_WireModel):
    label: str
    value: str
    type: str = "text"  # "number", "percent", "status", "text"


class ServiceInfo(_WireModel):
    """Snapshot of a detected third-party service running in a container."""

    plugin_id: str
    name: str
    icon: str = ""
    status: ServiceStatus = ServiceStatus.RUNNING
    summary: list[StatItem] = Field(default_factory=list)
    stats: dict[str, str | int | float | bool | None] = Field(default_factory=dict)
    error: str | None = None


# ── Counters ─────────────────────────────────────────────────────


class RawCounterSample(BaseModel):
    """A monotonically increasing counter value and when it was read."""

    model_config = ConfigDict(frozen=True)

    value: float
    timestamp: float


# ── Plugin Alerts ────────────────────────────────────────────────


class AlertMetricDefinition(BaseModel):
    """Declarative description of an alert a plugin can evaluate."""

    model_config = ConfigDict(frozen=True)

    key: str
    display_name: str
    description: str = ""
    poll_interval_secs: float = 60.0


class AlertState(StrEnum):
    OK = "ok"
    FIRING = "firing"


class AlertResult(BaseModel):
    """Outcome of one alert evaluation — either ``ok`` or ``firing``."""

    model_config = ConfigDict(frozen=True)

    state: AlertState = AlertState.OK
    message: str = ""

    @classmethod
    def ok(cls) -> AlertResult:
        return cls()

    @classmethod
    def firing(cls, message: str) -> AlertResult:
        return cls(state=AlertState.FIRING, message=message)

    @property
    def is_firing(self) -> bool:
        return self.state == AlertState.FIRING
