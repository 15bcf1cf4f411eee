"""Threshold rules over host and container snapshots.

The evaluator is stateful per server: sustained rules remember when a
breach started and transition rules remember the previous container
status, health and restart count. It only produces candidates; cooldown
and delivery belong to :class:`~src.alerts.dispatcher.AlertDispatcher`.
"""

from __future__ import annotations

import time
from collections.abc import Callable

import structlog

from src.alerts.types import AlertCandidate
from src.core.config import ThresholdConfig
from src.core.types import ContainerSnapshot, ContainerStatus, HealthStatus, SystemSnapshot

logger = structlog.stdlib.get_logger()


class ThresholdEvaluator:
    """Turns snapshots into :class:`AlertCandidate` lists.

    Usage::

        evaluator = ThresholdEvaluator(settings.alerts.thresholds)
        candidates = evaluator.evaluate_system("srv-1", snapshot)
        await dispatcher.fire_candidates("srv-1", "Home Lab", candidates)
    """

    def __init__(
        self,
        config: ThresholdConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config or ThresholdConfig()
        self._clock = clock
        # key -> monotonic time the breach was first seen
        self._breach_started: dict[str, float] = {}
        # server_id -> {container_id: value}
        self._prev_status: dict[str, dict[str, ContainerStatus]] = {}
        self._prev_health: dict[str, dict[str, HealthStatus]] = {}
        self._prev_restarts: dict[str, dict[str, int]] = {}

    @property
    def config(self) -> ThresholdConfig:
        return self._config

    def forget_server(self, server_id: str) -> None:
        self._breach_started = {
            k: v for k, v in self._breach_started.items() if not k.startswith(f"{server_id}-")
        }
        self._prev_status.pop(server_id, None)
        self._prev_health.pop(server_id, None)
        self._prev_restarts.pop(server_id, None)

    # ── Host rules ──────────────────────────────────────────────

    def evaluate_system(self, server_id: str, snapshot: SystemSnapshot) -> list[AlertCandidate]:
        cfg = self._config
        out: list[AlertCandidate] = []

        if cfg.cpu_enabled:
            cpu = snapshot.cpu.usage_percent
            self._sustained(
                out,
                key=f"{server_id}-cpu",
                breached=cpu > cfg.cpu_threshold,
                sustained_secs=cfg.cpu_sustained_secs,
                title="CPU Critical",
                body=f"CPU at {cpu:.0f}% for {cfg.cpu_sustained_secs:.0f}s",
            )

        if cfg.memory_enabled:
            mem = snapshot.memory.usage_percent
            self._sustained(
                out,
                key=f"{server_id}-memory",
                breached=mem > cfg.memory_threshold,
                sustained_secs=cfg.memory_sustained_secs,
                title="Memory Critical",
                body=f"Memory at {mem:.0f}% for {cfg.memory_sustained_secs:.0f}s",
            )

        if cfg.disk_enabled:
            disk = snapshot.disk.usage_percent
            if disk > cfg.disk_threshold:
                out.append(AlertCandidate(
                    key=f"{server_id}-disk",
                    title="Disk Critical",
                    body=f"Disk at {disk:.0f}%",
                ))

        return out

    # ── Container rules ─────────────────────────────────────────

    def evaluate_containers(
        self,
        server_id: str,
        containers: list[ContainerSnapshot],
    ) -> list[AlertCandidate]:
        cfg = self._config
        out: list[AlertCandidate] = []
        running = [c for c in containers if c.status == ContainerStatus.RUNNING]

        if cfg.container_down_enabled:
            previous = self._prev_status.get(server_id, {})
            for c in containers:
                if previous.get(c.id) == ContainerStatus.RUNNING and c.status != ContainerStatus.RUNNING:
                    out.append(AlertCandidate(
                        key=f"{server_id}-container-{c.id}",
                        title="Container Down",
                        body=f"{c.name} stopped",
                    ))
        self._prev_status[server_id] = {c.id: c.status for c in containers}

        if cfg.container_cpu_enabled:
            for c in running:
                self._sustained(
                    out,
                    key=f"{server_id}-ccpu-{c.id}",
                    breached=c.cpu_percent > cfg.container_cpu_threshold,
                    sustained_secs=cfg.container_cpu_sustained_secs,
                    title="Container CPU",
                    body=f"{c.name} CPU at {c.cpu_percent:.0f}%",
                )

        if cfg.container_memory_enabled:
            for c in running:
                self._sustained(
                    out,
                    key=f"{server_id}-cmem-{c.id}",
                    breached=c.memory_percent > cfg.container_memory_threshold,
                    sustained_secs=cfg.container_memory_sustained_secs,
                    title="Container Memory",
                    body=f"{c.name} memory at {c.memory_percent:.0f}%",
                )

        if cfg.container_unhealthy_enabled:
            prev_health = self._prev_health.get(server_id, {})
            for c in running:
                if (
                    prev_health.get(c.id) == HealthStatus.HEALTHY
                    and c.health_status == HealthStatus.UNHEALTHY
                ):
                    out.append(AlertCandidate(
                        key=f"{server_id}-cunhealthy-{c.id}",
                        title="Container Unhealthy",
                        body=f"{c.name} health check failing",
                    ))
            self._prev_health[server_id] = {c.id: c.health_status for c in containers}

        if cfg.container_restart_spike_enabled:
            prev_restarts = self._prev_restarts.get(server_id, {})
            for c in containers:
                prev = prev_restarts.get(c.id, 0)
                if c.restart_count > cfg.container_restart_threshold and c.restart_count > prev:
                    out.append(AlertCandidate(
                        key=f"{server_id}-crestart-{c.id}",
                        title="Container Restarting",
                        body=f"{c.name} has restarted {c.restart_count} times",
                    ))
            self._prev_restarts[server_id] = {c.id: c.restart_count for c in containers}

        self._prune_breaches(server_id, {c.id for c in running})
        return out

    # ── Internal ────────────────────────────────────────────────

    def _sustained(
        self,
        out: list[AlertCandidate],
        key: str,
        breached: bool,
        sustained_secs: float,
        title: str,
        body: str,
    ) -> None:
        if not breached:
            self._breach_started.pop(key, None)
            return

        now = self._clock()
        started = self._breach_started.setdefault(key, now)
        if now - started >= sustained_secs:
            # A long breach re-alerts only after another full window.
            del self._breach_started[key]
            logger.debug("threshold_sustained", key=key, secs=round(now - started, 1))
            out.append(AlertCandidate(key=key, title=title, body=body))

    def _prune_breaches(self, server_id: str, live_ids: set[str]) -> None:
        """Drop sustained state for containers that are gone or stopped."""
        for prefix in (f"{server_id}-ccpu-", f"{server_id}-cmem-"):
            for key in [k for k in self._breach_started if k.startswith(prefix)]:
                if key[len(prefix):] not in live_ids:
                    del self._breach_started[key]
