"""Core module — config, types, logging."""

from src.core.config import Settings, get_settings, load_settings, reset_settings
from src.core.logging import setup_logging
from src.core.types import (
    AlertMetricDefinition,
    AlertResult,
    AlertState,
    ContainerSnapshot,
    ContainerStatus,
    HealthStatus,
    ProcessInfo,
    RawCounterSample,
    ServiceInfo,
    SystemSnapshot,
)

__all__ = [
    "AlertMetricDefinition",
    "AlertResult",
    "AlertState",
    "ContainerSnapshot",
    "ContainerStatus",
    "HealthStatus",
    "ProcessInfo",
    "RawCounterSample",
    "ServiceInfo",
    "Settings",
    "SystemSnapshot",
    "get_settings",
    "load_settings",
    "reset_settings",
    "setup_logging",
]
