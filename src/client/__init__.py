"""Agent API client — one-shot requests and a reconnecting event stream."""

from src.client.agent_client import (
    AgentClient,
    AgentStats,
    ConnectionResult,
    ConnectionStatus,
    ServerEvent,
    ServerEventType,
)
from src.client.backoff import ReconnectBackoff
from src.client.consumer import StreamConsumer
from src.client.exceptions import (
    AgentClientError,
    AgentHTTPError,
    AgentUnauthorizedError,
    AgentUnreachableError,
)

__all__ = [
    "AgentClient",
    "AgentClientError",
    "AgentHTTPError",
    "AgentStats",
    "AgentUnauthorizedError",
    "AgentUnreachableError",
    "ConnectionResult",
    "ConnectionStatus",
    "ReconnectBackoff",
    "ServerEvent",
    "ServerEventType",
    "StreamConsumer",
]
