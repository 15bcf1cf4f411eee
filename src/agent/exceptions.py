"""Exception hierarchy for the monitoring agent."""

from __future__ import annotations


class AgentError(Exception):
    """Base exception for all agent errors."""


class DockerUnavailableError(AgentError):
    """The Docker daemon could not be reached (socket missing or denied)."""


class DockerAPIError(AgentError):
    """The Docker Engine API answered with a non-2xx status."""

    def __init__(self, status_code: int, message: str = "") -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(f"Docker API returned {status_code}: {message}" if message
                         else f"Docker API returned {status_code}")
