"""Exception hierarchy for the agent API client."""

from __future__ import annotations


class AgentClientError(Exception):
    """Base exception for agent client errors."""


class AgentUnauthorizedError(AgentClientError):
    """The agent rejected the bearer token (HTTP 401)."""

    def __init__(self, message: str = "invalid token") -> None:
        super().__init__(message)


class AgentHTTPError(AgentClientError):
    """The agent answered with an unexpected status code."""

    def __init__(self, status_code: int, message: str = "") -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(f"HTTP {status_code}: {message}" if message else f"HTTP {status_code}")


class AgentUnreachableError(AgentClientError):
    """The agent could not be reached (refused, timed out, DNS failure)."""
