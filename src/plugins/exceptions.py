"""Exception hierarchy for third-party service clients used by plugins."""

from __future__ import annotations


class ServiceClientError(Exception):
    """Base exception for all service client errors."""


class UnauthorizedError(ServiceClientError):
    """The service rejected the credential (HTTP 401)."""


class HTTPStatusError(ServiceClientError):
    """The service answered with a non-2xx status other than 401."""

    def __init__(self, status_code: int) -> None:
        self.status_code = status_code
        super().__init__(f"service returned HTTP {status_code}")


class UnreachableError(ServiceClientError):
    """Network failure, timeout or tunnel failure while calling the service."""


class MalformedResponseError(ServiceClientError):
    """The response body could not be decoded into the expected shape."""
