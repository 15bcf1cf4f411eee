"""Tunnel boundary — exposes a remote service port as a local HTTP endpoint."""

from __future__ import annotations

import abc


class TunnelError(Exception):
    """The tunnel could not be opened (service down, host unreachable)."""


class TunnelProvider(abc.ABC):
    """Opens (or reuses) a tunnel to ``remote_port`` on a monitored server.

    ``open`` is idempotent: callers request a tunnel on every evaluation and
    the provider decides whether to reuse a cached one.
    """

    @abc.abstractmethod
    async def open(self, server_id: str, remote_port: int) -> str:
        """Return a base URL such as ``http://127.0.0.1:51234``."""


class DirectTunnelProvider(TunnelProvider):
    """No tunnelling: the service port is reachable directly on the host."""

    def __init__(self, hosts: dict[str, str]) -> None:
        self._hosts = dict(hosts)

    async def open(self, server_id: str, remote_port: int) -> str:
        host = self._hosts.get(server_id)
        if host is None:
            raise TunnelError(f"unknown server: {server_id}")
        return f"http://{host}:{remote_port}"
