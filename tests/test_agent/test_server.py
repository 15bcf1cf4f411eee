"""Tests for the agent HTTP API — auth, stats endpoints, actions, lifecycle."""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import psutil
import pytest
from aiohttp import test_utils

from src.agent import __version__
from src.agent.exceptions import DockerAPIError, DockerUnavailableError
from src.agent.server import AgentControl, create_agent_app
from src.agent.services import ServiceDetector
from src.agent.stream import StreamMultiplexer
from src.core.config import AgentConfig
from src.core.types import ContainerSnapshot, ContainerStatus, ProcessInfo, SystemSnapshot
from src.plugins.credentials import InMemoryCredentialStore
from src.plugins.factory import create_plugin_registry

MakeClient = Callable[..., Awaitable[test_utils.TestClient]]

TOKEN = "s3cret"
AUTH = {"Authorization": f"Bearer {TOKEN}"}


# ── Helpers ─────────────────────────────────────────────────────


def _sampler() -> MagicMock:
    container = ContainerSnapshot(
        id="abc123abc123", name="n8n", image="n8nio/n8n:latest", status=ContainerStatus.RUNNING,
    )
    sampler = MagicMock()
    sampler.sample = AsyncMock(return_value=(SystemSnapshot(), [container]))
    sampler.sample_system.return_value = SystemSnapshot()
    sampler.top_processes.return_value = [ProcessInfo(pid=42, name="python")]
    sampler.sample_containers = AsyncMock(return_value=[container])
    sampler.last_containers = [container]
    return sampler


@pytest.fixture
async def make_client() -> AsyncIterator[MakeClient]:
    clients: list[tuple[test_utils.TestClient, StreamMultiplexer]] = []

    async def _make(token: str | None = TOKEN, docker: Any = None, control: AgentControl | None = None) -> test_utils.TestClient:
        sampler = _sampler()
        registry = create_plugin_registry()
        credentials = InMemoryCredentialStore()
        detector = ServiceDetector(registry, credentials, server_id="srv")
        config = AgentConfig(keepalive_interval_secs=60)
        mux = StreamMultiplexer(sampler, detector, config)
        app = create_agent_app(
            sampler, mux, registry, credentials,
            docker=docker, control=control, auth_token=token, server_id="srv",
        )
        app["test_credentials"] = credentials
        client = test_utils.TestClient(test_utils.TestServer(app))
        await client.start_server()
        clients.append((client, mux))
        return client

    yield _make
    for client, mux in clients:
        await mux.close()
        await client.close()


# ── Auth ────────────────────────────────────────────────────────


class TestAuth:
    async def test_health_needs_no_token(self, make_client: MakeClient) -> None:
        client = await make_client()
        resp = await client.get("/health")
        assert resp.status == 200
        assert await resp.json() == {"status": "ok"}

    async def test_missing_token_is_401(self, make_client: MakeClient) -> None:
        client = await make_client()
        resp = await client.get("/stats")
        assert resp.status == 401
        assert await resp.json() == {"error": "unauthorized"}

    async def test_wrong_token_is_401(self, make_client: MakeClient) -> None:
        client = await make_client()
        resp = await client.get("/stats", headers={"Authorization": "Bearer nope"})
        assert resp.status == 401

    async def test_valid_token(self, make_client: MakeClient) -> None:
        client = await make_client()
        resp = await client.get("/stats", headers=AUTH)
        assert resp.status == 200

    async def test_no_token_configured_accepts_all(self, make_client: MakeClient) -> None:
        client = await make_client(token=None)
        resp = await client.get("/stats")
        assert resp.status == 200


# ── Stats ───────────────────────────────────────────────────────


class TestStats:
    async def test_stats_shape(self, make_client: MakeClient) -> None:
        client = await make_client()
        body = await (await client.get("/stats", headers=AUTH)).json()
        assert set(body) == {"system", "containers"}
        assert body["containers"][0]["id"] == "abc123abc123"
        assert "usagePercent" in body["system"]["cpu"]

    async def test_stats_system(self, make_client: MakeClient) -> None:
        client = await make_client()
        body = await (await client.get("/stats/system", headers=AUTH)).json()
        assert set(body) == {"system", "processes"}
        assert body["processes"][0]["pid"] == 42

    async def test_stats_docker(self, make_client: MakeClient) -> None:
        client = await make_client()
        body = await (await client.get("/stats/docker", headers=AUTH)).json()
        assert body[0]["name"] == "n8n"

    async def test_stats_processes(self, make_client: MakeClient) -> None:
        client = await make_client()
        body = await (await client.get("/stats/processes", headers=AUTH)).json()
        assert body[0]["memoryMB"] == 0.0

    async def test_stats_services(self, make_client: MakeClient) -> None:
        client = await make_client()
        body = await (await client.get("/stats/services", headers=AUTH)).json()
        assert body[0]["pluginId"] == "n8n"
        assert body[0]["stats"]["configured"] is False

    async def test_stream_first_event(self, make_client: MakeClient) -> None:
        client = await make_client()
        resp = await client.get("/stats/stream", headers=AUTH)
        assert resp.status == 200
        assert resp.headers["Content-Type"].startswith("text/event-stream")
        first = await resp.content.readline()
        data = await resp.content.readline()
        blank = await resp.content.readline()
        assert first.startswith(b"event: ")
        assert data.startswith(b"data: ")
        assert blank == b"\n"
        resp.close()

    async def test_stream_requires_token(self, make_client: MakeClient) -> None:
        client = await make_client()
        resp = await client.get("/stats/stream")
        assert resp.status == 401


# ── Actions ─────────────────────────────────────────────────────


class TestContainerActions:
    async def test_restart(self, make_client: MakeClient) -> None:
        docker = MagicMock()
        docker.container_action = AsyncMock(return_value=None)
        client = await make_client(docker=docker)
        resp = await client.post("/containers/abc/restart", headers=AUTH)
        assert resp.status == 200
        assert "message" in await resp.json()
        docker.container_action.assert_awaited_once_with("abc", "restart")

    async def test_unknown_action_is_400(self, make_client: MakeClient) -> None:
        client = await make_client(docker=MagicMock())
        resp = await client.post("/containers/abc/explode", headers=AUTH)
        assert resp.status == 400
        assert "error" in await resp.json()

    async def test_docker_unavailable_is_503(self, make_client: MakeClient) -> None:
        docker = MagicMock()
        docker.container_action = AsyncMock(side_effect=DockerUnavailableError("no socket"))
        client = await make_client(docker=docker)
        resp = await client.post("/containers/abc/stop", headers=AUTH)
        assert resp.status == 503

    async def test_no_docker_is_503(self, make_client: MakeClient) -> None:
        client = await make_client(docker=None)
        resp = await client.post("/containers/abc/start", headers=AUTH)
        assert resp.status == 503

    async def test_docker_not_found_passes_through(self, make_client: MakeClient) -> None:
        docker = MagicMock()
        docker.container_action = AsyncMock(side_effect=DockerAPIError(404, "No such container"))
        client = await make_client(docker=docker)
        resp = await client.post("/containers/nope/start", headers=AUTH)
        assert resp.status == 404
        assert (await resp.json())["error"] == "No such container"


class TestProcessKill:
    async def test_kill(self, make_client: MakeClient) -> None:
        client = await make_client()
        with patch("src.agent.server.psutil.Process") as proc:
            resp = await client.post("/processes/1234/kill", headers=AUTH)
        assert resp.status == 200
        assert await resp.json() == {"message": "killed"}
        proc.assert_called_once_with(1234)

    async def test_missing_pid_is_404(self, make_client: MakeClient) -> None:
        client = await make_client()
        with patch("src.agent.server.psutil.Process", side_effect=psutil.NoSuchProcess(1234)):
            resp = await client.post("/processes/1234/kill", headers=AUTH)
        assert resp.status == 404

    async def test_access_denied_is_403(self, make_client: MakeClient) -> None:
        client = await make_client()
        with patch("src.agent.server.psutil.Process", side_effect=psutil.AccessDenied(1)):
            resp = await client.post("/processes/1/kill", headers=AUTH)
        assert resp.status == 403

    async def test_non_numeric_pid_is_400(self, make_client: MakeClient) -> None:
        client = await make_client()
        resp = await client.post("/processes/abc/kill", headers=AUTH)
        assert resp.status == 400


class TestServiceConfigure:
    async def test_configure_stores_credential(self, make_client: MakeClient) -> None:
        client = await make_client()
        resp = await client.post("/services/n8n/configure", json={"password": "api-key"}, headers=AUTH)
        assert resp.status == 200
        assert await resp.json() == {"message": "configured"}
        credentials = client.server.app["test_credentials"]
        assert credentials.get("n8n-apikey-srv") == "api-key"

    async def test_empty_password_is_400(self, make_client: MakeClient) -> None:
        client = await make_client()
        resp = await client.post("/services/n8n/configure", json={"password": ""}, headers=AUTH)
        assert resp.status == 400

    async def test_missing_password_is_400(self, make_client: MakeClient) -> None:
        client = await make_client()
        resp = await client.post("/services/n8n/configure", json={}, headers=AUTH)
        assert resp.status == 400

    async def test_unknown_plugin_is_404(self, make_client: MakeClient) -> None:
        client = await make_client()
        resp = await client.post("/services/nope/configure", json={"password": "x"}, headers=AUTH)
        assert resp.status == 404


# ── Lifecycle ───────────────────────────────────────────────────


class TestAgentLifecycle:
    async def test_status(self, make_client: MakeClient) -> None:
        client = await make_client()
        body = await (await client.get("/agent/status", headers=AUTH)).json()
        assert body["status"] == "running"
        assert body["version"] == __version__
        assert body["uptimeSeconds"] >= 0

    async def test_restart_sets_flags(self, make_client: MakeClient) -> None:
        control = AgentControl()
        client = await make_client(control=control)
        resp = await client.post("/agent/restart", headers=AUTH)
        assert await resp.json() == {"message": "restarting"}
        assert control.stop_event.is_set()
        assert control.restart_requested is True

    async def test_stop(self, make_client: MakeClient) -> None:
        control = AgentControl()
        client = await make_client(control=control)
        resp = await client.post("/agent/stop", headers=AUTH)
        assert await resp.json() == {"message": "stopping"}
        assert control.stop_event.is_set()
        assert control.restart_requested is False
