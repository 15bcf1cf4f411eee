"""Tests for AgentClient — SSE parsing, status mapping, control actions."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Callable
from typing import Any

import httpx
import pytest
from pydantic import SecretStr

from src.client.agent_client import (
    AgentClient,
    ConnectionStatus,
    ServerEventType,
    decode_event,
    parse_sse,
)
from src.client.exceptions import (
    AgentHTTPError,
    AgentUnauthorizedError,
    AgentUnreachableError,
)
from src.core.config import StreamClientConfig
from src.core.types import ContainerSnapshot, ContainerStatus, SystemSnapshot

Handler = Callable[[httpx.Request], httpx.Response]


# ── Helpers ─────────────────────────────────────────────────────


def _client(handler: Handler, token: str = "tok") -> AgentClient:
    return AgentClient("10.0.0.5", 7654, token, transport=httpx.MockTransport(handler))


async def _lines(*lines: str) -> AsyncIterator[str]:
    for line in lines:
        yield line


async def _collect(lines: AsyncIterator[str]) -> list[Any]:
    return [event async for event in parse_sse(lines)]


SYSTEM_DATA = json.dumps({
    "system": SystemSnapshot().to_wire(),
    "processes": [{"pid": 1, "name": "init"}],
})
DOCKER_DATA = json.dumps([
    ContainerSnapshot(id="c1", name="web", image="nginx", status=ContainerStatus.RUNNING).to_wire(),
])
STATS_BODY = {"system": SystemSnapshot().to_wire(), "containers": []}


# ── SSE parsing ─────────────────────────────────────────────────


class TestDecodeEvent:
    def test_system(self) -> None:
        event = decode_event("system", SYSTEM_DATA)
        assert event is not None
        assert event.type == ServerEventType.SYSTEM
        assert event.system is not None
        assert [p.name for p in event.processes] == ["init"]

    def test_docker(self) -> None:
        event = decode_event("docker", DOCKER_DATA)
        assert event is not None
        assert [c.name for c in event.containers] == ["web"]

    def test_services(self) -> None:
        event = decode_event("services", json.dumps([{"pluginId": "n8n", "name": "n8n"}]))
        assert event is not None
        assert event.services[0].plugin_id == "n8n"

    @pytest.mark.parametrize(("event_type", "data"), [
        ("system", "{not json"),
        ("system", "{}"),
        ("docker", '[{"id": "c1"}]'),
        ("unknown", "{}"),
    ])
    def test_undecodable(self, event_type: str, data: str) -> None:
        assert decode_event(event_type, data) is None


class TestParseSse:
    async def test_typed_frames(self) -> None:
        events = await _collect(_lines(
            "event: system", f"data: {SYSTEM_DATA}", "",
            "event: docker", f"data: {DOCKER_DATA}", "",
        ))
        assert [e.type for e in events] == [ServerEventType.SYSTEM, ServerEventType.DOCKER]

    async def test_comment_is_keepalive(self) -> None:
        events = await _collect(_lines(": keepalive", ""))
        assert [e.type for e in events] == [ServerEventType.KEEPALIVE]

    async def test_bad_frame_skipped(self) -> None:
        events = await _collect(_lines(
            "event: system", "data: {broken", "",
            "event: docker", f"data: {DOCKER_DATA}", "",
        ))
        assert [e.type for e in events] == [ServerEventType.DOCKER]

    async def test_blank_line_without_event_ignored(self) -> None:
        assert await _collect(_lines("", "", "data: {}", "")) == []


# ── One-shot requests ───────────────────────────────────────────


class TestRequests:
    async def test_bearer_header(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=STATS_BODY)

        async with _client(handler) as client:
            await client.fetch_stats()
        assert seen[0].headers["Authorization"] == "Bearer tok"
        assert str(seen[0].url) == "http://10.0.0.5:7654/stats"

    async def test_no_token_no_header(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"status": "ok"})

        async with _client(handler, token="  ") as client:
            assert await client.check_health()
        assert "Authorization" not in seen[0].headers

    async def test_from_config(self) -> None:
        cfg = StreamClientConfig(host="srv.local", port=9000, token=SecretStr("abc"))
        client = AgentClient.from_config(cfg)
        assert client.base_url == "http://srv.local:9000"
        await client.close()

    async def test_fetch_stats_unauthorized(self) -> None:
        async with _client(lambda r: httpx.Response(401, json={"error": "unauthorized"})) as client:
            with pytest.raises(AgentUnauthorizedError):
                await client.fetch_stats()

    async def test_fetch_stats_server_error(self) -> None:
        async with _client(lambda r: httpx.Response(500)) as client:
            with pytest.raises(AgentHTTPError) as exc_info:
                await client.fetch_stats()
        assert exc_info.value.status_code == 500

    async def test_unreachable(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async with _client(handler) as client:
            with pytest.raises(AgentUnreachableError):
                await client.fetch_stats()
            assert await client.check_health() is False


class TestVerifyConnection:
    async def test_success(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/health":
                return httpx.Response(200, json={"status": "ok"})
            return httpx.Response(200, json=STATS_BODY)

        async with _client(handler) as client:
            result = await client.verify_connection()
        assert result.status == ConnectionStatus.SUCCESS
        assert result.stats is not None

    async def test_unreachable(self) -> None:
        async with _client(lambda r: httpx.Response(503)) as client:
            result = await client.verify_connection()
        assert result.status == ConnectionStatus.UNREACHABLE

    async def test_unauthorized(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/health":
                return httpx.Response(200, json={"status": "ok"})
            return httpx.Response(401, json={"error": "unauthorized"})

        async with _client(handler) as client:
            result = await client.verify_connection()
        assert result.status == ConnectionStatus.UNAUTHORIZED

    async def test_bad_payload_is_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/health":
                return httpx.Response(200, json={"status": "ok"})
            return httpx.Response(200, json={"unexpected": True})

        async with _client(handler) as client:
            result = await client.verify_connection()
        assert result.status == ConnectionStatus.ERROR
        assert result.error


# ── Control actions ─────────────────────────────────────────────


class TestControlActions:
    async def test_container_action(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"message": "container restart successful"})

        async with _client(handler) as client:
            message = await client.perform_container_action("abc123", "restart")
        assert message == "container restart successful"
        assert seen[0].method == "POST"
        assert seen[0].url.path == "/containers/abc123/restart"

    async def test_error_body_raises(self) -> None:
        async with _client(lambda r: httpx.Response(404, json={"error": "process not found"})) as client:
            with pytest.raises(AgentHTTPError) as exc_info:
                await client.kill_process(999)
        assert exc_info.value.status_code == 404
        assert exc_info.value.message == "process not found"

    async def test_error_field_on_200_raises(self) -> None:
        async with _client(lambda r: httpx.Response(200, json={"error": "nope"})) as client:
            with pytest.raises(AgentHTTPError):
                await client.restart_agent()

    async def test_unauthorized(self) -> None:
        async with _client(lambda r: httpx.Response(401, text="")) as client:
            with pytest.raises(AgentUnauthorizedError):
                await client.restart_agent()

    async def test_default_message(self) -> None:
        async with _client(lambda r: httpx.Response(200, json={})) as client:
            assert await client.kill_process(42) == "killed"

    async def test_configure_sends_password(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"message": "configured"})

        async with _client(handler) as client:
            assert await client.configure_service("n8n", "api-key") == "configured"
        assert seen[0].url.path == "/services/n8n/configure"
        assert json.loads(seen[0].content) == {"password": "api-key"}

    async def test_invalid_json(self) -> None:
        async with _client(lambda r: httpx.Response(200, text="<html>")) as client:
            with pytest.raises(AgentHTTPError):
                await client.restart_agent()


# ── Stream ──────────────────────────────────────────────────────


class TestStreamEvents:
    async def test_yields_events(self) -> None:
        body = (
            f"event: system\ndata: {SYSTEM_DATA}\n\n"
            ": keepalive\n\n"
            f"event: docker\ndata: {DOCKER_DATA}\n\n"
        ).encode()

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/stats/stream"
            return httpx.Response(200, content=body, headers={"Content-Type": "text/event-stream"})

        async with _client(handler) as client:
            events = [e async for e in client.stream_events()]
        assert [e.type for e in events] == [
            ServerEventType.SYSTEM,
            ServerEventType.KEEPALIVE,
            ServerEventType.DOCKER,
        ]

    async def test_unauthorized(self) -> None:
        async with _client(lambda r: httpx.Response(401)) as client:
            with pytest.raises(AgentUnauthorizedError):
                async for _ in client.stream_events():
                    pass

    async def test_unexpected_status(self) -> None:
        async with _client(lambda r: httpx.Response(502)) as client:
            with pytest.raises(AgentHTTPError):
                async for _ in client.stream_events():
                    pass

    async def test_connect_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async with _client(handler) as client:
            with pytest.raises(AgentUnreachableError):
                async for _ in client.stream_events():
                    pass
