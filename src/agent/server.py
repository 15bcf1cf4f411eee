"""Agent HTTP API — one-shot stats, the SSE stream, and control actions.

Exposes:
- ``GET  /health``                         → liveness, never authenticated
- ``GET  /stats``                          → system snapshot + containers
- ``GET  /stats/system|docker|processes|services``
- ``GET  /stats/stream``                   → Server-Sent-Events
- ``POST /containers/{id}/{action}``       → start / stop / restart
- ``POST /processes/{pid}/kill``
- ``POST /services/{plugin_id}/configure`` → store the plugin credential
- ``GET  /agent/status``, ``POST /agent/restart|stop``
"""

from __future__ import annotations

import asyncio
import hmac
import json
import time
from typing import Any

import psutil
import structlog
from aiohttp import web

from src.agent import __version__
from src.agent.docker import CONTAINER_ACTIONS, DockerClient
from src.agent.exceptions import DockerAPIError, DockerUnavailableError
from src.agent.sampler import Sampler
from src.agent.stream import StreamMultiplexer
from src.plugins.credentials import CredentialStore
from src.plugins.registry import PluginRegistry

logger = structlog.stdlib.get_logger()

_PUBLIC_PATHS = frozenset({"/health"})


class AgentControl:
    """Shutdown/restart signalling shared by the HTTP API and the entrypoint."""

    def __init__(self) -> None:
        self.stop_event = asyncio.Event()
        self.restart_requested = False
        self.started_at = time.monotonic()

    @property
    def uptime_seconds(self) -> int:
        return int(time.monotonic() - self.started_at)

    def request_stop(self, restart: bool = False) -> None:
        self.restart_requested = self.restart_requested or restart
        self.stop_event.set()


def _check_bearer(request: web.Request, token: str) -> bool:
    header = request.headers.get("Authorization", "")
    if not header.startswith("Bearer "):
        return False
    return hmac.compare_digest(header[7:], token)


@web.middleware
async def _auth_middleware(request: web.Request, handler: Any) -> web.StreamResponse:
    """Require ``Authorization: Bearer <token>`` when a token is configured."""
    token: str = request.app.get("auth_token") or ""
    if token and request.path not in _PUBLIC_PATHS and not _check_bearer(request, token):
        return web.json_response({"error": "unauthorized"}, status=401)
    return await handler(request)


def _error(message: str, status: int) -> web.Response:
    return web.json_response({"error": message}, status=status)


# ── Stats ───────────────────────────────────────────────────────


async def _handle_health(request: web.Request) -> web.Response:
    return web.json_response({"status": "ok"})


async def _handle_stats(request: web.Request) -> web.Response:
    sampler: Sampler = request.app["sampler"]
    system, containers = await sampler.sample()
    return web.json_response({
        "system": system.to_wire(),
        "containers": [c.to_wire() for c in containers],
    })


async def _handle_stats_system(request: web.Request) -> web.Response:
    mux: StreamMultiplexer = request.app["multiplexer"]
    return web.json_response(await mux.system_payload())


async def _handle_stats_docker(request: web.Request) -> web.Response:
    mux: StreamMultiplexer = request.app["multiplexer"]
    return web.json_response(await mux.docker_payload())


async def _handle_stats_processes(request: web.Request) -> web.Response:
    sampler: Sampler = request.app["sampler"]
    limit: int = request.app["top_processes"]
    processes = await asyncio.to_thread(sampler.top_processes, limit)
    return web.json_response([p.to_wire() for p in processes])


async def _handle_stats_services(request: web.Request) -> web.Response:
    mux: StreamMultiplexer = request.app["multiplexer"]
    return web.json_response(await mux.services_payload())


async def _handle_stream(request: web.Request) -> web.StreamResponse:
    mux: StreamMultiplexer = request.app["multiplexer"]
    return await mux.handle(request)


# ── Actions ─────────────────────────────────────────────────────


async def _handle_container_action(request: web.Request) -> web.Response:
    docker: DockerClient | None = request.app["docker"]
    container_id = request.match_info["id"]
    action = request.match_info["action"]
    if action not in CONTAINER_ACTIONS:
        return _error(f"unknown action: {action}", 400)
    if docker is None:
        return _error("docker unavailable", 503)
    try:
        await docker.container_action(container_id, action)
    except DockerUnavailableError:
        return _error("docker unavailable", 503)
    except DockerAPIError as exc:
        status = exc.status_code if 400 <= exc.status_code < 500 else 500
        return _error(exc.message or str(exc), status)
    logger.info("container_action", container_id=container_id, action=action)
    return web.json_response({"message": f"container {action} successful"})


def _kill(pid: int) -> None:
    psutil.Process(pid).kill()


async def _handle_process_kill(request: web.Request) -> web.Response:
    try:
        pid = int(request.match_info["pid"])
    except ValueError:
        return _error("invalid pid", 400)
    try:
        await asyncio.to_thread(_kill, pid)
    except psutil.NoSuchProcess:
        return _error("process not found", 404)
    except psutil.AccessDenied:
        return _error("permission denied", 403)
    logger.info("process_killed", pid=pid)
    return web.json_response({"message": "killed"})


async def _handle_service_configure(request: web.Request) -> web.Response:
    registry: PluginRegistry = request.app["registry"]
    credentials: CredentialStore = request.app["credentials"]
    server_id: str = request.app["server_id"]

    plugin = registry.get(request.match_info["plugin_id"])
    if plugin is None:
        return _error("unknown plugin", 404)
    if plugin.credential_purpose is None:
        return _error("plugin takes no credential", 400)
    try:
        body = await request.json()
    except json.JSONDecodeError:
        return _error("invalid JSON body", 400)
    password = body.get("password") if isinstance(body, dict) else None
    if not isinstance(password, str) or not password:
        return _error("password is required", 400)

    credentials.save(plugin.id, plugin.credential_purpose, server_id, password)
    logger.info("service_configured", plugin_id=plugin.id)
    return web.json_response({"message": "configured"})


# ── Agent lifecycle ─────────────────────────────────────────────


async def _handle_agent_status(request: web.Request) -> web.Response:
    control: AgentControl = request.app["control"]
    return web.json_response({
        "status": "running",
        "version": __version__,
        "uptimeSeconds": control.uptime_seconds,
    })


async def _handle_agent_restart(request: web.Request) -> web.Response:
    control: AgentControl = request.app["control"]
    logger.info("agent_restart_requested")
    control.request_stop(restart=True)
    return web.json_response({"message": "restarting"})


async def _handle_agent_stop(request: web.Request) -> web.Response:
    control: AgentControl = request.app["control"]
    logger.info("agent_stop_requested")
    control.request_stop()
    return web.json_response({"message": "stopping"})


def create_agent_app(
    sampler: Sampler,
    multiplexer: StreamMultiplexer,
    registry: PluginRegistry,
    credentials: CredentialStore,
    docker: DockerClient | None = None,
    control: AgentControl | None = None,
    auth_token: str | None = None,
    server_id: str = "local",
    top_processes: int = 10,
) -> web.Application:
    """Create the aiohttp application."""
    app = web.Application(middlewares=[_auth_middleware])
    app["sampler"] = sampler
    app["multiplexer"] = multiplexer
    app["registry"] = registry
    app["credentials"] = credentials
    app["docker"] = docker
    app["control"] = control or AgentControl()
    app["auth_token"] = auth_token
    app["server_id"] = server_id
    app["top_processes"] = top_processes

    app.router.add_get("/health", _handle_health)
    app.router.add_get("/stats", _handle_stats)
    app.router.add_get("/stats/system", _handle_stats_system)
    app.router.add_get("/stats/docker", _handle_stats_docker)
    app.router.add_get("/stats/processes", _handle_stats_processes)
    app.router.add_get("/stats/services", _handle_stats_services)
    app.router.add_get("/stats/stream", _handle_stream)
    app.router.add_post("/containers/{id}/{action}", _handle_container_action)
    app.router.add_post("/processes/{pid}/kill", _handle_process_kill)
    app.router.add_post("/services/{plugin_id}/configure", _handle_service_configure)
    app.router.add_get("/agent/status", _handle_agent_status)
    app.router.add_post("/agent/restart", _handle_agent_restart)
    app.router.add_post("/agent/stop", _handle_agent_stop)
    return app


async def start_agent_server(
    app: web.Application,
    host: str = "0.0.0.0",
    port: int = 7654,
) -> web.AppRunner:
    """Start the agent server. Returns the runner for cleanup."""
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info("agent_listening", host=host, port=port)
    return runner
