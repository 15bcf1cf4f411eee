#!/usr/bin/env python3
"""Agent entrypoint — samples this host and serves the stats API.

Usage::

    # Run with default config
    python scripts/agent.py

    # Custom config file
    python scripts/agent.py --config config/settings.yaml

    # Override log level and port
    python scripts/agent.py --log-level DEBUG --port 7654
"""

from __future__ import annotations

import argparse
import asyncio
import os
import signal
import sys

import structlog

from src.agent import __version__
from src.agent.docker import DockerClient
from src.agent.sampler import Sampler
from src.agent.server import AgentControl, create_agent_app, start_agent_server
from src.agent.services import ServiceDetector
from src.agent.stream import StreamMultiplexer
from src.core.config import load_settings
from src.core.logging import setup_logging
from src.plugins.credentials import InMemoryCredentialStore
from src.plugins.factory import create_plugin_registry

logger = structlog.get_logger(__name__)


async def run(args: argparse.Namespace) -> int:
    """Start the agent and serve until stopped. Returns the exit code."""
    settings = load_settings(args.config)
    setup_logging(level=args.log_level, component="agent")
    cfg = settings.agent
    port = args.port or cfg.port

    token = cfg.auth_token.get_secret_value()
    if not token:
        logger.warning("agent_auth_disabled")

    # ── Sampling ─────────────────────────────────────────────────
    docker = DockerClient(cfg.docker_socket, timeout_secs=cfg.docker_timeout_secs)
    sampler = Sampler(docker)

    # ── Plugins ──────────────────────────────────────────────────
    registry = create_plugin_registry(settings.plugins)
    credentials = InMemoryCredentialStore()
    detector = ServiceDetector(registry, credentials, server_id=cfg.server_id)

    # ── HTTP API ─────────────────────────────────────────────────
    multiplexer = StreamMultiplexer(sampler, detector, cfg)
    control = AgentControl()
    app = create_agent_app(
        sampler,
        multiplexer,
        registry,
        credentials,
        docker=docker,
        control=control,
        auth_token=token or None,
        server_id=cfg.server_id,
        top_processes=cfg.top_processes,
    )
    runner = await start_agent_server(app, cfg.host, port)
    logger.info("agent_running", version=__version__, plugins=len(registry))

    # ── Wait for shutdown signal ─────────────────────────────────
    def _signal_handler() -> None:
        logger.info("shutdown_signal_received")
        control.request_stop()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except NotImplementedError:
            # Windows: signal handlers not supported on ProactorEventLoop
            pass

    try:
        await control.stop_event.wait()
    except KeyboardInterrupt:
        logger.info("keyboard_interrupt")

    # ── Graceful shutdown ────────────────────────────────────────
    logger.info("agent_shutting_down", restart=control.restart_requested)
    # Let the response to /agent/stop or /agent/restart reach the client.
    await asyncio.sleep(0.5)
    await multiplexer.close()
    await runner.cleanup()
    await docker.close()
    logger.info("agent_stopped")

    return 3 if control.restart_requested else 0


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Run the deskmon monitoring agent.",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to settings YAML (default: config/settings.yaml)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Log level override: DEBUG, INFO, WARNING, ERROR",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Listen port override (default: agent.port)",
    )
    args = parser.parse_args()

    code = asyncio.run(run(args))
    if code == 3:
        # Restart requested over the API: replace this process in place.
        os.execv(sys.executable, [sys.executable, *sys.argv])
    sys.exit(code)


if __name__ == "__main__":
    main()
