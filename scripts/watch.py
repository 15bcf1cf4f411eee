#!/usr/bin/env python3
"""Watch an agent's live stream and raise alerts.

Connects to ``/stats/stream`` with reconnect backoff, evaluates threshold
rules on every event, and periodically runs plugin alert checks against
detected services.

Usage::

    # Watch the agent from config (stream_client section)
    python scripts/watch.py

    # Override host and supply an n8n API key
    python scripts/watch.py --host 10.0.0.5 --credential n8n=secret
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys

import structlog

from src.alerts.dispatcher import AlertDispatcher
from src.alerts.engine import AlertEvaluationEngine
from src.alerts.factory import create_alert_stack
from src.alerts.tunnel import DirectTunnelProvider
from src.client.agent_client import AgentClient, ConnectionStatus, ServerEvent, ServerEventType
from src.client.backoff import ReconnectBackoff
from src.client.consumer import StreamConsumer
from src.core.config import load_settings
from src.core.logging import setup_logging
from src.core.types import ContainerSnapshot, ContainerStatus
from src.plugins.credentials import InMemoryCredentialStore
from src.plugins.factory import create_plugin_registry
from src.plugins.registry import PluginRegistry

logger = structlog.get_logger(__name__)


async def _plugin_loop(
    engine: AlertEvaluationEngine,
    registry: PluginRegistry,
    dispatcher: AlertDispatcher,
    containers: dict[str, ContainerSnapshot],
    server_id: str,
    interval: float,
) -> None:
    """Evaluate every plugin metric for running containers each interval."""
    while True:
        images = {c.image for c in containers.values() if c.status == ContainerStatus.RUNNING}
        for image in images:
            plugin = registry.resolve(image)
            if plugin is None:
                continue
            results = await engine.evaluate_all(server_id, image)
            for metric in plugin.alert_metrics:
                result = results.get(metric.key)
                if result is not None:
                    await dispatcher.fire_plugin_alert(server_id, server_id, plugin.id, metric, result)
        await asyncio.sleep(interval)


async def run(args: argparse.Namespace) -> int:
    """Watch until interrupted. Returns the exit code."""
    settings = load_settings(args.config)
    setup_logging(level=args.log_level, component="watch")
    cfg = settings.stream_client
    if args.host:
        cfg = cfg.model_copy(update={"host": args.host})
    server_id = cfg.host

    client = AgentClient.from_config(cfg)
    result = await client.verify_connection()
    if result.status != ConnectionStatus.SUCCESS:
        logger.error("agent_connection_failed", status=result.status.value, error=result.error)
        print(f"Cannot connect to agent at {client.base_url}: {result.status.value}", file=sys.stderr)
        await client.close()
        return 1

    # ── Alerting ─────────────────────────────────────────────────
    dispatcher, evaluator = create_alert_stack(settings.alerts)
    registry = create_plugin_registry(settings.plugins)
    credentials = InMemoryCredentialStore()
    for item in args.credential:
        plugin_id, _, secret = item.partition("=")
        plugin = registry.get(plugin_id)
        if plugin is None or plugin.credential_purpose is None or not secret:
            logger.warning("credential_ignored", plugin_id=plugin_id)
            continue
        credentials.save(plugin.id, plugin.credential_purpose, server_id, secret)
    engine = AlertEvaluationEngine(registry, DirectTunnelProvider({server_id: cfg.host}), credentials)

    containers: dict[str, ContainerSnapshot] = {}

    async def _on_event(event: ServerEvent) -> None:
        if event.type == ServerEventType.SYSTEM and event.system is not None:
            candidates = evaluator.evaluate_system(server_id, event.system)
            await dispatcher.fire_candidates(server_id, server_id, candidates)
        elif event.type == ServerEventType.DOCKER:
            containers.clear()
            containers.update({c.id: c for c in event.containers})
            candidates = evaluator.evaluate_containers(server_id, event.containers)
            await dispatcher.fire_candidates(server_id, server_id, candidates)
        elif event.type == ServerEventType.SERVICES:
            logger.debug("services_update", services=[s.plugin_id for s in event.services])

    consumer = StreamConsumer(
        client,
        ReconnectBackoff(cfg.reconnect_base_secs, cfg.reconnect_cap_secs),
    )
    consumer.on_event(_on_event)
    await consumer.start()

    poll_interval = min(
        (m.poll_interval_secs for p in registry for m in p.alert_metrics),
        default=60.0,
    )
    plugin_task = asyncio.create_task(
        _plugin_loop(engine, registry, dispatcher, containers, server_id, poll_interval)
    )
    logger.info("watch_running", agent=client.base_url, plugin_poll_secs=poll_interval)

    # ── Wait for shutdown signal ─────────────────────────────────
    stop_event = asyncio.Event()

    def _signal_handler() -> None:
        logger.info("shutdown_signal_received")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except NotImplementedError:
            # Windows: signal handlers not supported on ProactorEventLoop
            pass

    try:
        await stop_event.wait()
    except KeyboardInterrupt:
        logger.info("keyboard_interrupt")

    # ── Graceful shutdown ────────────────────────────────────────
    plugin_task.cancel()
    try:
        await plugin_task
    except asyncio.CancelledError:
        pass
    await consumer.stop()
    await dispatcher.close()
    await client.close()

    logger.info("watch_stopped", alerts_fired=len(dispatcher.recent_alerts))
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Watch a deskmon agent and raise alerts.",
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
        "--host",
        default=None,
        help="Agent host override (default: stream_client.host)",
    )
    parser.add_argument(
        "--credential",
        action="append",
        default=[],
        metavar="PLUGIN=SECRET",
        help="Service credential for a plugin, e.g. n8n=<api key> (repeatable)",
    )
    args = parser.parse_args()

    code = asyncio.run(run(args))
    sys.exit(code)


if __name__ == "__main__":
    main()
