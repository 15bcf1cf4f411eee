"""StreamMultiplexer — typed Server-Sent-Events at independent cadences.

Each connection gets one producer task per event type plus a keepalive
task. Producers never wait on each other; writes to the connection go
through a lock so every frame reaches the socket whole. A failed write
closes the session and cancels every task it owns.
"""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Any

import structlog
from aiohttp import web

from src.agent.sampler import Sampler
from src.agent.services import ServiceDetector
from src.core.config import AgentConfig

logger = structlog.stdlib.get_logger()

KEEPALIVE_FRAME = b": keepalive\n\n"

SSE_HEADERS = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

PayloadFn = Callable[[], Awaitable[Any]]


class EventType(StrEnum):
    SYSTEM = "system"
    DOCKER = "docker"
    SERVICES = "services"


def encode_event(event_type: str, payload: Any) -> bytes:
    """Serialize one SSE frame. The JSON body never contains raw newlines."""
    data = json.dumps(payload, separators=(",", ":"))
    return f"event: {event_type}\ndata: {data}\n\n".encode()


class _StreamSession:
    """One connected client: serialized writes plus last-activity tracking."""

    def __init__(
        self,
        response: web.StreamResponse,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._response = response
        self._clock = clock
        self._lock = asyncio.Lock()
        self._done = asyncio.Event()
        self.last_sent = clock()
        self.frames_sent = 0

    @property
    def closed(self) -> bool:
        return self._done.is_set()

    async def send(self, frame: bytes) -> bool:
        async with self._lock:
            if self.closed:
                return False
            try:
                await self._response.write(frame)
            except (ConnectionError, RuntimeError) as exc:
                logger.info("stream_client_gone", error=str(exc) or type(exc).__name__)
                self.close()
                return False
            self.last_sent = self._clock()
            self.frames_sent += 1
            return True

    def close(self) -> None:
        self._done.set()

    async def wait_closed(self) -> None:
        await self._done.wait()


class StreamMultiplexer:
    """Serves ``/stats/stream`` and the payloads behind the one-shot endpoints.

    Only the most recent frame per event type is retained; a newly
    connecting client is sent those before anything else.

    Usage::

        mux = StreamMultiplexer(sampler, detector, settings.agent)
        app.router.add_get("/stats/stream", mux.handle)
    """

    def __init__(
        self,
        sampler: Sampler,
        detector: ServiceDetector | None = None,
        config: AgentConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._sampler = sampler
        self._detector = detector
        self._config = config or AgentConfig()
        self._clock = clock
        self._latest: dict[EventType, bytes] = {}
        self._sessions: set[_StreamSession] = set()

    @property
    def connections(self) -> int:
        return len(self._sessions)

    def latest_frames(self) -> list[bytes]:
        return [self._latest[t] for t in EventType if t in self._latest]

    # ── Payloads ────────────────────────────────────────────────

    async def system_payload(self) -> dict[str, Any]:
        system = await asyncio.to_thread(self._sampler.sample_system)
        processes = await asyncio.to_thread(self._sampler.top_processes, self._config.top_processes)
        return {
            "system": system.to_wire(),
            "processes": [p.to_wire() for p in processes],
        }

    async def docker_payload(self) -> list[dict[str, Any]]:
        containers = await self._sampler.sample_containers()
        return [c.to_wire() for c in containers]

    async def services_payload(self) -> list[dict[str, Any]]:
        if self._detector is None:
            return []
        services = self._detector.detect(self._sampler.last_containers)
        return [s.to_wire() for s in services]

    def _producers(self) -> list[tuple[EventType, float, PayloadFn]]:
        cfg = self._config
        return [
            (EventType.SYSTEM, cfg.system_interval_secs, self.system_payload),
            (EventType.DOCKER, cfg.docker_interval_secs, self.docker_payload),
            (EventType.SERVICES, cfg.services_interval_secs, self.services_payload),
        ]

    # ── Connection ──────────────────────────────────────────────

    async def handle(self, request: web.Request) -> web.StreamResponse:
        response = web.StreamResponse(status=200, headers=SSE_HEADERS)
        await response.prepare(request)
        await self.serve(response)
        return response

    async def serve(self, response: web.StreamResponse) -> None:
        """Stream to a prepared response until the client goes away."""
        session = _StreamSession(response, self._clock)
        self._sessions.add(session)
        logger.info("stream_connected", connections=len(self._sessions))

        tasks: list[asyncio.Task[None]] = []
        try:
            for frame in self.latest_frames():
                if not await session.send(frame):
                    return
            for event_type, interval, fn in self._producers():
                tasks.append(asyncio.create_task(
                    self._produce(session, event_type, interval, fn),
                    name=f"stream-{event_type}",
                ))
            tasks.append(asyncio.create_task(self._keepalive(session), name="stream-keepalive"))
            await session.wait_closed()
        finally:
            session.close()
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            self._sessions.discard(session)
            logger.info(
                "stream_disconnected",
                frames=session.frames_sent,
                connections=len(self._sessions),
            )

    async def _produce(
        self,
        session: _StreamSession,
        event_type: EventType,
        interval: float,
        fn: PayloadFn,
    ) -> None:
        loop = asyncio.get_running_loop()
        while not session.closed:
            started = loop.time()
            try:
                payload = await fn()
            except Exception:
                logger.warning("stream_producer_failed", event_type=event_type.value, exc_info=True)
            else:
                frame = encode_event(event_type.value, payload)
                self._latest[event_type] = frame
                await session.send(frame)
            elapsed = loop.time() - started
            await asyncio.sleep(max(0.0, interval - elapsed))

    async def _keepalive(self, session: _StreamSession) -> None:
        interval = self._config.keepalive_interval_secs
        while not session.closed:
            idle = self._clock() - session.last_sent
            if idle >= interval:
                await session.send(KEEPALIVE_FRAME)
                continue
            await asyncio.sleep(interval - idle)

    async def close(self) -> None:
        for session in list(self._sessions):
            session.close()
