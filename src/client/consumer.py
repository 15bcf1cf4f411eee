"""Stream consumer — keeps an agent event stream open across failures."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import structlog

from src.client.agent_client import AgentClient, ServerEvent
from src.client.backoff import ReconnectBackoff
from src.client.exceptions import AgentClientError, AgentUnauthorizedError

logger = structlog.stdlib.get_logger()

ServerEventCallback = Callable[[ServerEvent], Awaitable[None] | None]
SleepFn = Callable[[float], Awaitable[None]]


class StreamConsumer:
    """Runs ``client.stream_events()`` in a reconnect loop.

    The backoff resets once a connection delivers its first event. A
    rejected token stops the loop: retrying cannot fix it.

    Usage::

        consumer = StreamConsumer(client)
        consumer.on_event(handle_event)
        await consumer.start()
        ...
        await consumer.stop()
    """

    def __init__(
        self,
        client: AgentClient,
        backoff: ReconnectBackoff | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._client = client
        self._backoff = backoff or ReconnectBackoff()
        self._sleep = sleep
        self._callbacks: list[ServerEventCallback] = []
        self._task: asyncio.Task[None] | None = None
        self._running = False
        self._connected = False
        self._unauthorized = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def unauthorized(self) -> bool:
        return self._unauthorized

    @property
    def backoff(self) -> ReconnectBackoff:
        return self._backoff

    def on_event(self, callback: ServerEventCallback) -> None:
        """Register a callback for stream events."""
        self._callbacks.append(callback)

    async def _emit(self, event: ServerEvent) -> None:
        for cb in self._callbacks:
            try:
                result = cb(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception("stream_event_callback_error", event_type=event.type.value)

    # ── Loop ────────────────────────────────────────────────────

    async def run(self) -> None:
        """Consume until stopped or the token is rejected."""
        self._running = True
        try:
            while self._running:
                try:
                    await self._session()
                except AgentUnauthorizedError:
                    logger.error("agent_stream_unauthorized")
                    self._unauthorized = True
                    break
                except AgentClientError as exc:
                    logger.warning("agent_stream_error", error=str(exc))
                finally:
                    self._connected = False

                if not self._running:
                    break
                delay = self._backoff.next_delay()
                logger.info("agent_stream_reconnecting", delay=delay, attempt=self._backoff.attempts)
                await self._sleep(delay)
        finally:
            self._running = False

    async def _session(self) -> None:
        """One connection, from open to close."""
        async for event in self._client.stream_events():
            if not self._connected:
                self._connected = True
                self._backoff.reset()
            await self._emit(event)
        logger.info("agent_stream_closed")

    # ── Lifecycle ───────────────────────────────────────────────

    async def start(self) -> None:
        if self._task is not None:
            return
        self._task = asyncio.create_task(self.run(), name="agent-stream")

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
