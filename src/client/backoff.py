"""Exponential reconnect backoff for the agent event stream."""

from __future__ import annotations


class ReconnectBackoff:
    """Delay sequence ``base, 2*base, 4*base, ...`` capped at ``cap``.

    Usage::

        backoff = ReconnectBackoff()
        while True:
            try:
                await connect()
                backoff.reset()
            except ConnectionError:
                await asyncio.sleep(backoff.next_delay())
    """

    def __init__(self, base_secs: float = 2.0, cap_secs: float = 30.0) -> None:
        if base_secs <= 0:
            raise ValueError("base_secs must be positive")
        if cap_secs < base_secs:
            raise ValueError("cap_secs must be >= base_secs")
        self._base = base_secs
        self._cap = cap_secs
        self._delay = base_secs
        self._attempts = 0

    @property
    def attempts(self) -> int:
        """Consecutive failures since the last reset."""
        return self._attempts

    def peek(self) -> float:
        return self._delay

    def next_delay(self) -> float:
        """Return the delay for this failure and advance the sequence."""
        delay = self._delay
        self._delay = min(self._delay * 2, self._cap)
        self._attempts += 1
        return delay

    def reset(self) -> None:
        self._delay = self._base
        self._attempts = 0
