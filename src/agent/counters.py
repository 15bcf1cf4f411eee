"""Two-point counter store and the rate math built on top of it.

Every counter the agent reads (CPU time fields, interface byte counts,
container CPU nanoseconds) is cumulative. A rate needs two consecutive
readings of the same counter, so the store keeps exactly the previous and
current :class:`RawCounterSample` per counter key and nothing older.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Hashable, Iterable, Mapping

from src.core.types import RawCounterSample

CounterKey = Hashable

# CPU time fields that count as "busy" time.
CPU_BUSY_FIELDS: tuple[str, ...] = ("user", "system", "nice", "irq", "softirq", "steal")

# guest/guest_nice are already accounted for inside user/nice on Linux.
_CPU_EXCLUDED_FROM_TOTAL = frozenset({"guest", "guest_nice"})


class CounterStore:
    """Retains the two most recent samples per counter key.

    A decrease in a counter is treated as a reset: the previous sample is
    dropped and no delta is produced until the next reading.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._pairs: dict[CounterKey, tuple[RawCounterSample | None, RawCounterSample]] = {}

    def __len__(self) -> int:
        return len(self._pairs)

    def __contains__(self, key: object) -> bool:
        return key in self._pairs

    def observe(
        self,
        key: CounterKey,
        value: float,
        timestamp: float | None = None,
    ) -> tuple[RawCounterSample, RawCounterSample] | None:
        """Record a reading and return ``(previous, current)`` when both exist."""
        ts = self._clock() if timestamp is None else timestamp
        current = RawCounterSample(value=float(value), timestamp=ts)
        entry = self._pairs.get(key)
        last = entry[1] if entry is not None else None

        if last is None or current.value < last.value:
            self._pairs[key] = (None, current)
            return None

        self._pairs[key] = (last, current)
        return last, current

    def delta(self, key: CounterKey, value: float, timestamp: float | None = None) -> float | None:
        pair = self.observe(key, value, timestamp)
        if pair is None:
            return None
        return pair[1].value - pair[0].value

    def rate(self, key: CounterKey, value: float, timestamp: float | None = None) -> float | None:
        """Per-second rate between the last two readings, or None."""
        pair = self.observe(key, value, timestamp)
        if pair is None:
            return None
        prev, cur = pair
        elapsed = cur.timestamp - prev.timestamp
        if elapsed <= 0:
            return None
        return (cur.value - prev.value) / elapsed

    def retain(self, keep: Callable[[CounterKey], bool]) -> int:
        """Drop every counter for which *keep* is false. Returns the number dropped."""
        stale = [k for k in self._pairs if not keep(k)]
        for k in stale:
            del self._pairs[k]
        return len(stale)

    def keys(self) -> Iterable[CounterKey]:
        return list(self._pairs)


def cpu_total(times: Mapping[str, float]) -> float:
    return sum(v for k, v in times.items() if k not in _CPU_EXCLUDED_FROM_TOTAL)


def cpu_busy_percent(prev: Mapping[str, float], cur: Mapping[str, float]) -> float:
    """Busy share of CPU time between two ``cpu_times()`` readings, in [0, 100].

    Returns 0 when no time elapsed between the readings.
    """
    total = cpu_total(cur) - cpu_total(prev)
    if total <= 0:
        return 0.0
    busy = sum(cur.get(f, 0.0) - prev.get(f, 0.0) for f in CPU_BUSY_FIELDS)
    return min(max(busy / total * 100.0, 0.0), 100.0)


def container_cpu_percent(container_delta_ns: float, system_delta_ns: float, cores: int) -> float:
    """Docker-style container CPU percent. Exceeds 100 on multi-core hosts."""
    if system_delta_ns <= 0 or container_delta_ns < 0:
        return 0.0
    return container_delta_ns / system_delta_ns * max(cores, 1) * 100.0
