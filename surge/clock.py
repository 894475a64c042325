"""Clock abstraction: millisecond timestamps and awaitable delays.

Every timed component takes a Clock so tests can substitute virtual time.
"""

from __future__ import annotations

import asyncio
import time
from typing import Protocol

# Nanoseconds to milliseconds conversion
NS_TO_MS = 1_000_000


class Clock(Protocol):
    def now_ms(self) -> float:
        """Monotonic timestamp in milliseconds."""
        ...

    async def sleep(self, ms: float) -> None:
        """Suspend the calling task for ms milliseconds."""
        ...


class MonotonicClock:
    """Wall-clock implementation backed by perf_counter_ns and asyncio.sleep."""

    __slots__ = ()

    def now_ms(self) -> float:
        return time.perf_counter_ns() / NS_TO_MS

    async def sleep(self, ms: float) -> None:
        # Always yield, even for 0 ms, so sibling tasks interleave
        await asyncio.sleep(max(0.0, ms) / 1000.0)


def elapsed_ms(clock: Clock, start_ms: float) -> float:
    """Milliseconds elapsed on clock since start_ms (never negative)."""
    return max(0.0, clock.now_ms() - start_ms)


DEFAULT_CLOCK: Clock = MonotonicClock()
