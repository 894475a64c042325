"""Pytest fixtures for surge tests."""

from __future__ import annotations

import asyncio
import heapq
import itertools
from pathlib import Path
from typing import Any, Awaitable

import pytest


class FakeClock:
    """Virtual milliseconds for deterministic timing tests.

    sleep() parks the caller until run() advances virtual time past its
    wake-up; time only moves when every task is parked.
    """

    SETTLE_ROUNDS = 50

    def __init__(self, start_ms: float = 0.0) -> None:
        self.now = start_ms
        self.sleeps: list[float] = []
        self._waiters: list[tuple[float, int, asyncio.Future[None]]] = []
        self._seq = itertools.count()

    def now_ms(self) -> float:
        return self.now

    async def sleep(self, ms: float) -> None:
        ms = max(0.0, ms)
        self.sleeps.append(ms)
        fut: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        heapq.heappush(self._waiters, (self.now + ms, next(self._seq), fut))
        await fut

    def advance(self) -> bool:
        """Jump to the earliest wake-up and release every sleeper due by then."""
        while self._waiters and self._waiters[0][2].done():
            heapq.heappop(self._waiters)
        if not self._waiters:
            return False
        self.now = max(self.now, self._waiters[0][0])
        while self._waiters and self._waiters[0][0] <= self.now:
            _, _, fut = heapq.heappop(self._waiters)
            if not fut.done():
                fut.set_result(None)
        return True

    def run(self, coro: Awaitable[Any]) -> Any:
        """asyncio.run(coro) with virtual time advancing whenever the loop goes idle."""

        async def drive() -> Any:
            task = asyncio.ensure_future(coro)
            while not task.done():
                for _ in range(self.SETTLE_ROUNDS):
                    await asyncio.sleep(0)
                    if task.done():
                        break
                else:
                    self.advance()
            return task.result()

        return asyncio.run(drive())


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def tmp_path_plan(tmp_path: Path) -> Path:
    """Write a small valid stress plan to a temp file."""
    content = """
base_url: http://localhost:4173/
scenarios:
  - name: smoke
    users: 5
    duration: 2
    ramp_up: 1
    requests_per_user: 3
  - name: burst
    users: 20
    duration: 1
    ramp_up: 0
endpoints: [/health, /api/items]
thresholds:
  error_rate: 1
  avg_response_time: 200
  p95_response_time: 400
payload_size: 64
build_command: make build
serve_command: [python, -m, http.server, "4173"]
startup:
  timeout_seconds: 10
  poll_seconds: 0.5
interactions:
  poll_voting_users: 10
  session_joining_users: 12
  networking_users: 8
polling:
  tabs: 3
  duration_seconds: 5
simulation:
  get_ratio: 0.5
  vote_conflict_rate: 0.2
  poll_latency: [10, 20]
seed: 42
"""
    p = tmp_path / "plan.yaml"
    p.write_text(content, encoding="utf-8")
    return p
