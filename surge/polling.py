"""Multi-tab polling probe.

Each simulated browser tab polls on its own adaptive interval: mostly active
(short interval), sometimes idle (long interval), always with jitter so tabs
drift apart. Termination is pulled: every loop checks its run's cancellation
token and its own elapsed time. cleanup() additionally cancels whatever is
still sleeping so nothing outlives the tester.
"""

from __future__ import annotations

import asyncio
import random
from typing import Any, Awaitable, Callable

import httpx

from .clock import Clock, DEFAULT_CLOCK
from .exceptions import SurgeRunnerError
from .logging_config import get_logger
from .metrics import summarize_polling
from .models import PollingResult, SimulationProfile, TabPollingState

logger = get_logger("polling")

# tab_id -> anything; raising marks the poll as failed
Poller = Callable[[int], Awaitable[Any]]


def http_poller(client: httpx.AsyncClient, endpoint: str) -> Poller:
    """Poll a real endpoint; non-2xx responses count as failures."""

    async def poll(tab_id: int) -> httpx.Response:
        response = await client.get(endpoint, headers={"User-Agent": f"surge-tab-{tab_id}"})
        response.raise_for_status()
        return response

    return poll


class PollingEfficiencyTester:
    """Runs polling loops for many tabs and summarizes request pressure.

    Owns its background tasks: call cleanup()/aclose() or use it as an async
    context manager.
    """

    def __init__(
        self,
        *,
        clock: Clock = DEFAULT_CLOCK,
        rng: random.Random | None = None,
        profile: SimulationProfile | None = None,
        poll_request: Poller | None = None,
    ) -> None:
        self._clock = clock
        self._rng = rng or random.Random()
        self._profile = profile or SimulationProfile()
        self._poll = poll_request or self._simulated_poll
        self._tasks: set[asyncio.Task[None]] = set()
        self._tokens: set[asyncio.Event] = set()
        self._closed = False

    @property
    def pending_tasks(self) -> int:
        """Tab loops that have not finished yet."""
        return sum(1 for t in self._tasks if not t.done())

    async def __aenter__(self) -> "PollingEfficiencyTester":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def test_multi_tab_polling(self, tab_count: int = 5, duration_ms: float = 30_000.0) -> PollingResult:
        """Poll from tab_count tabs for duration_ms, then summarize.

        Returns early (with whatever was recorded) if cleanup() is called.

        Raises:
            SurgeRunnerError: If the tester has already been closed
        """
        if self._closed:
            raise SurgeRunnerError("Polling tester is closed")
        logger.info("Testing multi-tab polling with %d tabs for %sms", tab_count, duration_ms)
        token = asyncio.Event()
        states = [TabPollingState(f"tab-{i}") for i in range(tab_count)]
        tasks = [
            asyncio.create_task(self._poll_tab(i, states[i], duration_ms, token), name=f"surge-tab-{i}")
            for i in range(tab_count)
        ]
        self._tokens.add(token)
        self._tasks.update(tasks)
        try:
            outcomes = await asyncio.gather(*tasks, return_exceptions=True)
        finally:
            self._tokens.discard(token)
            self._tasks.difference_update(tasks)

        for outcome in outcomes:
            if isinstance(outcome, Exception):
                raise outcome
        result = summarize_polling(states)
        logger.info(
            "Polling finished: tabs=%d, total_requests=%d, efficiency=%.3f",
            result.summary.total_tabs, result.summary.total_requests, result.summary.efficiency,
        )
        return result

    def next_interval_ms(self) -> float:
        """Active tabs poll on the short interval, idle ones on the long one, plus jitter."""
        p = self._profile
        active = self._rng.random() < p.active_tab_probability
        base = p.active_interval_ms if active else p.idle_interval_ms
        return base + self._rng.random() * p.interval_jitter_ms

    async def _poll_tab(self, tab_id: int, state: TabPollingState, duration_ms: float, token: asyncio.Event) -> None:
        clock = self._clock
        start_ms = clock.now_ms()
        while not token.is_set():
            if clock.now_ms() - start_ms >= duration_ms:
                break
            request_start = clock.now_ms()
            try:
                await self._poll(tab_id)
            except Exception as e:  # noqa: BLE001
                logger.warning("Polling error for tab %d: %s", tab_id, e)
            else:
                state.record(clock.now_ms() - request_start)

            remaining = duration_ms - (clock.now_ms() - start_ms)
            if remaining <= 0:
                break
            await clock.sleep(min(self.next_interval_ms(), remaining))

    async def _simulated_poll(self, tab_id: int) -> list[str]:
        p = self._profile
        await self._clock.sleep(p.poll_latency.sample(self._rng))
        if self._rng.random() < p.poll_error_rate:
            raise ConnectionError("Network error")
        return ["new-poll", "schedule-change"] if self._rng.random() > 0.8 else []

    def cleanup(self) -> None:
        """Stop every running tab loop and cancel pending polls."""
        for token in self._tokens:
            token.set()
        cancelled = 0
        for task in self._tasks:
            if not task.done():
                task.cancel()
                cancelled += 1
        if cancelled:
            logger.debug("Cancelled %d pending polling tasks", cancelled)

    async def aclose(self) -> None:
        """cleanup() and wait until the cancelled loops have unwound."""
        self._closed = True
        tasks = list(self._tasks)
        self.cleanup()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
