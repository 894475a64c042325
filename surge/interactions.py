"""Concurrent interaction probes: simultaneous votes, joins and networking actions.

Unlike the load scheduler, every attempt of a scenario is launched at the same
instant; the point is to provoke conflicts, not to sustain throughput.
Contention is simulated with the failure rates of the SimulationProfile.
"""

from __future__ import annotations

import asyncio
import random
import string
import time
from typing import Awaitable, Callable

from .clock import Clock, DEFAULT_CLOCK
from .exceptions import ContentionError
from .logging_config import get_logger
from .metrics import summarize_by_scenario
from .models import (
    ConcurrentTestResult,
    LatencyRange,
    NetworkingOutcome,
    PollVoteOutcome,
    ScenarioName,
    ScenarioOutcome,
    ScenarioSummary,
    SessionJoinOutcome,
    SimulationProfile,
)

logger = get_logger("interactions")

Attempt = Callable[[int], Awaitable[ScenarioOutcome]]

NETWORKING_ACTIONS = ("connection-request", "profile-view", "search")


class ConcurrentInteractionTester:
    """Runs interaction scenarios and keeps every result for summaries."""

    def __init__(
        self,
        *,
        clock: Clock = DEFAULT_CLOCK,
        rng: random.Random | None = None,
        profile: SimulationProfile | None = None,
    ) -> None:
        self._clock = clock
        self._rng = rng or random.Random()
        self._profile = profile or SimulationProfile()
        self._results: list[ConcurrentTestResult] = []

    @property
    def results(self) -> list[ConcurrentTestResult]:
        return list(self._results)

    def clear(self) -> None:
        self._results.clear()

    def generate_summary(self) -> list[ScenarioSummary]:
        """One ScenarioSummary per scenario name seen so far."""
        return summarize_by_scenario(self._results)

    async def test_concurrent_poll_voting(self, user_count: int = 50) -> list[ConcurrentTestResult]:
        logger.info("Testing concurrent poll voting with %d users", user_count)
        poll_id = f"test-poll-{_epoch_ms()}"

        async def vote(user_id: int) -> ScenarioOutcome:
            p = self._profile
            option = p.vote_options[self._rng.randrange(len(p.vote_options))]
            await self._delay(p.vote_think)
            await self._delay(p.vote_submit)
            self._maybe_fail(p.vote_conflict_rate, "Vote conflict - poll already closed")
            self._maybe_fail(p.vote_network_error_rate, "Network error")
            return PollVoteOutcome(user_id=user_id, poll_id=poll_id, selected_option=option)

        return await self._launch(ScenarioName.POLL_VOTING, user_count, vote)

    async def test_concurrent_session_joining(self, user_count: int = 100) -> list[ConcurrentTestResult]:
        logger.info("Testing concurrent session joining with %d users", user_count)
        session_id = f"test-session-{_epoch_ms()}"

        async def join(user_id: int) -> ScenarioOutcome:
            p = self._profile
            await self._delay(p.join_latency)
            self._maybe_fail(p.session_full_rate, "Session is full")
            self._maybe_fail(p.join_timeout_rate, "Network timeout")
            return SessionJoinOutcome(user_id=user_id, session_id=session_id)

        return await self._launch(ScenarioName.SESSION_JOINING, user_count, join)

    async def test_concurrent_networking(self, user_count: int = 75) -> list[ConcurrentTestResult]:
        """Each user fires a connection request, a profile view and a search at once.

        The attempt succeeds only if all three sub-actions succeed.
        """
        logger.info("Testing concurrent networking interactions with %d users", user_count)

        async def bundle(user_id: int) -> ScenarioOutcome:
            p = self._profile
            target = self._rng.randrange(p.directory_size)
            query = random_query(self._rng)
            outcomes = await asyncio.gather(
                self._sub_action(p.connection_latency, p.connection_failure_rate),
                self._sub_action(p.profile_view_latency, p.profile_view_failure_rate),
                self._sub_action(p.search_latency, p.search_failure_rate),
            )
            failed = [name for name, ok in zip(NETWORKING_ACTIONS, outcomes) if not ok]
            if failed:
                raise ContentionError(
                    f"Networking action failed: {', '.join(failed)}",
                    context={"user_id": user_id},
                )
            # Only the connection request is applied optimistically
            return NetworkingOutcome(
                user_id=user_id,
                target_user_id=target,
                query=query,
                actions=len(outcomes),
                optimistic_updates=1,
            )

        return await self._launch(ScenarioName.NETWORKING, user_count, bundle)

    async def _launch(self, name: ScenarioName, user_count: int, attempt: Attempt) -> list[ConcurrentTestResult]:
        """Start every attempt at once and wait for all of them; results in user order."""
        tasks = [
            asyncio.create_task(self._attempt(name, user_id, attempt), name=f"surge-{name.value}-{user_id}")
            for user_id in range(user_count)
        ]
        results = list(await asyncio.gather(*tasks))
        self._results.extend(results)
        failed = sum(1 for r in results if not r.success)
        logger.info("%s finished: attempts=%d, failed=%d", name.value, len(results), failed)
        return results

    async def _attempt(self, name: ScenarioName, user_id: int, attempt: Attempt) -> ConcurrentTestResult:
        start_ms = self._clock.now_ms()
        try:
            outcome = await attempt(user_id)
        except ContentionError as e:
            return ConcurrentTestResult(
                test_name=name,
                start_time_ms=start_ms,
                end_time_ms=self._clock.now_ms(),
                success=False,
                error=e.message,
            )
        return ConcurrentTestResult(
            test_name=name,
            start_time_ms=start_ms,
            end_time_ms=self._clock.now_ms(),
            success=True,
            outcome=outcome,
        )

    async def _sub_action(self, latency: LatencyRange, failure_rate: float) -> bool:
        await self._delay(latency)
        return self._rng.random() >= failure_rate

    async def _delay(self, latency: LatencyRange) -> None:
        await self._clock.sleep(latency.sample(self._rng))

    def _maybe_fail(self, rate: float, message: str) -> None:
        if self._rng.random() < rate:
            raise ContentionError(message)


def random_query(rng: random.Random, length: int = 6) -> str:
    return "query-" + "".join(rng.choice(string.ascii_lowercase + string.digits) for _ in range(length))


def _epoch_ms() -> int:
    return int(time.time() * 1000)
