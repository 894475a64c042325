"""LoadTester: one load run from config to aggregate result."""

from __future__ import annotations

import random

import httpx

from . import engine
from .clock import Clock, DEFAULT_CLOCK, elapsed_ms
from .config import validate_load_config
from .logging_config import get_logger
from .metrics import MemorySampler, aggregate_results
from .models import LoadProgress, LoadTestConfig, LoadTestResult, RequestResult, SimulationProfile
from .scheduler import run_virtual_users

logger = get_logger("load_tester")


class LoadTester:
    """
    Drives `concurrent_users` staggered virtual users against a target and
    reduces their results once every user has finished.

    The HTTP client is owned by the caller; one tester runs one config and
    can be run repeatedly.
    """

    def __init__(
        self,
        config: LoadTestConfig,
        client: httpx.AsyncClient,
        *,
        clock: Clock = DEFAULT_CLOCK,
        rng: random.Random | None = None,
        profile: SimulationProfile | None = None,
        progress: LoadProgress | None = None,
        memory_sampler: MemorySampler | None = None,
    ) -> None:
        validate_load_config(config)
        self.config = config
        self._client = client
        self._clock = clock
        self._rng = rng or random.Random()
        self._profile = profile or SimulationProfile()
        self.progress = progress or LoadProgress()
        self._memory = memory_sampler or MemorySampler()
        self._results: list[RequestResult] = []

    @property
    def results(self) -> list[RequestResult]:
        """Raw results of the last completed run."""
        return self._results

    async def run_load_test(self) -> LoadTestResult:
        config = self.config
        clock = self._clock
        memory = self._memory
        logger.info(
            "Starting load test: users=%s, requests_per_user=%s, duration_ms=%s, ramp_up_ms=%s",
            config.concurrent_users, config.requests_per_user, config.duration_ms, config.ramp_up_ms,
        )
        memory.start()
        start_ms = clock.now_ms()

        async def execute(endpoint: str, user_id: int, request_id: int) -> RequestResult:
            result = await engine.execute_request(
                self._client,
                endpoint,
                user_id,
                request_id,
                test_start_ms=start_ms,
                payload_size=config.payload_size,
                rng=self._rng,
                get_ratio=self._profile.get_ratio,
                clock=clock,
            )
            memory.sample()
            return result

        results = await run_virtual_users(
            config,
            execute,
            start_ms,
            clock=clock,
            rng=self._rng,
            think_time_max_ms=self._profile.think_time_max_ms,
            progress=self.progress,
        )
        duration = elapsed_ms(clock, start_ms)
        memory.stop()
        self._results = results

        result = aggregate_results(results, config, duration, memory.usage())
        logger.info(
            "Load test finished: total_requests=%s, rps=%.1f, error_rate_pct=%.2f, p95_ms=%.1f",
            result.total_requests, result.requests_per_second, result.error_rate_pct, result.p95_response_time_ms,
        )
        return result


async def run_load_test(
    config: LoadTestConfig,
    base_url: str = "",
    *,
    clock: Clock = DEFAULT_CLOCK,
    rng: random.Random | None = None,
    profile: SimulationProfile | None = None,
    progress: LoadProgress | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> LoadTestResult:
    """Create a client for base_url, run one load test, close the client."""
    async with engine.create_client(base_url=base_url, transport=transport) as client:
        tester = LoadTester(config, client, clock=clock, rng=rng, profile=profile, progress=progress)
        return await tester.run_load_test()
