"""End-to-end tests for LoadTester with mocked HTTP and virtual time."""

from __future__ import annotations

import asyncio
import random
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from surge.engine import create_client
from surge.exceptions import SurgeConfigError
from surge.load_tester import LoadTester, run_load_test
from surge.metrics import MemorySampler
from surge.models import LoadProgress, LoadTestConfig, MemoryUsage, RequestResult, SimulationProfile

BASE_URL = "http://target.test"

SCENARIO_CONFIG = LoadTestConfig(
    concurrent_users=2,
    requests_per_user=2,
    duration_ms=1000,
    ramp_up_ms=100,
    endpoints=("/test",),
)


def _ok(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, content=b"{}")


def _reject(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("connection refused", request=request)


def _run(clock, config: LoadTestConfig, handler, **kwargs):
    async def run():
        async with create_client(base_url=BASE_URL, transport=httpx.MockTransport(handler)) as client:
            tester = LoadTester(config, client, clock=clock, rng=random.Random(5), **kwargs)
            return tester, await tester.run_load_test()

    return clock.run(run())


def test_all_requests_succeed(fake_clock) -> None:
    _, result = _run(fake_clock, SCENARIO_CONFIG, _ok)
    assert 1 <= result.total_requests <= 4
    assert result.error_rate_pct == 0.0
    assert result.failed_requests == 0
    assert result.concurrent_users == 2


def test_all_requests_rejected(fake_clock) -> None:
    _, result = _run(fake_clock, SCENARIO_CONFIG, _reject)
    assert result.total_requests >= 1
    assert result.failed_requests == result.total_requests
    assert result.error_rate_pct == 100.0
    assert result.p95_response_time_ms == 0.0


def test_server_errors_count_as_failures(fake_clock) -> None:
    config = LoadTestConfig(1, 4, 60_000, 0, ("/a", "/b"))
    tester, result = _run(fake_clock, config, lambda req: httpx.Response(500))
    assert result.total_requests == 4
    assert result.error_rate_pct == 100.0
    assert {r.status_code for r in tester.results} == {500}


def test_results_carry_endpoint_rotation_and_timestamps(fake_clock) -> None:
    config = LoadTestConfig(1, 4, 60_000, 0, ("/a", "/b"))
    tester, _ = _run(fake_clock, config, _ok)
    assert [r.endpoint for r in tester.results] == ["/a", "/b", "/a", "/b"]
    timestamps = [r.timestamp_ms for r in tester.results]
    assert timestamps == sorted(timestamps)
    assert timestamps[0] == 0.0


def test_duration_cutoff_bounds_requests(fake_clock) -> None:
    config = LoadTestConfig(3, 10_000, 5_000, 0, ("/test",))
    tester, result = _run(fake_clock, config, _ok)
    assert 3 <= result.total_requests < 30_000
    assert all(r.timestamp_ms <= 5_000 for r in tester.results)


def test_cache_header_and_bytes(fake_clock) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"x" * 50, headers={"Cache-Control": "no-cache"})

    _, result = _run(fake_clock, LoadTestConfig(1, 2, 60_000, 0, ("/",)), handler)
    assert result.network_stats.cache_hits == 2
    assert result.network_stats.cache_misses == 0
    assert result.network_stats.total_bytes == 100


def test_progress_counters_after_run(fake_clock) -> None:
    progress = LoadProgress()
    _run(fake_clock, LoadTestConfig(3, 2, 60_000, 30, ("/",)), _ok, progress=progress)
    assert progress.started_users == 3
    assert progress.finished_users == 3
    assert progress.completed == 6
    assert progress.failed == 0


def test_memory_usage_comes_from_sampler(fake_clock) -> None:
    sampler = MagicMock(spec=MemorySampler)
    sampler.usage.return_value = MemoryUsage(initial=1, peak=3, final=2)
    _, result = _run(fake_clock, LoadTestConfig(1, 2, 60_000, 0, ("/",)), _ok, memory_sampler=sampler)
    assert result.memory_usage == MemoryUsage(initial=1, peak=3, final=2)
    sampler.start.assert_called_once()
    sampler.stop.assert_called_once()
    assert sampler.sample.call_count == 2


def test_patched_executor_outcomes_give_exact_error_rate(fake_clock) -> None:
    outcomes = iter([True, False, True, True, False, True, True, True])

    async def fake_execute(client, endpoint, user_id, request_id, **kwargs):
        return RequestResult(user_id, request_id, endpoint, "GET", next(outcomes), 5.0)

    config = LoadTestConfig(2, 4, 60_000, 0, ("/",))
    with patch("surge.engine.execute_request", AsyncMock(side_effect=fake_execute)):
        _, result = _run(fake_clock, config, _ok)
    assert result.total_requests == 8
    assert result.failed_requests == 2
    assert result.error_rate_pct == 100 * (2 / 8)


def test_invalid_config_rejected() -> None:
    client = MagicMock()
    with pytest.raises(SurgeConfigError, match="endpoints must not be empty"):
        LoadTester(LoadTestConfig(1, 1, 1000, 0, ()), client)
    with pytest.raises(SurgeConfigError, match="concurrent_users"):
        LoadTester(LoadTestConfig(0, 1, 1000, 0, ("/",)), client)


def test_run_load_test_helper_with_real_clock() -> None:
    config = LoadTestConfig(2, 2, 2000, 10, ("/test",))

    class _NoThink(random.Random):
        def random(self) -> float:
            return 0.0

    result = asyncio.run(
        run_load_test(
            config,
            BASE_URL,
            rng=_NoThink(),
            profile=SimulationProfile(think_time_max_ms=0),
            transport=httpx.MockTransport(_ok),
        )
    )
    assert result.total_requests == 4
    assert result.successful_requests == 4
    assert result.requests_per_second > 0
