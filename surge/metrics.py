"""Result aggregation: exact percentiles, rates, threshold checks, memory sampling.

All reductions here are pure functions of their inputs; nothing reads global
state, so identical inputs always give identical outputs regardless of the
order results arrived in.
"""

from __future__ import annotations

import math
from collections import defaultdict
from typing import TYPE_CHECKING

import psutil

from .logging_config import get_logger
from .models import (
    ConcurrentTestResult,
    LoadTestConfig,
    LoadTestResult,
    MemoryUsage,
    NetworkStats,
    PollingResult,
    PollingSummary,
    RequestResult,
    ScenarioSummary,
    TabPollingState,
    TabSummary,
    ThresholdCheck,
    Thresholds,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

logger = get_logger("metrics")

P95 = 0.95
P99 = 0.99


def nearest_rank(sorted_values: Sequence[float], p: float) -> float:
    """Value at index floor(n * p) of an ascending sample (clamped). 0.0 if empty."""
    n = len(sorted_values)
    if n == 0:
        return 0.0
    idx = min(n - 1, int(math.floor(n * p)))
    return sorted_values[idx]


def _rate(part: float, whole: float, scale: float) -> float:
    return part / whole * scale if whole > 0 else 0.0


def aggregate_results(
    results: Iterable[RequestResult],
    config: LoadTestConfig,
    elapsed_ms: float,
    memory: MemoryUsage | None = None,
) -> LoadTestResult:
    """Reduce per-request results to a LoadTestResult.

    Percentiles, mean, min and max cover successful requests only; rates and
    cache counts cover every result. Empty and all-failed inputs produce
    zeros, never NaN.
    """
    total = 0
    failed = 0
    cache_hits = 0
    total_bytes = 0
    times: list[float] = []
    for r in results:
        total += 1
        if r.from_cache:
            cache_hits += 1
        if r.success:
            times.append(r.response_time_ms)
            total_bytes += r.response_size
        else:
            failed += 1
    times.sort()
    successful = len(times)

    return LoadTestResult(
        total_requests=total,
        successful_requests=successful,
        failed_requests=failed,
        average_response_time_ms=sum(times) / successful if successful else 0.0,
        min_response_time_ms=times[0] if times else 0.0,
        max_response_time_ms=times[-1] if times else 0.0,
        p95_response_time_ms=nearest_rank(times, P95),
        p99_response_time_ms=nearest_rank(times, P99),
        requests_per_second=_rate(total, elapsed_ms, 1000.0),
        error_rate_pct=_rate(failed, total, 100.0),
        throughput_bps=_rate(total_bytes, elapsed_ms, 1000.0),
        concurrent_users=config.concurrent_users,
        test_duration_ms=elapsed_ms,
        memory_usage=memory or MemoryUsage(),
        network_stats=NetworkStats(
            total_bytes=total_bytes,
            cache_hits=cache_hits,
            cache_misses=total - cache_hits,
        ),
    )


def evaluate_thresholds(result: LoadTestResult, thresholds: Thresholds) -> ThresholdCheck:
    return ThresholdCheck(
        error_rate_passed=result.error_rate_pct <= thresholds.error_rate_pct,
        avg_response_time_passed=result.average_response_time_ms <= thresholds.avg_response_time_ms,
        p95_response_time_passed=result.p95_response_time_ms <= thresholds.p95_response_time_ms,
    )


def threshold_violations(result: LoadTestResult, thresholds: Thresholds) -> list[str]:
    """Human-readable description of each failed threshold."""
    check = evaluate_thresholds(result, thresholds)
    violations: list[str] = []
    if not check.error_rate_passed:
        violations.append(
            f"Error rate {result.error_rate_pct:.2f}% exceeds threshold {thresholds.error_rate_pct}%"
        )
    if not check.avg_response_time_passed:
        violations.append(
            f"Average response time {result.average_response_time_ms:.1f}ms exceeds threshold "
            f"{thresholds.avg_response_time_ms}ms"
        )
    if not check.p95_response_time_passed:
        violations.append(
            f"P95 response time {result.p95_response_time_ms:.1f}ms exceeds threshold "
            f"{thresholds.p95_response_time_ms}ms"
        )
    return violations


def summarize_by_scenario(results: Iterable[ConcurrentTestResult]) -> list[ScenarioSummary]:
    """Group interaction results by test name (first-seen order) and summarize each group."""
    groups: dict[str, list[ConcurrentTestResult]] = defaultdict(list)
    for r in results:
        groups[r.test_name.value].append(r)

    summaries: list[ScenarioSummary] = []
    for name, group in groups.items():
        durations = [r.duration_ms for r in group]
        successful = sum(1 for r in group if r.success)
        summaries.append(
            ScenarioSummary(
                test_name=name,
                total_tests=len(group),
                successful=successful,
                failed=len(group) - successful,
                success_rate=100.0 * successful / len(group),
                average_duration_ms=sum(durations) / len(durations),
                min_duration_ms=min(durations),
                max_duration_ms=max(durations),
            )
        )
    return summaries


def summarize_tab(state: TabPollingState) -> TabSummary:
    times = state.response_times_ms
    return TabSummary(
        tab=state.tab,
        total_requests=state.request_count,
        average_response_time_ms=sum(times) / len(times) if times else 0.0,
        min_response_time_ms=min(times) if times else 0.0,
        max_response_time_ms=max(times) if times else 0.0,
    )


def summarize_polling(states: Sequence[TabPollingState]) -> PollingResult:
    """Per-tab summaries plus totals and the efficiency score.

    efficiency = (1000 / overall average response time) * average requests per tab,
    0 when either factor is 0.
    """
    tabs = [summarize_tab(s) for s in states]
    total_tabs = len(tabs)
    total_requests = sum(t.total_requests for t in tabs)
    avg_per_tab = total_requests / total_tabs if total_tabs else 0.0
    overall_avg = sum(t.average_response_time_ms for t in tabs) / total_tabs if total_tabs else 0.0
    efficiency = (1000.0 / overall_avg) * avg_per_tab if avg_per_tab > 0 and overall_avg > 0 else 0.0
    return PollingResult(
        tabs=tabs,
        summary=PollingSummary(
            total_tabs=total_tabs,
            total_requests=total_requests,
            average_requests_per_tab=avg_per_tab,
            overall_average_response_time_ms=overall_avg,
            efficiency=efficiency,
        ),
    )


class MemorySampler:
    """Tracks initial/peak/final resident memory of this process.

    Best-effort: when psutil cannot read the process, samples are 0 and the
    run continues.
    """

    __slots__ = ("_process", "_initial", "_peak", "_final", "_warned")

    def __init__(self) -> None:
        self._process: psutil.Process | None = None
        self._initial = 0
        self._peak = 0
        self._final = 0
        self._warned = False

    def _rss(self) -> int:
        try:
            if self._process is None:
                self._process = psutil.Process()
            return int(self._process.memory_info().rss)
        except (psutil.Error, OSError) as e:
            if not self._warned:
                logger.debug("Memory introspection unavailable: %s", e)
                self._warned = True
            return 0

    def start(self) -> int:
        self._initial = self._peak = self._rss()
        return self._initial

    def sample(self) -> int:
        current = self._rss()
        if current > self._peak:
            self._peak = current
        return current

    def stop(self) -> int:
        self._final = self.sample()
        return self._final

    def usage(self) -> MemoryUsage:
        return MemoryUsage(initial=self._initial, peak=self._peak, final=self._final)
