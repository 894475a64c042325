"""Integration tests for the suite runner with mocked HTTP and virtual time."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, patch

import httpx
import orjson
import pytest

from surge.exceptions import SurgeSetupError
from surge.models import ScenarioSpec, SimulationProfile, StressPlan, Suite
from surge.report import INTERACTIONS_JSON, MARKDOWN_REPORT, METRICS_CSV, POLLING_JSON, SUMMARY_JSON
from surge.runner import run_polling_suite, run_stress_suite, run_suites

PLAN = StressPlan(
    base_url="http://target.test",
    scenarios=(
        ScenarioSpec("warmup", users=3, duration_seconds=2, ramp_up_seconds=1, requests_per_user=5),
        ScenarioSpec("burst", users=10, duration_seconds=1, ramp_up_seconds=0, requests_per_user=3),
    ),
    endpoints=("/dashboard", "/polls"),
    build_command=None,
    serve_command=None,
    startup_timeout_seconds=5,
    poll_voting_users=6,
    session_joining_users=7,
    networking_users=4,
    polling_tabs=2,
    polling_duration_seconds=1,
    seed=1234,
)


def _ok(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, content=b"ok")


def test_stress_suite_writes_reports_and_passes(fake_clock, tmp_path: Path) -> None:
    summary = fake_clock.run(
        run_stress_suite(PLAN, tmp_path, live=False, clock=fake_clock, transport=httpx.MockTransport(_ok))
    )
    assert [s.spec.name for s in summary.scenarios] == ["warmup", "burst"]
    assert summary.overall_passed
    warmup = summary.scenarios[0].result
    assert 1 <= warmup.total_requests <= 15
    assert warmup.error_rate_pct == 0.0
    for name in (SUMMARY_JSON, MARKDOWN_REPORT, METRICS_CSV):
        assert (tmp_path / name).exists()
    data = orjson.loads((tmp_path / SUMMARY_JSON).read_bytes())
    assert data["overall_passed"] is True


def test_stress_suite_threshold_failure(fake_clock, tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/":
            return httpx.Response(200)
        return httpx.Response(500)

    summary = fake_clock.run(
        run_stress_suite(PLAN, tmp_path, live=False, clock=fake_clock, transport=httpx.MockTransport(handler))
    )
    assert not summary.overall_passed
    assert all(s.result.error_rate_pct == 100.0 for s in summary.scenarios)
    assert "FAILED" in (tmp_path / MARKDOWN_REPORT).read_text(encoding="utf-8")


def test_stress_suite_target_never_ready(fake_clock, tmp_path: Path) -> None:
    with pytest.raises(SurgeSetupError, match="Server failed to start within timeout"):
        fake_clock.run(
            run_stress_suite(
                PLAN, tmp_path, live=False, clock=fake_clock,
                transport=httpx.MockTransport(lambda req: httpx.Response(503)),
            )
        )
    assert not (tmp_path / SUMMARY_JSON).exists()


def test_stress_suite_skips_build_when_asked(fake_clock, tmp_path: Path) -> None:
    plan = StressPlan(
        base_url=PLAN.base_url,
        scenarios=PLAN.scenarios[:1],
        build_command=("npm", "run", "build"),
        serve_command=None,
    )
    with patch("surge.server.run_build", AsyncMock()) as run_build:
        fake_clock.run(
            run_stress_suite(
                plan, tmp_path, build=False, live=False, clock=fake_clock, transport=httpx.MockTransport(_ok),
            )
        )
    run_build.assert_not_called()


def test_interactions_suite_via_run_suites(fake_clock, tmp_path: Path) -> None:
    summary = fake_clock.run(run_suites(PLAN, tmp_path, Suite.INTERACTIONS, live=False, clock=fake_clock))
    assert summary is None
    data = orjson.loads((tmp_path / INTERACTIONS_JSON).read_bytes())
    assert [s["test_name"] for s in data["summary"]] == ["poll-voting", "session-joining", "networking-interactions"]
    assert [s["total_tests"] for s in data["summary"]] == [6, 7, 4]
    assert len(data["results"]) == 17
    assert not (tmp_path / SUMMARY_JSON).exists()


def test_polling_suite(fake_clock, tmp_path: Path) -> None:
    plan = StressPlan(polling_tabs=2, polling_duration_seconds=1, simulation=SimulationProfile(poll_error_rate=0.0))
    result = fake_clock.run(run_polling_suite(plan, tmp_path, live=False, clock=fake_clock))
    assert result.summary.total_tabs == 2
    assert result.summary.total_requests == 2
    data = orjson.loads((tmp_path / POLLING_JSON).read_bytes())
    assert data["duration_seconds"] == 1
    assert data["summary"]["total_tabs"] == 2


def test_run_suites_all(fake_clock, tmp_path: Path) -> None:
    summary = fake_clock.run(
        run_suites(PLAN, tmp_path, Suite.ALL, live=False, clock=fake_clock, transport=httpx.MockTransport(_ok))
    )
    assert summary is not None
    for name in (SUMMARY_JSON, MARKDOWN_REPORT, METRICS_CSV, INTERACTIONS_JSON, POLLING_JSON):
        assert (tmp_path / name).exists()


def test_scenario_logs_are_tagged_with_suite_and_scenario(fake_clock, tmp_path: Path, caplog) -> None:
    plan = StressPlan(base_url=PLAN.base_url, scenarios=PLAN.scenarios[:1], build_command=None, serve_command=None)
    with caplog.at_level("INFO", logger="surge.runner"):
        fake_clock.run(
            run_suites(plan, tmp_path, Suite.STRESS, live=False, clock=fake_clock, transport=httpx.MockTransport(_ok))
        )
    started = [r for r in caplog.records if r.getMessage().startswith("Running scenario warmup")]
    assert len(started) == 1
    assert started[0].suite == "stress"
    assert started[0].scenario == "warmup"
