"""Unit tests for plan loading and validation."""

from __future__ import annotations

import dataclasses
from pathlib import Path

import pytest

from surge.config import load_plan, plan_from_dict, scenario_load_config, validate_load_config, validate_plan
from surge.exceptions import SurgeConfigError
from surge.models import (
    DEFAULT_ENDPOINTS,
    DEFAULT_SCENARIOS,
    LatencyRange,
    LoadTestConfig,
    ScenarioSpec,
    SimulationProfile,
    StressPlan,
)


def test_load_plan_file_not_found() -> None:
    with pytest.raises(SurgeConfigError, match="Config file not found"):
        load_plan("/nonexistent/plan.yaml")


def test_load_plan_valid(tmp_path_plan: Path) -> None:
    plan = load_plan(tmp_path_plan)
    assert plan.base_url == "http://localhost:4173"
    assert [s.name for s in plan.scenarios] == ["smoke", "burst"]
    smoke, burst = plan.scenarios
    assert smoke == ScenarioSpec("smoke", users=5, duration_seconds=2, ramp_up_seconds=1, requests_per_user=3)
    assert burst.ramp_up_seconds == 0
    assert burst.requests_per_user == 1000
    assert plan.endpoints == ("/health", "/api/items")
    assert plan.thresholds.error_rate_pct == 1
    assert plan.thresholds.avg_response_time_ms == 200
    assert plan.thresholds.p95_response_time_ms == 400
    assert plan.payload_size == 64
    assert plan.build_command == ("make", "build")
    assert plan.serve_command == ("python", "-m", "http.server", "4173")
    assert plan.startup_timeout_seconds == 10
    assert plan.startup_poll_seconds == 0.5
    assert plan.poll_voting_users == 10
    assert plan.session_joining_users == 12
    assert plan.networking_users == 8
    assert plan.polling_tabs == 3
    assert plan.polling_duration_seconds == 5
    assert plan.simulation.get_ratio == 0.5
    assert plan.simulation.vote_conflict_rate == 0.2
    assert plan.simulation.poll_latency == LatencyRange(10, 20)
    assert plan.simulation.session_full_rate == SimulationProfile().session_full_rate
    assert plan.seed == 42


def test_load_plan_empty_file_uses_defaults(tmp_path: Path) -> None:
    p = tmp_path / "empty.yaml"
    p.write_text("")
    plan = load_plan(p)
    assert plan.scenarios == DEFAULT_SCENARIOS
    assert plan.endpoints == DEFAULT_ENDPOINTS
    assert plan.base_url == "http://localhost:3000"
    assert plan.build_command == ("npm", "run", "build")
    assert plan.serve_command == ("npm", "run", "preview")


def test_load_plan_invalid_yaml(tmp_path: Path) -> None:
    bad = tmp_path / "bad.yaml"
    bad.write_text("not: valid: yaml: [")
    with pytest.raises(SurgeConfigError, match="Invalid YAML syntax"):
        load_plan(bad)


def test_load_plan_not_a_mapping(tmp_path: Path) -> None:
    bad = tmp_path / "list.yaml"
    bad.write_text("- a\n- b\n")
    with pytest.raises(SurgeConfigError, match="must be a YAML object"):
        load_plan(bad)


def test_load_plan_validation_error_carries_path(tmp_path: Path) -> None:
    bad = tmp_path / "zero.yaml"
    bad.write_text("scenarios:\n  - name: x\n    users: 0\n")
    with pytest.raises(SurgeConfigError, match="concurrent_users must be >= 1") as exc:
        load_plan(bad)
    assert exc.value.context["path"] == str(bad)


def test_plan_missing_users_key() -> None:
    with pytest.raises(SurgeConfigError, match="Missing required config key"):
        plan_from_dict({"scenarios": [{"name": "x", "duration": 5}]})


def test_plan_invalid_value() -> None:
    with pytest.raises(SurgeConfigError, match="Invalid config value"):
        plan_from_dict({"scenarios": [{"name": "x", "users": "many"}]})


def test_plan_empty_endpoints_list_is_rejected() -> None:
    with pytest.raises(SurgeConfigError, match="endpoints must not be empty"):
        plan_from_dict({"endpoints": []})


def test_plan_null_endpoints_take_defaults() -> None:
    assert plan_from_dict({"endpoints": None}).endpoints == DEFAULT_ENDPOINTS


@pytest.mark.parametrize("key", ["seed", "payload_size"])
def test_plan_non_integer_value_is_rejected(key: str) -> None:
    with pytest.raises(SurgeConfigError, match=f"{key} must be an integer") as exc:
        plan_from_dict({key: "big"})
    assert exc.value.context["key"] == key


def test_plan_duplicate_scenario_names() -> None:
    with pytest.raises(SurgeConfigError, match="duplicate scenario name"):
        plan_from_dict({"scenarios": [{"name": "a", "users": 1}, {"name": "a", "users": 2}]})


def test_plan_null_commands_disable_build_and_serve() -> None:
    plan = plan_from_dict({"build_command": None, "serve_command": ""})
    assert plan.build_command is None
    assert plan.serve_command is None


def test_plan_rate_out_of_range() -> None:
    with pytest.raises(SurgeConfigError, match="simulation.vote_conflict_rate must be between 0 and 1"):
        plan_from_dict({"simulation": {"vote_conflict_rate": 1.5}})


def test_plan_bad_latency_window() -> None:
    with pytest.raises(SurgeConfigError, match="simulation.join_latency"):
        plan_from_dict({"simulation": {"join_latency": [300, 100]}})


def test_plan_unknown_simulation_key_ignored() -> None:
    assert plan_from_dict({"simulation": {"warp_factor": 9}}).simulation == SimulationProfile()


def test_plan_threshold_out_of_range() -> None:
    with pytest.raises(SurgeConfigError, match="thresholds.error_rate"):
        plan_from_dict({"thresholds": {"error_rate": 150}})


def test_validate_plan_empty_base_url() -> None:
    with pytest.raises(SurgeConfigError, match="base_url must not be empty"):
        validate_plan(StressPlan(base_url=" "))


def test_validate_plan_polling_tabs() -> None:
    with pytest.raises(SurgeConfigError, match="polling_tabs must be >= 1"):
        validate_plan(StressPlan(polling_tabs=0))


def test_scenario_load_config_converts_seconds() -> None:
    plan = StressPlan(endpoints=("/x",), payload_size=10)
    config = scenario_load_config(ScenarioSpec("s", users=3, duration_seconds=1.5, ramp_up_seconds=0.5), plan)
    assert config == LoadTestConfig(
        concurrent_users=3,
        requests_per_user=1000,
        duration_ms=1500.0,
        ramp_up_ms=500.0,
        endpoints=("/x",),
        payload_size=10,
    )


@pytest.mark.parametrize(
    "changes,match",
    [
        ({"concurrent_users": 0}, "concurrent_users"),
        ({"requests_per_user": 0}, "requests_per_user"),
        ({"duration_ms": 0}, "duration_ms"),
        ({"ramp_up_ms": -1}, "ramp_up_ms"),
        ({"endpoints": ()}, "endpoints must not be empty"),
        ({"payload_size": -5}, "payload_size"),
    ],
)
def test_validate_load_config_rejects(changes: dict, match: str) -> None:
    base = LoadTestConfig(2, 2, 1000, 100, ("/test",))
    with pytest.raises(SurgeConfigError, match=match):
        validate_load_config(dataclasses.replace(base, **changes))


def test_validate_load_config_accepts_valid() -> None:
    validate_load_config(LoadTestConfig(2, 2, 1000, 0, ("/test",), payload_size=0))
