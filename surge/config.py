"""YAML configuration loader and validation for surge runs."""

from __future__ import annotations

import dataclasses
from pathlib import Path
from typing import Any

import yaml

from .exceptions import SurgeConfigError
from .logging_config import get_logger
from .models import (
    DEFAULT_ENDPOINTS,
    DEFAULT_SCENARIOS,
    LatencyRange,
    LoadTestConfig,
    ScenarioSpec,
    SimulationProfile,
    StressPlan,
    Thresholds,
)

logger = get_logger("config")


def validate_load_config(c: LoadTestConfig) -> None:
    """Validate LoadTestConfig bounds. Raises SurgeConfigError if invalid."""
    if c.concurrent_users < 1:
        raise SurgeConfigError("concurrent_users must be >= 1")
    if c.requests_per_user < 1:
        raise SurgeConfigError("requests_per_user must be >= 1")
    if c.duration_ms <= 0:
        raise SurgeConfigError("duration_ms must be > 0")
    if c.ramp_up_ms < 0:
        raise SurgeConfigError("ramp_up_ms must be >= 0")
    if not c.endpoints:
        raise SurgeConfigError("endpoints must not be empty")
    if c.payload_size is not None and c.payload_size < 0:
        raise SurgeConfigError("payload_size must be >= 0 when set")


def validate_simulation(p: SimulationProfile) -> None:
    for name, value in p.rates().items():
        if not 0.0 <= value <= 1.0:
            raise SurgeConfigError(f"simulation.{name} must be between 0 and 1", context={name: value})
    for name, window in p.latencies().items():
        if window.min_ms < 0 or window.max_ms < window.min_ms:
            raise SurgeConfigError(
                f"simulation.{name} must satisfy 0 <= min <= max",
                context={name: [window.min_ms, window.max_ms]},
            )
    if p.think_time_max_ms < 0:
        raise SurgeConfigError("simulation.think_time_max_ms must be >= 0")
    if p.active_interval_ms <= 0 or p.idle_interval_ms <= 0:
        raise SurgeConfigError("simulation polling intervals must be > 0")
    if p.interval_jitter_ms < 0:
        raise SurgeConfigError("simulation.interval_jitter_ms must be >= 0")
    if not p.vote_options:
        raise SurgeConfigError("simulation.vote_options must not be empty")


def validate_plan(plan: StressPlan) -> None:
    """Validate a StressPlan. Raises SurgeConfigError if invalid."""
    if not plan.base_url.strip():
        raise SurgeConfigError("base_url must not be empty")
    if not plan.scenarios:
        raise SurgeConfigError("at least one scenario is required")
    if not plan.endpoints:
        raise SurgeConfigError("endpoints must not be empty")
    names: set[str] = set()
    for s in plan.scenarios:
        if s.name in names:
            raise SurgeConfigError(f"duplicate scenario name: {s.name}")
        names.add(s.name)
        validate_load_config(scenario_load_config(s, plan))
    t = plan.thresholds
    if t.error_rate_pct < 0 or t.error_rate_pct > 100:
        raise SurgeConfigError("thresholds.error_rate must be between 0 and 100")
    if t.avg_response_time_ms <= 0 or t.p95_response_time_ms <= 0:
        raise SurgeConfigError("response time thresholds must be > 0")
    if plan.startup_timeout_seconds <= 0 or plan.startup_poll_seconds <= 0:
        raise SurgeConfigError("startup timeout and poll interval must be > 0")
    for key in ("poll_voting_users", "session_joining_users", "networking_users", "polling_tabs"):
        if getattr(plan, key) < 1:
            raise SurgeConfigError(f"{key} must be >= 1")
    if plan.polling_duration_seconds <= 0:
        raise SurgeConfigError("polling_duration_seconds must be > 0")
    validate_simulation(plan.simulation)


def scenario_load_config(spec: ScenarioSpec, plan: StressPlan) -> LoadTestConfig:
    """LoadTestConfig for one scenario of the plan (seconds converted to ms)."""
    return LoadTestConfig(
        concurrent_users=spec.users,
        requests_per_user=spec.requests_per_user,
        duration_ms=spec.duration_seconds * 1000.0,
        ramp_up_ms=spec.ramp_up_seconds * 1000.0,
        endpoints=plan.endpoints,
        payload_size=plan.payload_size,
    )


def load_plan(path: str | Path) -> StressPlan:
    """Load a stress plan from a YAML file.

    Args:
        path: Path to YAML plan

    Returns:
        Validated StressPlan instance

    Raises:
        SurgeConfigError: If file not found, invalid YAML, or validation fails
    """
    p = Path(path)
    if not p.exists():
        raise SurgeConfigError(f"Config file not found: {path}", context={"path": str(path)})

    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        logger.exception("Failed to parse YAML config file")
        raise SurgeConfigError(
            f"Invalid YAML syntax in config file: {e}",
            context={"path": str(path)},
            original_error=e,
        ) from e
    except OSError as e:
        logger.exception("Failed to read config file")
        raise SurgeConfigError(
            f"Cannot read config file: {e}",
            context={"path": str(path)},
            original_error=e,
        ) from e

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise SurgeConfigError(
            "Config must be a YAML object/dictionary",
            context={"path": str(path), "actual_type": type(raw).__name__},
        )
    try:
        plan = plan_from_dict(raw)
    except SurgeConfigError as e:
        raise e.with_context(path=str(path))
    logger.debug("Loaded plan: base_url=%s, scenarios=%s", plan.base_url, [s.name for s in plan.scenarios])
    return plan


def plan_from_dict(raw: dict[str, Any]) -> StressPlan:
    """Build and validate a StressPlan from a parsed mapping; omitted keys take defaults."""
    defaults = StressPlan()
    try:
        scenarios = _scenarios(raw.get("scenarios"))
        raw_endpoints = raw.get("endpoints")
        endpoints = DEFAULT_ENDPOINTS if raw_endpoints is None else tuple(str(e) for e in raw_endpoints)
        interactions = raw.get("interactions") or {}
        polling = raw.get("polling") or {}
        startup = raw.get("startup") or {}
        plan = StressPlan(
            base_url=str(raw.get("base_url", defaults.base_url)).rstrip("/"),
            scenarios=scenarios,
            endpoints=endpoints,
            thresholds=_thresholds(raw.get("thresholds") or {}),
            payload_size=_optional_int(raw, "payload_size"),
            build_command=_command(raw, "build_command", defaults.build_command),
            serve_command=_command(raw, "serve_command", defaults.serve_command),
            startup_timeout_seconds=float(startup.get("timeout_seconds", defaults.startup_timeout_seconds)),
            startup_poll_seconds=float(startup.get("poll_seconds", defaults.startup_poll_seconds)),
            poll_voting_users=int(interactions.get("poll_voting_users", defaults.poll_voting_users)),
            session_joining_users=int(interactions.get("session_joining_users", defaults.session_joining_users)),
            networking_users=int(interactions.get("networking_users", defaults.networking_users)),
            polling_tabs=int(polling.get("tabs", defaults.polling_tabs)),
            polling_duration_seconds=float(polling.get("duration_seconds", defaults.polling_duration_seconds)),
            simulation=_simulation(raw.get("simulation") or {}),
            seed=_optional_int(raw, "seed"),
        )
    except KeyError as e:
        raise SurgeConfigError(f"Missing required config key: {e}", original_error=e) from e
    except (TypeError, ValueError, AttributeError) as e:
        raise SurgeConfigError(f"Invalid config value: {e}", original_error=e) from e

    validate_plan(plan)
    return plan


def _scenarios(raw: Any) -> tuple[ScenarioSpec, ...]:
    if raw is None:
        return DEFAULT_SCENARIOS
    if not isinstance(raw, list):
        raise SurgeConfigError("scenarios must be a list")
    out: list[ScenarioSpec] = []
    for i, item in enumerate(raw):
        if not isinstance(item, dict):
            raise SurgeConfigError(f"scenario #{i} must be a mapping")
        out.append(
            ScenarioSpec(
                name=str(item.get("name") or f"scenario-{i + 1}"),
                users=int(item["users"]),
                duration_seconds=float(item.get("duration", 60)),
                ramp_up_seconds=float(item.get("ramp_up", 10)),
                requests_per_user=int(item.get("requests_per_user", 1000)),
            )
        )
    return tuple(out)


def _thresholds(raw: dict[str, Any]) -> Thresholds:
    d = Thresholds()
    return Thresholds(
        error_rate_pct=float(raw.get("error_rate", d.error_rate_pct)),
        avg_response_time_ms=float(raw.get("avg_response_time", d.avg_response_time_ms)),
        p95_response_time_ms=float(raw.get("p95_response_time", d.p95_response_time_ms)),
    )


def _simulation(raw: dict[str, Any]) -> SimulationProfile:
    """Apply YAML overrides onto the default profile. Unknown keys are ignored."""
    base = SimulationProfile()
    known = {f.name for f in dataclasses.fields(SimulationProfile)}
    latency_keys = set(base.latencies())
    overrides: dict[str, Any] = {}
    for key, value in raw.items():
        if key not in known:
            logger.debug("Ignoring unknown simulation key '%s'", key)
            continue
        if key in latency_keys:
            lo, hi = value
            overrides[key] = LatencyRange(float(lo), float(hi))
        elif key == "vote_options":
            overrides[key] = tuple(str(v) for v in value)
        elif key == "directory_size":
            overrides[key] = int(value)
        else:
            overrides[key] = float(value)
    return dataclasses.replace(base, **overrides)


def _command(data: dict[str, Any], key: str, default: tuple[str, ...] | None) -> tuple[str, ...] | None:
    if key not in data:
        return default
    v = data[key]
    if v is None or v == "" or v == []:
        return None
    if isinstance(v, str):
        return tuple(v.split())
    return tuple(str(part) for part in v)


def _optional_int(data: dict[str, Any], key: str) -> int | None:
    v = data.get(key)
    if v is None:
        return None
    try:
        return int(v)
    except (TypeError, ValueError) as e:
        raise SurgeConfigError(f"{key} must be an integer, got {v!r}", context={"key": key}, original_error=e) from e
