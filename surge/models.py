"""Data models for surge.

- __slots__ on hot-path classes (one RequestResult per HTTP attempt)
- frozen dataclasses for derived results; they are never mutated after computation
- str Enum for the closed set of interaction scenario names
"""

from __future__ import annotations

import random
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, ClassVar, Union


class ScenarioName(str, Enum):
    """Concurrent interaction scenario tags."""

    POLL_VOTING = "poll-voting"
    SESSION_JOINING = "session-joining"
    NETWORKING = "networking-interactions"


class Suite(str, Enum):
    """What the CLI runs."""

    STRESS = "stress"
    INTERACTIONS = "interactions"
    POLLING = "polling"
    ALL = "all"


@dataclass(frozen=True, slots=True)
class LatencyRange:
    """Uniform latency window in milliseconds."""

    min_ms: float
    max_ms: float

    def sample(self, rng: random.Random) -> float:
        return self.min_ms + rng.random() * (self.max_ms - self.min_ms)


@dataclass(frozen=True, slots=True)
class SimulationProfile:
    """Tunable traffic shape and failure-injection rates.

    Defaults approximate a read-heavy web client: 80% GET traffic, up to one
    second of think time, a few percent of contention failures per scenario
    and tabs that are active 70% of the time (30 s polls) or idle (120 s polls).
    Rates are probabilities in [0, 1]; latencies and intervals are in ms.
    """

    get_ratio: float = 0.8
    think_time_max_ms: float = 1000.0
    # poll-voting
    vote_think: LatencyRange = LatencyRange(50, 250)
    vote_submit: LatencyRange = LatencyRange(100, 400)
    vote_conflict_rate: float = 0.05
    vote_network_error_rate: float = 0.02
    vote_options: tuple[str, ...] = ("option1", "option2", "option3", "option4")
    # session-joining
    join_latency: LatencyRange = LatencyRange(50, 250)
    session_full_rate: float = 0.10
    join_timeout_rate: float = 0.03
    # networking-interactions
    connection_latency: LatencyRange = LatencyRange(25, 175)
    connection_failure_rate: float = 0.05
    profile_view_latency: LatencyRange = LatencyRange(10, 110)
    profile_view_failure_rate: float = 0.02
    search_latency: LatencyRange = LatencyRange(50, 300)
    search_failure_rate: float = 0.01
    directory_size: int = 1000
    # multi-tab polling
    poll_latency: LatencyRange = LatencyRange(100, 600)
    poll_error_rate: float = 0.01
    active_tab_probability: float = 0.7
    active_interval_ms: float = 30_000.0
    idle_interval_ms: float = 120_000.0
    interval_jitter_ms: float = 5_000.0

    def rates(self) -> dict[str, float]:
        """All probability fields, for validation."""
        return {
            "get_ratio": self.get_ratio,
            "vote_conflict_rate": self.vote_conflict_rate,
            "vote_network_error_rate": self.vote_network_error_rate,
            "session_full_rate": self.session_full_rate,
            "join_timeout_rate": self.join_timeout_rate,
            "connection_failure_rate": self.connection_failure_rate,
            "profile_view_failure_rate": self.profile_view_failure_rate,
            "search_failure_rate": self.search_failure_rate,
            "poll_error_rate": self.poll_error_rate,
            "active_tab_probability": self.active_tab_probability,
        }

    def latencies(self) -> dict[str, LatencyRange]:
        return {
            "vote_think": self.vote_think,
            "vote_submit": self.vote_submit,
            "join_latency": self.join_latency,
            "connection_latency": self.connection_latency,
            "profile_view_latency": self.profile_view_latency,
            "search_latency": self.search_latency,
            "poll_latency": self.poll_latency,
        }


@dataclass(frozen=True, slots=True)
class LoadTestConfig:
    """Input for one load run. Immutable after creation."""

    concurrent_users: int
    requests_per_user: int
    duration_ms: float
    ramp_up_ms: float
    endpoints: tuple[str, ...]
    payload_size: int | None = None

    def endpoint_for(self, request_index: int) -> str:
        """Round-robin endpoint selection."""
        return self.endpoints[request_index % len(self.endpoints)]


class RequestResult:
    """Result of a single HTTP attempt.

    The most allocated object during a run, hence __slots__.
    """

    __slots__ = (
        "user_id", "request_id", "endpoint", "method", "success", "status_code",
        "response_time_ms", "response_size", "timestamp_ms", "from_cache", "error",
    )

    def __init__(
        self,
        user_id: int,
        request_id: int,
        endpoint: str,
        method: str,
        success: bool,
        response_time_ms: float,
        status_code: int | None = None,
        response_size: int = 0,
        timestamp_ms: float = 0.0,
        from_cache: bool = False,
        error: str | None = None,
    ) -> None:
        self.user_id = user_id
        self.request_id = request_id
        self.endpoint = endpoint
        self.method = method
        self.success = success
        self.status_code = status_code
        self.response_time_ms = response_time_ms
        self.response_size = response_size
        self.timestamp_ms = timestamp_ms
        self.from_cache = from_cache
        self.error = error

    def __repr__(self) -> str:
        return (
            f"RequestResult(user={self.user_id}, req={self.request_id}, {self.method} {self.endpoint!r}, "
            f"status={self.status_code}, time_ms={self.response_time_ms:.2f}, success={self.success})"
        )


@dataclass(frozen=True, slots=True)
class MemoryUsage:
    """Process memory in bytes. Zero when the platform exposes nothing."""

    initial: int = 0
    peak: int = 0
    final: int = 0


@dataclass(frozen=True, slots=True)
class NetworkStats:
    total_bytes: int = 0
    cache_hits: int = 0
    cache_misses: int = 0


@dataclass(frozen=True, slots=True)
class LoadTestResult:
    """Aggregate statistics for one load run."""

    total_requests: int
    successful_requests: int
    failed_requests: int
    average_response_time_ms: float
    min_response_time_ms: float
    max_response_time_ms: float
    p95_response_time_ms: float
    p99_response_time_ms: float
    requests_per_second: float
    error_rate_pct: float
    throughput_bps: float
    concurrent_users: int
    test_duration_ms: float
    memory_usage: MemoryUsage = field(default_factory=MemoryUsage)
    network_stats: NetworkStats = field(default_factory=NetworkStats)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# --- Concurrent interaction outcomes (one variant per scenario) ---


@dataclass(frozen=True, slots=True)
class PollVoteOutcome:
    kind: ClassVar[ScenarioName] = ScenarioName.POLL_VOTING

    user_id: int
    poll_id: str
    selected_option: str
    optimistic_update: bool = True


@dataclass(frozen=True, slots=True)
class SessionJoinOutcome:
    kind: ClassVar[ScenarioName] = ScenarioName.SESSION_JOINING

    user_id: int
    session_id: str
    optimistic_update: bool = True


@dataclass(frozen=True, slots=True)
class NetworkingOutcome:
    kind: ClassVar[ScenarioName] = ScenarioName.NETWORKING

    user_id: int
    target_user_id: int
    query: str
    actions: int
    optimistic_updates: int


ScenarioOutcome = Union[PollVoteOutcome, SessionJoinOutcome, NetworkingOutcome]


@dataclass(frozen=True, slots=True)
class ConcurrentTestResult:
    """One simultaneous interaction attempt."""

    test_name: ScenarioName
    start_time_ms: float
    end_time_ms: float
    success: bool
    error: str | None = None
    outcome: ScenarioOutcome | None = None

    @property
    def duration_ms(self) -> float:
        return self.end_time_ms - self.start_time_ms

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "test_name": self.test_name.value,
            "start_time_ms": self.start_time_ms,
            "end_time_ms": self.end_time_ms,
            "duration_ms": self.duration_ms,
            "success": self.success,
            "error": self.error,
            "outcome": None,
        }
        if self.outcome is not None:
            out["outcome"] = {"kind": self.outcome.kind.value, **asdict(self.outcome)}
        return out


@dataclass(frozen=True, slots=True)
class ScenarioSummary:
    test_name: str
    total_tests: int
    successful: int
    failed: int
    success_rate: float
    average_duration_ms: float
    min_duration_ms: float
    max_duration_ms: float


# --- Multi-tab polling ---


class TabPollingState:
    """Mutable per-tab counters. Written only by the tab's own loop."""

    __slots__ = ("tab", "request_count", "response_times_ms")

    def __init__(self, tab: str) -> None:
        self.tab = tab
        self.request_count = 0
        self.response_times_ms: list[float] = []

    def record(self, response_time_ms: float) -> None:
        self.request_count += 1
        self.response_times_ms.append(response_time_ms)


@dataclass(frozen=True, slots=True)
class TabSummary:
    tab: str
    total_requests: int
    average_response_time_ms: float
    min_response_time_ms: float
    max_response_time_ms: float


@dataclass(frozen=True, slots=True)
class PollingSummary:
    total_tabs: int
    total_requests: int
    average_requests_per_tab: float
    overall_average_response_time_ms: float
    efficiency: float


@dataclass(frozen=True, slots=True)
class PollingResult:
    tabs: list[TabSummary]
    summary: PollingSummary

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# --- Thresholds / stress plan ---


@dataclass(frozen=True, slots=True)
class Thresholds:
    """Pass/fail limits applied to each scenario's LoadTestResult."""

    error_rate_pct: float = 5.0
    avg_response_time_ms: float = 500.0
    p95_response_time_ms: float = 1000.0


@dataclass(frozen=True, slots=True)
class ThresholdCheck:
    error_rate_passed: bool
    avg_response_time_passed: bool
    p95_response_time_passed: bool

    @property
    def passed(self) -> bool:
        return self.error_rate_passed and self.avg_response_time_passed and self.p95_response_time_passed


@dataclass(frozen=True, slots=True)
class ScenarioSpec:
    """One named stress scenario."""

    name: str
    users: int
    duration_seconds: float
    ramp_up_seconds: float
    requests_per_user: int = 1000


@dataclass(frozen=True, slots=True)
class ScenarioReport:
    spec: ScenarioSpec
    result: LoadTestResult
    check: ThresholdCheck

    @property
    def passed(self) -> bool:
        return self.check.passed


DEFAULT_SCENARIOS: tuple[ScenarioSpec, ...] = (
    ScenarioSpec("concurrent-users", users=100, duration_seconds=60, ramp_up_seconds=10),
    ScenarioSpec("heavy-load", users=500, duration_seconds=120, ramp_up_seconds=30),
    ScenarioSpec("spike-test", users=1000, duration_seconds=30, ramp_up_seconds=5),
)
DEFAULT_ENDPOINTS: tuple[str, ...] = ("/dashboard", "/schedule", "/networking", "/polls")


@dataclass(frozen=True, slots=True)
class StressPlan:
    """Everything the stress runner needs. Loaded from YAML or built from CLI flags."""

    base_url: str = "http://localhost:3000"
    scenarios: tuple[ScenarioSpec, ...] = DEFAULT_SCENARIOS
    endpoints: tuple[str, ...] = DEFAULT_ENDPOINTS
    thresholds: Thresholds = field(default_factory=Thresholds)
    payload_size: int | None = None
    build_command: tuple[str, ...] | None = ("npm", "run", "build")
    serve_command: tuple[str, ...] | None = ("npm", "run", "preview")
    startup_timeout_seconds: float = 30.0
    startup_poll_seconds: float = 1.0
    poll_voting_users: int = 100
    session_joining_users: int = 150
    networking_users: int = 75
    polling_tabs: int = 8
    polling_duration_seconds: float = 30.0
    simulation: SimulationProfile = field(default_factory=SimulationProfile)
    seed: int | None = None


class LoadProgress:
    """Live counters updated by virtual users; safe to read mid-run."""

    __slots__ = ("started_users", "finished_users", "completed", "failed")

    def __init__(self) -> None:
        self.started_users = 0
        self.finished_users = 0
        self.completed = 0
        self.failed = 0

    @property
    def active_users(self) -> int:
        return self.started_users - self.finished_users


@dataclass(frozen=True, slots=True)
class StressRunSummary:
    """Everything written to the report artifacts of one CLI run."""

    timestamp: str
    plan: StressPlan
    scenarios: list[ScenarioReport]

    @property
    def overall_passed(self) -> bool:
        return all(s.passed for s in self.scenarios)
