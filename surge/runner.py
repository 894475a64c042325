"""Suite runner: target lifecycle, stress scenarios, interaction and polling probes, reports."""

from __future__ import annotations

import asyncio
import random
import sys
from datetime import datetime, timezone
from pathlib import Path

import httpx
from rich.console import Console
from rich.live import Live

from .clock import Clock, DEFAULT_CLOCK, elapsed_ms
from .config import scenario_load_config
from .dashboard import (
    create_live_panel,
    interaction_summary_table,
    polling_table,
    progress_line,
    scenario_results_table,
)
from .engine import create_client
from .interactions import ConcurrentInteractionTester
from .load_tester import LoadTester
from .logging_config import get_logger, run_context
from .metrics import evaluate_thresholds, threshold_violations
from .models import (
    LoadProgress,
    PollingResult,
    ScenarioReport,
    ScenarioSpec,
    ScenarioSummary,
    StressPlan,
    StressRunSummary,
    Suite,
)
from .polling import PollingEfficiencyTester
from .report import (
    INTERACTIONS_JSON,
    POLLING_JSON,
    generate_interactions_json,
    generate_polling_json,
    generate_reports,
)
from .server import managed_target, wait_for_server

logger = get_logger("runner")

LIVE_POLL_SEC = 0.1
LIVE_REFRESH_PER_SEC = 4
# When stdout is not a TTY (e.g. Docker without -it), refresh interval for streaming fallback
STREAMING_FALLBACK_INTERVAL_SEC = 1.0


def _stdout_is_tty() -> bool:
    """True if stdout is a TTY (interactive terminal). False in Docker without -it, CI, pipes."""
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


async def _watch_live(
    task: asyncio.Task,
    progress: LoadProgress,
    spec: ScenarioSpec,
    console: Console,
    clock: Clock,
) -> None:
    """Render progress until task is done: Rich Live on a TTY, one line per second otherwise."""
    start_ms = clock.now_ms()

    def elapsed_seconds() -> float:
        return elapsed_ms(clock, start_ms) / 1000.0

    if _stdout_is_tty():
        with Live(
            create_live_panel(progress, spec, 0.0),
            console=console,
            refresh_per_second=LIVE_REFRESH_PER_SEC,
        ) as live_ctx:
            while not task.done():
                live_ctx.update(create_live_panel(progress, spec, elapsed_seconds()))
                await asyncio.sleep(LIVE_POLL_SEC)
            live_ctx.update(create_live_panel(progress, spec, elapsed_seconds()))
        return

    while not task.done():
        sys.stdout.write(progress_line(progress, spec, elapsed_seconds()) + "\n")
        sys.stdout.flush()
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=STREAMING_FALLBACK_INTERVAL_SEC)
        except asyncio.TimeoutError:
            pass


async def run_scenario(
    spec: ScenarioSpec,
    plan: StressPlan,
    client: httpx.AsyncClient,
    *,
    live: bool = False,
    console: Console | None = None,
    clock: Clock = DEFAULT_CLOCK,
    rng: random.Random | None = None,
) -> ScenarioReport:
    """Run one stress scenario and check it against the plan's thresholds."""
    with run_context(scenario=spec.name):
        return await _run_scenario(spec, plan, client, live=live, console=console, clock=clock, rng=rng)


async def _run_scenario(
    spec: ScenarioSpec,
    plan: StressPlan,
    client: httpx.AsyncClient,
    *,
    live: bool,
    console: Console | None,
    clock: Clock,
    rng: random.Random | None,
) -> ScenarioReport:
    progress = LoadProgress()
    tester = LoadTester(
        scenario_load_config(spec, plan),
        client,
        clock=clock,
        rng=rng,
        profile=plan.simulation,
        progress=progress,
    )
    logger.info("Running scenario %s: users=%d, duration=%ss", spec.name, spec.users, spec.duration_seconds)
    task = asyncio.create_task(tester.run_load_test(), name=f"surge-scenario-{spec.name}")
    if live:
        try:
            await _watch_live(task, progress, spec, console or Console(), clock)
        except BaseException:
            task.cancel()
            raise
    result = await task

    check = evaluate_thresholds(result, plan.thresholds)
    report = ScenarioReport(spec=spec, result=result, check=check)
    if report.passed:
        logger.info("Scenario %s passed", spec.name)
    else:
        for violation in threshold_violations(result, plan.thresholds):
            logger.warning("Scenario %s: %s", spec.name, violation)
    return report


async def run_stress_suite(
    plan: StressPlan,
    output_dir: str | Path,
    *,
    build: bool = True,
    live: bool = True,
    console: Console | None = None,
    clock: Clock = DEFAULT_CLOCK,
    rng: random.Random | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    cwd: str | Path | None = None,
) -> StressRunSummary:
    """Build and serve the target, wait for it, run every scenario, write the reports.

    Raises:
        SurgeSetupError: If the build fails or the target never becomes ready
    """
    console = console or Console()
    rng = rng or random.Random(plan.seed)
    reports: list[ScenarioReport] = []
    async with managed_target(plan.build_command if build else None, plan.serve_command, cwd=cwd):
        async with create_client(base_url=plan.base_url, transport=transport) as client:
            await wait_for_server(
                client,
                plan.base_url,
                timeout_seconds=plan.startup_timeout_seconds,
                poll_seconds=plan.startup_poll_seconds,
                clock=clock,
            )
            for spec in plan.scenarios:
                reports.append(
                    await run_scenario(spec, plan, client, live=live, console=console, clock=clock, rng=rng)
                )

    summary = StressRunSummary(timestamp=_timestamp(), plan=plan, scenarios=reports)
    paths = generate_reports(output_dir, summary)
    logger.info("Stress suite finished: overall_passed=%s", summary.overall_passed)
    if live:
        console.print(scenario_results_table(reports))
        for path in paths:
            console.print(f"[green]Report written to[/green] {path}")
    return summary


async def run_interaction_suite(
    plan: StressPlan,
    output_dir: str | Path,
    *,
    live: bool = True,
    console: Console | None = None,
    clock: Clock = DEFAULT_CLOCK,
    rng: random.Random | None = None,
) -> list[ScenarioSummary]:
    """Run the three concurrent interaction scenarios and write interactions.json."""
    tester = ConcurrentInteractionTester(clock=clock, rng=rng or random.Random(plan.seed), profile=plan.simulation)
    await tester.test_concurrent_poll_voting(plan.poll_voting_users)
    await tester.test_concurrent_session_joining(plan.session_joining_users)
    await tester.test_concurrent_networking(plan.networking_users)
    summaries = tester.generate_summary()

    path = generate_interactions_json(Path(output_dir) / INTERACTIONS_JSON, tester.results, summaries)
    if live:
        console = console or Console()
        console.print(interaction_summary_table(summaries))
        console.print(f"[green]Report written to[/green] {path}")
    return summaries


async def run_polling_suite(
    plan: StressPlan,
    output_dir: str | Path,
    *,
    live: bool = True,
    console: Console | None = None,
    clock: Clock = DEFAULT_CLOCK,
    rng: random.Random | None = None,
) -> PollingResult:
    """Run the multi-tab polling probe and write polling.json."""
    async with PollingEfficiencyTester(
        clock=clock, rng=rng or random.Random(plan.seed), profile=plan.simulation
    ) as tester:
        result = await tester.test_multi_tab_polling(plan.polling_tabs, plan.polling_duration_seconds * 1000.0)

    path = generate_polling_json(Path(output_dir) / POLLING_JSON, result, plan.polling_duration_seconds)
    if live:
        console = console or Console()
        console.print(polling_table(result))
        console.print(f"[green]Report written to[/green] {path}")
    return result


async def run_suites(
    plan: StressPlan,
    output_dir: str | Path,
    suite: Suite = Suite.STRESS,
    *,
    build: bool = True,
    live: bool = True,
    clock: Clock = DEFAULT_CLOCK,
    transport: httpx.AsyncBaseTransport | None = None,
) -> StressRunSummary | None:
    """Run the selected suite(s). Returns the stress summary when the stress suite ran."""
    console = Console()
    rng = random.Random(plan.seed)
    summary: StressRunSummary | None = None
    if suite in (Suite.STRESS, Suite.ALL):
        with run_context(suite=Suite.STRESS.value):
            summary = await run_stress_suite(
                plan, output_dir, build=build, live=live, console=console, clock=clock, rng=rng, transport=transport,
            )
    if suite in (Suite.INTERACTIONS, Suite.ALL):
        with run_context(suite=Suite.INTERACTIONS.value):
            await run_interaction_suite(plan, output_dir, live=live, console=console, clock=clock, rng=rng)
    if suite in (Suite.POLLING, Suite.ALL):
        with run_context(suite=Suite.POLLING.value):
            await run_polling_suite(plan, output_dir, live=live, console=console, clock=clock, rng=rng)
    return summary
