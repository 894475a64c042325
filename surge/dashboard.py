"""Rich live panel for a running scenario and result tables for finished suites."""

from __future__ import annotations

from typing import Sequence

from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .models import LoadProgress, PollingResult, ScenarioReport, ScenarioSpec, ScenarioSummary


def _format_remaining(seconds: float) -> str:
    """Format remaining time as Xs or Xm Ys."""
    s = max(0, int(round(seconds)))
    if s >= 60:
        m, s = divmod(s, 60)
        return f"{m}m {s}s"
    return f"{s}s"


def build_progress_table(progress: LoadProgress, spec: ScenarioSpec, elapsed_seconds: float) -> Table:
    """Grid of the live counters of one scenario."""
    table = Table.grid(padding=(0, 2))
    table.add_column(style="cyan")
    table.add_column(style="green")

    table.add_row("Active users", f"{progress.active_users} / {spec.users}")
    table.add_row("Finished users", str(progress.finished_users))
    table.add_row("Completed requests", str(progress.completed))
    table.add_row("Failed requests", str(progress.failed))
    if progress.completed and elapsed_seconds > 0:
        table.add_row("RPS", f"{progress.completed / elapsed_seconds:.1f}")
        table.add_row("Error rate %", f"{100.0 * progress.failed / progress.completed:.2f}%")
    else:
        table.add_row("RPS", "-")
        table.add_row("Error rate %", "-")
    return table


def create_live_panel(progress: LoadProgress, spec: ScenarioSpec, elapsed_seconds: float) -> Panel:
    """Create Rich Panel for live display."""
    remaining = max(0.0, spec.duration_seconds - elapsed_seconds)
    table = build_progress_table(progress, spec, elapsed_seconds)
    table.add_row("Elapsed", f"{elapsed_seconds:.1f}s / {spec.duration_seconds:g}s")
    table.add_row("Remaining (ETA)", _format_remaining(remaining))
    title = Text()
    title.append("surge ", style="bold magenta")
    title.append(f"| {spec.name} | {elapsed_seconds:.1f}s / {spec.duration_seconds:g}s", style="dim")
    title.append(f" | ETA: {_format_remaining(remaining)}", style="bold yellow")
    return Panel(table, title=title, border_style="blue")


def progress_line(progress: LoadProgress, spec: ScenarioSpec, elapsed_seconds: float) -> str:
    """One-line progress for non-TTY output (CI, Docker without -it)."""
    remaining = max(0.0, spec.duration_seconds - elapsed_seconds)
    return (
        f"surge | {spec.name} | {elapsed_seconds:.1f}s/{spec.duration_seconds:g}s | "
        f"remaining: {_format_remaining(remaining)} | active={progress.active_users} "
        f"requests={progress.completed} failed={progress.failed}"
    )


def scenario_results_table(reports: Sequence[ScenarioReport]) -> Table:
    """Summary table of finished stress scenarios."""
    table = Table(title="Stress Test Results", header_style="bold")
    for col in ("Scenario", "Users", "Requests", "Error %", "Avg (ms)", "P95 (ms)", "P99 (ms)", "RPS", "Result"):
        table.add_column(col, justify="left" if col in ("Scenario", "Result") else "right")
    for report in reports:
        r = report.result
        table.add_row(
            report.spec.name,
            str(report.spec.users),
            str(r.total_requests),
            f"{r.error_rate_pct:.2f}",
            f"{r.average_response_time_ms:.0f}",
            f"{r.p95_response_time_ms:.0f}",
            f"{r.p99_response_time_ms:.0f}",
            f"{r.requests_per_second:.1f}",
            "[green]PASS[/green]" if report.passed else "[red]FAIL[/red]",
        )
    return table


def interaction_summary_table(summaries: Sequence[ScenarioSummary]) -> Table:
    table = Table(title="Concurrent Interactions", header_style="bold")
    for col in ("Scenario", "Total", "Successful", "Failed", "Success %", "Avg (ms)", "Min (ms)", "Max (ms)"):
        table.add_column(col, justify="left" if col == "Scenario" else "right")
    for s in summaries:
        table.add_row(
            s.test_name,
            str(s.total_tests),
            str(s.successful),
            str(s.failed),
            f"{s.success_rate:.1f}",
            f"{s.average_duration_ms:.0f}",
            f"{s.min_duration_ms:.0f}",
            f"{s.max_duration_ms:.0f}",
        )
    return table


def polling_table(result: PollingResult) -> Table:
    table = Table(title="Multi-tab Polling", header_style="bold")
    for col in ("Tab", "Requests", "Avg (ms)", "Min (ms)", "Max (ms)"):
        table.add_column(col, justify="left" if col == "Tab" else "right")
    for t in result.tabs:
        table.add_row(
            t.tab,
            str(t.total_requests),
            f"{t.average_response_time_ms:.0f}",
            f"{t.min_response_time_ms:.0f}",
            f"{t.max_response_time_ms:.0f}",
        )
    s = result.summary
    table.caption = (
        f"{s.total_tabs} tabs, {s.total_requests} requests, "
        f"{s.average_requests_per_tab:.1f} per tab, efficiency {s.efficiency:.3f}"
    )
    return table
