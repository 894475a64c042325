"""Report artifacts: summary.json, stress-test-report.md, metrics.csv.

Interaction and polling suites get their own JSON files next to them.
"""

from __future__ import annotations

import csv
import io
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import orjson
from jinja2 import Environment, PackageLoader, select_autoescape

from . import __version__ as surge_version
from .metrics import threshold_violations
from .models import (
    ConcurrentTestResult,
    PollingResult,
    ScenarioReport,
    ScenarioSummary,
    StressRunSummary,
)

SUMMARY_JSON = "summary.json"
MARKDOWN_REPORT = "stress-test-report.md"
METRICS_CSV = "metrics.csv"
INTERACTIONS_JSON = "interactions.json"
POLLING_JSON = "polling.json"

CSV_HEADERS = (
    "scenario",
    "users",
    "duration",
    "total_requests",
    "successful_requests",
    "failed_requests",
    "error_rate",
    "avg_response_time",
    "p95_response_time",
    "p99_response_time",
    "requests_per_second",
    "passed",
)

GENERAL_SUGGESTIONS = (
    "Implement connection pooling and database optimization",
    "Add horizontal scaling capabilities",
    "Implement circuit breakers and rate limiting",
    "Review client-side caching strategies",
    "Consider a CDN for static assets",
    "Implement proper error handling and graceful degradation",
)


def _write_json(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(orjson.dumps(payload, option=orjson.OPT_INDENT_2 | orjson.OPT_NON_STR_KEYS))


def scenario_payload(report: ScenarioReport) -> dict[str, Any]:
    thresholds = report.check
    return {
        "scenario": report.spec.name,
        "config": asdict(report.spec),
        "metrics": report.result.to_dict(),
        "thresholds": {
            "error_rate_passed": thresholds.error_rate_passed,
            "avg_response_time_passed": thresholds.avg_response_time_passed,
            "p95_response_time_passed": thresholds.p95_response_time_passed,
        },
        "passed": report.passed,
    }


def summary_payload(summary: StressRunSummary) -> dict[str, Any]:
    return {
        "timestamp": summary.timestamp,
        "surge_version": surge_version,
        "config": asdict(summary.plan),
        "results": [scenario_payload(s) for s in summary.scenarios],
        "overall_passed": summary.overall_passed,
    }


def generate_summary_json(output_path: str | Path, summary: StressRunSummary) -> Path:
    out = Path(output_path)
    _write_json(out, summary_payload(summary))
    return out


def _recommendations(report: ScenarioReport) -> list[str]:
    r = report.result
    items: list[str] = []
    if not report.check.error_rate_passed:
        items.append(
            f"High error rate ({r.error_rate_pct:.2f}%) - investigate server capacity and error handling"
        )
    if not report.check.avg_response_time_passed:
        items.append(
            f"Slow average response time ({r.average_response_time_ms:.0f}ms) - optimize database queries and caching"
        )
    if not report.check.p95_response_time_passed:
        items.append(
            f"High P95 response time ({r.p95_response_time_ms:.0f}ms) - investigate performance bottlenecks"
        )
    return items


def render_markdown(summary: StressRunSummary, generated_at: datetime | None = None) -> str:
    env = Environment(
        loader=PackageLoader("surge", "templates"),
        autoescape=select_autoescape(["html", "xml"]),
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
    )
    template = env.get_template("stress_report.md.j2")
    failed = [s for s in summary.scenarios if not s.passed]
    return template.render(
        generated_at=(generated_at or datetime.now(timezone.utc)).strftime("%Y-%m-%d %H:%M:%S UTC"),
        overall_passed=summary.overall_passed,
        scenarios=summary.scenarios,
        thresholds=summary.plan.thresholds,
        failed=[(s, _recommendations(s), threshold_violations(s.result, summary.plan.thresholds)) for s in failed],
        suggestions=GENERAL_SUGGESTIONS,
        surge_version=surge_version,
    )


def generate_markdown_report(output_path: str | Path, summary: StressRunSummary) -> Path:
    out = Path(output_path)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(render_markdown(summary), encoding="utf-8")
    return out


def render_csv(summary: StressRunSummary) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for s in summary.scenarios:
        r = s.result
        writer.writerow(
            [
                s.spec.name,
                s.spec.users,
                s.spec.duration_seconds,
                r.total_requests,
                r.successful_requests,
                r.failed_requests,
                f"{r.error_rate_pct:.2f}",
                f"{r.average_response_time_ms:.0f}",
                f"{r.p95_response_time_ms:.0f}",
                f"{r.p99_response_time_ms:.0f}",
                f"{r.requests_per_second:.1f}",
                "true" if s.passed else "false",
            ]
        )
    return buf.getvalue()


def generate_csv_report(output_path: str | Path, summary: StressRunSummary) -> Path:
    out = Path(output_path)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(render_csv(summary), encoding="utf-8")
    return out


def generate_reports(output_dir: str | Path, summary: StressRunSummary) -> list[Path]:
    """Write all three stress artifacts into output_dir."""
    out_dir = Path(output_dir)
    return [
        generate_summary_json(out_dir / SUMMARY_JSON, summary),
        generate_markdown_report(out_dir / MARKDOWN_REPORT, summary),
        generate_csv_report(out_dir / METRICS_CSV, summary),
    ]


def generate_interactions_json(
    output_path: str | Path,
    results: list[ConcurrentTestResult],
    summaries: list[ScenarioSummary],
) -> Path:
    out = Path(output_path)
    _write_json(
        out,
        {
            "summary": [asdict(s) for s in summaries],
            "results": [r.to_dict() for r in results],
        },
    )
    return out


def generate_polling_json(output_path: str | Path, result: PollingResult, duration_seconds: float) -> Path:
    out = Path(output_path)
    _write_json(out, {"duration_seconds": duration_seconds, **result.to_dict()})
    return out
