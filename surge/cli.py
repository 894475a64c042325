"""CLI entry point for surge.

- Uses uvloop for a faster event loop when available
- GC disabled during the run for consistent latency
- Exit codes: 0 ok, 1 setup/config error, 2 threshold failure, 130 interrupted
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import gc
import sys
from pathlib import Path
from typing import Any, Coroutine

# Try to use uvloop for faster async performance
_HAS_UVLOOP = False
try:
    import uvloop
    _HAS_UVLOOP = True
except ImportError:
    pass

from . import __version__
from .config import load_plan, validate_plan
from .exceptions import SurgeError
from .logging_config import get_logger
from .models import ScenarioSpec, StressPlan, Suite
from .runner import run_suites

logger = get_logger("cli")

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_THRESHOLD_FAILED = 2
EXIT_INTERRUPTED = 130

DEFAULT_OUTPUT_DIR = "stress-test-results"
# --users without a plan file runs one scenario with these settings
CUSTOM_SCENARIO_NAME = "custom"
CUSTOM_DURATION_SECONDS = 60.0
CUSTOM_RAMP_UP_SECONDS = 10.0


def _run_async(coro: Coroutine[Any, Any, Any]) -> Any:
    """Run async coroutine with the fastest available event loop.

    Disables GC during execution for consistent latency.
    """
    gc_was_enabled = gc.isenabled()
    gc.disable()

    try:
        if _HAS_UVLOOP:
            return uvloop.run(coro)
        return asyncio.run(coro)
    finally:
        if gc_was_enabled:
            gc.enable()
        gc.collect()


def _build_plan_from_args(args: argparse.Namespace) -> StressPlan:
    """Load the plan file (or defaults) and apply CLI overrides."""
    plan = load_plan(Path(args.config)) if args.config else StressPlan()
    overrides: dict[str, Any] = {}
    if args.url is not None:
        overrides["base_url"] = args.url.rstrip("/")
    if args.seed is not None:
        overrides["seed"] = args.seed
    if args.users is not None:
        overrides["scenarios"] = (
            ScenarioSpec(
                CUSTOM_SCENARIO_NAME,
                users=args.users,
                duration_seconds=args.duration if args.duration is not None else CUSTOM_DURATION_SECONDS,
                ramp_up_seconds=CUSTOM_RAMP_UP_SECONDS,
            ),
        )
    elif args.duration is not None:
        overrides["scenarios"] = tuple(
            dataclasses.replace(s, duration_seconds=args.duration) for s in plan.scenarios
        )
    if not overrides:
        return plan
    plan = dataclasses.replace(plan, **overrides)
    validate_plan(plan)
    return plan


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="surge",
        description="Load generation and performance statistics for HTTP services. "
        "Staggered virtual users, percentile thresholds, interaction and polling probes.",
    )
    parser.add_argument(
        "-f",
        "--config",
        default=None,
        help="Path to YAML stress plan (optional: defaults are used without -f)",
    )
    parser.add_argument(
        "-o",
        "--output",
        default=DEFAULT_OUTPUT_DIR,
        help=f"Output directory for reports (default: {DEFAULT_OUTPUT_DIR})",
    )
    parser.add_argument(
        "--suite",
        choices=[s.value for s in Suite],
        default=Suite.STRESS.value,
        help="What to run (default: stress)",
    )
    parser.add_argument("--users", type=int, default=None, help="Run a single custom scenario with N users")
    parser.add_argument(
        "--duration",
        type=float,
        default=None,
        metavar="SEC",
        help="Scenario duration in seconds (all scenarios when --users is not given)",
    )
    parser.add_argument("--url", default=None, metavar="BASE", help="Override plan: target base URL")
    parser.add_argument("--seed", type=int, default=None, help="Seed for reproducible traffic shape")
    parser.add_argument("--skip-build", action="store_true", help="Do not run the build command")
    parser.add_argument(
        "--no-live",
        action="store_true",
        help="Disable live Rich dashboard (headless mode)",
    )
    parser.add_argument(
        "--allow-threshold-failure",
        action="store_true",
        help="Exit 0 even when a scenario fails its thresholds",
    )
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"surge {__version__}",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args, unknown = parser.parse_known_args(argv)
    for flag in unknown:
        logger.warning("Ignoring unknown argument: %s", flag)

    def handle_error(e: BaseException) -> int:
        if isinstance(e, SurgeError):
            print(f"Error: {e.message}", file=sys.stderr)
            return EXIT_ERROR
        if isinstance(e, (FileNotFoundError, ValueError)):
            print(f"Error: {e}", file=sys.stderr)
            return EXIT_ERROR
        logger.exception("Unexpected error")
        print("Error: An unexpected error occurred. Check logs for details.", file=sys.stderr)
        return EXIT_ERROR

    try:
        plan = _build_plan_from_args(args)
        summary = _run_async(
            run_suites(
                plan,
                args.output,
                Suite(args.suite),
                build=not args.skip_build,
                live=not args.no_live,
            )
        )
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return EXIT_INTERRUPTED
    except Exception as e:
        return handle_error(e)

    if summary is not None and not summary.overall_passed:
        failed = [s.spec.name for s in summary.scenarios if not s.passed]
        print(f"Thresholds failed for: {', '.join(failed)}", file=sys.stderr)
        if not args.allow_threshold_failure:
            return EXIT_THRESHOLD_FAILED
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
