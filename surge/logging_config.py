"""Logging for surge: one stderr handler on the ``surge`` logger, run-tagged records.

Every record carries the suite and scenario it was emitted under (``-`` outside
a run), so interleaved scenario logs stay attributable in both text and JSON
output. Set SURGE_LOG_LEVEL and SURGE_LOG_FORMAT ("text" or "json").
"""

from __future__ import annotations

import logging
import os
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Iterator

import orjson

LOG_LEVEL_ENV = "SURGE_LOG_LEVEL"
LOG_FORMAT_ENV = "SURGE_LOG_FORMAT"
ROOT_LOGGER = "surge"
NO_RUN = "-"
TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s <%(suite)s/%(scenario)s>: %(message)s"
TEXT_DATEFMT = "%Y-%m-%d %H:%M:%S"

_suite: ContextVar[str] = ContextVar("surge_suite", default=NO_RUN)
_scenario: ContextVar[str] = ContextVar("surge_scenario", default=NO_RUN)


def get_logger(name: str) -> logging.Logger:
    """Return ``surge.<name>`` (or ``surge`` itself); the handler is installed on first use."""
    _configure_surge_logging()
    return logging.getLogger(ROOT_LOGGER if name == ROOT_LOGGER else f"{ROOT_LOGGER}.{name}")


@contextmanager
def run_context(*, suite: str | None = None, scenario: str | None = None) -> Iterator[None]:
    """Tag records logged inside the block (and tasks spawned from it) with suite/scenario."""
    tokens = []
    if suite is not None:
        tokens.append((_suite, _suite.set(suite)))
    if scenario is not None:
        tokens.append((_scenario, _scenario.set(scenario)))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


class _RunContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.suite = _suite.get()
        record.scenario = _scenario.get()
        return True


def _configure_surge_logging() -> None:
    root = logging.getLogger(ROOT_LOGGER)
    if root.handlers:
        return
    level_name = (os.environ.get(LOG_LEVEL_ENV) or "INFO").upper()
    root.setLevel(getattr(logging, level_name, logging.INFO))
    handler = logging.StreamHandler(sys.stderr)
    handler.addFilter(_RunContextFilter())
    if (os.environ.get(LOG_FORMAT_ENV) or "text").lower() == "json":
        handler.setFormatter(_JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt=TEXT_DATEFMT))
    root.addHandler(handler)


class _JsonFormatter(logging.Formatter):
    """One orjson object per record, run tags included."""

    def format(self, record: logging.LogRecord) -> str:
        obj: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt or "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "suite": getattr(record, "suite", _suite.get()),
            "scenario": getattr(record, "scenario", _scenario.get()),
            "message": record.getMessage(),
        }
        if record.exc_info:
            obj["exception"] = self.formatException(record.exc_info)
        return orjson.dumps(obj).decode("utf-8")
