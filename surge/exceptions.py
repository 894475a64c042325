"""Custom exceptions for the surge load-generation engine.

Everything surge raises inherits from SurgeError. Per-request failures are
never raised across component boundaries; they are recorded as data. Only
setup-phase failures (bad configuration, build failure, target never ready)
are expected to escape to the CLI.
"""

from __future__ import annotations

from typing import Any


class SurgeError(Exception):
    """Base exception for all surge errors.

    Attributes:
        message: Human-readable error description
        context: Optional dictionary with additional debugging context
        original_error: Original exception that caused this error (if any)
    """

    def __init__(
        self,
        message: str,
        *args: object,
        context: dict[str, Any] | None = None,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message, *args)
        self.message = message
        self.context = context or {}
        self.original_error = original_error

    def __str__(self) -> str:
        base = self.message
        if self.context:
            ctx_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            base = f"{base} [{ctx_str}]"
        if self.original_error:
            base = f"{base} (caused by: {type(self.original_error).__name__}: {self.original_error})"
        return base

    def with_context(self, **kwargs: Any) -> "SurgeError":
        """Add context to this error and return self for chaining."""
        self.context.update(kwargs)
        return self


class SurgeConfigError(SurgeError):
    """Raised when a load config or stress plan is invalid.

    Common causes:
    - Plan file not found or not valid YAML
    - Empty endpoint list
    - Non-positive user or request counts
    - Probabilities outside [0, 1]
    """


class SurgeSetupError(SurgeError):
    """Raised when the target service cannot be prepared.

    Common causes:
    - Build command exits non-zero
    - Serve command cannot be spawned
    - Target never answers 200 OK within the startup timeout
    """


class SurgeRunnerError(SurgeError):
    """Raised when a run is misused (e.g. started on a closed tester)."""


class ContentionError(SurgeError):
    """Synthesized contention failure for a simulated interaction.

    Raised and caught inside the interaction tester only; it always ends up
    as the error message of a ConcurrentTestResult.
    """
