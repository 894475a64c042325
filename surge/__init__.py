"""
surge - Load generation and performance statistics for HTTP services.

Staggered virtual users, exact nearest-rank percentiles, threshold gating,
plus concurrent-interaction and multi-tab polling probes.
"""

from .exceptions import (
    ContentionError,
    SurgeConfigError,
    SurgeError,
    SurgeRunnerError,
    SurgeSetupError,
)

__all__ = [
    "__version__",
    "ContentionError",
    "SurgeConfigError",
    "SurgeError",
    "SurgeRunnerError",
    "SurgeSetupError",
]

__version__ = "1.0.0"
