"""Models for engine progress and outcomes."""

from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeAlias

from load_orchestrator.stats import LatencySummary


@dataclass(frozen=True, kw_only=True)
class RunProgress:
    """Cumulative request counts of a run in flight."""

    total: int = 0
    success: int = 0
    errors: int = 0


ProgressCallback: TypeAlias = Callable[[RunProgress], object]


@dataclass(frozen=True, kw_only=True)
class RunResult:
    """Aggregated outcome of a finished run.

    ``throughput`` and ``total_bytes`` are only known to engines that
    report them.
    """

    total: int
    success: int
    errors: int
    latency: LatencySummary
    throughput: float | None = None
    total_bytes: int | None = None
    artifact: str | None = None
