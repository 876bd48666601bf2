"""Latency statistics shared by every engine."""

import math
from collections.abc import Sequence
from dataclasses import dataclass


@dataclass(frozen=True, kw_only=True)
class LatencySummary:
    """Mean and tail latency in milliseconds."""

    average: int = 0
    p95: int = 0
    p99: int = 0


def percentile(latencies: Sequence[int], p: float) -> int:
    """Return the value at or below which ``p`` percent of samples fall.

    Sorts ascending and picks index ``ceil(p / 100 * n) - 1``, clamped to the
    sequence bounds. An empty sequence yields 0.
    """
    if not latencies:
        return 0
    return _pick(sorted(latencies), p)


def summarize(latencies: Sequence[int]) -> LatencySummary:
    """Compute average, p95 and p99 over latency samples."""
    if not latencies:
        return LatencySummary()

    ordered = sorted(latencies)
    return LatencySummary(
        average=math.floor(sum(ordered) / len(ordered) + 0.5),
        p95=_pick(ordered, 95),
        p99=_pick(ordered, 99),
    )


def _pick(ordered: Sequence[int], p: float) -> int:
    index = math.ceil(p / 100 * len(ordered)) - 1
    return ordered[min(max(index, 0), len(ordered) - 1)]
