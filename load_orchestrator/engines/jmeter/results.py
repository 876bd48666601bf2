"""Parsing of JMeter CSV result files."""

import csv
import io
from collections.abc import Sequence
from dataclasses import dataclass

from load_orchestrator.models.result import RunResult
from load_orchestrator.stats import summarize

TIMESTAMP_COLUMNS = ("timeStamp", "timeStampMillis", "time")
SUCCESS_VALUES = frozenset(["true", "t", "1"])
FAILURE_VALUES = frozenset(["false", "f", "0"])


@dataclass(frozen=True, kw_only=True)
class TimeRange:
    """Span covered by sample timestamps, in epoch milliseconds."""

    start: int
    end: int

    @property
    def duration_ms(self) -> int:
        """Length of the span, at least one millisecond."""
        return max(1, self.end - self.start)


@dataclass(frozen=True, kw_only=True)
class ParsedResults:
    """Row-level totals extracted from a results file."""

    total: int = 0
    success: int = 0
    failures: int = 0
    total_bytes: int = 0
    latencies: Sequence[int] = ()
    time_range: TimeRange | None = None

    @property
    def errors(self) -> int:
        """Rows not marked successful, so that success + errors == total."""
        return self.total - self.success

    @property
    def throughput(self) -> float | None:
        """Requests per second over the observed span."""
        if self.time_range is None:
            return None
        return round(self.total / (self.time_range.duration_ms / 1000), 2)

    def to_run_result(self, artifact: str | None = None) -> RunResult:
        """Aggregate into the result shape shared by all engines."""
        return RunResult(
            total=self.total,
            success=self.success,
            errors=self.errors,
            latency=summarize(self.latencies),
            throughput=self.throughput,
            total_bytes=self.total_bytes,
            artifact=artifact,
        )


def parse_results_csv(text: str) -> ParsedResults:
    """Parse comma-separated JMeter samples with a header row.

    Every data row counts toward ``total``. Rows whose ``elapsed`` is not an
    integer are left out of the latency samples only. ``success`` accepts
    true/t/1 and false/f/0 in any case. Timestamps come from ``timeStamp``,
    falling back to ``timeStampMillis`` then ``time``.
    """
    rows = [row for row in csv.reader(io.StringIO(text)) if any(row)]
    if len(rows) < 2:
        return ParsedResults()

    header = [name.strip() for name in rows[0]]
    elapsed_idx = _index(header, "elapsed")
    success_idx = _index(header, "success")
    bytes_idx = _index(header, "bytes")
    ts_idx = None
    for name in TIMESTAMP_COLUMNS:
        if (ts_idx := _index(header, name)) is not None:
            break

    latencies: list[int] = []
    success = failures = total_bytes = 0
    timestamps: list[int] = []

    for row in rows[1:]:
        if (elapsed := _int_at(row, elapsed_idx)) is not None:
            latencies.append(elapsed)

        flag = _cell(row, success_idx).lower()
        if flag in SUCCESS_VALUES:
            success += 1
        elif flag in FAILURE_VALUES:
            failures += 1

        if (size := _int_at(row, bytes_idx)) is not None:
            total_bytes += size

        if (stamp := _int_at(row, ts_idx)) is not None:
            timestamps.append(stamp)

    time_range = None
    if timestamps and max(timestamps) > 0:
        time_range = TimeRange(start=min(timestamps), end=max(timestamps))

    return ParsedResults(
        total=len(rows) - 1,
        success=success,
        failures=failures,
        total_bytes=total_bytes,
        latencies=latencies,
        time_range=time_range,
    )


def _index(header: Sequence[str], name: str) -> int | None:
    try:
        return header.index(name)
    except ValueError:
        return None


def _cell(row: Sequence[str], idx: int | None) -> str:
    if idx is None or idx >= len(row):
        return ""
    return row[idx].strip()


def _int_at(row: Sequence[str], idx: int | None) -> int | None:
    try:
        return int(_cell(row, idx))
    except ValueError:
        return None
