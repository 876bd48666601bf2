"""In-memory registry of test records keyed by test id."""

import itertools
import logging
from collections import deque
from typing import Any

from load_orchestrator.errors import TerminalStateError
from load_orchestrator.models.record import TestRecord, TestStatus, utcnow
from load_orchestrator.models.result import RunProgress, RunResult

log = logging.getLogger(__name__)


class TestRegistry:
    """Volatile mapping of test id to its current record.

    Records are immutable snapshots; every change replaces the stored
    snapshot, so readers never observe a half-applied update. Methods are
    synchronous and are only called from the event loop.

    Only the newest ``retained_terminal`` completed or failed records are
    kept; older ones remain available in the history log only.
    """

    __test__ = False

    def __init__(self, retained_terminal: int = 1000) -> None:
        self.retained_terminal = max(1, retained_terminal)
        self._records: dict[str, TestRecord] = {}
        self._terminal: deque[str] = deque()
        self._ids = itertools.count(1)

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, test_id: object) -> bool:
        return test_id in self._records

    def new_id(self) -> str:
        """Allocate the next test id."""
        return str(next(self._ids))

    def get(self, test_id: str) -> TestRecord | None:
        """Return the current snapshot, or None for unknown ids."""
        return self._records.get(test_id)

    def add(self, record: TestRecord) -> TestRecord:
        """Store a freshly created record."""
        if record.id in self._records:
            raise ValueError(f"Test {record.id} already registered")
        self._records[record.id] = record
        return record

    def transition(
        self, test_id: str, status: TestStatus, **changes: Any
    ) -> TestRecord:
        """Move a record to ``status``, applying extra field changes."""
        current = self._require_live(test_id)
        updated = current.model_copy(update={"status": status, **changes})
        self._records[test_id] = updated
        log.debug("Test %s: %s -> %s", test_id, current.status, status)
        if updated.terminal:
            self._retire(test_id)
        return updated

    def update_progress(self, test_id: str, progress: RunProgress) -> TestRecord:
        """Record running counts; counts never move backwards."""
        current = self._require_live(test_id)
        updated = current.model_copy(
            update={
                "total": max(current.total, progress.total),
                "success": max(current.success, progress.success),
                "errors": max(current.errors, progress.errors),
            }
        )
        self._records[test_id] = updated
        return updated

    def complete(self, test_id: str, result: RunResult) -> TestRecord:
        """Write the single terminal ``completed`` snapshot."""
        return self.transition(
            test_id,
            "completed",
            total=result.total,
            success=result.success,
            errors=result.errors,
            avg_latency_ms=result.latency.average,
            p95=result.latency.p95,
            p99=result.latency.p99,
            throughput=result.throughput,
            total_bytes=result.total_bytes,
            artifact=result.artifact,
            finished_at=utcnow(),
        )

    def fail(self, test_id: str, error: str) -> TestRecord:
        """Write the single terminal ``failed`` snapshot."""
        return self.transition(test_id, "failed", error=error, finished_at=utcnow())

    def _retire(self, test_id: str) -> None:
        self._terminal.append(test_id)
        while len(self._terminal) > self.retained_terminal:
            del self._records[self._terminal.popleft()]

    def _require_live(self, test_id: str) -> TestRecord:
        current = self._records.get(test_id)
        if current is None:
            raise KeyError(test_id)
        if current.terminal:
            raise TerminalStateError(
                f"Test {test_id} is already {current.status}"
            )
        return current
