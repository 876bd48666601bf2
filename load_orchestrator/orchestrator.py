"""Admission control and lifecycle of load test runs."""

import asyncio
import logging
from collections import deque
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import timedelta
from functools import partial
from typing import Any

from load_orchestrator.config import Settings
from load_orchestrator.engines.base import EngineLimits, LoadEngine
from load_orchestrator.errors import (
    EngineDisabledError,
    EngineError,
    HostNotAllowedError,
    InvalidTargetError,
    UnsupportedEngineError,
)
from load_orchestrator.history import HistoryLog, history_entry
from load_orchestrator.hosts import is_host_allowed
from load_orchestrator.models.record import RunRequest, TestRecord, utcnow
from load_orchestrator.registry import TestRegistry

log = logging.getLogger(__name__)

CANCELLED = "cancelled: orchestrator shutting down"


@dataclass(frozen=True, kw_only=True)
class Submission:
    """Outcome of admitting a run request."""

    test_id: str
    queued: bool
    record: TestRecord


class TestOrchestrator:
    """Admits run requests and drives them through their lifecycle.

    At most ``settings.max_concurrent_tests`` runs hold a slot at once. A
    request arriving at capacity stays ``queued``; whenever a slot is
    released the oldest queued run is started. Every run ends in exactly
    one terminal record, which is also appended to the history log.

    All state changes happen in synchronous methods on the event loop, so
    the running count and registry are never modified concurrently.
    """

    __test__ = False

    def __init__(
        self,
        *,
        settings: Settings,
        engines: Mapping[str, LoadEngine],
        history: HistoryLog,
        registry: TestRegistry | None = None,
    ) -> None:
        self.settings = settings
        self.engines = dict(engines)
        self.history = history
        self.registry = (
            registry
            if registry is not None
            else TestRegistry(settings.retained_records)
        )
        self._running = 0
        self._queue: deque[tuple[str, RunRequest]] = deque()
        self._tasks: set[asyncio.Task[None]] = set()
        self._closing = False

    @property
    def running_count(self) -> int:
        """Runs currently holding a slot."""
        return self._running

    @property
    def queued_ids(self) -> Sequence[str]:
        """Ids waiting for a slot, oldest first."""
        return tuple(test_id for test_id, _ in self._queue)

    def limits_for(self, engine: str) -> EngineLimits:
        """Effective VU and duration ceilings for an engine."""
        max_vus = self.settings.max_vus
        max_duration = self.settings.max_duration
        if (engine_limits := self.engines[engine].limits()) is not None:
            max_vus = min(max_vus, engine_limits.max_vus)
            max_duration = min(max_duration, engine_limits.max_duration)
        return EngineLimits(max_vus=max_vus, max_duration=max_duration)

    def check_request(self, request: RunRequest) -> None:
        """Reject requests that must not create a run.

        Raises:
            HostNotAllowedError: If the target host is not allow-listed
            UnsupportedEngineError: If no such engine is registered
            EngineDisabledError: If the engine is turned off

        """
        if not is_host_allowed(
            request.url,
            allow_all=self.settings.allow_all,
            allowed_hosts=self.settings.allowed_hosts,
        ):
            raise HostNotAllowedError()
        if request.engine not in self.engines:
            raise UnsupportedEngineError(request.engine, sorted(self.engines))
        if not self.settings.engine_enabled(request.engine):
            raise EngineDisabledError(request.engine)

    def plan(self, request: RunRequest) -> RunRequest:
        """Apply VU and duration caps for the request's engine."""
        limits = self.limits_for(request.engine)
        return request.model_copy(
            update={
                "vus": min(max(1, request.vus), limits.max_vus),
                "duration_seconds": min(
                    max(1, request.duration_seconds), limits.max_duration
                ),
            }
        )

    def submit(self, request: RunRequest) -> Submission:
        """Create a run and start it now or queue it.

        Raises:
            RequestRejectedError: If the request is refused outright

        """
        self.check_request(request)
        plan = self.plan(request)
        engine = self.engines[plan.engine]

        record = self.registry.add(
            TestRecord(
                id=self.registry.new_id(),
                status="queued",
                requested=plan,
                runner=plan.engine,
                created_at=utcnow(),
            )
        )
        self.history.append(history_entry(record))

        try:
            engine.validate_target(plan.url)
        except InvalidTargetError as exc:
            log.warning("Test %s rejected: %s", record.id, exc)
            failed = self.registry.fail(record.id, str(exc))
            self.history.append(history_entry(failed))
            return Submission(test_id=record.id, queued=False, record=failed)

        if self._running >= self.settings.max_concurrent_tests:
            self._queue.append((record.id, plan))
            log.info(
                "Test %s queued (%d running, %d queued)",
                record.id,
                self._running,
                len(self._queue),
            )
            return Submission(test_id=record.id, queued=True, record=record)

        started = self._start(record.id, plan)
        return Submission(test_id=record.id, queued=False, record=started)

    def seed_history(self, count: int) -> Sequence[dict[str, Any]]:
        """Append synthetic completed entries, for exercising history views."""
        now = utcnow()
        entries = []
        for i in range(count):
            record = TestRecord(
                id=self.registry.new_id(),
                status="completed",
                total=100 + i,
                success=100 + i,
                errors=0,
                avg_latency_ms=50 + i,
                p95=80 + i,
                p99=120 + i,
                finished_at=now - timedelta(seconds=i),
            )
            entry = history_entry(record)
            self.history.append(entry)
            entries.append(entry)
        return entries

    async def join(self) -> None:
        """Wait until no run is in flight, including promoted ones."""
        while self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def close(self) -> None:
        """Cancel in-flight runs and fail queued ones.

        Every run still ends in a terminal record.
        """
        self._closing = True
        while self._queue:
            test_id, _ = self._queue.popleft()
            final = self.registry.fail(test_id, CANCELLED)
            self.history.append(history_entry(final))
        for task in self._tasks:
            task.cancel()
        await self.join()

    def _start(self, test_id: str, plan: RunRequest) -> TestRecord:
        self._running += 1
        record = self.registry.transition(test_id, "starting", started_at=utcnow())
        self.history.append(history_entry(record))

        task = asyncio.create_task(
            self._run(test_id, plan), name=f"load-test-{test_id}"
        )
        self._tasks.add(task)
        task.add_done_callback(partial(self._reap, test_id))

        log.info("Test %s starting on %s", test_id, record.runner)
        return record

    async def _run(self, test_id: str, plan: RunRequest) -> None:
        engine = self.engines[plan.engine]

        try:
            self.registry.transition(test_id, "running")
            result = await engine.execute(
                test_id, plan, partial(self.registry.update_progress, test_id)
            )
        except EngineError as exc:
            log.error("Test %s failed: %s", test_id, exc)
            final = self.registry.fail(test_id, str(exc))
        except Exception as exc:
            log.exception("Test %s crashed", test_id)
            final = self.registry.fail(test_id, str(exc) or type(exc).__name__)
        else:
            final = self.registry.complete(test_id, result)
            log.info(
                "Test %s completed: total=%d success=%d errors=%d avg=%dms",
                test_id,
                final.total,
                final.success,
                final.errors,
                final.avg_latency_ms or 0,
            )
        self._finish(final)

    def _reap(self, test_id: str, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        record = self.registry.get(test_id)
        if record is None or record.terminal:
            return
        # cancelled, possibly before the first step of _run
        log.warning("Test %s cancelled", test_id)
        self._finish(self.registry.fail(test_id, CANCELLED))

    def _finish(self, record: TestRecord) -> None:
        self.history.append(history_entry(record))
        self._running = max(0, self._running - 1)
        self._promote()

    def _promote(self) -> None:
        if self._closing:
            return
        while self._queue and self._running < self.settings.max_concurrent_tests:
            test_id, plan = self._queue.popleft()
            log.info("Promoting queued test %s", test_id)
            self._start(test_id, plan)
