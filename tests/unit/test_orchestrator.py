"""Tests for admission control and the run lifecycle."""

import asyncio
from collections import Counter

import pytest

from load_orchestrator.config import Settings
from load_orchestrator.engines.base import EngineLimits
from load_orchestrator.errors import (
    EngineDisabledError,
    EngineError,
    HostNotAllowedError,
    UnsupportedEngineError,
)
from load_orchestrator.history import HistoryLog
from load_orchestrator.models.record import RunRequest
from load_orchestrator.orchestrator import TestOrchestrator
from load_orchestrator.registry import TestRegistry
from load_orchestrator.stats import LatencySummary
from load_orchestrator.testing.engines import FakeEngine
from load_orchestrator.testing.factories import RunRequestFactory, RunResultFactory


async def settle() -> None:
    """Let scheduled run tasks advance to their next await."""
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.fixture
def held_engine() -> FakeEngine:
    """Create fake engine whose runs block until released."""
    return FakeEngine(hold=True)


@pytest.fixture
def held_orchestrator(
    settings: Settings, history: HistoryLog, held_engine: FakeEngine
) -> TestOrchestrator:
    """Create orchestrator whose runs keep their slots until released."""
    return TestOrchestrator(
        settings=settings, engines={"fake": held_engine}, history=history
    )


def statuses(history: HistoryLog, test_id: str) -> list[str]:
    """Statuses appended to the history for one run, in order."""
    return [e["status"] for e in history.tail(1000) if e.get("id") == test_id]


class TestSubmit:
    """Tests for admitting requests."""

    async def test_below_cap_starts_immediately(
        self, orchestrator: TestOrchestrator
    ) -> None:
        """A free slot yields ``starting`` and one more running run."""
        submission = orchestrator.submit(RunRequestFactory.build())

        assert not submission.queued
        assert submission.record.status == "starting"
        assert orchestrator.running_count == 1

        await orchestrator.join()

    async def test_at_cap_queues(
        self, held_orchestrator: TestOrchestrator, held_engine: FakeEngine
    ) -> None:
        """Requests beyond the cap wait in ``queued``."""
        first = held_orchestrator.submit(RunRequestFactory.build())
        second = held_orchestrator.submit(RunRequestFactory.build())
        third = held_orchestrator.submit(RunRequestFactory.build())

        assert not first.queued
        assert not second.queued
        assert third.queued
        assert third.record.status == "queued"
        assert held_orchestrator.running_count == 2
        assert held_orchestrator.queued_ids == (third.test_id,)

        held_engine.release.set()
        await held_orchestrator.join()

    async def test_completed_run_is_recorded(
        self, settings: Settings, history: HistoryLog
    ) -> None:
        """Engine results end up in the terminal record."""
        result = RunResultFactory.build(
            total=3,
            success=3,
            errors=0,
            latency=LatencySummary(average=200, p95=300, p99=300),
        )
        orchestrator = TestOrchestrator(
            settings=settings,
            engines={"fake": FakeEngine(result=result)},
            history=history,
        )

        test_id = orchestrator.submit(RunRequestFactory.build()).test_id
        await orchestrator.join()

        record = orchestrator.registry.get(test_id)
        assert record is not None
        assert record.status == "completed"
        assert (record.total, record.success, record.errors) == (3, 3, 0)
        assert (record.avg_latency_ms, record.p95, record.p99) == (200, 300, 300)
        assert record.started_at is not None
        assert record.finished_at is not None
        assert orchestrator.running_count == 0
        assert statuses(history, test_id) == ["queued", "starting", "completed"]

    async def test_progress_is_visible_while_running(
        self, held_orchestrator: TestOrchestrator, held_engine: FakeEngine
    ) -> None:
        """Counters reported by the engine show up before completion."""
        test_id = held_orchestrator.submit(RunRequestFactory.build()).test_id
        await settle()

        record = held_orchestrator.registry.get(test_id)
        assert record is not None
        assert record.status == "running"
        assert record.total == 1

        held_engine.release.set()
        await held_orchestrator.join()


class TestRejection:
    """Tests for requests refused before a record exists."""

    async def test_disallowed_host(
        self, orchestrator: TestOrchestrator, engine: FakeEngine, history: HistoryLog
    ) -> None:
        """Unlisted hosts are refused without creating a run."""
        request = RunRequestFactory.build(url="http://evil.example/")

        with pytest.raises(HostNotAllowedError) as exc_info:
            orchestrator.submit(request)

        assert exc_info.value.status == 403
        assert orchestrator.registry.get("1") is None
        assert orchestrator.running_count == 0
        assert engine.calls == []
        assert not history.exists()

    async def test_allow_all_admits_any_host(
        self, settings: Settings, history: HistoryLog, engine: FakeEngine
    ) -> None:
        """The any-host override lets unlisted targets through."""
        orchestrator = TestOrchestrator(
            settings=settings.model_copy(update={"allow_all": True}),
            engines={"fake": engine},
            history=history,
        )

        orchestrator.submit(RunRequestFactory.build(url="http://evil.example/"))
        await orchestrator.join()

        assert len(engine.calls) == 1

    async def test_unsupported_engine(self, orchestrator: TestOrchestrator) -> None:
        """Unknown engines are a client error naming the supported ones."""
        with pytest.raises(UnsupportedEngineError) as exc_info:
            orchestrator.submit(RunRequestFactory.build(engine="gatling"))

        assert exc_info.value.status == 400
        assert exc_info.value.to_payload() == {
            "error": "unsupported engine",
            "engine": "gatling",
            "supported": ["fake"],
        }

    async def test_disabled_demo_engine(
        self, settings: Settings, history: HistoryLog
    ) -> None:
        """The demo engine is refused unless enabled."""
        orchestrator = TestOrchestrator(
            settings=settings, engines={"demo": FakeEngine()}, history=history
        )

        with pytest.raises(EngineDisabledError) as exc_info:
            orchestrator.submit(RunRequestFactory.build(engine="demo"))

        assert exc_info.value.status == 403
        assert "ALLOW_DEMO" in exc_info.value.reason

    async def test_invalid_target_fails_without_slot(
        self, orchestrator: TestOrchestrator, engine: FakeEngine, history: HistoryLog
    ) -> None:
        """A target the engine cannot load fails at once."""
        submission = orchestrator.submit(
            RunRequestFactory.build(url="ftp://localhost/file")
        )

        assert not submission.queued
        assert submission.record.status == "failed"
        assert submission.record.error is not None
        assert "invalid target url" in submission.record.error
        assert orchestrator.running_count == 0
        assert engine.calls == []
        assert statuses(history, submission.test_id) == ["queued", "failed"]


class TestPlan:
    """Tests for VU and duration caps."""

    def test_global_caps(self, orchestrator: TestOrchestrator) -> None:
        """Requests are bounded by the global ceilings."""
        plan = orchestrator.plan(
            RunRequest(url="http://localhost/", vus=1000, duration_seconds=9999)
        )

        assert plan.vus == 200
        assert plan.duration_seconds == 300

    def test_values_below_one_are_raised(
        self, orchestrator: TestOrchestrator
    ) -> None:
        """Zero or negative values become one."""
        plan = orchestrator.plan(
            RunRequest(url="http://localhost/", vus=0, duration_seconds=-3)
        )

        assert plan.vus == 1
        assert plan.duration_seconds == 1

    async def test_engine_limits_tighten_caps(
        self, settings: Settings, history: HistoryLog
    ) -> None:
        """Engine ceilings apply on top of the global ones."""
        engine = FakeEngine(engine_limits=EngineLimits(max_vus=5, max_duration=10))
        orchestrator = TestOrchestrator(
            settings=settings, engines={"fake": engine}, history=history
        )

        orchestrator.submit(
            RunRequestFactory.build(vus=100, duration_seconds=100)
        )
        await orchestrator.join()

        [(_, plan)] = engine.calls
        assert (plan.vus, plan.duration_seconds) == (5, 10)
        assert orchestrator.limits_for("fake") == EngineLimits(
            max_vus=5, max_duration=10
        )


class TestLifecycle:
    """Tests for slot release, promotion and shutdown."""

    async def test_queued_run_is_promoted_when_slot_frees(
        self, held_orchestrator: TestOrchestrator, held_engine: FakeEngine
    ) -> None:
        """The oldest queued run starts once a running one finishes."""
        ids = [
            held_orchestrator.submit(RunRequestFactory.build()).test_id
            for _ in range(3)
        ]

        held_engine.release.set()
        await held_orchestrator.join()

        for test_id in ids:
            record = held_orchestrator.registry.get(test_id)
            assert record is not None
            assert record.status == "completed"
        assert [call[0] for call in held_engine.calls] == ids
        assert held_orchestrator.running_count == 0
        assert held_orchestrator.queued_ids == ()

    async def test_promoted_run_keeps_its_capped_plan(
        self, settings: Settings, history: HistoryLog
    ) -> None:
        """Queued runs reach the engine with the plan recorded at submission."""
        engine = FakeEngine(
            hold=True, engine_limits=EngineLimits(max_vus=5, max_duration=10)
        )
        orchestrator = TestOrchestrator(
            settings=settings.model_copy(update={"max_concurrent_tests": 1}),
            engines={"fake": engine},
            history=history,
        )

        orchestrator.submit(RunRequestFactory.build(vus=1, duration_seconds=1))
        queued = orchestrator.submit(
            RunRequestFactory.build(vus=100, duration_seconds=100)
        )
        assert queued.queued

        engine.release.set()
        await orchestrator.join()

        test_id, plan = engine.calls[1]
        assert test_id == queued.test_id
        assert (plan.vus, plan.duration_seconds) == (5, 10)
        assert plan == queued.record.requested

    @pytest.mark.parametrize(
        ("error", "message"),
        [
            (EngineError("jmeter exited with code 1. See /tmp/x.log"), "code 1"),
            (RuntimeError("kaboom"), "kaboom"),
        ],
    )
    async def test_failure_releases_slot(
        self,
        settings: Settings,
        history: HistoryLog,
        error: Exception,
        message: str,
    ) -> None:
        """Failed runs record the error and free their slot."""
        orchestrator = TestOrchestrator(
            settings=settings,
            engines={"fake": FakeEngine(error=error)},
            history=history,
        )

        test_id = orchestrator.submit(RunRequestFactory.build()).test_id
        await orchestrator.join()

        record = orchestrator.registry.get(test_id)
        assert record is not None
        assert record.status == "failed"
        assert record.error is not None
        assert message in record.error
        assert orchestrator.running_count == 0

    async def test_each_run_has_one_terminal_entry(
        self,
        held_orchestrator: TestOrchestrator,
        held_engine: FakeEngine,
        history: HistoryLog,
    ) -> None:
        """History holds exactly one terminal entry per run."""
        for _ in range(4):
            held_orchestrator.submit(RunRequestFactory.build())

        held_engine.release.set()
        await held_orchestrator.join()

        terminal = Counter(
            entry["id"]
            for entry in history.tail(1000)
            if entry["status"] in ("completed", "failed")
        )
        assert terminal == {"1": 1, "2": 1, "3": 1, "4": 1}

    async def test_close_terminates_every_run(
        self, held_orchestrator: TestOrchestrator, history: HistoryLog
    ) -> None:
        """Shutdown fails queued runs and cancels running ones."""
        ids = [
            held_orchestrator.submit(RunRequestFactory.build()).test_id
            for _ in range(3)
        ]
        await settle()

        await held_orchestrator.close()

        for test_id in ids:
            record = held_orchestrator.registry.get(test_id)
            assert record is not None
            assert record.status == "failed"
            assert record.error is not None
            assert "cancelled" in record.error
            assert statuses(history, test_id).count("failed") == 1
        assert held_orchestrator.running_count == 0
        assert held_orchestrator.queued_ids == ()

    async def test_close_right_after_submit(
        self, held_orchestrator: TestOrchestrator
    ) -> None:
        """Runs cancelled before they began still end up failed."""
        test_id = held_orchestrator.submit(RunRequestFactory.build()).test_id

        await held_orchestrator.close()

        record = held_orchestrator.registry.get(test_id)
        assert record is not None
        assert record.status == "failed"
        assert held_orchestrator.running_count == 0


def test_seed_history(orchestrator: TestOrchestrator, history: HistoryLog) -> None:
    """Seeding appends synthetic completed entries."""
    entries = orchestrator.seed_history(3)

    assert [e["total"] for e in entries] == [100, 101, 102]
    assert [e["avgLatencyMs"] for e in entries] == [50, 51, 52]
    assert [e["p95"] for e in entries] == [80, 81, 82]
    assert [e["p99"] for e in entries] == [120, 121, 122]
    assert all(e["status"] == "completed" for e in entries)
    assert history.tail(10) == entries


def test_registry_settings(settings: Settings, history: HistoryLog) -> None:
    """A supplied registry is used as is, otherwise retention comes from settings."""
    registry = TestRegistry()
    engines = {"fake": FakeEngine()}

    supplied = TestOrchestrator(
        settings=settings, engines=engines, history=history, registry=registry
    )
    default = TestOrchestrator(
        settings=settings.model_copy(update={"retained_records": 7}),
        engines=engines,
        history=history,
    )

    assert supplied.registry is registry
    assert default.registry.retained_terminal == 7
