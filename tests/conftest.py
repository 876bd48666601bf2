"""Shared fixtures."""

from collections.abc import Generator
from pathlib import Path

import pytest
from aioresponses import aioresponses as aioresponses_cls

from load_orchestrator.config import Settings
from load_orchestrator.history import HistoryLog
from load_orchestrator.orchestrator import TestOrchestrator
from load_orchestrator.testing.engines import FakeEngine


@pytest.fixture
def aioresponses() -> Generator[aioresponses_cls, None, None]:
    """Mock outgoing aiohttp requests."""
    with aioresponses_cls() as mocked:
        yield mocked


@pytest.fixture
def history_file(tmp_path: Path) -> Path:
    """Location of the history log for a test."""
    return tmp_path / "tests_history.ndjson"


@pytest.fixture
def settings(history_file: Path) -> Settings:
    """Settings independent of the surrounding environment."""
    return Settings(
        max_concurrent_tests=2,
        max_vus=200,
        max_duration=300,
        allow_all=False,
        allow_admin=False,
        allow_demo=False,
        history_file=history_file,
    )


@pytest.fixture
def history(history_file: Path) -> HistoryLog:
    """Create history log in a temporary directory."""
    return HistoryLog(history_file)


@pytest.fixture
def engine() -> FakeEngine:
    """Create fake engine that completes immediately."""
    return FakeEngine()


@pytest.fixture
def orchestrator(
    settings: Settings, history: HistoryLog, engine: FakeEngine
) -> TestOrchestrator:
    """Create orchestrator with a single fake engine."""
    return TestOrchestrator(
        settings=settings, engines={"fake": engine}, history=history
    )
