"""Models for run requests and the records tracking them."""

from datetime import datetime, timezone
from typing import Any, Literal, TypeAlias

from pydantic import Field

from load_orchestrator.models.base import Model

TestStatus: TypeAlias = Literal["queued", "starting", "running", "completed", "failed"]

TERMINAL_STATUSES: frozenset[TestStatus] = frozenset(["completed", "failed"])


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class RunRequest(Model):
    """Load to generate: target, virtual users, duration and engine."""

    url: str = Field(..., min_length=1, description="Target URL")
    vus: int = Field(default=10, description="Concurrent virtual users")
    duration_seconds: int = Field(default=10, description="Run length in seconds")
    engine: str = Field(default="jmeter", description="Engine key")


class TestRecord(Model):
    """Current state of a single load test run."""

    __test__ = False

    id: str
    status: TestStatus
    requested: RunRequest | None = None
    runner: str | None = None

    total: int = 0
    success: int = 0
    errors: int = 0

    avg_latency_ms: int | None = None
    p95: int | None = None
    p99: int | None = None
    throughput: float | None = None
    total_bytes: int | None = Field(default=None, alias="bytes")
    artifact: str | None = None
    error: str | None = None

    created_at: datetime | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def terminal(self) -> bool:
        """Whether the run reached ``completed`` or ``failed``."""
        return self.status in TERMINAL_STATUSES

    def to_json(self) -> dict[str, Any]:
        """Dump the record in its wire format."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
