"""Abstract base class for load engines."""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from load_orchestrator.hosts import parse_target
from load_orchestrator.models.record import RunRequest
from load_orchestrator.models.result import ProgressCallback, RunResult


@dataclass(frozen=True, kw_only=True)
class EngineLimits:
    """Engine-specific ceilings applied on top of the global caps."""

    max_vus: int
    max_duration: int


@dataclass(frozen=True, kw_only=True)
class EngineStatus:
    """Availability of an engine's runtime."""

    installed: bool
    version: str | None = None


@dataclass(frozen=True, kw_only=True)
class LoadEngine(ABC):
    """Abstract base for load engines.

    An engine generates load for one run at a time per call to ``execute``;
    the orchestrator may run several calls concurrently. Engines report
    failure by raising ``EngineError``.
    """

    def limits(self) -> EngineLimits | None:
        """Return engine-specific caps, or None to use the global ones."""
        return None

    def validate_target(self, target: str) -> None:
        """Reject targets the engine cannot load.

        Raises:
            InvalidTargetError: If the target is unusable

        """
        parse_target(target)

    async def health(self) -> EngineStatus:
        """Report whether the engine can run."""
        return EngineStatus(installed=True)

    @abstractmethod
    async def execute(
        self,
        test_id: str,
        plan: RunRequest,
        on_progress: ProgressCallback,
    ) -> RunResult:
        """Generate load described by ``plan`` and aggregate the outcome.

        Args:
            test_id: Identifier of the run being executed
            plan: Request with caps already applied
            on_progress: Called with cumulative counts as requests complete

        Returns:
            Aggregated result of the run

        Raises:
            EngineError: If the run could not produce results

        """
