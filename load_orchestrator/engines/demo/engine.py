"""In-process load engine driving virtual users with aiohttp."""

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

import aiohttp

from load_orchestrator.engines.base import EngineLimits, LoadEngine
from load_orchestrator.engines.demo.config import DemoEngineConfig
from load_orchestrator.errors import EngineError
from load_orchestrator.models.record import RunRequest
from load_orchestrator.models.result import ProgressCallback, RunProgress, RunResult
from load_orchestrator.stats import summarize

log = logging.getLogger(__name__)


@dataclass(kw_only=True)
class Tally:
    """Counters shared by the virtual users of one run."""

    total: int = 0
    success: int = 0
    errors: int = 0
    latencies: list[int] = field(default_factory=list)

    def record_response(self, status: int, elapsed_ms: int) -> None:
        """Count a response; 2xx and 3xx are successes."""
        self.total += 1
        if 200 <= status < 400:
            self.success += 1
        else:
            self.errors += 1
        self.latencies.append(elapsed_ms)

    def record_error(self) -> None:
        """Count a request that raised before a response arrived."""
        self.total += 1
        self.errors += 1

    def snapshot(self) -> RunProgress:
        """Current counts."""
        return RunProgress(total=self.total, success=self.success, errors=self.errors)


@dataclass(frozen=True, kw_only=True)
class DemoEngine(LoadEngine):
    """Synthetic load generator running inside the orchestrator.

    Each virtual user issues GET requests back to back until the run's end
    time. Progress is reported after every request. A request that raises
    counts as an error; a failure outside a request cancels every virtual
    user of the run.
    """

    config: DemoEngineConfig
    session: aiohttp.ClientSession = field(repr=False)

    @classmethod
    @asynccontextmanager
    async def from_config(
        cls, config: DemoEngineConfig
    ) -> AsyncGenerator["DemoEngine", None]:
        """Create engine with managed session lifecycle."""
        timeout = aiohttp.ClientTimeout(total=config.demo_request_timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            yield cls(config=config, session=session)

    def limits(self) -> EngineLimits:
        """Return the demo ceilings."""
        return EngineLimits(
            max_vus=self.config.max_demo_vus,
            max_duration=self.config.max_demo_duration,
        )

    async def execute(
        self,
        test_id: str,
        plan: RunRequest,
        on_progress: ProgressCallback,
    ) -> RunResult:
        """Run ``plan.vus`` virtual users for ``plan.duration_seconds``."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + plan.duration_seconds
        tally = Tally()

        log.info(
            "Test %s: starting %d virtual user(s) against %s for %ds",
            test_id,
            plan.vus,
            plan.url,
            plan.duration_seconds,
        )
        try:
            async with asyncio.TaskGroup() as group:
                for _ in range(plan.vus):
                    group.create_task(
                        self._virtual_user(plan.url, deadline, tally, on_progress)
                    )
        except ExceptionGroup as exc:
            raise EngineError(f"virtual user failed: {exc.exceptions[0]}") from exc
        log.info(
            "Test %s: %d request(s), %d error(s)", test_id, tally.total, tally.errors
        )

        return RunResult(
            total=tally.total,
            success=tally.success,
            errors=tally.errors,
            latency=summarize(tally.latencies),
        )

    async def _virtual_user(
        self,
        url: str,
        deadline: float,
        tally: Tally,
        on_progress: ProgressCallback,
    ) -> None:
        loop = asyncio.get_running_loop()
        while loop.time() < deadline:
            started = loop.time()
            try:
                async with self.session.get(url) as response:
                    await response.read()
            except Exception as exc:
                log.debug("Request to %s failed: %s", url, exc)
                tally.record_error()
            else:
                elapsed_ms = round((loop.time() - started) * 1000)
                tally.record_response(response.status, elapsed_ms)
            on_progress(tally.snapshot())
