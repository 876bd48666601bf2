"""JMeter engine implementation."""

import asyncio
import logging
import shutil
import tempfile
from collections import deque
from collections.abc import AsyncGenerator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path

from yarl import URL

from load_orchestrator.engines.base import EngineStatus, LoadEngine
from load_orchestrator.engines.jmeter.config import JMeterConfig
from load_orchestrator.engines.jmeter.process import (
    ProcessStartError,
    ProcessTimeoutError,
    check_jmeter,
    run_process,
)
from load_orchestrator.engines.jmeter.results import parse_results_csv
from load_orchestrator.errors import EngineError
from load_orchestrator.hosts import parse_target
from load_orchestrator.models.record import RunRequest
from load_orchestrator.models.result import ProgressCallback, RunResult

log = logging.getLogger(__name__)


@dataclass(frozen=True, kw_only=True)
class RunFiles:
    """Per-run working directory holding results and log files."""

    workdir: Path
    results_file: Path
    log_file: Path

    @classmethod
    def create(cls, test_id: str) -> "RunFiles":
        """Create an isolated temporary directory for a run."""
        workdir = Path(tempfile.mkdtemp(prefix=f"jmeter-{test_id}-"))
        return cls(
            workdir=workdir,
            results_file=workdir / "results.csv",
            log_file=workdir / "jmeter.log",
        )


def build_arguments(
    template: Path, files: RunFiles, target: URL, vus: int, duration_seconds: int
) -> Sequence[str]:
    """Build non-GUI JMeter arguments for a single-GET scenario."""
    return [
        "-n",
        "-t",
        str(template),
        "-l",
        str(files.results_file),
        "-j",
        str(files.log_file),
        f"-Jhost={target.host}",
        f"-Jpath={target.raw_path_qs or '/'}",
        f"-Jprotocol={target.scheme}",
        f"-Jport={target.port}",
        f"-Jthreads={vus}",
        f"-Jduration={duration_seconds}",
        "-Jjmeter.save.saveservice.output_format=csv",
    ]


@dataclass(frozen=True, kw_only=True)
class JMeterEngine(LoadEngine):
    """Delegates load generation to a JMeter process.

    The process gets the target split into host, path, protocol and port
    plus thread count and duration as ``-J`` properties. Its CSV output is
    parsed once it exits with code 0.
    """

    config: JMeterConfig
    finished_workdirs: deque[Path] = field(
        default_factory=deque, init=False, repr=False, compare=False
    )

    @classmethod
    @asynccontextmanager
    async def from_config(
        cls, config: JMeterConfig
    ) -> AsyncGenerator["JMeterEngine", None]:
        """Create engine; JMeter holds no resources between runs."""
        yield cls(config=config)

    async def health(self) -> EngineStatus:
        """Probe the JMeter installation."""
        return await check_jmeter(
            self.config.jmeter_bin, self.config.jmeter_version_timeout
        )

    async def execute(
        self,
        test_id: str,
        plan: RunRequest,
        on_progress: ProgressCallback,
    ) -> RunResult:
        """Run JMeter to completion and parse its results file."""
        target = parse_target(plan.url)
        files = await asyncio.to_thread(RunFiles.create, test_id)
        argv = [
            self.config.jmeter_bin,
            *build_arguments(
                self.config.jmeter_template,
                files,
                target,
                plan.vus,
                plan.duration_seconds,
            ),
        ]
        timeout = self.config.supervision_timeout(plan.duration_seconds)

        log.info(
            "Test %s: launching jmeter against %s (workdir=%s)",
            test_id,
            plan.url,
            files.workdir,
        )
        try:
            return await self._supervise(argv, files, timeout)
        finally:
            await self._retire(files)

    async def _supervise(
        self, argv: Sequence[str], files: RunFiles, timeout: float
    ) -> RunResult:
        try:
            code = await run_process(argv, timeout=timeout)
        except ProcessStartError as exc:
            raise EngineError(f"failed to start jmeter: {exc}") from exc
        except ProcessTimeoutError as exc:
            raise EngineError(f"{exc}, killed. See {files.log_file}") from exc

        if code != 0:
            raise EngineError(f"jmeter exited with code {code}. See {files.log_file}")

        return await self.collect_results(files)

    async def _retire(self, files: RunFiles) -> None:
        self.finished_workdirs.append(files.workdir)
        while len(self.finished_workdirs) > self.config.jmeter_retained_runs:
            stale = self.finished_workdirs.popleft()
            log.debug("Removing working directory %s", stale)
            await asyncio.to_thread(shutil.rmtree, stale, ignore_errors=True)

    async def collect_results(self, files: RunFiles) -> RunResult:
        """Read and aggregate the results file of a finished run."""
        try:
            text = await asyncio.to_thread(
                files.results_file.read_text, encoding="utf-8"
            )
        except (OSError, UnicodeDecodeError) as exc:
            raise EngineError(f"unable to read results: {exc}") from exc

        parsed = parse_results_csv(text)
        return parsed.to_run_result(artifact=str(files.results_file))
