"""Supervision of the external JMeter process."""

import asyncio
import contextlib
import logging
import os
import re
import signal
from collections.abc import Sequence

from load_orchestrator.engines.base import EngineStatus

log = logging.getLogger(__name__)

VERSION_PATTERN = re.compile(r"\d+\.\d+(?:\.\d+)?")


class ProcessStartError(Exception):
    """The process could not be spawned."""


class ProcessTimeoutError(Exception):
    """The process outlived its supervision timeout and was killed."""


async def run_process(argv: Sequence[str], *, timeout: float) -> int:
    """Spawn ``argv`` detached from stdio and wait for it to exit.

    The process leads its own session, so children it starts (the JVM
    behind the jmeter launcher script) are killed along with it.

    Args:
        argv: Program and arguments
        timeout: Seconds to wait before killing the process

    Returns:
        The exit code

    Raises:
        ProcessStartError: If the program could not be started
        ProcessTimeoutError: If it was killed after ``timeout`` seconds

    """
    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
            start_new_session=True,
        )
    except OSError as exc:
        raise ProcessStartError(str(exc)) from exc

    log.debug("Started %s (pid %s)", argv[0], process.pid)

    try:
        return await asyncio.wait_for(process.wait(), timeout=timeout)
    except TimeoutError:
        await _kill_group(process)
        raise ProcessTimeoutError(
            f"{argv[0]} did not exit within {timeout:.0f}s"
        ) from None
    except asyncio.CancelledError:
        await _kill_group(process)
        raise


async def _kill_group(process: asyncio.subprocess.Process) -> None:
    with contextlib.suppress(ProcessLookupError):
        os.killpg(process.pid, signal.SIGKILL)
    await process.wait()


async def check_jmeter(binary: str, timeout: float = 3.0) -> EngineStatus:
    """Run ``<binary> -v`` and extract the reported version."""
    try:
        process = await asyncio.create_subprocess_exec(
            binary,
            "-v",
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        log.info("jmeter not available: %s", exc)
        return EngineStatus(installed=False)

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout)
    except TimeoutError:
        process.kill()
        await process.wait()
        log.warning("%s -v did not answer within %.0fs", binary, timeout)
        return EngineStatus(installed=False)

    if process.returncode != 0:
        return EngineStatus(installed=False)

    output = stdout.decode(errors="replace") + "\n" + stderr.decode(errors="replace")
    match = VERSION_PATTERN.search(output)
    return EngineStatus(installed=True, version=match.group(0) if match else None)
