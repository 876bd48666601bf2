"""CLI entry point for the load test orchestrator."""

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from aiohttp import web

from load_orchestrator.config import Settings
from load_orchestrator.engines.jmeter.process import check_jmeter
from load_orchestrator.engines.jmeter.results import parse_results_csv
from load_orchestrator.engines.loading import open_engines
from load_orchestrator.history import HistoryLog, clamp
from load_orchestrator.models.record import utcnow
from load_orchestrator.orchestrator import TestOrchestrator
from load_orchestrator.web import create_app

MAX_TRIM_ENTRIES = 100_000

log = logging.getLogger("load_orchestrator")


async def serve(settings: Settings) -> None:
    """Run the control API until cancelled."""
    async with open_engines() as engines:
        log.info("Loaded engines: %s", ", ".join(sorted(engines)) or "none")
        orchestrator = TestOrchestrator(
            settings=settings,
            engines=engines,
            history=HistoryLog(settings.history_file),
        )
        runner = web.AppRunner(create_app(orchestrator))
        await runner.setup()
        try:
            site = web.TCPSite(runner, settings.host, settings.port)
            await site.start()
            log.info(
                "Control API listening on http://%s:%d/ (POST /run-test, GET /test/:id)",
                settings.host,
                settings.port,
            )
            await asyncio.Event().wait()
        finally:
            await runner.cleanup()


async def check_engine(binary: str) -> int:
    """Print JMeter availability as JSON and return the exit code."""
    status = await check_jmeter(binary)
    print(json.dumps({"installed": status.installed, "version": status.version}))
    return 0 if status.installed else 2


def trim_history(history_file: Path, max_entries: int) -> int:
    """Trim the history file to its newest entries."""
    history = HistoryLog(history_file)
    if not history.exists():
        print("No history file")
        return 0
    kept = history.truncate_to_last(clamp(max_entries, 1, MAX_TRIM_ENTRIES))
    print(f"Kept {kept} entries")
    return 0


def summarize_results_file(results_file: Path) -> dict[str, Any]:
    """Aggregate a JMeter results file into a history summary entry."""
    parsed = parse_results_csv(results_file.read_text(encoding="utf-8"))
    result = parsed.to_run_result()
    return {
        "timestamp": utcnow().isoformat(),
        "total": result.total,
        "success": result.success,
        "errors": result.errors,
        "avgLatencyMs": result.latency.average,
        "p95": result.latency.p95,
        "p99": result.latency.p99,
        "throughput": result.throughput,
        "bytes": result.total_bytes,
        "source": results_file.name,
    }


def parse_results(results_file: Path, history_file: Path) -> int:
    """Summarize a results file and append the summary to the history."""
    try:
        summary = summarize_results_file(results_file)
    except (OSError, UnicodeDecodeError) as exc:
        log.error("Failed to parse %s: %s", results_file, exc)
        return 1

    if not summary["total"]:
        log.warning("No data in %s", results_file)
        return 0

    if HistoryLog(history_file).append(summary):
        log.info("Appended summary to %s", history_file)
    print(json.dumps(summary, indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(description="Load test orchestrator")
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging"
    )
    commands = parser.add_subparsers(dest="command", required=True)

    serve_cmd = commands.add_parser("serve", help="Run the control API")
    serve_cmd.add_argument("--host", help="Bind address (default: $HOST)")
    serve_cmd.add_argument("--port", type=int, help="Bind port (default: $PORT)")

    check_cmd = commands.add_parser("check-engine", help="Check JMeter installation")
    check_cmd.add_argument("--binary", default="jmeter", help="JMeter executable")

    trim_cmd = commands.add_parser("trim-history", help="Keep the newest entries")
    trim_cmd.add_argument(
        "max_entries", nargs="?", type=int, default=1000, help="Entries to keep"
    )
    trim_cmd.add_argument(
        "--history-file", type=Path, help="History file (default: $HISTORY_FILE)"
    )

    parse_cmd = commands.add_parser(
        "parse-results", help="Summarize a JMeter CSV results file into history"
    )
    parse_cmd.add_argument("results_file", type=Path, help="Path to results.csv")
    parse_cmd.add_argument(
        "--history-file", type=Path, help="History file (default: $HISTORY_FILE)"
    )

    return parser


def run(argv: Sequence[str] | None = None) -> int:
    """Dispatch a CLI invocation and return its exit code."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    overrides = {
        key: value
        for key, value in (
            ("host", getattr(args, "host", None)),
            ("port", getattr(args, "port", None)),
            ("history_file", getattr(args, "history_file", None)),
        )
        if value is not None
    }
    settings = Settings(**overrides)

    match args.command:
        case "serve":
            try:
                asyncio.run(serve(settings))
            except KeyboardInterrupt:
                log.info("Shutting down")
            return 0
        case "check-engine":
            return asyncio.run(check_engine(args.binary))
        case "trim-history":
            return trim_history(settings.history_file, args.max_entries)
        case "parse-results":
            return parse_results(args.results_file, settings.history_file)
    return 2  # pragma: no cover


def main() -> None:
    """CLI entry point."""
    sys.exit(run())


if __name__ == "__main__":  # pragma: no cover
    main()
