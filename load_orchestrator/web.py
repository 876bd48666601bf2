"""HTTP control API for submitting runs and reading history."""

import asyncio
import json
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeAlias

from aiohttp import web
from pydantic import ValidationError

from load_orchestrator.errors import (
    AdminDisabledError,
    InvalidJsonError,
    InvalidRequestError,
    MissingTargetError,
    RequestRejectedError,
)
from load_orchestrator.history import DEFAULT_TAIL_LIMIT, MAX_TAIL_LIMIT, clamp
from load_orchestrator.models.record import RunRequest
from load_orchestrator.orchestrator import TestOrchestrator

log = logging.getLogger(__name__)

ORCHESTRATOR = web.AppKey("orchestrator", TestOrchestrator)
STARTED_AT = web.AppKey("started_at", float)
KEEPALIVE = web.AppKey("keepalive_interval", float)

HISTORY_FILENAME = "tests_history.ndjson"
KEEPALIVE_INTERVAL = 15.0

DEFAULT_SEED_COUNT = 5
MAX_SEED_COUNT = 100
DEFAULT_MAX_ENTRIES = 1000
MAX_MAX_ENTRIES = 10000

Handler: TypeAlias = Callable[[web.Request], Awaitable[web.StreamResponse]]

routes = web.RouteTableDef()


@web.middleware
async def rejection_middleware(
    request: web.Request, handler: Handler
) -> web.StreamResponse:
    """Render client errors as JSON bodies with their status."""
    try:
        return await handler(request)
    except RequestRejectedError as exc:
        log.info("Rejected %s %s: %s", request.method, request.path, exc.reason)
        return web.json_response(exc.to_payload(), status=exc.status)


async def read_json(request: web.Request) -> dict[str, Any]:
    """Read a JSON object body; an empty body reads as ``{}``."""
    text = await request.text()
    if not text.strip():
        return {}
    try:
        body = json.loads(text)
    except json.JSONDecodeError as exc:
        raise InvalidJsonError(str(exc)) from exc
    if not isinstance(body, dict):
        raise InvalidJsonError("expected a JSON object")
    return body


def int_param(value: Any, default: int) -> int:
    """Coerce a query or body value to int, using ``default`` if it is not one."""
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def require_admin(request: web.Request) -> TestOrchestrator:
    """Return the orchestrator if the admin API is enabled."""
    orchestrator = request.app[ORCHESTRATOR]
    if not orchestrator.settings.allow_admin:
        raise AdminDisabledError()
    return orchestrator


@routes.post("/run-test")
async def run_test(request: web.Request) -> web.Response:
    """Admit a run request."""
    orchestrator = request.app[ORCHESTRATOR]
    body = await read_json(request)

    if not body.get("url"):
        raise MissingTargetError()
    try:
        run_request = RunRequest.model_validate(body)
    except ValidationError as exc:
        raise InvalidRequestError(str(exc)) from exc

    submission = orchestrator.submit(run_request)

    payload: dict[str, Any] = {
        "testId": submission.test_id,
        "queued": submission.queued,
    }
    if submission.queued:
        payload["message"] = "queued due to concurrency limit"
    return web.json_response(payload, status=202)


@routes.get("/test/{test_id}")
@routes.get("/test")
async def get_test(request: web.Request) -> web.Response:
    """Return the current record of a run."""
    test_id = request.match_info.get("test_id") or request.query.get("id")
    if not test_id:
        return web.json_response({"error": "missing id"}, status=400)

    record = request.app[ORCHESTRATOR].registry.get(test_id)
    if record is None:
        return web.json_response({"error": "not found"}, status=404)
    return web.json_response(record.to_json())


@routes.get("/health")
async def health(request: web.Request) -> web.Response:
    """Report engine availability and limits."""
    orchestrator = request.app[ORCHESTRATOR]

    statuses = await asyncio.gather(
        *(engine.health() for engine in orchestrator.engines.values())
    )
    engines = {
        key: {"installed": status.installed, "version": status.version}
        for key, status in zip(orchestrator.engines, statuses, strict=True)
    }

    payload: dict[str, Any] = {
        "uptime": round(time.monotonic() - request.app[STARTED_AT], 3),
        "jmeter": engines.get("jmeter", {"installed": False, "version": None}),
        "engines": engines,
        "demoAllowed": orchestrator.settings.allow_demo,
        "running": orchestrator.running_count,
        "queued": len(orchestrator.queued_ids),
    }
    if "demo" in orchestrator.engines:
        limits = orchestrator.limits_for("demo")
        payload["demoLimits"] = {
            "maxVus": limits.max_vus,
            "maxDuration": limits.max_duration,
        }
    return web.json_response(payload)


@routes.get("/history")
async def history(request: web.Request) -> web.Response:
    """Return the newest history entries, oldest first."""
    limit = clamp(
        int_param(request.query.get("limit"), DEFAULT_TAIL_LIMIT), 1, MAX_TAIL_LIMIT
    )
    entries = request.app[ORCHESTRATOR].history.tail(limit)
    return web.json_response(entries)


@routes.get("/history/download")
async def download_history(request: web.Request) -> web.StreamResponse:
    """Stream the raw NDJSON history as an attachment."""
    history_log = request.app[ORCHESTRATOR].history
    if not history_log.exists():
        return web.json_response({"error": "no history file"}, status=404)

    return web.FileResponse(
        history_log.path,
        headers={
            "Content-Type": "application/x-ndjson",
            "Content-Disposition": f'attachment; filename="{HISTORY_FILENAME}"',
        },
    )


@routes.get("/history/tail")
async def tail_history(request: web.Request) -> web.StreamResponse:
    """Stream newly appended history entries as server-sent events."""
    broadcaster = request.app[ORCHESTRATOR].history.broadcaster
    response = web.StreamResponse(
        headers={
            "Content-Type": "text/event-stream",
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        }
    )
    async with broadcaster.listen() as subscription:
        await response.prepare(request)
        try:
            while True:
                try:
                    entry = await asyncio.wait_for(
                        subscription.get(), timeout=request.app[KEEPALIVE]
                    )
                except TimeoutError:
                    await response.write(b": keep-alive\n\n")
                    continue
                await response.write(f"data: {json.dumps(entry)}\n\n".encode())
        except ConnectionResetError:
            log.debug("Live tail subscriber disconnected")
    return response


@routes.post("/admin/seed-history")
async def seed_history(request: web.Request) -> web.Response:
    """Append synthetic completed entries."""
    orchestrator = require_admin(request)
    body = await read_json(request)
    count = clamp(int_param(body.get("count"), DEFAULT_SEED_COUNT), 1, MAX_SEED_COUNT)
    entries = orchestrator.seed_history(count)
    return web.json_response({"seeded": len(entries)})


@routes.post("/admin/clear-history")
async def clear_history(request: web.Request) -> web.Response:
    """Delete the history file."""
    orchestrator = require_admin(request)
    orchestrator.history.clear()
    return web.json_response({"cleared": True})


@routes.post("/admin/cleanup-history")
async def cleanup_history(request: web.Request) -> web.Response:
    """Keep only the newest ``maxEntries`` history entries."""
    orchestrator = require_admin(request)
    body = await read_json(request)
    max_entries = clamp(
        int_param(body.get("maxEntries"), DEFAULT_MAX_ENTRIES), 1, MAX_MAX_ENTRIES
    )
    kept = orchestrator.history.truncate_to_last(max_entries)
    return web.json_response({"kept": kept})


async def _close_orchestrator(app: web.Application) -> None:
    await app[ORCHESTRATOR].close()


def create_app(
    orchestrator: TestOrchestrator, *, keepalive_interval: float = KEEPALIVE_INTERVAL
) -> web.Application:
    """Build the control API around an orchestrator."""
    app = web.Application(middlewares=[rejection_middleware])
    app[ORCHESTRATOR] = orchestrator
    app[STARTED_AT] = time.monotonic()
    app[KEEPALIVE] = keepalive_interval
    app.add_routes(routes)
    app.on_shutdown.append(_close_orchestrator)
    return app
