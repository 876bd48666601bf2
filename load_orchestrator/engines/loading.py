"""Loading of engines from entry points."""

from collections.abc import AsyncIterator, Mapping, Sequence
from contextlib import AsyncExitStack, asynccontextmanager
from importlib.metadata import entry_points
from typing import Any

from load_orchestrator.engines.base import LoadEngine
from load_orchestrator.engines.manifest import EngineManifest
from load_orchestrator.errors import EngineNotFoundError

ENTRY_POINT_GROUP = "load_orchestrator.engines"


def available_engines() -> Sequence[str]:
    """Keys of every registered engine."""
    return sorted(entry.name for entry in entry_points(group=ENTRY_POINT_GROUP))


def load_engine_manifest(key: str) -> EngineManifest[Any]:
    """Load an engine manifest by key.

    Args:
        key: The engine key as registered in pyproject.toml
             (e.g., "jmeter", "demo")

    Returns:
        The engine manifest instance

    Raises:
        EngineNotFoundError: If no engine with the given key is found

    """
    entries = entry_points(group=ENTRY_POINT_GROUP)

    for entry in entries:
        if entry.name == key:
            manifest: EngineManifest[Any] = entry.load()
            return manifest

    available = [e.name for e in entries]
    raise EngineNotFoundError(
        f"Engine '{key}' not found. Available engines: {available}"
    )


@asynccontextmanager
async def open_engines(
    keys: Sequence[str] | None = None,
) -> AsyncIterator[Mapping[str, LoadEngine]]:
    """Build engines from their manifests and close them on exit.

    Each engine reads its own settings from the environment.
    """
    async with AsyncExitStack() as stack:
        engines: dict[str, LoadEngine] = {}
        for key in keys if keys is not None else available_engines():
            manifest = load_engine_manifest(key)
            engines[key] = await stack.enter_async_context(
                manifest.engine_factory(manifest.config_cls())
            )
        yield engines
