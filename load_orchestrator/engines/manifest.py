"""Engine manifest definition for the plugin system."""

from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from typing import Generic, TypeVar

from pydantic_settings import BaseSettings

from load_orchestrator.engines.base import LoadEngine

ConfigT = TypeVar("ConfigT", bound=BaseSettings)


@dataclass(frozen=True, kw_only=True)
class EngineManifest(Generic[ConfigT]):
    """Manifest describing an engine plugin.

    The manifest references the engine's settings class and the factory
    that builds the engine with its resources for lazy loading by key.
    """

    config_cls: type[ConfigT]
    engine_factory: Callable[[ConfigT], AbstractAsyncContextManager[LoadEngine]]
