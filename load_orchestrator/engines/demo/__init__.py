"""In-process demo engine module."""

from load_orchestrator.engines.demo.config import DemoEngineConfig
from load_orchestrator.engines.demo.engine import DemoEngine
from load_orchestrator.engines.demo.manifest import demo_manifest

__all__ = ["DemoEngine", "DemoEngineConfig", "demo_manifest"]
