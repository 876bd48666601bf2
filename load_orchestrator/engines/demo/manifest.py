"""Demo engine manifest."""

from load_orchestrator.engines.demo.config import DemoEngineConfig
from load_orchestrator.engines.demo.engine import DemoEngine
from load_orchestrator.engines.manifest import EngineManifest

demo_manifest = EngineManifest(
    config_cls=DemoEngineConfig,
    engine_factory=DemoEngine.from_config,
)
