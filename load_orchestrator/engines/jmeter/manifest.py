"""JMeter engine manifest."""

from load_orchestrator.engines.jmeter.config import JMeterConfig
from load_orchestrator.engines.jmeter.engine import JMeterEngine
from load_orchestrator.engines.manifest import EngineManifest

jmeter_manifest = EngineManifest(
    config_cls=JMeterConfig,
    engine_factory=JMeterEngine.from_config,
)
