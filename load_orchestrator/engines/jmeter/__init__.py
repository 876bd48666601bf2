"""JMeter engine module."""

from load_orchestrator.engines.jmeter.config import JMeterConfig
from load_orchestrator.engines.jmeter.engine import JMeterEngine
from load_orchestrator.engines.jmeter.manifest import jmeter_manifest

__all__ = ["JMeterConfig", "JMeterEngine", "jmeter_manifest"]
