"""Configuration for the JMeter engine."""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

BUNDLED_TEMPLATE = Path(__file__).with_name("template.jmx")


class JMeterConfig(BaseSettings):
    """Configuration for the JMeter engine.

    A run is killed after ``duration * jmeter_timeout_factor +
    jmeter_timeout_grace`` seconds. Working directories of the newest
    ``jmeter_retained_runs`` finished runs are kept, older ones are removed.
    """

    model_config = SettingsConfigDict(extra="ignore")

    jmeter_bin: str = "jmeter"
    jmeter_template: Path = BUNDLED_TEMPLATE
    jmeter_timeout_factor: float = Field(default=3.0, ge=1.0)
    jmeter_timeout_grace: float = Field(default=60.0, ge=0.0)
    jmeter_version_timeout: float = Field(default=3.0, gt=0)
    jmeter_retained_runs: int = Field(default=20, ge=1)

    def supervision_timeout(self, duration_seconds: int) -> float:
        """Seconds to wait for a run before killing the process."""
        return duration_seconds * self.jmeter_timeout_factor + self.jmeter_timeout_grace
