"""Runtime configuration for the control API and orchestrator."""

from collections.abc import Sequence
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_ALLOWED_HOSTS = ("localhost", "127.0.0.1", "::1", "example.com")

VUS_CEILING = 500
DURATION_CEILING = 3600


class Settings(BaseSettings):
    """Orchestrator settings read from the environment."""

    model_config = SettingsConfigDict(extra="ignore")

    host: str = "127.0.0.1"
    port: int = 3001

    max_concurrent_tests: int = Field(default=3, description="Simultaneous runs")
    max_vus: int = Field(default=200, description="VU ceiling for every engine")
    max_duration: int = Field(default=300, description="Duration ceiling (seconds)")

    allow_all: bool = Field(default=False, description="Allow any target host")
    allowed_hosts: Sequence[str] = DEFAULT_ALLOWED_HOSTS
    allow_admin: bool = False
    allow_demo: bool = False

    history_file: Path = Path("tests_history.ndjson")
    retained_records: int = Field(
        default=1000, description="Finished runs kept queryable in memory"
    )

    @field_validator("max_concurrent_tests", "retained_records")
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        return max(1, value)

    @field_validator("max_vus")
    @classmethod
    def _clamp_vus(cls, value: int) -> int:
        return min(VUS_CEILING, max(1, value))

    @field_validator("max_duration")
    @classmethod
    def _clamp_duration(cls, value: int) -> int:
        return min(DURATION_CEILING, max(1, value))

    def engine_enabled(self, engine: str) -> bool:
        """Whether an engine may be used; only the in-process engine is gated."""
        if engine == "demo":
            return self.allow_demo
        return True
