"""Configuration for the in-process demo engine."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DemoEngineConfig(BaseSettings):
    """Configuration for the demo engine.

    Ceilings are deliberately tighter than the global ones because the load
    is generated inside the orchestrator process.
    """

    model_config = SettingsConfigDict(extra="ignore")

    max_demo_vus: int = Field(default=50, ge=1)
    max_demo_duration: int = Field(default=120, ge=1)
    demo_request_timeout: float = Field(default=30.0, gt=0)
