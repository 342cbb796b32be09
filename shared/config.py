"""
Shared configuration management for the rules engine.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="RULES_",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")


class EngineSettings(BaseConfig):
    """Evaluation engine configuration."""

    # Treat facts with no binding as undefined instead of failing
    allow_undefined_facts: bool = Field(default=False)

    # Metrics
    enable_metrics: bool = Field(default=True)


def get_settings(**overrides) -> EngineSettings:
    """Get engine settings, letting explicit keyword overrides win over the environment."""
    return EngineSettings(**overrides)
