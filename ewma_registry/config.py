"""Runtime configuration loaded via Pydantic settings."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Registry limits and logging options sourced from environment variables."""

    max_instances: int = Field(default=100_000, ge=1, alias="EWMA_MAX_INSTANCES")
    max_outstanding_buffers: int = Field(default=10_000, ge=1, alias="EWMA_MAX_OUTSTANDING_BUFFERS")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings instance."""

    return Settings()  # type: ignore[call-arg]
