from __future__ import annotations

import os
from functools import lru_cache
from typing import Optional

from pydantic import BaseModel, Field


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    # docker CLI
    docker_binary: str = Field(default_factory=lambda: os.getenv("COMPOSE_CLIENT_DOCKER_BIN", "docker"))
    compose_file_name: str = Field(default="docker-compose.yml")

    # Execution
    pipe_mode: bool = Field(default_factory=lambda: _env_flag("COMPOSE_CLIENT_PIPE_MODE", True))
    # raw env string, parsed by pydantic
    command_timeout: Optional[float] = Field(
        default_factory=lambda: os.getenv("COMPOSE_CLIENT_COMMAND_TIMEOUT") or None,
        validate_default=True,
        description="direct mode only, seconds",
    )

    # Engine API
    ping_engine: bool = Field(default=True)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
