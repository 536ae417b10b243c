"""
Configuration and settings for the TR2B backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="TR2B_",
        extra="ignore",
    )

    app_name: str = Field(default="TR2B")
    api_prefix: str = Field(default="/api")
    environment: str = Field(default="development")
    platform: str = Field(default="Python ASGI")

    # "process": one long-lived server. "edge": many instances sharing Redis.
    deployment_mode: Literal["process", "edge"] = Field(default="process")

    # Development toggles
    use_in_memory_backends: bool = Field(default=False)

    # Key/value store (Redis protocol)
    redis_url: Optional[str] = Field(default=None)
    redis_key_prefix: str = Field(default="tr2b:")
    kv_use_scripts: bool = Field(default=True)
    store_timeout_seconds: float = Field(default=2.0, gt=0)

    # Sessions
    session_ttl_seconds: int = Field(default=3600, ge=1)

    # SPA build output (index.html + assets/)
    static_dir: Optional[str] = Field(default="static")

    cors_origins: list[str] = Field(default_factory=lambda: ["*"])
    log_level: str = Field(default="INFO")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
