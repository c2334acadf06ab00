"""Application configuration: loaded from environment variables."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration loaded from env vars (or ``.env`` file)."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    ollama_base_url: str = "http://localhost:11434"
    default_model: str = "gemma3:4b"
    allowed_model_prefixes: list[str] = ["gemma3:1b", "gemma3:4b"]

    max_retries: int = Field(default=3, ge=1)
    base_delay_ms: int = Field(default=300, gt=0)
    cancel_poll_ms: int = Field(default=25, ge=1, le=50)
    cancel_buffer_size: int = Field(default=16, ge=1)

    short_timeout_s: float = Field(default=60.0, gt=0)
    long_timeout_s: float = Field(default=180.0, gt=0)
    connect_timeout_s: float = Field(default=5.0, gt=0)

    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = 8000

    @field_validator("allowed_model_prefixes")
    @classmethod
    def _prefixes_not_empty(cls, v: list[str]) -> list[str]:
        if not v or any(not p for p in v):
            msg = "allowed_model_prefixes must be a non-empty list of non-empty prefixes."
            raise ValueError(msg)
        return v

    @field_validator("ollama_base_url")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the singleton application settings (cached after first call)."""
    return Settings()
