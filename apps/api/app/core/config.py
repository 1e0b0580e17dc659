"""Application configuration for the signaling service."""
from __future__ import annotations

from functools import lru_cache
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    app_env: str = Field(default="development")
    log_level: str = Field(default="INFO")
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)
    reload: bool = Field(default=False)
    cors_allow_origins: Annotated[list[str], NoDecode] = Field(default_factory=lambda: ["*"])

    room_default_capacity: int = Field(default=10, ge=1)
    room_max_capacity: int = Field(default=50, ge=1)
    room_sweep_interval_seconds: float = Field(default=300.0, gt=0)

    offer_sweep_interval_seconds: float = Field(default=60.0, gt=0)
    offer_max_age_seconds: float = Field(default=30.0, gt=0)

    rate_limit_sweep_interval_seconds: float = Field(default=300.0, gt=0)
    api_rate_limit: int = Field(default=100, ge=1)
    api_rate_window_seconds: float = Field(default=15 * 60)
    room_creation_rate_limit: int = Field(default=10, ge=1)
    room_creation_rate_window_seconds: float = Field(default=60 * 60)
    event_rate_limit: int = Field(default=50, ge=1)
    event_rate_window_seconds: float = Field(default=60)

    ice_servers: Annotated[list[str], NoDecode] = Field(default_factory=lambda: [
        "stun:stun.l.google.com:19302",
        "stun:stun1.l.google.com:19302",
        "stun:stun2.l.google.com:19302",
    ])

    @field_validator("cors_allow_origins", "ice_servers", mode="before")
    @classmethod
    def _split_csv(cls, value: object) -> object:
        """Allow comma-separated env values for list settings."""

        if isinstance(value, str):
            parts = [item.strip() for item in value.split(",") if item.strip()]
            return parts
        return value


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance."""

    return Settings()


settings = get_settings()
