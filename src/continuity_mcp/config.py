"""Configuration management for Continuity MCP."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Annotated
import os

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class ContinuitySettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./storage/continuity.db",
        validation_alias="CONTINUITY_DATABASE_URL",
    )
    log_level: str = Field(default="INFO", validation_alias="CONTINUITY_LOG_LEVEL")
    host_location: str | None = Field(default=None, validation_alias="HOST_MACHINE")
    footer_hint_threshold: int = Field(
        default=30, validation_alias="CONTINUITY_FOOTER_HINT_THRESHOLD"
    )
    checkpoint_retention_days: int = Field(
        default=30, validation_alias="CONTINUITY_CHECKPOINT_RETENTION_DAYS"
    )
    failure_channel_size: int = Field(
        default=100, validation_alias="CONTINUITY_FAILURE_CHANNEL_SIZE"
    )
    failure_alert_threshold: int = Field(
        default=5, validation_alias="CONTINUITY_FAILURE_ALERT_THRESHOLD"
    )
    reconstruction_tier_timeout: float = Field(
        default=10.0, validation_alias="CONTINUITY_RECONSTRUCTION_TIMEOUT"
    )
    redaction_pattern_paths: Annotated[tuple[Path, ...], NoDecode] = Field(
        default=(), validation_alias="CONTINUITY_REDACTION_PATHS"
    )
    cleanup_on_start: bool = Field(default=True, validation_alias="CONTINUITY_CLEANUP_ON_START")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "CONTINUITY_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("redaction_pattern_paths", mode="before")
    @classmethod
    def _parse_redaction_paths(cls, value):
        if value is None or value == "":
            return ()
        if isinstance(value, (list, tuple)):
            return tuple(Path(str(item)) for item in value)
        if isinstance(value, str):
            parts = [part.strip() for part in value.split(os.pathsep) if part.strip()]
            return tuple(Path(part) for part in parts)
        raise TypeError(
            "CONTINUITY_REDACTION_PATHS must be a list of paths or a path-separated string"
        )

    @field_validator("footer_hint_threshold")
    @classmethod
    def _validate_footer_threshold(cls, value: int) -> int:
        if not 0 <= value <= 100:
            raise ValueError("CONTINUITY_FOOTER_HINT_THRESHOLD must be between 0 and 100")
        return value

    @field_validator("checkpoint_retention_days", "failure_channel_size", "failure_alert_threshold")
    @classmethod
    def _validate_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("value must be >= 1")
        return value

    @field_validator("reconstruction_tier_timeout")
    @classmethod
    def _validate_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("CONTINUITY_RECONSTRUCTION_TIMEOUT must be > 0")
        return value


@lru_cache(maxsize=1)
def get_settings() -> ContinuitySettings:
    """Return cached settings instance."""

    settings = ContinuitySettings()
    settings.redaction_pattern_paths = tuple(
        path.expanduser().resolve() for path in settings.redaction_pattern_paths
    )
    return settings


__all__ = ["ContinuitySettings", "get_settings"]
