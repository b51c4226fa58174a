from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, field_validator


class UpstreamSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    base_url: str = "http://localhost:8000"
    fallback_base_urls: Sequence[str] = ()
    timeout_seconds: float = Field(default=9.0, gt=0)
    default_run_id: Optional[str] = None

    @field_validator("fallback_base_urls", mode="before")
    @classmethod
    def _split_fallbacks(cls, value):
        # Environment overrides arrive as a single comma-separated string.
        if isinstance(value, str):
            return tuple(part.strip() for part in value.split(",") if part.strip())
        return value

    @field_validator("default_run_id", mode="before")
    @classmethod
    def _blank_run_id(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value.strip() if isinstance(value, str) else value


class CacheSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    manifest_ttl_seconds: float = Field(default=30.0, ge=0)


class PollingSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    first_poll_delay_seconds: float = Field(default=1.2, ge=0)
    poll_interval_seconds: float = Field(default=3.5, gt=0)
    recent_jobs_limit: int = Field(default=8, ge=1)


class FileRotationSettings(BaseModel):
    """
    Date-based rotation settings (daily).

    This maps cleanly to Python's standard library TimedRotatingFileHandler behavior.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    backup_count: int = 7


class FileLoggingSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    path: str = ""
    rotation: FileRotationSettings = FileRotationSettings()


class LoggingSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    level: str = "INFO"
    file: FileLoggingSettings = FileLoggingSettings()
    logger_levels: dict[str, str] = Field(default_factory=dict)


class DiscordSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    token: str = ""
    command_prefix: str = "!"


class AppConfig(BaseModel):
    """
    Effective runtime configuration after applying all precedence rules.

    Every field carries a default so the bridge can start with no config file at all.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    upstream: UpstreamSettings = UpstreamSettings()
    cache: CacheSettings = CacheSettings()
    polling: PollingSettings = PollingSettings()
    logging: LoggingSettings = LoggingSettings()
    discord: DiscordSettings = DiscordSettings()


@dataclass(frozen=True, slots=True)
class ConfigLoadRequest:
    """
    Optional inputs for a configuration loader.

    Implementations may use these to control where configuration is read from.
    """

    yaml_path: str = "data/config/config.yaml"
    env_prefix: str = "APP__"
    dotenv_path: Optional[str] = "data/.env"
