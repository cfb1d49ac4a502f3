from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parents[3]

DEFAULT_HOME_DIR = Path.home() / ".usage-sentinel"
DEFAULT_DB_PATH = DEFAULT_HOME_DIR / "store.db"

MIN_POLL_INTERVAL_SECONDS = 30.0


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="USAGE_SENTINEL_",
        env_file=(BASE_DIR / ".env", BASE_DIR / ".env.local"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    database_url: str = f"sqlite+aiosqlite:///{DEFAULT_DB_PATH}"
    database_pool_size: int = Field(default=5, gt=0)
    database_max_overflow: int = Field(default=5, ge=0)
    database_pool_timeout_seconds: float = Field(default=30.0, gt=0)
    refresh_enabled: bool = True
    poll_interval_seconds: float = Field(default=120.0, gt=0)
    history_max_snapshots: int = Field(default=120, gt=0)
    command_timeout_seconds: float = Field(default=20.0, gt=0)
    http_timeout_seconds: float = Field(default=15.0, gt=0)
    http_max_retries: int = Field(default=2, ge=0)
    github_api_base_url: str = "https://api.github.com"
    gh_command: str = "gh auth token"
    amp_command: str = "amp usage"
    # Hours for the Amp free tier to regenerate from empty to its full limit.
    amp_regen_hours: float = Field(default=24.0, gt=0)
    copilot_reset_timezone: str = "UTC"
    enabled_sources_default: Annotated[list[str], NoDecode] = Field(default_factory=list)
    notifier: Literal["log", "webhook", "command"] = "log"
    notify_webhook_url: str | None = None
    notify_command: str = "notify-send"
    startup_log_config: bool = False
    startup_log_env: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    @field_validator("database_url")
    @classmethod
    def _expand_database_url(cls, value: str) -> str:
        for prefix in ("sqlite+aiosqlite:///", "sqlite:///"):
            if value.startswith(prefix):
                path = value[len(prefix) :]
                if path.startswith("~"):
                    return f"{prefix}{Path(path).expanduser()}"
        return value

    @field_validator("poll_interval_seconds")
    @classmethod
    def _enforce_poll_floor(cls, value: float) -> float:
        return max(MIN_POLL_INTERVAL_SECONDS, float(value))

    @field_validator("enabled_sources_default", mode="before")
    @classmethod
    def _normalize_enabled_sources(cls, value: object) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            entries = [entry.strip() for entry in value.split(",")]
            return [entry for entry in entries if entry]
        if isinstance(value, list):
            normalized: list[str] = []
            for entry in value:
                if isinstance(entry, str) and entry.strip():
                    normalized.append(entry.strip())
            return normalized
        raise TypeError("enabled_sources_default must be a list or comma-separated string")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
