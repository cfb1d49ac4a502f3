from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Final
from urllib.parse import SplitResult, urlsplit, urlunsplit

from usage_sentinel.core.config.settings import BASE_DIR, Settings, get_settings

logger = logging.getLogger(__name__)

_ENV_PREFIX: Final[str] = "USAGE_SENTINEL_"
_PROXY_ENV_KEYS: Final[tuple[str, ...]] = ("HTTP_PROXY", "HTTPS_PROXY", "NO_PROXY")
_REDACT_VALUE: Final[str] = "***"
_SECRET_TOKENS: Final[tuple[str, ...]] = ("TOKEN", "PASSWORD", "SECRET", "WEBHOOK_URL", "DATABASE_URL")


@dataclass(frozen=True, slots=True)
class StartupEnvSnapshot:
    values: dict[str, str | None]

    @classmethod
    def from_process_env(cls) -> StartupEnvSnapshot:
        values: dict[str, str | None] = {}
        for key in _PROXY_ENV_KEYS:
            values[key] = os.environ.get(key) or os.environ.get(key.lower())
        for key, value in os.environ.items():
            if key.startswith(_ENV_PREFIX):
                values[key] = value
        return cls(values=values)


def log_startup_config(settings: Settings | None = None) -> None:
    settings = settings or get_settings()
    if not settings.startup_log_config and not settings.startup_log_env:
        return

    env_files = (BASE_DIR / ".env", BASE_DIR / ".env.local")
    env_file_status = ", ".join(f"{path.name}={'present' if path.exists() else 'missing'}" for path in env_files)
    logger.info("Startup config: env_files=[%s]", env_file_status)

    if settings.startup_log_env:
        _log_env_snapshot(StartupEnvSnapshot.from_process_env())

    if settings.startup_log_config:
        _log_settings(settings)


def _log_env_snapshot(snapshot: StartupEnvSnapshot) -> None:
    logger.info("Startup env snapshot (allowlist):")
    for key, value in sorted(snapshot.values.items()):
        if value is None:
            logger.info("  %s=<unset>", key)
        elif key in _PROXY_ENV_KEYS:
            logger.info("  %s=%s", key, redact_url_userinfo(value))
        else:
            logger.info("  %s=%s", key, redact_value(key, value))


def _log_settings(settings: Settings) -> None:
    data = settings.model_dump(mode="json")
    logger.info("Startup settings snapshot:")
    for key, value in sorted(data.items()):
        logger.info("  %s=%s", key, redact_value(key, value))


def redact_value(key: str, value: object) -> object:
    if value is None:
        return value
    upper = key.upper()
    if any(token in upper for token in _SECRET_TOKENS):
        return _REDACT_VALUE
    return value


def redact_url_userinfo(value: str) -> str:
    """Mask ``user:pass@`` in proxy-style URLs; values without credentials pass through."""
    if not value or "@" not in value:
        return value
    if "://" not in value:
        userinfo, rest = value.rsplit("@", 1)
        return f"{_mask_userinfo(userinfo)}@{rest}"
    try:
        split = urlsplit(value)
    except ValueError:
        return _REDACT_VALUE
    if "@" not in split.netloc:
        return value
    userinfo, hostport = split.netloc.rsplit("@", 1)
    return urlunsplit(
        SplitResult(
            scheme=split.scheme,
            netloc=f"{_mask_userinfo(userinfo)}@{hostport}",
            path=split.path,
            query=split.query,
            fragment=split.fragment,
        )
    )


def _mask_userinfo(userinfo: str) -> str:
    if ":" in userinfo:
        return f"{_REDACT_VALUE}:{_REDACT_VALUE}"
    return _REDACT_VALUE
