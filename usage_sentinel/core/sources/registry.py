from __future__ import annotations

import logging
from datetime import timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from usage_sentinel.core.config.settings import Settings, get_settings
from usage_sentinel.core.sources.amp import AmpSource
from usage_sentinel.core.sources.base import UsageSource
from usage_sentinel.core.sources.copilot import CopilotSource

logger = logging.getLogger(__name__)


def _reset_timezone(name: str) -> tzinfo:
    if name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except ZoneInfoNotFoundError:
        logger.warning("Unknown reset timezone=%s, falling back to UTC", name)
        return timezone.utc


def build_sources(settings: Settings | None = None) -> list[UsageSource]:
    settings = settings or get_settings()
    sources: list[UsageSource] = [
        CopilotSource(
            api_base_url=settings.github_api_base_url,
            gh_command=settings.gh_command,
            command_timeout_seconds=settings.command_timeout_seconds,
            http_timeout_seconds=settings.http_timeout_seconds,
            http_max_retries=settings.http_max_retries,
            reset_tz=_reset_timezone(settings.copilot_reset_timezone),
        ),
        AmpSource(
            command=settings.amp_command,
            command_timeout_seconds=settings.command_timeout_seconds,
            regen_hours=settings.amp_regen_hours,
        ),
    ]
    names = [source.name for source in sources]
    if len(set(names)) != len(names):
        raise ValueError(f"Duplicate usage source names: {names}")
    return sources
