from __future__ import annotations

import json
import logging
from datetime import datetime, timezone, tzinfo
from typing import Any, Mapping, Sequence

import aiohttp
from aiohttp_retry import ExponentialRetry

from usage_sentinel.core.clients.http import get_http_client
from usage_sentinel.core.clients.process import CommandError, run_command
from usage_sentinel.core.errors import FetchError
from usage_sentinel.core.notifications.models import (
    NotificationContext,
    NotificationDefinition,
    NotificationEvent,
    NotificationInputSpec,
)
from usage_sentinel.core.sources.base import UsageSource
from usage_sentinel.core.usage import clamp_percent
from usage_sentinel.core.usage.forecast import calendar_cycle_forecast
from usage_sentinel.core.usage.types import ForecastResult, UsageResult, UsageSnapshot
from usage_sentinel.core.utils.time import month_bounds

logger = logging.getLogger(__name__)

COPILOT_SOURCE_NAME = "Copilot"
MONTHLY_PACING = "monthlyPacing"

_QUOTA_PATH = "/copilot_internal/user"
_RETRY_STATUSES = {500, 502, 503, 504}


def parse_quota_payload(payload: object) -> tuple[float, float] | None:
    if not isinstance(payload, Mapping):
        return None
    snapshots = payload.get("quota_snapshots")
    if not isinstance(snapshots, Mapping):
        return None
    premium = snapshots.get("premium_interactions")
    if not isinstance(premium, Mapping):
        return None
    remaining = premium.get("remaining")
    entitlement = premium.get("entitlement")
    # bool is an int subclass; it is never a valid count here.
    if isinstance(remaining, bool) or isinstance(entitlement, bool):
        return None
    if not isinstance(remaining, int) or not isinstance(entitlement, int):
        return None
    return float(remaining), float(entitlement)


def _month_progress(percent_remaining: float, at: datetime, tz: tzinfo) -> tuple[float, float, str]:
    start, reset = month_bounds(at, tz)
    elapsed = (at - start).total_seconds() / (reset - start).total_seconds() * 100.0
    used = 100.0 - clamp_percent(percent_remaining)
    cycle_key = f"{at.replace(tzinfo=timezone.utc).astimezone(tz):%Y-%m}"
    return used, elapsed, cycle_key


def monthly_pacing_definition(tz: tzinfo = timezone.utc) -> NotificationDefinition:
    def evaluate(context: NotificationContext) -> NotificationEvent | None:
        margin = context.value("marginPercent", 10)
        used, elapsed, cycle_key = _month_progress(context.current.percent_remaining, context.now, tz)
        if used - elapsed < margin:
            return None

        previous = context.previous
        if previous is not None:
            prev_used, prev_elapsed, _ = _month_progress(
                previous.usage.percent_remaining,
                previous.timestamp,
                tz,
            )
            if prev_used - prev_elapsed >= margin:
                return None

        return NotificationEvent(
            title=f"{context.source_name} pacing alert",
            body=(
                f"Used {used:.0f}% of this month's quota with only {elapsed:.0f}% of the month elapsed."
            ),
            cooldown_seconds=None,
            cycle_key=cycle_key,
        )

    return NotificationDefinition(
        id=MONTHLY_PACING,
        title="Ahead of monthly pace",
        detail="Notifies once per month when usage runs ahead of the calendar by your margin.",
        inputs=(
            NotificationInputSpec(
                id="marginPercent",
                label="Margin",
                unit="%",
                default=10,
                min=1,
                max=50,
                step=1,
            ),
        ),
        evaluate=evaluate,
    )


class CopilotSource(UsageSource):
    name = COPILOT_SOURCE_NAME
    requirements = "Requires the GitHub CLI (`gh`) to be installed and logged in."

    def __init__(
        self,
        *,
        api_base_url: str = "https://api.github.com",
        gh_command: str = "gh auth token",
        command_timeout_seconds: float = 20.0,
        http_timeout_seconds: float = 15.0,
        http_max_retries: int = 2,
        reset_tz: tzinfo = timezone.utc,
    ) -> None:
        self._api_base_url = api_base_url.rstrip("/")
        self._gh_command = gh_command
        self._command_timeout_seconds = command_timeout_seconds
        self._http_timeout_seconds = http_timeout_seconds
        self._http_max_retries = http_max_retries
        self._reset_tz = reset_tz

    async def fetch_usage(self) -> UsageResult:
        token = await self._auth_token()
        payload = await self._fetch_quota_payload(token)
        parsed = parse_quota_payload(payload)
        if parsed is None:
            raise FetchError(self.name, "Missing/invalid fields in quota payload")
        remaining, entitlement = parsed
        return self.validated_result(remaining, entitlement)

    def forecast(
        self,
        current: UsageResult,
        history: Sequence[UsageSnapshot],
        *,
        now: datetime,
    ) -> ForecastResult | None:
        return calendar_cycle_forecast(self.name, current, history, now=now, tz=self._reset_tz)

    @property
    def notification_definitions(self) -> list[NotificationDefinition]:
        return [*super().notification_definitions, monthly_pacing_definition(self._reset_tz)]

    async def _auth_token(self) -> str:
        try:
            result = await run_command(self._gh_command, timeout_seconds=self._command_timeout_seconds)
        except CommandError as exc:
            raise FetchError(self.name, exc.message) from exc
        token = result.stdout.strip()
        if result.returncode != 0 or not token:
            raise FetchError(self.name, "No token from gh")
        return token

    async def _fetch_quota_payload(self, token: str) -> Any:
        client = get_http_client()
        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github.v3+json",
        }
        retry_options = ExponentialRetry(attempts=self._http_max_retries + 1, statuses=_RETRY_STATUSES)
        try:
            async with client.retry_client.get(
                f"{self._api_base_url}{_QUOTA_PATH}",
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self._http_timeout_seconds),
                retry_options=retry_options,
            ) as response:
                if response.status != 200:
                    raise FetchError(self.name, f"Bad status code {response.status}", status_code=response.status)
                body = await response.text()
        except aiohttp.ClientError as exc:
            raise FetchError(self.name, f"Request failed: {exc}") from exc
        except TimeoutError as exc:
            raise FetchError(self.name, "Request timed out") from exc

        try:
            return json.loads(body)
        except json.JSONDecodeError as exc:
            raise FetchError(self.name, "Response is not valid JSON") from exc
