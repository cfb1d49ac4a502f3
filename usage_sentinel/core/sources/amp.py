from __future__ import annotations

import re
from datetime import datetime
from typing import Sequence

from usage_sentinel.core.clients.process import CommandError, run_command
from usage_sentinel.core.errors import FetchError
from usage_sentinel.core.notifications.definitions import DEFAULT_COOLDOWN_SECONDS
from usage_sentinel.core.notifications.models import (
    NotificationContext,
    NotificationDefinition,
    NotificationEvent,
    NotificationInputSpec,
)
from usage_sentinel.core.sources.base import UsageSource
from usage_sentinel.core.usage.forecast import linear_forecast
from usage_sentinel.core.usage.types import ForecastResult, UsageResult, UsageSnapshot

AMP_SOURCE_NAME = "AMP"
RECHARGED_ABOVE = "rechargedAbove"

_AMP_FREE_RE = re.compile(r"Amp Free: \$([\d.]+)/\$([\d.]+) remaining")


def parse_amp_usage(output: str) -> tuple[float, float] | None:
    match = _AMP_FREE_RE.search(output)
    if match is None:
        return None
    try:
        return float(match.group(1)), float(match.group(2))
    except ValueError:
        return None


def _recharged_above(context: NotificationContext) -> NotificationEvent | None:
    threshold = context.value("threshold", 90)
    current = context.current.percent_remaining
    if current < threshold:
        return None
    # A recharge is a transition; without a previous reading there is nothing to compare.
    if context.previous is None or context.previous.usage.percent_remaining >= threshold:
        return None

    return NotificationEvent(
        title=f"{context.source_name} recharged",
        body=f"Free credits are back to {current:.0f}%, above {threshold:.0f}%.",
        cooldown_seconds=DEFAULT_COOLDOWN_SECONDS,
        cycle_key=None,
    )


RECHARGED_ABOVE_DEFINITION = NotificationDefinition(
    id=RECHARGED_ABOVE,
    title="Recharged above",
    detail="Notifies when regenerating credits climb back above your threshold.",
    inputs=(
        NotificationInputSpec(
            id="threshold",
            label="Threshold",
            unit="%",
            default=90,
            min=1,
            max=100,
            step=1,
        ),
    ),
    evaluate=_recharged_above,
)


class AmpSource(UsageSource):
    name = AMP_SOURCE_NAME
    requirements = "Requires the Amp CLI (`amp`) on PATH; reads the Amp Free balance from `amp usage`."

    def __init__(
        self,
        *,
        command: str = "amp usage",
        command_timeout_seconds: float = 20.0,
        regen_hours: float = 24.0,
    ) -> None:
        self._command = command
        self._command_timeout_seconds = command_timeout_seconds
        self._regen_hours = regen_hours

    @property
    def regen_percent_per_hour(self) -> float:
        return 100.0 / self._regen_hours

    async def fetch_usage(self) -> UsageResult:
        try:
            result = await run_command(self._command, timeout_seconds=self._command_timeout_seconds)
        except CommandError as exc:
            raise FetchError(self.name, exc.message) from exc

        output = result.output
        if result.returncode != 0:
            raise FetchError(self.name, output or f"exit status {result.returncode}")
        parsed = parse_amp_usage(output)
        if parsed is None:
            raise FetchError(self.name, f"Failed to parse: {output}")
        remaining, limit = parsed
        return self.validated_result(remaining, limit)

    def forecast(
        self,
        current: UsageResult,
        history: Sequence[UsageSnapshot],
        *,
        now: datetime,
    ) -> ForecastResult | None:
        return linear_forecast(
            self.name,
            current,
            history,
            rate_percent_per_hour=self.regen_percent_per_hour,
            now=now,
        )

    @property
    def notification_definitions(self) -> list[NotificationDefinition]:
        return [*super().notification_definitions, RECHARGED_ABOVE_DEFINITION]
