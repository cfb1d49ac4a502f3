from __future__ import annotations

from usage_sentinel.core.notifications.models import (
    NotificationContext,
    NotificationDefinition,
    NotificationEvent,
    NotificationInputSpec,
)

DEFAULT_COOLDOWN_SECONDS = 3600.0

PERCENT_REMAINING_BELOW = "percentRemainingBelow"
RECENT_USAGE_SPIKE = "recentUsageSpike"


def _percent_remaining_below(context: NotificationContext) -> NotificationEvent | None:
    threshold = context.value("threshold", 50)
    current = context.current.percent_remaining
    previous = context.previous.usage.percent_remaining if context.previous is not None else None

    if current >= threshold:
        return None
    # Unknown previous counts as "not below", so the first reading can fire.
    if previous is not None and previous < threshold:
        return None

    return NotificationEvent(
        title=f"{context.source_name} usage alert",
        body=f"Remaining is now {current:.0f}%, below {threshold:.0f}%.",
        cooldown_seconds=DEFAULT_COOLDOWN_SECONDS,
        cycle_key=None,
    )


def _recent_usage_spike(context: NotificationContext) -> NotificationEvent | None:
    drop = context.value("dropPercent", 10)
    minutes = context.value("minutes", 30)
    past = context.snapshot_minutes_ago(minutes)
    if past is None:
        return None

    current = context.current.percent_remaining
    used = max(0.0, past.usage.percent_remaining - current)
    if used < drop:
        return None

    return NotificationEvent(
        title=f"{context.source_name} usage spike",
        body=f"You used about {used:.0f}% in the last {int(minutes)} minutes.",
        cooldown_seconds=DEFAULT_COOLDOWN_SECONDS,
        cycle_key=None,
    )


PERCENT_REMAINING_BELOW_DEFINITION = NotificationDefinition(
    id=PERCENT_REMAINING_BELOW,
    title="Percent remaining below",
    detail="Notifies when remaining percent drops below your threshold.",
    inputs=(
        NotificationInputSpec(
            id="threshold",
            label="Threshold",
            unit="%",
            default=50,
            min=1,
            max=99,
            step=1,
        ),
    ),
    evaluate=_percent_remaining_below,
)

RECENT_USAGE_SPIKE_DEFINITION = NotificationDefinition(
    id=RECENT_USAGE_SPIKE,
    title="Recent usage spike",
    detail="Notifies when usage drops quickly within a time window.",
    inputs=(
        NotificationInputSpec(
            id="dropPercent",
            label="Drop",
            unit="%",
            default=10,
            min=1,
            max=100,
            step=1,
        ),
        NotificationInputSpec(
            id="minutes",
            label="Window",
            unit="min",
            default=30,
            min=2,
            max=240,
            step=1,
        ),
    ),
    evaluate=_recent_usage_spike,
)


def generic_definitions() -> list[NotificationDefinition]:
    return [PERCENT_REMAINING_BELOW_DEFINITION, RECENT_USAGE_SPIKE_DEFINITION]
