from __future__ import annotations

from datetime import timezone

import pytest

from usage_sentinel.core.clients.process import CommandError, CommandResult
from usage_sentinel.core.config.settings import Settings
from usage_sentinel.core.errors import FetchError
from usage_sentinel.core.sources import amp as amp_module
from usage_sentinel.core.sources import copilot as copilot_module
from usage_sentinel.core.sources.amp import AmpSource, parse_amp_usage
from usage_sentinel.core.sources.copilot import CopilotSource, parse_quota_payload
from usage_sentinel.core.sources.registry import build_sources
from tests.support import BASE_TIME, snapshot, usage

pytestmark = pytest.mark.unit


def _command_returning(result: CommandResult):
    async def _run(command: str, *args: str, timeout_seconds: float) -> CommandResult:
        return result

    return _run


def _command_raising(message: str):
    async def _run(command: str, *args: str, timeout_seconds: float) -> CommandResult:
        raise CommandError(command, message)

    return _run


def test_parse_quota_payload() -> None:
    payload = {"quota_snapshots": {"premium_interactions": {"remaining": 120, "entitlement": 300}}}
    assert parse_quota_payload(payload) == (120.0, 300.0)


@pytest.mark.parametrize(
    "payload",
    [
        None,
        [],
        {},
        {"quota_snapshots": {}},
        {"quota_snapshots": {"premium_interactions": {"remaining": 1}}},
        {"quota_snapshots": {"premium_interactions": {"remaining": "1", "entitlement": 300}}},
        {"quota_snapshots": {"premium_interactions": {"remaining": True, "entitlement": 300}}},
        {"quota_snapshots": {"premium_interactions": {"remaining": 1.5, "entitlement": 300}}},
    ],
)
def test_parse_quota_payload_rejects_incomplete(payload) -> None:
    assert parse_quota_payload(payload) is None


@pytest.mark.asyncio
async def test_copilot_fetch_usage(monkeypatch) -> None:
    source = CopilotSource()
    monkeypatch.setattr(copilot_module, "run_command", _command_returning(CommandResult(0, "gho_token\n", "")))
    seen_tokens: list[str] = []

    async def fake_payload(token: str):
        seen_tokens.append(token)
        return {"quota_snapshots": {"premium_interactions": {"remaining": 75, "entitlement": 300}}}

    monkeypatch.setattr(source, "_fetch_quota_payload", fake_payload)
    result = await source.fetch_usage()
    assert seen_tokens == ["gho_token"]
    assert result == usage(25, limit=300)


@pytest.mark.asyncio
async def test_copilot_fetch_without_token(monkeypatch) -> None:
    source = CopilotSource()
    monkeypatch.setattr(copilot_module, "run_command", _command_returning(CommandResult(1, "", "not logged in")))
    with pytest.raises(FetchError, match="No token from gh"):
        await source.fetch_usage()


@pytest.mark.asyncio
async def test_copilot_fetch_when_gh_missing(monkeypatch) -> None:
    source = CopilotSource()
    monkeypatch.setattr(copilot_module, "run_command", _command_raising("failed to start: not found"))
    with pytest.raises(FetchError) as excinfo:
        await source.fetch_usage()
    assert excinfo.value.source == "Copilot"


@pytest.mark.asyncio
async def test_copilot_fetch_with_bad_payload(monkeypatch) -> None:
    source = CopilotSource()
    monkeypatch.setattr(copilot_module, "run_command", _command_returning(CommandResult(0, "tok", "")))

    async def fake_payload(token: str):
        return {"quota_snapshots": {}}

    monkeypatch.setattr(source, "_fetch_quota_payload", fake_payload)
    with pytest.raises(FetchError, match="Missing/invalid fields"):
        await source.fetch_usage()


def test_copilot_declares_pacing_rule() -> None:
    ids = [definition.id for definition in CopilotSource().notification_definitions]
    assert ids == ["percentRemainingBelow", "recentUsageSpike", "monthlyPacing"]


def test_copilot_forecast_uses_calendar_month() -> None:
    source = CopilotSource(reset_tz=timezone.utc)
    history = [snapshot(70, minutes_ago=20), snapshot(69, minutes_ago=10)]
    result = source.forecast(usage(68), history, now=BASE_TIME)
    assert result is not None
    assert result.points[-1].value == 100.0
    assert result.summary.startswith("Copilot: runs out ")


def test_parse_amp_usage() -> None:
    output = "Signed in as dev@example.com\nAmp Free: $7.25/$10.00 remaining (replenishes hourly)\n"
    assert parse_amp_usage(output) == (7.25, 10.0)
    assert parse_amp_usage("Amp Free: unavailable") is None


@pytest.mark.asyncio
async def test_amp_fetch_usage(monkeypatch) -> None:
    monkeypatch.setattr(
        amp_module,
        "run_command",
        _command_returning(CommandResult(0, "Amp Free: $2.50/$10.00 remaining", "")),
    )
    result = await AmpSource().fetch_usage()
    assert result.percent_remaining == 25.0


@pytest.mark.asyncio
async def test_amp_fetch_reports_unparsable_output(monkeypatch) -> None:
    monkeypatch.setattr(amp_module, "run_command", _command_returning(CommandResult(0, "hello", "")))
    with pytest.raises(FetchError, match="Failed to parse: hello"):
        await AmpSource().fetch_usage()


@pytest.mark.asyncio
async def test_amp_fetch_reports_command_failure(monkeypatch) -> None:
    monkeypatch.setattr(amp_module, "run_command", _command_returning(CommandResult(2, "", "amp: not signed in")))
    with pytest.raises(FetchError, match="not signed in"):
        await AmpSource().fetch_usage()


def test_amp_forecast_fully_charged() -> None:
    result = AmpSource().forecast(usage(100), [], now=BASE_TIME)
    assert result is not None
    assert result.points == []
    assert result.summary == "AMP: fully charged"


def test_amp_regeneration_rate() -> None:
    assert AmpSource(regen_hours=20).regen_percent_per_hour == 5.0


def test_build_sources_from_settings() -> None:
    settings = Settings(copilot_reset_timezone="Not/AZone", amp_regen_hours=12)
    sources = build_sources(settings)
    assert [source.name for source in sources] == ["Copilot", "AMP"]


@pytest.mark.parametrize(("remaining", "limit"), [(-1.0, 10.0), (1.0, -10.0), (float("nan"), 10.0)])
def test_validated_result_rejects_invalid_counts(remaining: float, limit: float) -> None:
    with pytest.raises(FetchError):
        AmpSource().validated_result(remaining, limit)
