from __future__ import annotations

import logging
from typing import Protocol

import aiohttp

from usage_sentinel.core.clients.http import get_http_client
from usage_sentinel.core.clients.process import CommandError, run_command
from usage_sentinel.core.config.settings import Settings, get_settings

logger = logging.getLogger(__name__)


class DeliveryError(Exception):
    pass


class Notifier(Protocol):
    async def notify(self, title: str, body: str) -> None: ...


class LoggingNotifier:
    async def notify(self, title: str, body: str) -> None:
        logger.info("Notification title=%r body=%r", title, body)


class WebhookNotifier:
    def __init__(
        self,
        url: str,
        *,
        timeout_seconds: float = 15.0,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._url = url
        self._timeout_seconds = timeout_seconds
        self._session = session

    async def notify(self, title: str, body: str) -> None:
        session = self._session or get_http_client().session
        try:
            async with session.post(
                self._url,
                json={"title": title, "body": body},
                timeout=aiohttp.ClientTimeout(total=self._timeout_seconds),
            ) as response:
                if response.status >= 400:
                    raise DeliveryError(f"webhook returned status {response.status}")
        except aiohttp.ClientError as exc:
            raise DeliveryError(f"webhook request failed: {exc}") from exc
        except TimeoutError as exc:
            raise DeliveryError("webhook request timed out") from exc


class CommandNotifier:
    """Hands the notification to a desktop command, e.g. ``notify-send <title> <body>``."""

    def __init__(self, command: str, *, timeout_seconds: float = 20.0) -> None:
        self._command = command
        self._timeout_seconds = timeout_seconds

    async def notify(self, title: str, body: str) -> None:
        try:
            result = await run_command(self._command, title, body, timeout_seconds=self._timeout_seconds)
        except CommandError as exc:
            raise DeliveryError(exc.message) from exc
        if result.returncode != 0:
            raise DeliveryError(result.output or f"exit status {result.returncode}")


def build_notifier(settings: Settings | None = None) -> Notifier:
    settings = settings or get_settings()
    match settings.notifier:
        case "webhook":
            if not settings.notify_webhook_url:
                logger.warning("notifier=webhook without notify_webhook_url, falling back to log delivery")
                return LoggingNotifier()
            return WebhookNotifier(settings.notify_webhook_url, timeout_seconds=settings.http_timeout_seconds)
        case "command":
            return CommandNotifier(settings.notify_command, timeout_seconds=settings.command_timeout_seconds)
        case _:
            return LoggingNotifier()
