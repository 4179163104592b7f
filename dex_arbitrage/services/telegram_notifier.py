from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Protocol

import structlog
from aiogram import Bot
from aiogram.exceptions import TelegramAPIError
from aiogram.utils.token import TokenValidationError

from dex_arbitrage.config.models import TelegramConfig
from dex_arbitrage.core.exceptions import NotificationError
from dex_arbitrage.services.schemas import EventKind, NotificationEvent

log = logging.getLogger(__name__)

_ICONS = {
    EventKind.OPPORTUNITY_FOUND: "🔎",
    EventKind.NO_OPPORTUNITY: "💤",
    EventKind.TRADE_SKIPPED: "⏭",
    EventKind.TRADE_SUBMITTED: "📤",
    EventKind.TRADE_CONFIRMED: "✅",
    EventKind.TRADE_FAILED: "❌",
    EventKind.PASS_ERROR: "⚠️",
}


class Notifier(Protocol):
    def notify(self, event: NotificationEvent) -> None:
        ...

    async def close(self) -> None:
        ...


def format_event(event: NotificationEvent) -> str:
    lines = [f"{_ICONS.get(event.kind, '')} {event.message}".strip()]
    lines.extend(f"{key}: {value}" for key, value in event.details.items())
    return "\n".join(lines)


class LogNotifier:
    """Notifier used when Telegram is disabled: events go to the structured log."""

    def __init__(self) -> None:
        self._log = structlog.get_logger("dex_arbitrage.notifications")

    def notify(self, event: NotificationEvent) -> None:
        self._log.info(event.kind.value, message=event.message, **{k: str(v) for k, v in event.details.items()})

    async def close(self) -> None:
        return None


class TelegramNotifier:
    """Fire-and-forget delivery of pass events to a Telegram chat.

    ``notify`` never blocks and never raises: delivery runs in a background
    task and failures are only logged.
    """

    def __init__(self, config: TelegramConfig, clock: Callable[[], float] = time.monotonic) -> None:
        self._config = config
        self._clock = clock
        self._enabled_kinds = {EventKind(kind) for kind in config.events}
        self._last_quiet_sent: float | None = None
        self._bot: Bot | None = None
        self._tasks: set[asyncio.Task[None]] = set()

    def notify(self, event: NotificationEvent) -> None:
        if not self._config.enabled or event.kind not in self._enabled_kinds:
            return
        if event.kind is EventKind.NO_OPPORTUNITY and not self._quiet_due():
            return
        try:
            task = asyncio.get_running_loop().create_task(self._deliver(event))
        except RuntimeError:
            log.warning("No running event loop, dropping %s notification", event.kind.value)
            return
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _quiet_due(self) -> bool:
        now = self._clock()
        if self._last_quiet_sent is not None and now - self._last_quiet_sent < self._config.quiet_interval_sec:
            return False
        self._last_quiet_sent = now
        return True

    async def _deliver(self, event: NotificationEvent) -> None:
        try:
            await self._send_message(format_event(event))
        except NotificationError as exc:
            log.warning("Telegram notification for %s not delivered: %s", event.kind.value, exc)
        except Exception:
            log.exception("Unexpected error delivering %s notification", event.kind.value)

    async def _send_message(self, message: str) -> None:
        bot = self._get_bot()
        chat_id = self._config.chat_id
        if not chat_id:
            raise NotificationError("chat_id not set")
        try:
            await bot.send_message(chat_id=chat_id, text=message, disable_web_page_preview=True)
            log.info("Telegram notification sent", extra={"chat_id": chat_id})
        except (TelegramAPIError, OSError, asyncio.TimeoutError) as exc:
            raise NotificationError(str(exc)) from exc

    def _get_bot(self) -> Bot:
        if self._bot:
            return self._bot
        token = self._config.bot_token.strip()
        if not token or token == "<YOUR_TOKEN>":
            raise NotificationError("bot_token is empty or not configured")
        try:
            self._bot = Bot(token=token)
        except TokenValidationError as exc:
            raise NotificationError(f"Invalid bot token: {exc}") from exc
        return self._bot

    async def close(self, timeout: float = 5.0) -> None:
        if self._tasks:
            await asyncio.wait(set(self._tasks), timeout=timeout)
        if self._bot:
            await self._bot.session.close()
            self._bot = None


def build_notifier(config: TelegramConfig) -> Notifier:
    if config.enabled:
        return TelegramNotifier(config)
    log.info("Telegram disabled, notifications go to the log")
    return LogNotifier()
