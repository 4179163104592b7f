from __future__ import annotations

import pytest

from dex_arbitrage.config.models import TelegramConfig
from dex_arbitrage.core.exceptions import NotificationError
from dex_arbitrage.services.schemas import EventKind, NotificationEvent
from dex_arbitrage.services.telegram_notifier import (
    LogNotifier,
    TelegramNotifier,
    build_notifier,
    format_event,
)


def event(kind: EventKind, message: str = "hello", **details) -> NotificationEvent:
    return NotificationEvent(kind=kind, message=message, details=details)


class Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def recording_notifier(config: TelegramConfig, clock=None) -> tuple[TelegramNotifier, list[str]]:
    notifier = TelegramNotifier(config, clock=clock or Clock())
    sent: list[str] = []

    async def fake_send(message: str) -> None:
        sent.append(message)

    notifier._send_message = fake_send  # type: ignore[method-assign]
    return notifier, sent


def enabled_config(**extra) -> TelegramConfig:
    return TelegramConfig(enabled=True, bot_token="123:abc", chat_id="42", **extra)


def test_format_event_lists_details() -> None:
    text = format_event(event(EventKind.TRADE_CONFIRMED, "Trade confirmed", tx="0xabc", block=7))

    assert text.splitlines() == ["✅ Trade confirmed", "tx: 0xabc", "block: 7"]


@pytest.mark.asyncio
async def test_disabled_notifier_sends_nothing() -> None:
    notifier, sent = recording_notifier(TelegramConfig(enabled=False))

    notifier.notify(event(EventKind.OPPORTUNITY_FOUND))
    await notifier.close()

    assert sent == []


@pytest.mark.asyncio
async def test_events_are_filtered_by_kind() -> None:
    notifier, sent = recording_notifier(enabled_config(events=["trade_confirmed"]))

    notifier.notify(event(EventKind.OPPORTUNITY_FOUND, "found"))
    notifier.notify(event(EventKind.TRADE_CONFIRMED, "confirmed"))
    await notifier.close()

    assert sent == ["✅ confirmed"]


@pytest.mark.asyncio
async def test_no_opportunity_is_throttled() -> None:
    clock = Clock()
    notifier, sent = recording_notifier(enabled_config(quiet_interval_sec=600), clock=clock)

    notifier.notify(event(EventKind.NO_OPPORTUNITY, "quiet"))
    clock.now = 300
    notifier.notify(event(EventKind.NO_OPPORTUNITY, "quiet"))
    notifier.notify(event(EventKind.OPPORTUNITY_FOUND, "found"))
    clock.now = 601
    notifier.notify(event(EventKind.NO_OPPORTUNITY, "quiet"))
    await notifier.close()

    assert sent == ["💤 quiet", "🔎 found", "💤 quiet"]


@pytest.mark.asyncio
async def test_delivery_failure_is_swallowed() -> None:
    notifier = TelegramNotifier(enabled_config())

    async def failing_send(message: str) -> None:
        raise NotificationError("chat not found")

    notifier._send_message = failing_send  # type: ignore[method-assign]

    notifier.notify(event(EventKind.TRADE_FAILED))
    await notifier.close()


@pytest.mark.asyncio
async def test_missing_token_is_a_notification_error() -> None:
    notifier = TelegramNotifier(TelegramConfig(enabled=True, bot_token="", chat_id="42"))

    with pytest.raises(NotificationError):
        await notifier._send_message("hi")


@pytest.mark.asyncio
async def test_log_notifier_accepts_any_event() -> None:
    notifier = LogNotifier()

    notifier.notify(event(EventKind.PASS_ERROR, "boom", error="internal"))
    await notifier.close()


def test_build_notifier_falls_back_to_log() -> None:
    assert isinstance(build_notifier(TelegramConfig(enabled=False)), LogNotifier)
    assert isinstance(build_notifier(enabled_config()), TelegramNotifier)


@pytest.mark.asyncio
async def test_unexpected_delivery_error_is_contained() -> None:
    notifier = TelegramNotifier(enabled_config())

    async def broken_send(message: str) -> None:
        raise RuntimeError("session closed")

    notifier._send_message = broken_send  # type: ignore[method-assign]

    notifier.notify(event(EventKind.TRADE_FAILED))
    tasks = set(notifier._tasks)
    await notifier.close()

    assert tasks
    assert all(task.done() and task.exception() is None for task in tasks)
