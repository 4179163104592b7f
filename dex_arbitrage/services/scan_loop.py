from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import deque
from typing import Protocol

from dex_arbitrage.core.exceptions import ErrorKind
from dex_arbitrage.services.schemas import EventKind, NotificationEvent, PassResult
from dex_arbitrage.services.telegram_notifier import Notifier

log = logging.getLogger(__name__)


class PassRunner(Protocol):
    async def run_one_pass(self) -> PassResult:
        ...


class ScanLoop:
    """Runs passes back to back with a fixed idle interval until stopped."""

    def __init__(
        self,
        engine: PassRunner,
        notifier: Notifier,
        interval_sec: float,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        self._engine = engine
        self._notifier = notifier
        self._interval = interval_sec
        # shared with the engine so a pass in progress sees the request
        self._stop_event = stop_event if stop_event is not None else asyncio.Event()
        self.results: deque[PassResult] = deque(maxlen=100)

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    def stop(self) -> None:
        if not self._stop_event.is_set():
            log.info("Scan loop stop requested")
        self._stop_event.set()

    async def run(self, max_passes: int | None = None) -> None:
        passes = 0
        while not self._stop_event.is_set():
            self.results.append(await self._run_pass())
            passes += 1
            if max_passes is not None and passes >= max_passes:
                break
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
        log.info("Scan loop finished after %d passes", passes)

    async def _run_pass(self) -> PassResult:
        try:
            result = await self._engine.run_one_pass()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            log.exception("Scan pass failed")
            try:
                self._notifier.notify(
                    NotificationEvent(kind=EventKind.PASS_ERROR, message=f"Pass failed: {exc}")
                )
            except Exception:
                log.exception("Notifier raised while reporting a pass error")
            return PassResult(opportunity_found=False, executed=False, error=ErrorKind.INTERNAL)
        log.info(
            "Pass result: found=%s executed=%s error=%s skip=%s",
            result.opportunity_found,
            result.executed,
            result.error.value if result.error else None,
            result.skip_reason.value if result.skip_reason else None,
        )
        return result
