from __future__ import annotations

import logging
import time
from typing import Callable, Protocol

from dex_arbitrage.services.schemas import QuoteResult, QuoteUnavailable, Token

_FEE_DENOMINATOR = 10_000


class QuoteProvider(Protocol):
    name: str

    async def get_quote(self, token_in: Token, token_out: Token, amount_in: int) -> QuoteResult:
        ...

    async def close(self) -> None:
        ...


def get_amount_out(amount_in: int, reserve_in: int, reserve_out: int, fee_bps: int = 30) -> int:
    """Constant-product output for an exact input, matching UniswapV2Library.getAmountOut."""
    if amount_in <= 0 or reserve_in <= 0 or reserve_out <= 0:
        return 0
    amount_in_with_fee = amount_in * (_FEE_DENOMINATOR - fee_bps)
    numerator = amount_in_with_fee * reserve_out
    denominator = reserve_in * _FEE_DENOMINATOR + amount_in_with_fee
    return numerator // denominator


class BaseVenue:
    name: str

    def __init__(self, name: str, fee_bps: int = 30, clock: Callable[[], float] = time.time) -> None:
        self.name = name
        self._fee_bps = fee_bps
        self._clock = clock
        self._log = logging.getLogger(f"dex_arbitrage.venues.{name}")

    @property
    def fee_bps(self) -> int:
        return self._fee_bps

    def unavailable(self, token_in: Token, token_out: Token, reason: str) -> QuoteUnavailable:
        self._log.debug("No quote for %s -> %s: %s", token_in.symbol, token_out.symbol, reason)
        return QuoteUnavailable(venue=self.name, token_in=token_in, token_out=token_out, reason=reason)

    async def close(self) -> None:
        self._log.info("Closing venue")
