from __future__ import annotations

import asyncio
import time
from typing import Callable

from web3 import AsyncWeb3

from dex_arbitrage.chain.client import UNISWAP_V2_FACTORY_ABI, UNISWAP_V2_PAIR_ABI, ZERO_ADDRESS, checksum
from dex_arbitrage.config.models import VenueConfig
from dex_arbitrage.services.schemas import Quote, QuoteResult, Route, Token
from dex_arbitrage.venues.base import BaseVenue, get_amount_out


class UniswapV2Venue(BaseVenue):
    """Quotes from a Uniswap V2 fork (QuickSwap, SushiSwap, ...) read straight from pair reserves."""

    def __init__(self, w3: AsyncWeb3, config: VenueConfig, clock: Callable[[], float] = time.time) -> None:
        super().__init__(config.name, fee_bps=config.fee_bps, clock=clock)
        self._w3 = w3
        self._factory = w3.eth.contract(address=checksum(config.factory), abi=UNISWAP_V2_FACTORY_ABI)
        self.router = checksum(config.router)
        # pair contracts never move once deployed
        self._pairs: dict[frozenset[str], str] = {}
        self._lock = asyncio.Lock()

    async def get_quote(self, token_in: Token, token_out: Token, amount_in: int) -> QuoteResult:
        if token_in.address.lower() == token_out.address.lower():
            return self.unavailable(token_in, token_out, "identical tokens")
        if amount_in <= 0:
            return self.unavailable(token_in, token_out, "non-positive input amount")

        try:
            pair = await self._pair_address(token_in.address, token_out.address)
            if pair is None:
                return self.unavailable(token_in, token_out, "no liquidity pool")
            reserve_in, reserve_out = await self._reserves(pair, token_in.address)
        except Exception as exc:
            return self.unavailable(token_in, token_out, f"rpc error: {exc}")

        if reserve_in == 0 or reserve_out == 0:
            return self.unavailable(token_in, token_out, "empty reserves")

        amount_out = get_amount_out(amount_in, reserve_in, reserve_out, self.fee_bps)
        if amount_out <= 0:
            return self.unavailable(token_in, token_out, "zero output")

        route = Route(venue=self.name, path=(token_in, token_out), pools=(pair,))
        quote = Quote.from_amounts(
            self.name,
            route,
            amount_in,
            amount_out,
            liquidity=reserve_out,
            quoted_at=self._clock(),
        )
        self._log.debug(
            "Quote %s -> %s: %d -> %d (price %s)",
            token_in.symbol,
            token_out.symbol,
            amount_in,
            amount_out,
            quote.price,
        )
        return quote

    async def _pair_address(self, token_a: str, token_b: str) -> str | None:
        key = frozenset((token_a.lower(), token_b.lower()))
        async with self._lock:
            cached = self._pairs.get(key)
        if cached:
            return cached
        pair = await self._factory.functions.getPair(checksum(token_a), checksum(token_b)).call()
        if not pair or pair == ZERO_ADDRESS:
            return None
        async with self._lock:
            self._pairs[key] = pair
        return pair

    async def _reserves(self, pair_address: str, token_in: str) -> tuple[int, int]:
        pair = self._w3.eth.contract(address=checksum(pair_address), abi=UNISWAP_V2_PAIR_ABI)
        reserve0, reserve1, _ = await pair.functions.getReserves().call()
        token0 = await pair.functions.token0().call()
        if token0.lower() == token_in.lower():
            return int(reserve0), int(reserve1)
        return int(reserve1), int(reserve0)
