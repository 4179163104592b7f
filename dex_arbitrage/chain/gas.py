from __future__ import annotations

import asyncio
import logging
import time
from decimal import Decimal
from typing import Awaitable, Callable, Protocol

from web3 import AsyncWeb3

from dex_arbitrage.config.models import GasConfig
from dex_arbitrage.core.exceptions import GasEstimateUnavailable
from dex_arbitrage.services.schemas import GasEstimate

log = logging.getLogger("dex_arbitrage.chain.gas")

GasPriceSource = Callable[[], Awaitable[int]]


class NativePriceSource(Protocol):
    async def native_price(self) -> Decimal | None:
        ...


def web3_gas_price(w3: AsyncWeb3) -> GasPriceSource:
    async def _fetch() -> int:
        return int(await w3.eth.gas_price)

    return _fetch


class GasCostEstimator:
    """Expected network fee for a trade, priced in the numeraire.

    The observed gas price is inflated by ``buffer_pct`` because it can move
    between estimation and signing.
    """

    def __init__(
        self,
        gas_price_source: GasPriceSource,
        native_prices: NativePriceSource,
        config: GasConfig,
        timeout: float = 10.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._gas_price_source = gas_price_source
        self._native_prices = native_prices
        self._config = config
        self._timeout = timeout
        self._clock = clock
        self._buffer_bps = int(round(config.buffer_pct * 100))

    def units_for_hops(self, hops: int) -> int:
        if hops < 1:
            raise ValueError("a trade has at least one hop")
        if hops == 1:
            return self._config.single_hop_units
        return hops * self._config.per_hop_units

    async def estimate(self, gas_units: int) -> GasEstimate:
        try:
            observed = await asyncio.wait_for(self._gas_price_source(), self._timeout)
            native_price = await asyncio.wait_for(self._native_prices.native_price(), self._timeout)
        except asyncio.TimeoutError as exc:
            raise GasEstimateUnavailable("timed out fetching gas or native price") from exc
        except GasEstimateUnavailable:
            raise
        except Exception as exc:
            raise GasEstimateUnavailable(f"gas price lookup failed: {exc}") from exc

        if observed <= 0:
            raise GasEstimateUnavailable(f"node reported gas price {observed}")
        if native_price is None or native_price <= 0:
            raise GasEstimateUnavailable("native token price unknown")

        cap = self._config.max_gas_price_gwei
        if cap is not None and observed > int(cap * 10**9):
            raise GasEstimateUnavailable(f"gas price {observed / 10**9:.1f} gwei exceeds cap {cap} gwei")

        buffered = observed * (10_000 + self._buffer_bps) // 10_000
        estimate = GasEstimate(
            gas_units=gas_units,
            gas_price_wei=buffered,
            native_price=native_price,
            observed_at=self._clock(),
        )
        log.debug(
            "Gas estimate: %d units at %d wei (observed %d), cost %s",
            gas_units,
            buffered,
            observed,
            estimate.cost,
        )
        return estimate
