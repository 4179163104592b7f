from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest

from dex_arbitrage.chain.gas import GasCostEstimator
from dex_arbitrage.config.models import GasConfig
from dex_arbitrage.core.exceptions import GasEstimateUnavailable

GWEI = 10**9


class FakeNativePrices:
    def __init__(self, price: Decimal | None) -> None:
        self.price = price

    async def native_price(self) -> Decimal | None:
        return self.price


def gas_price(value: int):
    async def _fetch() -> int:
        return value

    return _fetch


def build_estimator(observed: int = 100 * GWEI, native: Decimal | None = Decimal("0.5"), **config) -> GasCostEstimator:
    return GasCostEstimator(
        gas_price(observed),
        FakeNativePrices(native),
        GasConfig(**config),
        timeout=0.1,
        clock=lambda: 7.0,
    )


def test_units_scale_with_hops() -> None:
    estimator = build_estimator()

    assert estimator.units_for_hops(1) == 200_000
    assert estimator.units_for_hops(3) == 450_000
    with pytest.raises(ValueError):
        estimator.units_for_hops(0)


@pytest.mark.asyncio
async def test_estimate_applies_buffer_and_native_price() -> None:
    estimate = await build_estimator().estimate(200_000)

    assert estimate.gas_price_wei == 110 * GWEI
    assert estimate.native_price == Decimal("0.5")
    assert estimate.observed_at == 7.0
    # 200k * 110 gwei = 0.022 native at 0.5
    assert estimate.cost == Decimal("0.011")


@pytest.mark.asyncio
async def test_zero_buffer_keeps_observed_price() -> None:
    estimate = await build_estimator(buffer_pct=0).estimate(21_000)

    assert estimate.gas_price_wei == 100 * GWEI


@pytest.mark.asyncio
async def test_gas_price_above_cap_is_unavailable() -> None:
    with pytest.raises(GasEstimateUnavailable):
        await build_estimator(max_gas_price_gwei=50).estimate(200_000)


@pytest.mark.asyncio
async def test_unknown_native_price_is_unavailable() -> None:
    with pytest.raises(GasEstimateUnavailable):
        await build_estimator(native=None).estimate(200_000)


@pytest.mark.asyncio
async def test_non_positive_gas_price_is_unavailable() -> None:
    with pytest.raises(GasEstimateUnavailable):
        await build_estimator(observed=0).estimate(200_000)


@pytest.mark.asyncio
async def test_slow_node_is_unavailable() -> None:
    async def hanging() -> int:
        await asyncio.sleep(5)
        return GWEI

    estimator = GasCostEstimator(hanging, FakeNativePrices(Decimal(1)), GasConfig(), timeout=0.05)

    with pytest.raises(GasEstimateUnavailable):
        await estimator.estimate(200_000)


@pytest.mark.asyncio
async def test_rpc_error_is_unavailable() -> None:
    async def failing() -> int:
        raise ConnectionError("refused")

    estimator = GasCostEstimator(failing, FakeNativePrices(Decimal(1)), GasConfig())

    with pytest.raises(GasEstimateUnavailable, match="refused"):
        await estimator.estimate(200_000)
