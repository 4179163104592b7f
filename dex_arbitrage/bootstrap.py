from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Sequence

from web3 import AsyncWeb3

from dex_arbitrage.chain.balances import Erc20BalanceSource
from dex_arbitrage.chain.client import TokenDecimalsResolver, build_web3
from dex_arbitrage.chain.gas import GasCostEstimator, web3_gas_price
from dex_arbitrage.chain.wallet import DryRunExecutor, TradeExecutor, Web3TradeExecutor, load_account
from dex_arbitrage.config import Settings, load_settings
from dex_arbitrage.core import HttpClientFactory, configure_logging
from dex_arbitrage.services.arbitrage_engine import ArbitrageEngine
from dex_arbitrage.services.decision_policy import build_policy
from dex_arbitrage.services.opportunity_evaluator import OpportunityEvaluator
from dex_arbitrage.services.scan_loop import ScanLoop
from dex_arbitrage.services.telegram_notifier import Notifier, build_notifier
from dex_arbitrage.services.token_universe import CoinGeckoTokenSource
from dex_arbitrage.venues.base import QuoteProvider
from dex_arbitrage.venues.uniswap_v2 import UniswapV2Venue


@dataclass(slots=True)
class AppComponents:
    settings: Settings
    http_factory: HttpClientFactory
    web3: AsyncWeb3
    venues: Sequence[QuoteProvider]
    engine: ArbitrageEngine
    notifier: Notifier
    scan_loop: ScanLoop

    async def close(self) -> None:
        await self.engine.close()
        await self.notifier.close()
        for venue in self.venues:
            await venue.close()
        await self.http_factory.close()


def create_venues(settings: Settings, w3: AsyncWeb3) -> list[QuoteProvider]:
    return [UniswapV2Venue(w3, venue) for venue in settings.venues]


def create_executor(settings: Settings, w3: AsyncWeb3) -> tuple[TradeExecutor, str | None]:
    """Trade executor and the wallet address whose balances gate candidates.

    Missing or invalid signer credentials are fatal unless running dry.
    """
    if settings.wallet.dry_run:
        owner = load_account(settings.wallet.private_key).address if settings.wallet.private_key else None
        return DryRunExecutor(), owner
    account = load_account(settings.wallet.private_key)
    executor = Web3TradeExecutor(
        w3,
        account,
        routers={venue.name: venue.router for venue in settings.venues},
        chain_id=settings.chain.chain_id,
        confirmation_timeout=settings.timeouts.confirmation_sec,
    )
    return executor, account.address


def build_app_components(
    config_path: str | None = None,
    overrides: dict[str, Any] | None = None,
) -> AppComponents:
    settings = load_settings(config_path, overrides=overrides)
    configure_logging(settings.logging)

    w3 = build_web3(settings.chain, request_timeout=settings.timeouts.quote_sec)
    executor, owner = create_executor(settings, w3)

    http_factory = HttpClientFactory(timeout=settings.timeouts.http_sec, api_key=settings.tokens.api_key or None)
    decimals = TokenDecimalsResolver(w3, timeout=settings.timeouts.balance_sec)
    token_source = CoinGeckoTokenSource(http_factory, settings.tokens, settings.chain, decimals.resolve)

    venues = create_venues(settings, w3)
    gas_estimator = GasCostEstimator(
        web3_gas_price(w3),
        token_source,
        settings.gas,
        timeout=settings.timeouts.gas_sec,
    )
    evaluator = OpportunityEvaluator(
        venues,
        gas_estimator,
        settings,
        balances=Erc20BalanceSource(w3),
        owner=owner,
    )
    notifier = build_notifier(settings.telegram)
    stop_event = asyncio.Event()
    engine = ArbitrageEngine(
        settings,
        token_source=token_source,
        evaluator=evaluator,
        policy=build_policy(settings),
        executor=executor,
        notifier=notifier,
        stopping=stop_event.is_set,
    )
    scan_loop = ScanLoop(engine, notifier, settings.scan.interval_sec, stop_event=stop_event)

    return AppComponents(
        settings=settings,
        http_factory=http_factory,
        web3=w3,
        venues=venues,
        engine=engine,
        notifier=notifier,
        scan_loop=scan_loop,
    )
