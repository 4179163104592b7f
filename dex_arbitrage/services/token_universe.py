from __future__ import annotations

import asyncio
import logging
import time
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Callable, Protocol, Sequence

import aiohttp

from dex_arbitrage.config.models import ChainConfig, TokenUniverseConfig
from dex_arbitrage.core.exceptions import TokenUniverseError
from dex_arbitrage.core.http import HttpClientFactory
from dex_arbitrage.services.schemas import Token

log = logging.getLogger(__name__)

DecimalsResolver = Callable[[str], Awaitable[int]]

# the full coin list is large and rarely changes
_PLATFORM_LIST_TTL_SEC = 24 * 60 * 60


class TokenUniverseSource(Protocol):
    async def list_top_tokens(self, limit: int | None = None) -> Sequence[Token]:
        ...

    async def native_price(self) -> Decimal | None:
        ...


def _to_decimal(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        result = Decimal(str(value))
    except InvalidOperation:
        return None
    return result if result.is_finite() and result > 0 else None


class CoinGeckoTokenSource:
    """Top tokens by market capitalisation that have a contract on the configured platform."""

    def __init__(
        self,
        http: HttpClientFactory,
        config: TokenUniverseConfig,
        chain: ChainConfig,
        resolve_decimals: DecimalsResolver,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._http = http
        self._config = config
        self._chain = chain
        self._resolve_decimals = resolve_decimals
        self._clock = clock
        self._tokens: list[Token] = []
        self._tokens_at: float | None = None
        self._tokens_limit = 0
        self._platforms: dict[str, str] = {}
        self._platforms_at: float | None = None
        self._native_price: Decimal | None = None
        self._native_at: float | None = None
        self._lock = asyncio.Lock()

    async def list_top_tokens(self, limit: int | None = None) -> list[Token]:
        limit = limit or self._config.limit
        async with self._lock:
            if self._is_fresh(self._tokens_at, self._config.cache_ttl_sec) and limit <= self._tokens_limit:
                return self._tokens[:limit]
            try:
                tokens = await self._fetch_tokens(limit)
            except (aiohttp.ClientError, asyncio.TimeoutError, ValueError, KeyError) as exc:
                if self._tokens:
                    log.warning("Token list refresh failed, reusing %d cached tokens: %s", len(self._tokens), exc)
                    return self._tokens[:limit]
                raise TokenUniverseError(f"Failed to fetch token list: {exc}") from exc
            self._tokens = tokens
            self._tokens_at = self._clock()
            self._tokens_limit = limit
            log.info("Token universe refreshed: %d tokens (%s)", len(tokens), ", ".join(t.symbol for t in tokens))
            return tokens

    async def native_price(self) -> Decimal | None:
        if self._native_price is not None and self._is_fresh(self._native_at, self._config.cache_ttl_sec):
            return self._native_price
        coin_id = self._chain.native_coingecko_id
        try:
            data = await self._http.get_json(
                f"{self._config.api_url}/simple/price",
                params={"ids": coin_id, "vs_currencies": self._config.vs_currency},
            )
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            log.warning("Failed to fetch %s price: %s", coin_id, exc)
            return self._native_price
        entry = data.get(coin_id) if isinstance(data, dict) else None
        price = _to_decimal(entry.get(self._config.vs_currency)) if isinstance(entry, dict) else None
        if price is None:
            log.warning("No %s price for %s in response", self._config.vs_currency, coin_id)
            return self._native_price
        self._native_price = price
        self._native_at = self._clock()
        return price

    def _is_fresh(self, stamp: float | None, ttl: float) -> bool:
        return stamp is not None and self._clock() - stamp < ttl

    async def _fetch_tokens(self, limit: int) -> list[Token]:
        params: dict[str, Any] = {
            "vs_currency": self._config.vs_currency,
            "order": "market_cap_desc",
            "per_page": limit,
            "page": 1,
            "sparkline": "false",
        }
        if self._config.category:
            params["category"] = self._config.category
        markets = await self._http.get_json(f"{self._config.api_url}/coins/markets", params=params)
        if not isinstance(markets, list):
            raise ValueError(f"unexpected /coins/markets response: {str(markets)[:200]}")
        platforms = await self._platform_addresses()

        candidates: list[tuple[str, str, str, Decimal]] = []
        seen: set[str] = set()
        for item in markets:
            if not isinstance(item, dict):
                continue
            coin_id = item.get("id")
            address = platforms.get(coin_id or "")
            if not address:
                log.debug("Skipping %s: no %s address", coin_id, self._config.platform)
                continue
            price = _to_decimal(item.get("current_price"))
            if price is None:
                log.debug("Skipping %s: no reference price", coin_id)
                continue
            if address.lower() in seen:
                continue
            seen.add(address.lower())
            candidates.append((coin_id, str(item.get("symbol", "")).upper(), address, price))

        decimals = await asyncio.gather(
            *(self._resolve_decimals(address) for _, _, address, _ in candidates),
            return_exceptions=True,
        )
        tokens: list[Token] = []
        for (coin_id, symbol, address, price), resolved in zip(candidates, decimals, strict=True):
            if isinstance(resolved, BaseException):
                log.warning("Skipping %s: could not read decimals for %s: %s", symbol, address, resolved)
                continue
            tokens.append(Token(address=address, symbol=symbol, decimals=resolved, price=price, coingecko_id=coin_id))
        return tokens[:limit]

    async def _platform_addresses(self) -> dict[str, str]:
        if self._platforms and self._is_fresh(self._platforms_at, _PLATFORM_LIST_TTL_SEC):
            return self._platforms
        coins = await self._http.get_json(
            f"{self._config.api_url}/coins/list",
            params={"include_platform": "true"},
        )
        if not isinstance(coins, list):
            raise ValueError(f"unexpected /coins/list response: {str(coins)[:200]}")
        platforms: dict[str, str] = {}
        for coin in coins:
            if not isinstance(coin, dict):
                continue
            address = (coin.get("platforms") or {}).get(self._config.platform)
            if isinstance(address, str) and address:
                platforms[coin["id"]] = address.strip()
        self._platforms = platforms
        self._platforms_at = self._clock()
        log.debug("Loaded %d %s contract addresses", len(platforms), self._config.platform)
        return platforms
