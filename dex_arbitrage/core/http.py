from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import aiohttp

log = logging.getLogger(__name__)

_MAX_BACKOFF_SEC = 30


class HttpClientFactory:
    """Shared aiohttp session for the market-data API."""

    def __init__(self, timeout: float = 15.0, user_agent: str | None = None, api_key: str | None = None) -> None:
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._user_agent = user_agent or "dex-arbitrage/0.1 (+aiohttp)"
        self._api_key = api_key
        self._session: aiohttp.ClientSession | None = None
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[aiohttp.ClientSession]:
        if self._session and not self._session.closed:
            yield self._session
            return

        async with self._lock:
            if not self._session or self._session.closed:
                headers = {
                    "User-Agent": self._user_agent,
                    "Accept": "application/json",
                }
                if self._api_key:
                    headers["x-cg-demo-api-key"] = self._api_key
                self._session = aiohttp.ClientSession(timeout=self._timeout, headers=headers)
        yield self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    async def get_json(self, url: str, params: dict[str, Any] | None = None, max_retries: int = 3) -> Any:
        """GET a JSON document, backing off on HTTP 429.

        CoinGecko's public tier rate limits aggressively; the Retry-After
        header is honoured up to a fixed ceiling.
        """
        log.debug("GET %s with params: %s", url, params)
        async with self.session() as session:
            for attempt in range(max_retries):
                async with session.get(url, params=params) as response:
                    if response.status == 429 and attempt < max_retries - 1:
                        try:
                            retry_after = int(response.headers.get("Retry-After", "2"))
                        except (ValueError, TypeError):
                            retry_after = 2
                        wait_time = min(retry_after * (2 ** attempt), _MAX_BACKOFF_SEC)
                        log.warning("Rate limit exceeded (429) for %s, waiting %d seconds", url, wait_time)
                        await asyncio.sleep(wait_time)
                        continue
                    response.raise_for_status()
                    data = await response.json()
                    log.debug("Response status: %d", response.status)
                    return data
        raise aiohttp.ClientError(f"Rate limit exceeded after {max_retries} attempts: {url}")
