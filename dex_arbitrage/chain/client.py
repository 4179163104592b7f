"""Web3 connection and the minimal contract ABIs used by the bot."""

from __future__ import annotations

import asyncio
import logging

from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.middleware import ExtraDataToPOAMiddleware

from dex_arbitrage.config.models import ChainConfig

log = logging.getLogger("dex_arbitrage.chain")

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

UNISWAP_V2_FACTORY_ABI = [
    {
        "constant": True,
        "inputs": [
            {"name": "tokenA", "type": "address"},
            {"name": "tokenB", "type": "address"},
        ],
        "name": "getPair",
        "outputs": [{"name": "pair", "type": "address"}],
        "type": "function",
    },
]

UNISWAP_V2_PAIR_ABI = [
    {
        "constant": True,
        "inputs": [],
        "name": "getReserves",
        "outputs": [
            {"name": "reserve0", "type": "uint112"},
            {"name": "reserve1", "type": "uint112"},
            {"name": "blockTimestampLast", "type": "uint32"},
        ],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [],
        "name": "token0",
        "outputs": [{"name": "", "type": "address"}],
        "type": "function",
    },
]

UNISWAP_V2_ROUTER_ABI = [
    {
        "inputs": [
            {"name": "amountIn", "type": "uint256"},
            {"name": "amountOutMin", "type": "uint256"},
            {"name": "path", "type": "address[]"},
            {"name": "to", "type": "address"},
            {"name": "deadline", "type": "uint256"},
        ],
        "name": "swapExactTokensForTokens",
        "outputs": [{"name": "amounts", "type": "uint256[]"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]

ERC20_ABI = [
    {
        "constant": True,
        "inputs": [{"name": "_owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "balance", "type": "uint256"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [
            {"name": "_owner", "type": "address"},
            {"name": "_spender", "type": "address"},
        ],
        "name": "allowance",
        "outputs": [{"name": "", "type": "uint256"}],
        "type": "function",
    },
    {
        "constant": False,
        "inputs": [
            {"name": "_spender", "type": "address"},
            {"name": "_value", "type": "uint256"},
        ],
        "name": "approve",
        "outputs": [{"name": "", "type": "bool"}],
        "type": "function",
    },
]


def build_web3(config: ChainConfig, request_timeout: float = 10.0) -> AsyncWeb3:
    """Create an AsyncWeb3 client for the configured network.

    The connection is verified lazily on first use.
    """
    rpc_url = config.rpc_url.strip()
    w3 = AsyncWeb3(AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": request_timeout}))
    if config.poa:
        w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
    log.info("Web3 client configured for %s (chain id %d)", config.name, config.chain_id)
    return w3


def checksum(address: str) -> str:
    return AsyncWeb3.to_checksum_address(address)


class TokenDecimalsResolver:
    """Reads and caches ERC-20 ``decimals()`` per token address."""

    def __init__(self, w3: AsyncWeb3, timeout: float = 5.0) -> None:
        self._w3 = w3
        self._timeout = timeout
        self._cache: dict[str, int] = {}
        self._lock = asyncio.Lock()

    async def resolve(self, address: str) -> int:
        key = address.lower()
        async with self._lock:
            if key in self._cache:
                return self._cache[key]
        contract = self._w3.eth.contract(address=checksum(address), abi=ERC20_ABI)
        decimals = int(await asyncio.wait_for(contract.functions.decimals().call(), self._timeout))
        async with self._lock:
            self._cache[key] = decimals
        return decimals
