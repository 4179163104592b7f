from __future__ import annotations

import logging
from typing import Protocol

from web3 import AsyncWeb3

from dex_arbitrage.chain.client import ERC20_ABI, checksum
from dex_arbitrage.services.schemas import Token

log = logging.getLogger("dex_arbitrage.chain.balances")


class BalanceSource(Protocol):
    async def get_balance(self, token: Token, owner: str) -> int:
        ...


class Erc20BalanceSource:
    def __init__(self, w3: AsyncWeb3) -> None:
        self._w3 = w3

    async def get_balance(self, token: Token, owner: str) -> int:
        contract = self._w3.eth.contract(address=checksum(token.address), abi=ERC20_ABI)
        balance = await contract.functions.balanceOf(checksum(owner)).call()
        log.debug("Balance of %s for %s: %d", token.symbol, owner, balance)
        return int(balance)
