from __future__ import annotations

import asyncio
import itertools
import logging
import time
from typing import Any, Callable, Mapping, Protocol

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import AsyncWeb3
from web3.exceptions import TimeExhausted

from dex_arbitrage.chain.client import ERC20_ABI, UNISWAP_V2_ROUTER_ABI, checksum
from dex_arbitrage.core.exceptions import (
    ConfigurationError,
    ConfirmationTimeout,
    DeadlineExpired,
    SubmissionFailed,
)
from dex_arbitrage.services.schemas import Receipt, TradeDescriptor, TransactionHandle

log = logging.getLogger("dex_arbitrage.chain.wallet")


class TradeExecutor(Protocol):
    async def submit(self, descriptor: TradeDescriptor) -> TransactionHandle:
        ...

    async def wait(self, handle: TransactionHandle) -> Receipt:
        ...


def load_account(private_key: str) -> LocalAccount:
    key = private_key.strip()
    if not key:
        raise ConfigurationError("wallet.private_key (PRIVATE_KEY) is required when dry_run is disabled")
    try:
        return Account.from_key(key)
    except (ValueError, TypeError) as exc:
        raise ConfigurationError(f"Invalid private key: {exc}") from exc


def _check_deadline(descriptor: TradeDescriptor, now: float) -> None:
    if descriptor.is_expired(now):
        raise DeadlineExpired(
            f"descriptor for {descriptor.route.describe()} expired at {descriptor.deadline} (now {int(now)})"
        )


class Web3TradeExecutor:
    """Signs and broadcasts ``swapExactTokensForTokens`` on the descriptor's venue router."""

    def __init__(
        self,
        w3: AsyncWeb3,
        account: LocalAccount,
        routers: Mapping[str, str],
        chain_id: int,
        confirmation_timeout: float = 180.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._w3 = w3
        self._account = account
        self._routers = {venue: checksum(address) for venue, address in routers.items()}
        self._chain_id = chain_id
        self._confirmation_timeout = confirmation_timeout
        self._clock = clock

    @property
    def address(self) -> str:
        return self._account.address

    async def submit(self, descriptor: TradeDescriptor) -> TransactionHandle:
        _check_deadline(descriptor, self._clock())
        router_address = self._routers.get(descriptor.venue)
        if router_address is None:
            raise SubmissionFailed(f"no router configured for venue {descriptor.venue}")

        token_in = descriptor.route.path[0]
        await self._ensure_allowance(token_in.address, router_address, descriptor.amount_in)
        # approval may have taken a while
        _check_deadline(descriptor, self._clock())

        router = self._w3.eth.contract(address=router_address, abi=UNISWAP_V2_ROUTER_ABI)
        path = [checksum(address) for address in descriptor.route.addresses]
        gas = descriptor.opportunity.gas
        try:
            nonce = await self._w3.eth.get_transaction_count(self._account.address, "pending")
            tx = await router.functions.swapExactTokensForTokens(
                descriptor.amount_in,
                descriptor.min_amount_out,
                path,
                self._account.address,
                descriptor.deadline,
            ).build_transaction(
                {
                    "from": self._account.address,
                    "nonce": nonce,
                    "chainId": self._chain_id,
                    "gas": gas.gas_units,
                    "gasPrice": gas.gas_price_wei,
                }
            )
            tx_hash = await self._send(tx)
        except SubmissionFailed:
            raise
        except Exception as exc:
            raise SubmissionFailed(f"swap submission failed: {exc}") from exc

        log.info(
            "Submitted swap %s on %s: in=%d min_out=%d tx=%s",
            descriptor.route.describe(),
            descriptor.venue,
            descriptor.amount_in,
            descriptor.min_amount_out,
            tx_hash,
        )
        return TransactionHandle(tx_hash=tx_hash, descriptor=descriptor, submitted_at=self._clock())

    async def wait(self, handle: TransactionHandle) -> Receipt:
        try:
            receipt = await self._w3.eth.wait_for_transaction_receipt(
                handle.tx_hash, timeout=self._confirmation_timeout
            )
        except TimeExhausted as exc:
            raise ConfirmationTimeout(
                f"transaction {handle.tx_hash} not confirmed within {self._confirmation_timeout:.0f}s"
            ) from exc
        return Receipt(
            tx_hash=handle.tx_hash,
            success=receipt["status"] == 1,
            block_number=receipt.get("blockNumber"),
            gas_used=receipt.get("gasUsed"),
        )

    async def _ensure_allowance(self, token_address: str, spender: str, amount: int) -> None:
        token = self._w3.eth.contract(address=checksum(token_address), abi=ERC20_ABI)
        try:
            allowance = await token.functions.allowance(self._account.address, spender).call()
            if allowance >= amount:
                return
            log.info("Approving %s for router %s", token_address, spender)
            nonce = await self._w3.eth.get_transaction_count(self._account.address, "pending")
            tx = await token.functions.approve(spender, amount).build_transaction(
                {"from": self._account.address, "nonce": nonce, "chainId": self._chain_id}
            )
            tx_hash = await self._send(tx)
            receipt = await self._w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self._confirmation_timeout)
        except Exception as exc:
            raise SubmissionFailed(f"token approval failed: {exc}") from exc
        if receipt["status"] != 1:
            raise SubmissionFailed(f"token approval reverted: {tx_hash}")

    async def _send(self, tx: dict[str, Any]) -> str:
        signed = self._account.sign_transaction(tx)
        tx_hash = await self._w3.eth.send_raw_transaction(signed.raw_transaction)
        return AsyncWeb3.to_hex(tx_hash)


class DryRunExecutor:
    """Paper-trading executor: validates and logs descriptors without broadcasting."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._counter = itertools.count(1)
        self.submitted: list[TradeDescriptor] = []

    async def submit(self, descriptor: TradeDescriptor) -> TransactionHandle:
        _check_deadline(descriptor, self._clock())
        self.submitted.append(descriptor)
        tx_hash = f"dry-run-{next(self._counter)}"
        log.info(
            "DRY RUN swap %s on %s: in=%d expected=%d min_out=%d",
            descriptor.route.describe(),
            descriptor.venue,
            descriptor.amount_in,
            descriptor.expected_out,
            descriptor.min_amount_out,
        )
        return TransactionHandle(tx_hash=tx_hash, descriptor=descriptor, submitted_at=self._clock())

    async def wait(self, handle: TransactionHandle) -> Receipt:
        await asyncio.sleep(0)
        return Receipt(tx_hash=handle.tx_hash, success=True)
