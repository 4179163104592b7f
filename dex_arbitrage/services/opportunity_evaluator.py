from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from itertools import combinations, permutations
from typing import Any, Awaitable, Callable, Protocol, Sequence

from dex_arbitrage.chain.balances import BalanceSource
from dex_arbitrage.config.models import Settings
from dex_arbitrage.core.exceptions import ErrorKind, GasEstimateUnavailable
from dex_arbitrage.core.money import to_raw
from dex_arbitrage.services.profit import ProfitCalculator
from dex_arbitrage.services.schemas import (
    GasEstimate,
    Opportunity,
    OpportunityKind,
    Quote,
    QuoteResult,
    QuoteUnavailable,
    Token,
)
from dex_arbitrage.venues.base import QuoteProvider

log = logging.getLogger(__name__)


class GasEstimator(Protocol):
    def units_for_hops(self, hops: int) -> int:
        ...

    async def estimate(self, gas_units: int) -> GasEstimate:
        ...


class EvaluatorState(str, Enum):
    IDLE = "idle"
    ENUMERATING = "enumerating"
    QUOTING = "quoting"
    COMPARING = "comparing"


class CandidateOutcome(str, Enum):
    NO_QUOTES = "no_quotes"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    FAILED = "failed"


@dataclass(slots=True)
class EvaluationResult:
    best: Opportunity | None
    error: ErrorKind | None = None
    candidates: int = 0
    scored: int = 0
    unquoted: int = 0
    skipped: int = 0
    failed: int = 0


class OpportunityEvaluator:
    """Runs one scan pass over the token universe and keeps the single best opportunity.

    Pairs are every unordered combination of two tokens, quoted on every
    venue; cycles are every ordered A -> B -> C -> A, each on a single
    venue. A candidate that cannot be quoted or raises is counted and
    skipped, never fatal to the pass.
    """

    def __init__(
        self,
        venues: Sequence[QuoteProvider],
        gas_estimator: GasEstimator,
        settings: Settings,
        calculator: ProfitCalculator | None = None,
        balances: BalanceSource | None = None,
        owner: str | None = None,
    ) -> None:
        self._venues = list(venues)
        self._gas_estimator = gas_estimator
        self._settings = settings
        self._calculator = calculator or ProfitCalculator()
        self._balances = balances
        self._owner = owner
        self._state = EvaluatorState.IDLE

    @property
    def state(self) -> EvaluatorState:
        return self._state

    async def evaluate(self, tokens: Sequence[Token]) -> EvaluationResult:
        self._state = EvaluatorState.ENUMERATING
        try:
            return await self._evaluate(tokens)
        finally:
            self._state = EvaluatorState.IDLE

    async def _evaluate(self, tokens: Sequence[Token]) -> EvaluationResult:
        pairs = list(combinations(tokens, 2))
        cycles = self._cycles(tokens) if self._settings.triangular.enabled else []
        candidates = len(pairs) + len(cycles) * len(self._venues)
        if candidates == 0:
            log.info("No candidates to evaluate (%d tokens)", len(tokens))
            return EvaluationResult(best=None)

        try:
            single_hop = await self._gas_estimator.estimate(self._gas_estimator.units_for_hops(1))
        except GasEstimateUnavailable as exc:
            log.warning("Gas estimate unavailable, skipping %d candidates: %s", candidates, exc)
            return EvaluationResult(best=None, error=ErrorKind.GAS_ESTIMATE_UNAVAILABLE, candidates=candidates)
        three_hop = single_hop.with_units(self._gas_estimator.units_for_hops(3))

        balances = await self._load_balances(tokens)

        self._state = EvaluatorState.QUOTING
        semaphore = asyncio.Semaphore(self._settings.scan.max_concurrency)
        jobs = [self._guarded(semaphore, self._evaluate_pair, a, b, single_hop, balances) for a, b in pairs]
        jobs.extend(
            self._guarded(semaphore, self._evaluate_cycle, venue, cycle, three_hop, balances)
            for cycle in cycles
            for venue in self._venues
        )
        outcomes = await asyncio.gather(*jobs)

        self._state = EvaluatorState.COMPARING
        result = EvaluationResult(best=None, candidates=candidates)
        # reduce in enumeration order: first seen wins on equal profit
        for outcome in outcomes:
            if isinstance(outcome, Opportunity):
                result.scored += 1
                if result.best is None or outcome.net_profit > result.best.net_profit:
                    result.best = outcome
            elif outcome is CandidateOutcome.NO_QUOTES:
                result.unquoted += 1
            elif outcome is CandidateOutcome.INSUFFICIENT_BALANCE:
                result.skipped += 1
            else:
                result.failed += 1

        log.info(
            "Pass evaluated %d candidates: %d scored, %d without quotes, %d skipped, %d failed; best: %s",
            result.candidates,
            result.scored,
            result.unquoted,
            result.skipped,
            result.failed,
            result.best.describe() if result.best else "none",
        )
        return result

    def _cycles(self, tokens: Sequence[Token]) -> list[tuple[Token, Token, Token]]:
        """Every ordered triple; each start token is a separate candidate."""
        universe = list(tokens)[: self._settings.triangular.max_tokens]
        return list(permutations(universe, 3))

    def _trade_amount(self, token: Token) -> int:
        return to_raw(self._settings.scan.trade_amount, token.decimals)

    async def _guarded(
        self,
        semaphore: asyncio.Semaphore,
        job: Callable[..., Awaitable[Opportunity | CandidateOutcome]],
        *args: Any,
    ) -> Opportunity | CandidateOutcome:
        async with semaphore:
            try:
                return await job(*args)
            except Exception:
                log.exception("Candidate evaluation failed")
                return CandidateOutcome.FAILED

    async def _evaluate_pair(
        self,
        first: Token,
        second: Token,
        gas: GasEstimate,
        balances: dict[str, int | None],
    ) -> Opportunity | CandidateOutcome:
        token_in, token_out = first, second
        first_ok = self._can_spend(first, balances)
        second_ok = self._can_spend(second, balances)
        if not first_ok and not second_ok:
            log.info("Insufficient balance for %s/%s, skipping", first.symbol, second.symbol)
            return CandidateOutcome.INSUFFICIENT_BALANCE
        if not first_ok:
            token_in, token_out = second, first

        amount_in = self._trade_amount(token_in)
        results = await asyncio.gather(*(self._quote(venue, token_in, token_out, amount_in) for venue in self._venues))
        quotes = [result for result in results if isinstance(result, Quote)]
        if not quotes:
            return CandidateOutcome.NO_QUOTES

        comparison = self._calculator.compare(quotes, gas, amount_in)
        if comparison is None:
            return CandidateOutcome.NO_QUOTES
        best = comparison.best_quote
        return Opportunity(
            kind=OpportunityKind.PAIR,
            legs=(best,),
            gas=gas,
            net_profit=comparison.net_profit,
            alternatives=tuple(quote for quote in quotes if quote is not best),
        )

    async def _evaluate_cycle(
        self,
        venue: QuoteProvider,
        cycle: tuple[Token, Token, Token],
        gas: GasEstimate,
        balances: dict[str, int | None],
    ) -> Opportunity | CandidateOutcome:
        start = cycle[0]
        if not self._can_spend(start, balances):
            return CandidateOutcome.INSUFFICIENT_BALANCE

        legs: list[Quote] = []
        token_in, amount = start, self._trade_amount(start)
        for token_out in (*cycle[1:], start):
            result = await self._quote(venue, token_in, token_out, amount)
            if isinstance(result, QuoteUnavailable):
                return CandidateOutcome.NO_QUOTES
            legs.append(result)
            token_in, amount = token_out, result.amount_out

        return Opportunity(
            kind=OpportunityKind.TRIANGULAR,
            legs=tuple(legs),
            gas=gas,
            net_profit=self._calculator.triangular(legs, gas),
        )

    async def _quote(self, venue: QuoteProvider, token_in: Token, token_out: Token, amount_in: int) -> QuoteResult:
        try:
            return await asyncio.wait_for(
                venue.get_quote(token_in, token_out, amount_in),
                self._settings.timeouts.quote_sec,
            )
        except asyncio.TimeoutError:
            return QuoteUnavailable(venue=venue.name, token_in=token_in, token_out=token_out, reason="timeout")
        except Exception as exc:
            log.warning("Venue %s raised while quoting %s -> %s: %s", venue.name, token_in, token_out, exc)
            return QuoteUnavailable(venue=venue.name, token_in=token_in, token_out=token_out, reason=str(exc))

    def _can_spend(self, token: Token, balances: dict[str, int | None]) -> bool:
        balance = balances.get(token.address.lower())
        # unknown balances never block a candidate
        return balance is None or balance >= self._trade_amount(token)

    async def _load_balances(self, tokens: Sequence[Token]) -> dict[str, int | None]:
        if self._balances is None or not self._owner or not self._settings.scan.balance_filter:
            return {}
        source: BalanceSource = self._balances
        owner: str = self._owner

        async def fetch(token: Token) -> int | None:
            try:
                return await asyncio.wait_for(
                    source.get_balance(token, owner),
                    self._settings.timeouts.balance_sec,
                )
            except asyncio.TimeoutError:
                log.debug("Balance lookup for %s timed out", token.symbol)
            except Exception as exc:
                log.debug("Balance lookup for %s failed: %s", token.symbol, exc)
            return None

        results = await asyncio.gather(*(fetch(token) for token in tokens))
        return {token.address.lower(): balance for token, balance in zip(tokens, results, strict=True)}
