from __future__ import annotations

import logging
import random
import time
from decimal import Decimal
from typing import Callable, Protocol

from dex_arbitrage.config.models import Settings
from dex_arbitrage.core.money import ZERO, ratio
from dex_arbitrage.services.schemas import (
    Decision,
    Execute,
    Opportunity,
    OpportunityKind,
    Skip,
    SkipReason,
    TradeDescriptor,
)

log = logging.getLogger(__name__)

_BPS = 10_000


class DecisionPolicy(Protocol):
    def decide(self, opportunity: Opportunity) -> Decision:
        ...


class DeterministicPolicy:
    """Execute iff net profit reaches the configured minimum."""

    def __init__(self, settings: Settings, clock: Callable[[], float] = time.time) -> None:
        self._settings = settings
        self._clock = clock

    @property
    def threshold(self) -> Decimal:
        return self._settings.decision.min_profit

    def decide(self, opportunity: Opportunity) -> Decision:
        blocked = self._blocked(opportunity)
        if blocked:
            return blocked
        if opportunity.net_profit >= self.threshold:
            return self._execute(opportunity)
        return self._skip(
            SkipReason.THRESHOLD_NOT_MET,
            f"net profit {opportunity.net_profit} below threshold {self.threshold}",
        )

    def build_descriptor(self, opportunity: Opportunity) -> TradeDescriptor:
        decision = self._settings.decision
        expected_out = opportunity.amount_out
        min_amount_out = expected_out * (_BPS - decision.slippage_bps) // _BPS
        return TradeDescriptor(
            venue=opportunity.venue,
            route=opportunity.route,
            amount_in=opportunity.amount_in,
            expected_out=expected_out,
            min_amount_out=min_amount_out,
            deadline=int(self._clock()) + decision.deadline_sec,
            opportunity=opportunity,
        )

    def _blocked(self, opportunity: Opportunity) -> Skip | None:
        if opportunity.kind is OpportunityKind.TRIANGULAR and not self._settings.triangular.execute:
            return self._skip(SkipReason.TRIANGULAR_DISABLED, "automatic execution of cycles is disabled")
        return None

    def _execute(self, opportunity: Opportunity) -> Execute:
        descriptor = self.build_descriptor(opportunity)
        log.info(
            "Executing %s: min out %d, deadline %d",
            opportunity.describe(),
            descriptor.min_amount_out,
            descriptor.deadline,
        )
        return Execute(descriptor)

    @staticmethod
    def _skip(reason: SkipReason, detail: str) -> Skip:
        log.info("Skipping opportunity (%s): %s", reason.value, detail)
        return Skip(reason=reason, detail=detail)


class ProbabilisticPolicy(DeterministicPolicy):
    """Also takes marginal trades, with probability profit / threshold.

    ``rng`` is injected so tests can fix the outcome.
    """

    def __init__(
        self,
        settings: Settings,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(settings, clock=clock)
        self._rng = rng or random.Random(settings.decision.seed)

    def execution_probability(self, profit: Decimal) -> float:
        if profit <= ZERO:
            return 0.0
        return float(min(ratio(profit, self.threshold), Decimal(1)))

    def decide(self, opportunity: Opportunity) -> Decision:
        blocked = self._blocked(opportunity)
        if blocked:
            return blocked
        profit = opportunity.net_profit
        if profit >= self.threshold:
            return self._execute(opportunity)
        if profit <= ZERO:
            return self._skip(SkipReason.NOT_PROFITABLE, f"net profit {profit} is not positive")

        probability = self.execution_probability(profit)
        draw = self._rng.random()
        if draw < probability:
            log.info("Marginal opportunity accepted (p=%.3f, draw=%.3f)", probability, draw)
            return self._execute(opportunity)
        return self._skip(
            SkipReason.THRESHOLD_NOT_MET,
            f"net profit {profit} below threshold {self.threshold} (p={probability:.3f}, draw={draw:.3f})",
        )


def build_policy(settings: Settings, rng: random.Random | None = None) -> DecisionPolicy:
    match settings.decision.mode:
        case "deterministic":
            return DeterministicPolicy(settings)
        case "probabilistic":
            return ProbabilisticPolicy(settings, rng=rng)
        case _:
            raise ValueError(f"Unsupported decision mode: {settings.decision.mode}")
