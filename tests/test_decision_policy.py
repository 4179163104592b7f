from __future__ import annotations

import random
from decimal import Decimal

import pytest

from dex_arbitrage.services.decision_policy import DeterministicPolicy, ProbabilisticPolicy, build_policy
from dex_arbitrage.services.schemas import Execute, OpportunityKind, Skip, SkipReason

from factories import make_opportunity, make_settings


class FixedRandom(random.Random):
    def __init__(self, draw: float) -> None:
        super().__init__(0)
        self.draw = draw

    def random(self) -> float:
        return self.draw


def _fixed_clock() -> float:
    return 1_700_000_000.5


def test_deterministic_executes_at_threshold() -> None:
    opportunity = make_opportunity("1.02")  # net 0.019
    policy = DeterministicPolicy(make_settings(decision={"min_profit": "0.019"}), clock=_fixed_clock)

    decision = policy.decide(opportunity)

    assert isinstance(decision, Execute)


def test_deterministic_skips_below_threshold() -> None:
    opportunity = make_opportunity("1.02")
    policy = DeterministicPolicy(make_settings(decision={"min_profit": "0.0190001"}))

    decision = policy.decide(opportunity)

    assert isinstance(decision, Skip)
    assert decision.reason is SkipReason.THRESHOLD_NOT_MET


def test_descriptor_applies_slippage_and_deadline() -> None:
    opportunity = make_opportunity("1.02")
    settings = make_settings(decision={"slippage_bps": 50, "deadline_sec": 1200})

    descriptor = DeterministicPolicy(settings, clock=_fixed_clock).build_descriptor(opportunity)

    assert descriptor.venue == "venue1"
    assert descriptor.amount_in == 10**18
    assert descriptor.expected_out == 1_020_000_000_000_000_000
    assert descriptor.min_amount_out == 1_014_900_000_000_000_000
    assert descriptor.deadline == 1_700_000_000 + 1200
    assert descriptor.route.describe() == "A -> B"
    assert descriptor.opportunity is opportunity


def test_triangular_skipped_when_execution_disabled() -> None:
    opportunity = make_opportunity("1.5", kind=OpportunityKind.TRIANGULAR)
    settings = make_settings(triangular={"enabled": True, "execute": False})

    for policy in (DeterministicPolicy(settings), ProbabilisticPolicy(settings, rng=FixedRandom(0.0))):
        decision = policy.decide(opportunity)
        assert isinstance(decision, Skip)
        assert decision.reason is SkipReason.TRIANGULAR_DISABLED


def test_triangular_executes_when_enabled() -> None:
    opportunity = make_opportunity("1.5", kind=OpportunityKind.TRIANGULAR)
    settings = make_settings(triangular={"enabled": True, "execute": True})

    assert isinstance(DeterministicPolicy(settings).decide(opportunity), Execute)


def test_probability_is_clamped() -> None:
    policy = ProbabilisticPolicy(make_settings(decision={"min_profit": "0.02"}), rng=FixedRandom(0.5))

    assert policy.execution_probability(Decimal("-1")) == 0.0
    assert policy.execution_probability(Decimal("0")) == 0.0
    assert policy.execution_probability(Decimal("0.01")) == pytest.approx(0.5)
    assert policy.execution_probability(Decimal("5")) == 1.0


def test_probabilistic_marginal_trade_follows_draw() -> None:
    settings = make_settings(decision={"mode": "probabilistic", "min_profit": "0.038"})
    opportunity = make_opportunity("1.02")  # p = 0.019 / 0.038 = 0.5

    accepted = ProbabilisticPolicy(settings, rng=FixedRandom(0.49)).decide(opportunity)
    rejected = ProbabilisticPolicy(settings, rng=FixedRandom(0.5)).decide(opportunity)

    assert isinstance(accepted, Execute)
    assert isinstance(rejected, Skip)
    assert rejected.reason is SkipReason.THRESHOLD_NOT_MET


def test_probabilistic_never_takes_losses() -> None:
    policy = ProbabilisticPolicy(make_settings(), rng=FixedRandom(0.0))

    decision = policy.decide(make_opportunity("0.98"))

    assert isinstance(decision, Skip)
    assert decision.reason is SkipReason.NOT_PROFITABLE


def test_probabilistic_above_threshold_always_executes() -> None:
    policy = ProbabilisticPolicy(make_settings(), rng=FixedRandom(0.999))

    assert isinstance(policy.decide(make_opportunity("1.05")), Execute)


def test_seeded_policy_is_reproducible() -> None:
    settings = make_settings(decision={"mode": "probabilistic", "min_profit": "0.038", "seed": 7})
    opportunity = make_opportunity("1.02")

    def run() -> list[bool]:
        policy = ProbabilisticPolicy(settings)
        return [isinstance(policy.decide(opportunity), Execute) for _ in range(20)]

    assert run() == run()


def test_build_policy_selects_mode() -> None:
    assert type(build_policy(make_settings())) is DeterministicPolicy
    assert type(build_policy(make_settings(decision={"mode": "probabilistic"}))) is ProbabilisticPolicy
