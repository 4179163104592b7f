from __future__ import annotations

import asyncio

import pytest

from dex_arbitrage.chain.wallet import DryRunExecutor
from dex_arbitrage.core.exceptions import (
    ConfirmationTimeout,
    DeadlineExpired,
    ErrorKind,
    GasEstimateUnavailable,
    SubmissionFailed,
    TokenUniverseError,
)
from dex_arbitrage.services.arbitrage_engine import ArbitrageEngine
from dex_arbitrage.services.decision_policy import DeterministicPolicy
from dex_arbitrage.services.opportunity_evaluator import OpportunityEvaluator
from dex_arbitrage.services.scan_loop import ScanLoop
from dex_arbitrage.services.schemas import EventKind, OpportunityKind, SkipReason

from factories import (
    FakeExecutor,
    FakeGasEstimator,
    FakeTokenSource,
    FakeVenue,
    RecordingNotifier,
    make_settings,
    make_token,
)

PROFITABLE = {("A", "B"): "1.02"}


def build_engine(
    venues,
    executor=None,
    tokens=("A", "B", "C"),
    token_error=None,
    gas=None,
    stopping=None,
    **sections,
):
    settings = make_settings(**sections)
    notifier = RecordingNotifier()
    executor = executor if executor is not None else FakeExecutor()
    evaluator = OpportunityEvaluator(venues, gas or FakeGasEstimator(), settings)
    engine = ArbitrageEngine(
        settings,
        token_source=FakeTokenSource([make_token(symbol) for symbol in tokens], error=token_error),
        evaluator=evaluator,
        policy=DeterministicPolicy(settings),
        executor=executor,
        notifier=notifier,
        stopping=stopping,
    )
    return engine, executor, notifier


@pytest.mark.asyncio
async def test_empty_universe_reports_nothing_found() -> None:
    engine, executor, notifier = build_engine([FakeVenue("venue1")], tokens=())

    result = await engine.run_one_pass()

    assert result.opportunity_found is False
    assert result.executed is False
    assert result.error is None
    assert executor.submitted == []
    assert notifier.kinds() == ["no_opportunity"]


@pytest.mark.asyncio
async def test_no_opportunity_reported_once_per_pass() -> None:
    engine, executor, notifier = build_engine([FakeVenue("venue1"), FakeVenue("venue2")])

    first = await engine.run_one_pass()
    assert notifier.kinds() == ["no_opportunity"]
    second = await engine.run_one_pass()

    assert first.opportunity_found is False and second.opportunity_found is False
    assert first.error is None
    assert notifier.kinds() == ["no_opportunity", "no_opportunity"]
    assert executor.submitted == []


@pytest.mark.asyncio
async def test_profitable_pair_is_executed() -> None:
    venues = [FakeVenue("venue1", PROFITABLE), FakeVenue("venue2", {("A", "B"): "0.98"})]
    engine, executor, notifier = build_engine(venues)

    result = await engine.run_one_pass()
    await engine.close()

    assert result.opportunity_found is True
    assert result.executed is True
    assert result.error is None
    assert len(executor.submitted) == 1
    descriptor = executor.submitted[0]
    assert descriptor.venue == "venue1"
    assert descriptor.amount_in == 10**18
    assert descriptor.min_amount_out == 1_014_900_000_000_000_000
    assert notifier.kinds() == ["opportunity_found", "trade_submitted", "trade_confirmed"]
    assert notifier.events[0].details["net_profit"] == "0.019000000000000000"


@pytest.mark.asyncio
async def test_dry_run_executor_records_trade() -> None:
    executor = DryRunExecutor()
    engine, _, notifier = build_engine([FakeVenue("venue1", PROFITABLE)], executor=executor)

    result = await engine.run_one_pass()
    await engine.close()

    assert result.executed is True
    assert len(executor.submitted) == 1
    assert notifier.events[1].details["tx"] == "dry-run-1"
    assert EventKind.TRADE_CONFIRMED in [event.kind for event in notifier.events]


@pytest.mark.asyncio
async def test_below_threshold_is_skipped() -> None:
    engine, executor, notifier = build_engine(
        [FakeVenue("venue1", {("A", "B"): "1.005"})],
        decision={"min_profit": "0.01"},
    )

    result = await engine.run_one_pass()

    assert result.opportunity_found is True
    assert result.executed is False
    assert result.skip_reason is SkipReason.THRESHOLD_NOT_MET
    assert result.error is None
    assert executor.submitted == []
    assert notifier.kinds() == ["opportunity_found", "trade_skipped"]


@pytest.mark.asyncio
async def test_pending_trade_blocks_next_execution() -> None:
    executor = FakeExecutor(hold=True)
    engine, _, notifier = build_engine([FakeVenue("venue1", PROFITABLE)], executor=executor)

    first = await engine.run_one_pass()
    assert engine.has_pending_trade
    second = await engine.run_one_pass()

    assert first.executed is True
    assert second.executed is False
    assert second.skip_reason is SkipReason.PENDING_TRADE
    assert len(executor.submitted) == 1

    executor.release.set()
    await engine.close()
    assert not engine.has_pending_trade
    assert notifier.kinds()[-1] == "trade_confirmed"


@pytest.mark.asyncio
async def test_reverted_trade_reports_failure() -> None:
    executor = FakeExecutor(success=False)
    engine, _, notifier = build_engine([FakeVenue("venue1", PROFITABLE)], executor=executor)

    await engine.run_one_pass()
    await engine.close()

    assert notifier.kinds()[-1] == "trade_failed"


@pytest.mark.asyncio
async def test_submission_failure_is_reported() -> None:
    executor = FakeExecutor(submit_error=SubmissionFailed("nonce too low"))
    engine, _, notifier = build_engine([FakeVenue("venue1", PROFITABLE)], executor=executor)

    result = await engine.run_one_pass()

    assert result.opportunity_found is True
    assert result.executed is False
    assert result.error is ErrorKind.SUBMISSION_FAILED
    assert notifier.kinds() == ["opportunity_found", "trade_failed"]
    assert "nonce too low" in notifier.events[-1].message
    assert not engine.has_pending_trade


@pytest.mark.asyncio
async def test_expired_descriptor_is_skipped() -> None:
    executor = FakeExecutor(submit_error=DeadlineExpired("too late"))
    engine, _, notifier = build_engine([FakeVenue("venue1", PROFITABLE)], executor=executor)

    result = await engine.run_one_pass()

    assert result.executed is False
    assert result.skip_reason is SkipReason.DEADLINE_EXPIRED
    assert result.error is None
    assert notifier.kinds() == ["opportunity_found", "trade_skipped"]


@pytest.mark.asyncio
async def test_triangular_opportunity_is_reported_not_executed() -> None:
    venue = FakeVenue("venue1", {("A", "B"): "1.0", ("B", "C"): "1.0", ("C", "A"): "1.05"})
    engine, executor, notifier = build_engine(
        [venue],
        gas=FakeGasEstimator(gas_price_wei=0),
        triangular={"enabled": True, "execute": False},
    )

    result = await engine.run_one_pass()

    assert result.opportunity_found is True
    assert result.executed is False
    assert result.skip_reason is SkipReason.TRIANGULAR_DISABLED
    assert result.opportunity is not None
    assert result.opportunity.kind is OpportunityKind.TRIANGULAR
    assert executor.submitted == []
    assert notifier.kinds() == ["opportunity_found", "trade_skipped"]
    assert notifier.events[0].details["route"] == "A -> B -> C -> A"


@pytest.mark.asyncio
async def test_token_universe_failure_is_reported() -> None:
    engine, executor, notifier = build_engine(
        [FakeVenue("venue1", PROFITABLE)],
        token_error=TokenUniverseError("coingecko down"),
    )

    result = await engine.run_one_pass()

    assert result.opportunity_found is False
    assert result.error is ErrorKind.TOKEN_UNIVERSE_UNAVAILABLE
    assert notifier.kinds() == ["pass_error"]


@pytest.mark.asyncio
async def test_gas_unavailable_surfaces_in_pass_result() -> None:
    engine, executor, notifier = build_engine(
        [FakeVenue("venue1", PROFITABLE)],
        gas=FakeGasEstimator(error=GasEstimateUnavailable("no price")),
    )

    result = await engine.run_one_pass()

    assert result.opportunity_found is False
    assert result.error is ErrorKind.GAS_ESTIMATE_UNAVAILABLE
    assert notifier.events[0].details["error"] == "gas_estimate_unavailable"
    assert executor.submitted == []


@pytest.mark.asyncio
async def test_failing_notifier_does_not_break_pass() -> None:
    engine, executor, notifier = build_engine([FakeVenue("venue1", PROFITABLE)])

    def explode(event) -> None:
        raise RuntimeError("chat unreachable")

    notifier.notify = explode

    result = await engine.run_one_pass()
    await engine.close()

    assert result.executed is True
    assert len(executor.submitted) == 1


@pytest.mark.asyncio
async def test_unconfirmed_trade_reports_confirmation_timeout() -> None:
    executor = FakeExecutor(wait_error=ConfirmationTimeout("not mined within 180s"))
    engine, _, notifier = build_engine([FakeVenue("venue1", PROFITABLE)], executor=executor)

    result = await engine.run_one_pass()
    await engine.close()

    assert result.executed is True
    assert notifier.kinds() == ["opportunity_found", "trade_submitted", "trade_failed"]
    assert notifier.events[-1].details["error"] == "confirmation_timeout"
    assert not engine.has_pending_trade


@pytest.mark.asyncio
async def test_stop_during_quotes_does_not_submit() -> None:
    stop_event = asyncio.Event()

    class StoppingVenue(FakeVenue):
        async def get_quote(self, token_in, token_out, amount_in):
            loop.stop()
            return await super().get_quote(token_in, token_out, amount_in)

    engine, executor, notifier = build_engine(
        [StoppingVenue("venue1", PROFITABLE)],
        stopping=stop_event.is_set,
    )
    loop = ScanLoop(engine, notifier, interval_sec=3600, stop_event=stop_event)

    await asyncio.wait_for(loop.run(), timeout=1)

    assert loop.stopping
    assert executor.submitted == []
    (result,) = loop.results
    assert result.opportunity_found is True
    assert result.executed is False
    assert result.skip_reason is SkipReason.SHUTDOWN
    assert notifier.kinds() == ["opportunity_found", "trade_skipped"]


@pytest.mark.asyncio
async def test_stop_before_evaluation_skips_quoting() -> None:
    venue = FakeVenue("venue1", PROFITABLE)
    engine, executor, notifier = build_engine([venue], stopping=lambda: True)

    result = await engine.run_one_pass()

    assert result.opportunity_found is False
    assert result.executed is False
    assert venue.calls == []
    assert executor.submitted == []
    assert notifier.kinds() == []


@pytest.mark.asyncio
async def test_submission_finishing_after_cancel_is_still_watched() -> None:
    executor = FakeExecutor(hold_submit=True)
    engine, _, notifier = build_engine([FakeVenue("venue1", PROFITABLE)], executor=executor)

    pass_task = asyncio.create_task(engine.run_one_pass())
    await asyncio.wait_for(executor.submit_started.wait(), timeout=1)
    pass_task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await pass_task

    assert engine.has_pending_trade
    executor.release_submit.set()
    await engine.close()

    assert len(executor.submitted) == 1
    assert notifier.kinds() == ["opportunity_found", "trade_confirmed"]
    assert notifier.events[-1].details["tx"] == "0xtx1"
    assert not engine.has_pending_trade
