from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

from dex_arbitrage.chain.wallet import TradeExecutor
from dex_arbitrage.config.models import Settings
from dex_arbitrage.core.exceptions import (
    ConfirmationTimeout,
    DeadlineExpired,
    ErrorKind,
    SubmissionFailed,
    TokenUniverseError,
)
from dex_arbitrage.services.decision_policy import DecisionPolicy
from dex_arbitrage.services.opportunity_evaluator import EvaluationResult, OpportunityEvaluator
from dex_arbitrage.services.schemas import (
    EventKind,
    NotificationEvent,
    Opportunity,
    PassResult,
    Skip,
    SkipReason,
    TradeDescriptor,
    TransactionHandle,
)
from dex_arbitrage.services.telegram_notifier import Notifier
from dex_arbitrage.services.token_universe import TokenUniverseSource

log = logging.getLogger(__name__)


def _opportunity_details(opportunity: Opportunity) -> dict[str, Any]:
    token_in, token_out = opportunity.token_in, opportunity.token_out
    return {
        "kind": opportunity.kind.value,
        "venue": opportunity.venue,
        "route": opportunity.route.describe(),
        "amount_in": f"{token_in.to_units(opportunity.amount_in)} {token_in.symbol}",
        "amount_out": f"{token_out.to_units(opportunity.amount_out)} {token_out.symbol}",
        "gas_cost": str(opportunity.gas.cost),
        "net_profit": str(opportunity.net_profit),
    }


def _descriptor_details(descriptor: TradeDescriptor) -> dict[str, Any]:
    details = _opportunity_details(descriptor.opportunity)
    token_out = descriptor.route.path[-1]
    details["min_amount_out"] = f"{token_out.to_units(descriptor.min_amount_out)} {token_out.symbol}"
    details["deadline"] = descriptor.deadline
    return details


class ArbitrageEngine:
    """One scan pass: token universe -> evaluator -> policy -> executor.

    At most one trade is outstanding at any time: while a submission or
    its confirmation is in flight, later passes still evaluate but skip
    execution.
    """

    def __init__(
        self,
        settings: Settings,
        token_source: TokenUniverseSource,
        evaluator: OpportunityEvaluator,
        policy: DecisionPolicy,
        executor: TradeExecutor,
        notifier: Notifier,
        stopping: Callable[[], bool] | None = None,
    ) -> None:
        self._settings = settings
        self._token_source = token_source
        self._evaluator = evaluator
        self._policy = policy
        self._executor = executor
        self._notifier = notifier
        self._stopping = stopping or (lambda: False)
        self._submission: asyncio.Future[TransactionHandle] | None = None
        self._orphan: asyncio.Future[TransactionHandle] | None = None
        self._confirmation: asyncio.Task[None] | None = None
        self._watched_tx: str | None = None
        self._passes = 0

    @property
    def has_pending_trade(self) -> bool:
        return any(task is not None and not task.done() for task in (self._submission, self._confirmation))

    async def run_one_pass(self) -> PassResult:
        self._passes += 1
        log.info("Starting pass %d", self._passes)
        try:
            tokens = await self._token_source.list_top_tokens(self._settings.tokens.limit)
        except TokenUniverseError as exc:
            log.warning("Pass %d: token universe unavailable: %s", self._passes, exc)
            self._notify(EventKind.PASS_ERROR, f"Token list unavailable: {exc}")
            return PassResult(opportunity_found=False, executed=False, error=exc.kind)
        if self._stopping():
            log.info("Pass %d: shutdown requested, not evaluating", self._passes)
            return PassResult(opportunity_found=False, executed=False)

        evaluation = await self._evaluator.evaluate(tokens)
        opportunity = evaluation.best
        if opportunity is None:
            self._notify_no_opportunity(evaluation)
            return PassResult(opportunity_found=False, executed=False, error=evaluation.error)

        self._notify(EventKind.OPPORTUNITY_FOUND, "Opportunity found", _opportunity_details(opportunity))

        decision = self._policy.decide(opportunity)
        if isinstance(decision, Skip):
            return self._skipped(opportunity, decision.reason, decision.detail)
        if self.has_pending_trade:
            return self._skipped(opportunity, SkipReason.PENDING_TRADE, "previous trade not confirmed yet")
        # quotes may have been in flight when stop was requested
        if self._stopping():
            return self._skipped(opportunity, SkipReason.SHUTDOWN, "shutdown requested")
        return await self._submit(decision.descriptor)

    async def _submit(self, descriptor: TradeDescriptor) -> PassResult:
        opportunity = descriptor.opportunity
        submission = asyncio.ensure_future(self._executor.submit(descriptor))
        self._submission = submission
        try:
            # shutdown must not leave a half-sent transaction behind
            handle = await asyncio.shield(submission)
        except asyncio.CancelledError:
            self._orphan = submission
            raise
        except DeadlineExpired as exc:
            return self._skipped(opportunity, SkipReason.DEADLINE_EXPIRED, str(exc))
        except SubmissionFailed as exc:
            log.error("Submission failed for %s: %s", opportunity.describe(), exc)
            self._notify(
                EventKind.TRADE_FAILED,
                f"Submission failed: {exc}",
                _descriptor_details(descriptor),
            )
            return PassResult(
                opportunity_found=True,
                executed=False,
                error=ErrorKind.SUBMISSION_FAILED,
                opportunity=opportunity,
            )

        details = _descriptor_details(descriptor)
        details["tx"] = handle.tx_hash
        self._notify(EventKind.TRADE_SUBMITTED, "Trade submitted", details)
        self._watch(handle)
        return PassResult(opportunity_found=True, executed=True, opportunity=opportunity)

    def _watch(self, handle: TransactionHandle) -> None:
        self._watched_tx = handle.tx_hash
        self._confirmation = asyncio.create_task(self._await_confirmation(handle), name="trade-confirmation")

    def _orphaned_handle(self, submission: asyncio.Future[TransactionHandle]) -> TransactionHandle | None:
        """Handle of a submission that completed after its pass was cancelled."""
        if not submission.done() or submission.cancelled():
            return None
        if submission.exception() is not None:
            log.warning("In-flight submission ended with error: %s", submission.exception())
            return None
        handle = submission.result()
        return handle if handle.tx_hash != self._watched_tx else None

    async def _await_confirmation(self, handle: TransactionHandle) -> None:
        details = _descriptor_details(handle.descriptor)
        details["tx"] = handle.tx_hash
        try:
            receipt = await self._executor.wait(handle)
        except ConfirmationTimeout as exc:
            log.error("Trade %s unconfirmed: %s", handle.tx_hash, exc)
            details["error"] = exc.kind.value
            self._notify(EventKind.TRADE_FAILED, f"Confirmation timeout: {exc}", details)
            return
        except Exception as exc:
            log.exception("Waiting for trade %s failed", handle.tx_hash)
            details["error"] = ErrorKind.SUBMISSION_FAILED.value
            self._notify(EventKind.TRADE_FAILED, f"Trade failed: {exc}", details)
            return

        if receipt.success:
            details["block"] = receipt.block_number
            log.info("Trade %s confirmed in block %s", handle.tx_hash, receipt.block_number)
            self._notify(EventKind.TRADE_CONFIRMED, "Trade confirmed", details)
        else:
            log.error("Trade %s reverted", handle.tx_hash)
            details["error"] = ErrorKind.SUBMISSION_FAILED.value
            self._notify(EventKind.TRADE_FAILED, "Trade reverted", details)

    def _skipped(self, opportunity: Opportunity, reason: SkipReason, detail: str) -> PassResult:
        details = _opportunity_details(opportunity)
        details["reason"] = reason.value
        self._notify(EventKind.TRADE_SKIPPED, f"Trade skipped: {detail}", details)
        return PassResult(
            opportunity_found=True,
            executed=False,
            skip_reason=reason,
            opportunity=opportunity,
        )

    def _notify_no_opportunity(self, evaluation: EvaluationResult) -> None:
        details: dict[str, Any] = {
            "candidates": evaluation.candidates,
            "unquoted": evaluation.unquoted,
            "failed": evaluation.failed,
        }
        if evaluation.error:
            details["error"] = evaluation.error.value
        self._notify(EventKind.NO_OPPORTUNITY, "No opportunity this pass", details)

    def _notify(self, kind: EventKind, message: str, details: dict[str, Any] | None = None) -> None:
        try:
            self._notifier.notify(NotificationEvent(kind=kind, message=message, details=details or {}))
        except Exception:
            log.exception("Notifier raised for %s", kind.value)

    async def close(self) -> None:
        """Let an in-flight submission and its confirmation finish."""
        timeout = self._settings.timeouts.confirmation_sec
        if self._orphan is not None:
            submission, self._orphan = self._orphan, None
            if not submission.done():
                log.info("Waiting for in-flight submission before shutdown")
                await asyncio.wait({submission}, timeout=timeout)
            handle = self._orphaned_handle(submission)
            if handle is not None:
                log.info("Watching trade %s submitted during shutdown", handle.tx_hash)
                self._watch(handle)
        if self._confirmation is not None and not self._confirmation.done():
            log.info("Waiting for trade confirmation before shutdown")
            await asyncio.wait({self._confirmation}, timeout=timeout)
