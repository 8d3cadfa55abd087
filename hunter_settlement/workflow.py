"""
workflow.py — One end-to-end negotiation with one seller.

    DISCOVERING -> SELECTING -> QUOTING -> PAYING -> EXECUTING
        -> VERIFYING -> EVALUATING -> FEEDBACK -> DONE
                     `-> DISPUTED

States run strictly one after another; the only concurrency is the
reputation fan-out inside SELECTING.

Cancellation is honoured up to the moment payment starts. From PAYING
onward the remaining steps run shielded: money that has been sent gets
its result collected, verified and scored even if the caller goes away.

Any failure in QUOTING, PAYING or EXECUTING aborts the run without
feedback. When the failure happens after funds moved, the PaymentTx is
attached to the raised error as ``error.payment``.

A receipt that does not verify ends in DISPUTED: a DisputeReport is
produced and traced, and no feedback is recorded.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Sequence, TypeVar
from uuid import uuid4

from .errors import HunterError, WorkflowCancelled, as_hunter_error
from .evaluation import Evaluator, OutcomeEvaluator
from .feedback import FeedbackRecorder
from .models import (
    AgentIdentity,
    DisputeReport,
    NegotiationOutcome,
    PaymentTx,
    Quote,
    ServiceInfo,
    WorkflowState,
)
from .payment import PaymentSettler
from .receipts import verify_receipt
from .registry import ServiceDirectory
from .selection import ServiceSelector, filter_by_task_type, infer_task_type
from .service_client import ServiceClient
from .trace import TraceEmitter, TraceEventType

logger = logging.getLogger("hunter_settlement.workflow")

T = TypeVar("T")

DEFAULT_TASK_TYPE = "content-generation"

SpendGuard = Callable[[Quote], None]


class _RunContext:
    """Per-run mutable state: where we are and how we got here."""

    def __init__(self, mission_id: str, goal: str, trace: TraceEmitter, cancel: Optional[asyncio.Event]):
        self.mission_id = mission_id
        self.goal = goal
        self.trace = trace
        self.cancel = cancel
        self.state = WorkflowState.DISCOVERING
        self.history: list[WorkflowState] = [WorkflowState.DISCOVERING]

    def enter(self, state: WorkflowState) -> None:
        self.state = state
        self.history.append(state)
        logger.debug("mission=%s -> %s", self.mission_id, state.value)

    def check_cancelled(self) -> None:
        if self.cancel is not None and self.cancel.is_set():
            raise WorkflowCancelled(
                f"Negotiation cancelled during {self.state.value}",
                details={"state": self.state.value},
            )


class NegotiationWorkflow:
    """
    Wires the selector, settler, verifier, evaluator and recorder into one run.

    The same instance can run many negotiations; nothing run-specific is
    kept on it except whether the hunter identity has been announced.
    """

    def __init__(
        self,
        directory: ServiceDirectory,
        client: ServiceClient,
        selector: ServiceSelector,
        settler: PaymentSettler,
        recorder: Optional[FeedbackRecorder] = None,
        evaluator: Optional[Evaluator] = None,
        trace: Optional[TraceEmitter] = None,
        identity: Optional[AgentIdentity] = None,
    ):
        self._directory = directory
        self._client = client
        self._selector = selector
        self._settler = settler
        self._recorder = recorder
        self._evaluator = evaluator or OutcomeEvaluator()
        self._trace = trace or TraceEmitter()
        self._identity = identity
        self._announced = False

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def run(
        self,
        goal: str,
        *,
        mission_id: Optional[str] = None,
        preferred_task_type: Optional[str] = None,
        cancel: Optional[asyncio.Event] = None,
        spend_guard: Optional[SpendGuard] = None,
        trace: Optional[TraceEmitter] = None,
        emit_lifecycle: bool = True,
        feedback_tags: Sequence[str] = (),
    ) -> NegotiationOutcome:
        """
        Negotiate, pay for and verify one task.

        ``spend_guard`` is called with the accepted quote right before
        payment and may raise (BudgetExceeded) to stop it.

        Raises:
            HunterError: any abort; unexpected exceptions arrive as InternalError.
        """
        ctx = _RunContext(mission_id or str(uuid4()), goal, trace or self._trace, cancel)
        logger.info("Negotiation start: mission=%s goal=%r", ctx.mission_id, goal[:120])
        if emit_lifecycle:
            ctx.trace.emit(
                TraceEventType.RUN_STARTED,
                {"mode": "scripted", "goal": goal, "preferredTaskType": preferred_task_type},
            )

        await self.announce()

        try:
            outcome = await self._negotiate(ctx, preferred_task_type, spend_guard, feedback_tags)
        except HunterError as exc:
            self._report_failure(ctx, exc, emit_lifecycle)
            raise
        except Exception as exc:
            wrapped = as_hunter_error(exc)
            self._report_failure(ctx, wrapped, emit_lifecycle)
            raise wrapped from exc

        if emit_lifecycle:
            ctx.trace.emit(
                TraceEventType.RUN_COMPLETED,
                {
                    "mode": "scripted",
                    "state": outcome.state.value,
                    "receiptVerified": outcome.receipt_verified,
                    "score": outcome.evaluation.score if outcome.evaluation else None,
                },
            )
        logger.info(
            "Negotiation end: mission=%s state=%s service=%s",
            ctx.mission_id, outcome.state.value, outcome.service.id,
        )
        return outcome

    async def announce(self) -> bool:
        """Register the hunter identity once. Failure is logged, never raised."""
        if self._identity is None or self._announced:
            return False
        self._announced = True
        try:
            return await self._directory.register_agent(self._identity)
        except Exception as exc:
            logger.warning("Identity registration for %s failed: %s", self._identity.agent_id, exc)
            return False

    # ------------------------------------------------------------------
    # Pre-payment: cancellable
    # ------------------------------------------------------------------

    async def _negotiate(
        self,
        ctx: _RunContext,
        preferred_task_type: Optional[str],
        spend_guard: Optional[SpendGuard],
        feedback_tags: Sequence[str],
    ) -> NegotiationOutcome:
        ctx.check_cancelled()
        services = await self._interruptible(ctx, self._directory.lookup())
        inferred = infer_task_type(ctx.goal)
        task_hint = preferred_task_type or inferred
        eligible = filter_by_task_type(services, task_hint)
        ctx.trace.emit(
            TraceEventType.SERVICES_DISCOVERED,
            {
                "count": len(services),
                "serviceIds": [s.id for s in services],
                "inferredTaskType": inferred,
                "preferredTaskType": preferred_task_type,
                "eligibleServiceIds": [s.id for s in eligible],
            },
        )

        ctx.enter(WorkflowState.SELECTING)
        ctx.check_cancelled()
        selection = await self._interruptible(ctx, self._selector.select(eligible))
        chosen = selection.service
        task_type = chosen.task_type or task_hint or DEFAULT_TASK_TYPE
        ctx.trace.emit(
            TraceEventType.SERVICE_SELECTED,
            {"id": chosen.id, "price": str(chosen.price), "endpoint": chosen.endpoint,
             "taskType": task_type, **selection.reason_for(chosen)},
        )

        ctx.enter(WorkflowState.QUOTING)
        ctx.check_cancelled()
        quoted = await self._interruptible(
            ctx, self._client.request_quote_with_fallback(selection.ranked, task_type, ctx.goal)
        )
        service, quote = quoted.service, quoted.quote
        if service.id != chosen.id:
            ctx.trace.emit(
                TraceEventType.SERVICE_SELECTED,
                {"id": service.id, "price": str(service.price), "endpoint": service.endpoint,
                 "taskType": service.task_type or task_type, "fallbackFrom": chosen.id,
                 "attempts": [a.to_dict() for a in quoted.attempts], **selection.reason_for(service)},
            )
        ctx.trace.emit(TraceEventType.QUOTE_RECEIVED, quote.to_dict())
        ctx.trace.emit(
            TraceEventType.PAYMENT_STATE,
            {"status": "payment-required", "requestHash": quote.request_hash,
             "amount": str(quote.amount), "payTo": quote.pay_to, "network": quote.network},
        )

        ctx.enter(WorkflowState.PAYING)
        ctx.check_cancelled()
        if spend_guard is not None:
            spend_guard(quote)

        # past this point money may move; the caller can no longer abort us
        return await asyncio.shield(
            self._settle_and_deliver(ctx, service, quote, quoted.attempts, feedback_tags)
        )

    async def _interruptible(self, ctx: _RunContext, aw: Awaitable[T]) -> T:
        """Await ``aw`` unless the cancel event fires first."""
        if ctx.cancel is None:
            return await aw
        task = asyncio.ensure_future(aw)
        waiter = asyncio.ensure_future(ctx.cancel.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()
        if task.done() and not task.cancelled():
            return task.result()
        ctx.check_cancelled()
        raise WorkflowCancelled(f"Negotiation cancelled during {ctx.state.value}")

    # ------------------------------------------------------------------
    # Post-payment: shielded
    # ------------------------------------------------------------------

    async def _settle_and_deliver(
        self,
        ctx: _RunContext,
        service: ServiceInfo,
        quote: Quote,
        attempts: list,
        feedback_tags: Sequence[str],
    ) -> NegotiationOutcome:
        payment = await self._settler.settle(quote)
        ctx.trace.emit(TraceEventType.PAYMENT_STATE, {"status": "payment-submitted", "txHash": payment.tx_hash})

        try:
            ctx.enter(WorkflowState.EXECUTING)
            execution = await self._client.submit_payment(service, payment, quote, ctx.goal)
            ctx.trace.emit(
                TraceEventType.PAYMENT_STATE,
                {"status": execution.payment_status, "txHash": execution.payment_tx, "network": execution.network},
            )

            ctx.enter(WorkflowState.VERIFYING)
            verification = verify_receipt(execution.receipt)
        except HunterError as exc:
            exc.payment = payment
            raise
        except Exception as exc:
            wrapped = as_hunter_error(exc)
            wrapped.payment = payment
            raise wrapped from exc

        ctx.trace.emit(
            TraceEventType.RECEIPT_VERIFIED,
            {"isValid": verification.is_valid, "provider": verification.provider,
             "requestHash": execution.receipt.request_hash},
        )
        outcome = NegotiationOutcome(
            mission_id=ctx.mission_id,
            goal=ctx.goal,
            state=ctx.state,
            service=service,
            quote=quote,
            payment=payment,
            execution=execution,
            verification=verification,
            quote_attempts=[a.to_dict() for a in attempts],
        )

        if not verification.is_valid:
            ctx.enter(WorkflowState.DISPUTED)
            outcome.dispute = self._dispute(service, execution.receipt, payment)
            logger.error(
                "Receipt INVALID: mission=%s service=%s provider=%s tx=%s",
                ctx.mission_id, service.id, verification.provider, payment.tx_hash,
            )
            ctx.trace.emit(TraceEventType.DISPUTE_REPORTED, outcome.dispute.to_dict())
            return self._finish(ctx, outcome)

        ctx.enter(WorkflowState.EVALUATING)
        outcome.evaluation = self._evaluator.evaluate(execution.result)
        ctx.trace.emit(
            TraceEventType.EVALUATION_COMPLETED,
            {"score": outcome.evaluation.score, "summary": outcome.evaluation.summary},
        )

        ctx.enter(WorkflowState.FEEDBACK)
        if self._recorder is not None:
            try:
                outcome.feedback = await self._recorder.record(
                    service,
                    outcome.evaluation,
                    mission_id=ctx.mission_id,
                    task_type=quote.task_type or service.task_type,
                    tags=feedback_tags,
                )
            except Exception as exc:
                logger.warning("Feedback for %s not recorded: %s", service.id, exc)
            else:
                ctx.trace.emit(TraceEventType.FEEDBACK_SUBMITTED, outcome.feedback.to_dict())

        ctx.enter(WorkflowState.DONE)
        return self._finish(ctx, outcome)

    @staticmethod
    def _dispute(service: ServiceInfo, receipt, payment: PaymentTx) -> DisputeReport:
        return DisputeReport(
            service_id=service.id,
            provider=receipt.provider,
            request_hash=receipt.request_hash,
            result_hash=receipt.result_hash,
            tx_hash=payment.tx_hash,
            amount=payment.amount,
        )

    @staticmethod
    def _finish(ctx: _RunContext, outcome: NegotiationOutcome) -> NegotiationOutcome:
        outcome.state = ctx.state
        outcome.history = list(ctx.history)
        return outcome

    @staticmethod
    def _report_failure(ctx: _RunContext, error: HunterError, emit_lifecycle: bool) -> None:
        logger.error(
            "Negotiation failed: mission=%s state=%s code=%s: %s",
            ctx.mission_id, ctx.state.value, error.code, error.message,
        )
        if emit_lifecycle:
            ctx.trace.emit(
                TraceEventType.RUN_FAILED,
                {"state": ctx.state.value, **error.to_dict()},
            )
