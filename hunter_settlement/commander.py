"""
commander.py — Multi-phase missions under one spending cap.

The BudgetOrchestrator asks a planner for the next phase, runs one
NegotiationWorkflow for it, charges the budget with what was actually
paid, and repeats until the planner is done or a limit is hit.

Budget rules:
  - before paying, a phase's quote must fit both the per-phase limit and
    what is left of the total; otherwise the phase fails with
    BudgetExceeded and nothing is paid
  - after a phase, spent_wei grows by the PaymentTx amount, including for
    phases that failed or were disputed after the payment went out
  - the run stops once the phase limit is reached or the total is spent

Phases run one at a time, so the budget has a single writer.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Optional, Protocol, Sequence
from uuid import uuid4

from .config import HunterConfig
from .errors import BudgetExceeded, HunterError, PhaseTimeout, WorkflowCancelled, as_hunter_error
from .models import (
    CommanderBudget,
    CommanderPhase,
    CommanderPhaseResult,
    CommanderRunResult,
    NegotiationOutcome,
    Quote,
    WorkflowState,
)
from .trace import TraceEmitter, TraceEventType
from .wallet import format_native
from .workflow import NegotiationWorkflow

logger = logging.getLogger("hunter_settlement.commander")

CONTEXT_CLIP = 1000


# ---------------------------------------------------------------------------
# Budget arithmetic
# ---------------------------------------------------------------------------

def budget_from_config(config: HunterConfig) -> CommanderBudget:
    return CommanderBudget(
        max_total_wei=config.commander_max_total_wei,
        max_per_phase_wei=config.commander_max_per_phase_wei,
        max_phases=config.commander_max_phases,
    )


def budget_block_reason(budget: CommanderBudget) -> Optional[str]:
    """Why no further phase may start, or None if one may."""
    if budget.phase_count >= budget.max_phases:
        return f"Phase limit reached ({budget.max_phases})."
    if budget.spent_wei >= budget.max_total_wei:
        return f"Total budget exhausted ({format_native(budget.max_total_wei)} MON)."
    return None


def check_phase_spend(budget: CommanderBudget, quote: Quote) -> None:
    """Raise BudgetExceeded if paying ``quote`` would break a limit."""
    details = {
        "requiredWei": str(quote.amount),
        "remainingWei": str(budget.remaining_wei),
        "maxPerPhaseWei": str(budget.max_per_phase_wei),
        "spentWei": str(budget.spent_wei),
    }
    if quote.amount > budget.max_per_phase_wei:
        raise BudgetExceeded(
            f"Quote {quote.amount} wei exceeds the per-phase limit of {budget.max_per_phase_wei} wei",
            details=details,
        )
    if quote.amount > budget.remaining_wei:
        raise BudgetExceeded(
            f"Quote {quote.amount} wei exceeds the remaining budget of {budget.remaining_wei} wei",
            details=details,
        )


def apply_phase_spend(budget: CommanderBudget, phase_spent_wei: int) -> Optional[str]:
    """Charge one finished phase. Returns a stop reason if the run must end."""
    budget.phase_count += 1
    budget.spent_wei += phase_spent_wei
    if phase_spent_wei > budget.max_per_phase_wei:
        return (
            f"Phase spend {format_native(phase_spent_wei)} MON exceeds per-phase limit "
            f"{format_native(budget.max_per_phase_wei)} MON."
        )
    if budget.spent_wei >= budget.max_total_wei:
        return (
            f"Total spend reached {format_native(budget.spent_wei)} MON "
            f"(limit {format_native(budget.max_total_wei)} MON)."
        )
    return None


def spent_by_failure(error: HunterError) -> int:
    """Funds that left the wallet before ``error`` aborted the phase."""
    if error.payment is not None:
        return error.payment.amount
    possible = error.details.get("possibleSpendWei")
    return int(possible) if possible is not None else 0


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------

class PhasePlanner(Protocol):
    async def next_phase(
        self,
        goal: str,
        completed: Sequence[CommanderPhaseResult],
        budget: CommanderBudget,
    ) -> Optional[CommanderPhase]:
        """Return the next phase to run, or None when the mission is complete."""
        ...


class ScriptedPlanner:
    """Plays back a fixed list of phases in order."""

    def __init__(self, phases: Sequence[CommanderPhase]):
        self.phases = list(phases)

    async def next_phase(self, goal, completed, budget) -> Optional[CommanderPhase]:
        index = len(completed)
        return self.phases[index] if index < len(self.phases) else None


def summarize_for_context(phase: CommanderPhase, content: str) -> str:
    compact = re.sub(r"\s+", " ", content).strip()
    if len(compact) > CONTEXT_CLIP:
        compact = compact[:CONTEXT_CLIP] + "..."
    return f"[{phase.name}] {compact}"


def build_phase_goal(goal: str, context_parts: Sequence[str]) -> str:
    context = "\n".join(context_parts)
    if not context.strip():
        return goal
    return f"{goal}\n\nContext from previous phases:\n{context}"


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class BudgetOrchestrator:
    """Runs commander missions on top of a NegotiationWorkflow."""

    def __init__(
        self,
        workflow: NegotiationWorkflow,
        phase_timeout_seconds: float = 45.0,
        trace: Optional[TraceEmitter] = None,
    ):
        self._workflow = workflow
        self._phase_timeout = phase_timeout_seconds
        self._trace = trace or TraceEmitter()

    async def run(
        self,
        goal: str,
        planner: PhasePlanner,
        budget: CommanderBudget,
        *,
        cancel: Optional[asyncio.Event] = None,
        mission_id: Optional[str] = None,
        trace: Optional[TraceEmitter] = None,
    ) -> CommanderRunResult:
        """
        Run phases until the planner stops or a limit is reached.

        ``budget`` is updated in place; each phase result carries a
        snapshot taken after that phase was charged.

        Raises:
            WorkflowCancelled: ``cancel`` was already set before the first phase.
        """
        emitter = trace or self._trace
        result = CommanderRunResult(mission_id=mission_id or str(uuid4()), goal=goal, budget=budget)
        if cancel is not None and cancel.is_set():
            raise WorkflowCancelled("Commander interrupted by user request.")

        emitter.emit(
            TraceEventType.RUN_STARTED,
            {"mode": "commander", "goal": goal, "phaseTimeoutSeconds": self._phase_timeout, **budget.to_dict()},
        )
        if isinstance(planner, ScriptedPlanner):
            emitter.emit(
                TraceEventType.MISSION_DECOMPOSED,
                {"phases": [{"name": p.name, "goal": p.goal, "taskType": p.task_type} for p in planner.phases],
                 "budget": budget.to_dict()},
            )
        logger.info(
            "Commander start: mission=%s maxPhases=%d maxTotal=%s MON perPhase=%s MON",
            result.mission_id, budget.max_phases,
            format_native(budget.max_total_wei), format_native(budget.max_per_phase_wei),
        )

        context_parts: list[str] = []
        while True:
            if cancel is not None and cancel.is_set():
                result.stop_reason = result.stop_reason or "Commander interrupted by user request."
                break
            blocked = result.stop_reason or budget_block_reason(budget)
            if blocked:
                result.stop_reason = blocked
                logger.warning("Commander blocked: %s", blocked)
                break
            phase = await planner.next_phase(goal, result.phases, budget.snapshot())
            if phase is None:
                break

            phase_result = await self._run_phase(
                result, phase, budget, context_parts, cancel, emitter
            )
            result.phases.append(phase_result)

        result.final_message = self._final_message(result)
        emitter.emit(
            TraceEventType.RUN_COMPLETED,
            {"mode": "commander", "phaseCount": len(result.phases),
             "succeededPhases": result.success_count, "spentWei": str(budget.spent_wei),
             "stopReason": result.stop_reason},
        )
        logger.info("Commander done: %s", result.final_message)
        return result

    async def _run_phase(
        self,
        result: CommanderRunResult,
        phase: CommanderPhase,
        budget: CommanderBudget,
        context_parts: list[str],
        cancel: Optional[asyncio.Event],
        emitter: TraceEmitter,
    ) -> CommanderPhaseResult:
        index = len(result.phases)
        emitter.emit(
            TraceEventType.PHASE_STARTED,
            {"index": index, "name": phase.name, "taskType": phase.task_type, "goal": phase.goal},
        )
        logger.info("Commander phase %d %r starting", index, phase.name)

        try:
            outcome = await self._run_with_deadline(
                phase,
                build_phase_goal(phase.goal, context_parts),
                budget,
                result.mission_id,
                cancel,
                emitter,
            )
        except Exception as exc:
            error = as_hunter_error(exc)
            spent = spent_by_failure(error)
            stop = apply_phase_spend(budget, spent)
            if isinstance(error, WorkflowCancelled):
                stop = stop or error.message
            result.stop_reason = result.stop_reason or stop
            logger.error("Commander phase %d %r FAILED: %s", index, phase.name, error.message)
            context_parts.append(f"[{phase.name} failed] {error.message}")
            phase_result = CommanderPhaseResult(
                index=index,
                phase=phase,
                success=False,
                content=f"[Phase failed] {error.message}",
                budget=budget.snapshot(),
                spent_wei=spent,
                error=error.to_dict(),
            )
        else:
            spent = outcome.payment.amount
            result.stop_reason = result.stop_reason or apply_phase_spend(budget, spent)
            disputed = outcome.state is WorkflowState.DISPUTED
            content = outcome.execution.result
            if disputed:
                context_parts.append(f"[{phase.name} disputed] receipt did not verify")
            else:
                context_parts.append(summarize_for_context(phase, content))
            phase_result = CommanderPhaseResult(
                index=index,
                phase=phase,
                success=not disputed,
                content=content,
                budget=budget.snapshot(),
                spent_wei=spent,
                outcome=outcome,
                error={"code": "RECEIPT_INVALID", "dispute": outcome.dispute.to_dict()} if disputed else None,
            )
            logger.info(
                "Commander phase %d %r %s: spent=%s MON total=%s MON",
                index, phase.name, "DISPUTED" if disputed else "DONE",
                format_native(spent), format_native(budget.spent_wei),
            )

        emitter.emit(
            TraceEventType.PHASE_COMPLETED,
            {"index": index, "name": phase.name, "success": phase_result.success,
             "spentWei": str(phase_result.spent_wei), "budget": phase_result.budget.to_dict(),
             "error": phase_result.error},
        )
        return phase_result

    async def _run_with_deadline(
        self,
        phase: CommanderPhase,
        phase_goal: str,
        budget: CommanderBudget,
        mission_id: str,
        cancel: Optional[asyncio.Event],
        emitter: TraceEmitter,
    ) -> NegotiationOutcome:
        """
        Run the phase's negotiation; past the deadline (or on outer
        cancellation) the negotiation is cancelled if it has not paid yet.
        """
        phase_cancel = asyncio.Event()
        expired = False

        def _expire() -> None:
            nonlocal expired
            expired = True
            phase_cancel.set()

        loop = asyncio.get_running_loop()
        timer = loop.call_later(self._phase_timeout, _expire)
        relay = asyncio.ensure_future(self._relay(cancel, phase_cancel)) if cancel is not None else None
        try:
            return await self._workflow.run(
                phase_goal,
                mission_id=mission_id,
                preferred_task_type=phase.task_type,
                cancel=phase_cancel,
                spend_guard=lambda quote: check_phase_spend(budget, quote),
                trace=emitter,
                emit_lifecycle=False,
            )
        except WorkflowCancelled as exc:
            if expired:
                raise PhaseTimeout(
                    f'Phase "{phase.name}" timed out after {self._phase_timeout:.0f}s',
                    details={"phaseName": phase.name, "timeoutSeconds": self._phase_timeout},
                ) from exc
            raise
        finally:
            timer.cancel()
            if relay is not None:
                relay.cancel()

    @staticmethod
    async def _relay(source: asyncio.Event, target: asyncio.Event) -> None:
        await source.wait()
        target.set()

    @staticmethod
    def _final_message(result: CommanderRunResult) -> str:
        spent = format_native(result.budget.spent_wei) if result.budget else "0"
        if not result.phases:
            return "Commander finished without running any phase."
        if result.all_failed:
            return f"All commander phases failed (spent {spent} MON)."
        message = (
            f"Commander flow completed ({result.success_count}/{len(result.phases)} phases "
            f"succeeded, spent {spent} MON)."
        )
        if result.stop_reason:
            message = f"{message} Stopped: {result.stop_reason}"
        return message
