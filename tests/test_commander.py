"""
test_commander.py — Budgeted multi-phase missions.

Tests cover:
  - budget arithmetic: block reasons, stop reasons, pre-payment checks
  - a phase whose quote exceeds what is left fails before any transfer
  - per-phase limit enforced before payment
  - run stops once total spend or phase count reaches its limit
  - disputed phases and failures after payment are still charged
  - phase deadline -> PhaseTimeout, no funds moved
  - context from earlier phases flows into later phase goals
  - trace events for the commander lifecycle

Run with:
    pytest tests/test_commander.py -v
"""

from __future__ import annotations

import asyncio

import pytest
from eth_account import Account
from web3 import Web3

from fakes import RecordingWallet, UnconfirmedWallet, WorkflowHarness, request_json
from hunter_settlement.commander import (
    BudgetOrchestrator,
    ScriptedPlanner,
    apply_phase_spend,
    budget_block_reason,
    build_phase_goal,
    check_phase_spend,
    summarize_for_context,
)
from hunter_settlement.errors import BudgetExceeded, NetworkTimeout, WorkflowCancelled
from hunter_settlement.models import CommanderBudget, CommanderPhase, Quote
from hunter_settlement.trace import TraceEventType

LONG_RESULT = "Findings in detail. " * 40
RESEARCH = CommanderPhase(name="research", goal="Write a summary of current yields", task_type="content-generation")
DRAFT = CommanderPhase(name="draft", goal="Write an article from the research", task_type="content-generation")
POLISH = CommanderPhase(name="polish", goal="Write a tighter version", task_type="content-generation")


def _quote(amount: int) -> Quote:
    return Quote(
        scheme="native-transfer", asset="native", amount=amount, pay_to="0x" + "11" * 20,
        network="eip155:10143", request_hash="0x", task_type="content-generation", timestamp=0,
    )


def _deliver(transport, seller, amount, result=LONG_RESULT, signer_key=None):
    transport.add("POST", f"{seller.endpoint}/execute", 402, seller.quote_body("phase", amount=amount))
    transport.add("POST", f"{seller.endpoint}/execute", 200, seller.execute_body("phase", result, signer_key=signer_key))


def _identity(transport, seller):
    transport.add("GET", f"{seller.endpoint}/identity", 200, seller.identity_body())


def _orchestrator(harness, timeout=5.0) -> BudgetOrchestrator:
    return BudgetOrchestrator(harness.workflow, phase_timeout_seconds=timeout, trace=harness.trace)


# ---------------------------------------------------------------------------
# 1. Budget arithmetic
# ---------------------------------------------------------------------------

class TestBudgetArithmetic:

    def test_block_reason_phase_limit(self):
        assert budget_block_reason(CommanderBudget(100, 50, 2, phase_count=2)) == "Phase limit reached (2)."

    def test_block_reason_total_exhausted(self):
        assert budget_block_reason(CommanderBudget(100, 50, 5, spent_wei=100)).startswith("Total budget exhausted")

    def test_no_block_reason(self):
        assert budget_block_reason(CommanderBudget(100, 50, 5)) is None

    def test_apply_phase_spend_counts_phase_and_spend(self):
        budget = CommanderBudget(100, 60, 5)
        assert apply_phase_spend(budget, 40) is None
        assert (budget.spent_wei, budget.phase_count, budget.remaining_wei) == (40, 1, 60)

    def test_apply_phase_spend_reports_total_reached(self):
        budget = CommanderBudget(100, 100, 5, spent_wei=60)
        assert apply_phase_spend(budget, 40).startswith("Total spend reached")

    def test_apply_phase_spend_reports_per_phase_overrun(self):
        budget = CommanderBudget(1000, 50, 5)
        assert "exceeds per-phase limit" in apply_phase_spend(budget, 70)

    def test_check_phase_spend_remaining(self):
        budget = CommanderBudget(100, 100, 5, spent_wei=60)
        with pytest.raises(BudgetExceeded) as exc_info:
            check_phase_spend(budget, _quote(50))
        assert exc_info.value.details["remainingWei"] == "40"
        assert exc_info.value.details["requiredWei"] == "50"
        check_phase_spend(budget, _quote(40))

    def test_check_phase_spend_per_phase(self):
        with pytest.raises(BudgetExceeded, match="per-phase"):
            check_phase_spend(CommanderBudget(1000, 40, 5), _quote(41))

    def test_context_helpers(self):
        clipped = summarize_for_context(RESEARCH, "word " * 500)
        assert clipped.startswith("[research] word word")
        assert clipped.endswith("...")
        assert build_phase_goal("goal", []) == "goal"
        assert build_phase_goal("goal", ["[a] x"]) == "goal\n\nContext from previous phases:\n[a] x"


# ---------------------------------------------------------------------------
# 2. Orchestrated runs
# ---------------------------------------------------------------------------

class TestBudgetOrchestrator:

    @pytest.mark.asyncio
    async def test_second_phase_over_remaining_budget_never_pays(self, transport, http, seller_a):
        _deliver(transport, seller_a, amount=60)
        _identity(transport, seller_a)
        transport.add("POST", f"{seller_a.endpoint}/execute", 402, seller_a.quote_body("phase", amount=50))
        harness = WorkflowHarness(http, [seller_a])
        budget = CommanderBudget(max_total_wei=100, max_per_phase_wei=100, max_phases=5)

        result = await _orchestrator(harness).run("mission", ScriptedPlanner([RESEARCH, DRAFT]), budget)

        assert [p.success for p in result.phases] == [True, False]
        assert result.phases[1].error["kind"] == "budget_exceeded"
        assert result.phases[1].spent_wei == 0
        assert harness.wallet.transfers == [(seller_a.address, 60)]
        assert budget.spent_wei == 60
        assert budget.phase_count == 2
        assert budget.spent_wei <= budget.max_total_wei

    @pytest.mark.asyncio
    async def test_run_continues_after_budget_refusal(self, transport, http, seller_a):
        transport.add("POST", f"{seller_a.endpoint}/execute", 402, seller_a.quote_body("phase", amount=80))
        _deliver(transport, seller_a, amount=30)
        _identity(transport, seller_a)
        harness = WorkflowHarness(http, [seller_a])
        budget = CommanderBudget(max_total_wei=100, max_per_phase_wei=50, max_phases=5)

        result = await _orchestrator(harness).run("mission", ScriptedPlanner([RESEARCH, DRAFT]), budget)

        assert [p.success for p in result.phases] == [False, True]
        assert "per-phase" in result.phases[0].error["message"]
        assert budget.spent_wei == 30

    @pytest.mark.asyncio
    async def test_stops_when_total_reached(self, transport, http, seller_a):
        _deliver(transport, seller_a, amount=100)
        _identity(transport, seller_a)
        harness = WorkflowHarness(http, [seller_a])
        budget = CommanderBudget(max_total_wei=100, max_per_phase_wei=100, max_phases=5)

        result = await _orchestrator(harness).run("mission", ScriptedPlanner([RESEARCH, DRAFT, POLISH]), budget)

        assert len(result.phases) == 1
        assert result.stop_reason.startswith("Total spend reached")
        assert "Stopped:" in result.final_message

    @pytest.mark.asyncio
    async def test_stops_at_phase_limit(self, transport, http, seller_a):
        _deliver(transport, seller_a, amount=10)
        _identity(transport, seller_a)
        harness = WorkflowHarness(http, [seller_a])
        budget = CommanderBudget(max_total_wei=100, max_per_phase_wei=100, max_phases=1)

        result = await _orchestrator(harness).run("mission", ScriptedPlanner([RESEARCH, DRAFT]), budget)

        assert len(result.phases) == 1
        assert result.stop_reason == "Phase limit reached (1)."

    @pytest.mark.asyncio
    async def test_disputed_phase_is_charged_but_failed(self, transport, http, seller_a):
        foreign_key = Web3.to_hex(Account.create().key)
        _deliver(transport, seller_a, amount=25, signer_key=foreign_key)
        harness = WorkflowHarness(http, [seller_a])
        budget = CommanderBudget(max_total_wei=100, max_per_phase_wei=100, max_phases=5)

        result = await _orchestrator(harness).run("mission", ScriptedPlanner([RESEARCH]), budget)

        phase = result.phases[0]
        assert not phase.success
        assert phase.spent_wei == 25
        assert phase.error["code"] == "RECEIPT_INVALID"
        assert budget.spent_wei == 25
        assert result.all_failed
        assert result.final_message.startswith("All commander phases failed")

    @pytest.mark.asyncio
    async def test_failure_after_payment_is_charged(self, transport, http, seller_a):
        transport.add("POST", f"{seller_a.endpoint}/execute", 402, seller_a.quote_body("phase", amount=35))
        transport.add("POST", f"{seller_a.endpoint}/execute", 502, {"message": "worker crashed"})
        harness = WorkflowHarness(http, [seller_a])
        budget = CommanderBudget(max_total_wei=100, max_per_phase_wei=100, max_phases=5)

        result = await _orchestrator(harness).run("mission", ScriptedPlanner([RESEARCH]), budget)

        assert result.phases[0].spent_wei == 35
        assert result.phases[0].error["kind"] == "payment_submit_failed"
        assert budget.spent_wei == 35

    @pytest.mark.asyncio
    async def test_payment_timeout_is_charged_conservatively(self, transport, http, seller_a):
        class StuckWallet(RecordingWallet):
            async def transfer(self, to, amount_wei):
                raise NetworkTimeout("stuck", details={"possibleSpendWei": str(amount_wei)})

        transport.add("POST", f"{seller_a.endpoint}/execute", 402, seller_a.quote_body("phase", amount=45))
        harness = WorkflowHarness(http, [seller_a], wallet=StuckWallet())
        budget = CommanderBudget(max_total_wei=100, max_per_phase_wei=100, max_phases=5)

        result = await _orchestrator(harness).run("mission", ScriptedPlanner([RESEARCH]), budget)

        assert result.phases[0].spent_wei == 45
        assert budget.spent_wei == 45

    @pytest.mark.asyncio
    async def test_lost_transfer_keeps_spend_within_cap(self, transport, http, seller_a):
        transport.add("POST", f"{seller_a.endpoint}/execute", 402, seller_a.quote_body("phase", amount=60))
        transport.add("POST", f"{seller_a.endpoint}/execute", 402, seller_a.quote_body("phase", amount=60))
        wallet = UnconfirmedWallet()
        harness = WorkflowHarness(http, [seller_a], wallet=wallet)
        budget = CommanderBudget(max_total_wei=100, max_per_phase_wei=100, max_phases=5)

        result = await _orchestrator(harness).run("mission", ScriptedPlanner([RESEARCH, DRAFT]), budget)

        assert wallet.transfers == [(seller_a.address, 60)]
        assert result.phases[0].spent_wei == 60
        assert result.phases[1].error["kind"] == "budget_exceeded"
        assert budget.spent_wei == 60
        assert budget.spent_wei <= budget.max_total_wei

    @pytest.mark.asyncio
    async def test_phase_timeout_before_payment(self, transport, http, seller_a):
        transport.add("POST", f"{seller_a.endpoint}/execute", 402, seller_a.quote_body("phase", amount=10), delay=1.0)
        harness = WorkflowHarness(http, [seller_a], wallet=RecordingWallet(fail_on_transfer=True))
        budget = CommanderBudget(max_total_wei=100, max_per_phase_wei=100, max_phases=5)

        result = await _orchestrator(harness, timeout=0.05).run("mission", ScriptedPlanner([RESEARCH]), budget)

        error = result.phases[0].error
        assert error["kind"] == "phase_timeout"
        assert error["code"] == "COMMANDER_PHASE_TIMEOUT"
        assert budget.spent_wei == 0
        assert budget.phase_count == 1

    @pytest.mark.asyncio
    async def test_previous_phase_output_flows_into_next_goal(self, transport, http, seller_a):
        _deliver(transport, seller_a, amount=10, result="Yields are up 4% this week. " * 30)
        _identity(transport, seller_a)
        _deliver(transport, seller_a, amount=10)
        _identity(transport, seller_a)
        harness = WorkflowHarness(http, [seller_a])
        budget = CommanderBudget(max_total_wei=100, max_per_phase_wei=100, max_phases=5)

        await _orchestrator(harness).run("mission", ScriptedPlanner([RESEARCH, DRAFT]), budget)

        quote_requests = [
            request_json(r) for r in transport.requests
            if r.method == "POST" and "paymentTx" not in request_json(r)
        ]
        second_input = quote_requests[1]["taskInput"]
        assert second_input.startswith(DRAFT.goal)
        assert "[research] Yields are up 4% this week." in second_input

    @pytest.mark.asyncio
    async def test_trace_events(self, transport, http, seller_a):
        _deliver(transport, seller_a, amount=10)
        _identity(transport, seller_a)
        harness = WorkflowHarness(http, [seller_a])
        budget = CommanderBudget(max_total_wei=100, max_per_phase_wei=100, max_phases=5)

        await _orchestrator(harness).run("mission", ScriptedPlanner([RESEARCH]), budget)

        types = harness.event_types
        assert types[:3] == [TraceEventType.RUN_STARTED, TraceEventType.MISSION_DECOMPOSED, TraceEventType.PHASE_STARTED]
        assert types[-2:] == [TraceEventType.PHASE_COMPLETED, TraceEventType.RUN_COMPLETED]
        assert types.count(TraceEventType.RUN_STARTED) == 1

    @pytest.mark.asyncio
    async def test_cancel_before_start(self, http, seller_a):
        harness = WorkflowHarness(http, [seller_a])
        cancel = asyncio.Event()
        cancel.set()
        with pytest.raises(WorkflowCancelled):
            await _orchestrator(harness).run(
                "mission", ScriptedPlanner([RESEARCH]), CommanderBudget(100, 100, 5), cancel=cancel
            )

    @pytest.mark.asyncio
    async def test_cancel_during_phase_stops_run(self, transport, http, seller_a):
        transport.add("POST", f"{seller_a.endpoint}/execute", 402, seller_a.quote_body("phase", amount=10), delay=1.0)
        harness = WorkflowHarness(http, [seller_a], wallet=RecordingWallet(fail_on_transfer=True))
        cancel = asyncio.Event()
        asyncio.get_running_loop().call_later(0.05, cancel.set)

        result = await _orchestrator(harness).run(
            "mission", ScriptedPlanner([RESEARCH, DRAFT]), CommanderBudget(100, 100, 5), cancel=cancel
        )

        assert len(result.phases) == 1
        assert result.phases[0].error["kind"] == "cancelled"
        assert result.stop_reason
