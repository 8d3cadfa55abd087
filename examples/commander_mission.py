"""
examples/commander_mission.py — A multi-phase mission under one budget.

Three phases share a 0.03 MON cap with a 0.012 MON per-phase limit. The
last phase is quoted above what is left, so it is refused before any
payment is made.

Run:
    python examples/commander_mission.py
"""

import asyncio
import logging

from local_sellers import default_sellers, http_client_for

from hunter_settlement import (
    BudgetOrchestrator,
    CommanderBudget,
    CommanderPhase,
    DevWallet,
    FeedbackRecorder,
    HunterConfig,
    InMemoryFeedbackLedger,
    NegotiationWorkflow,
    PaymentSettler,
    ReputationScorer,
    ScriptedPlanner,
    ServiceClient,
    ServiceSelector,
    StaticServiceDirectory,
    TraceEmitter,
)

PHASES = [
    CommanderPhase("research", "Analyse DeFi yield trends on lending protocols", "defi-analysis"),
    CommanderPhase("draft", "Write an article from the research", "content-generation"),
    CommanderPhase("rewrite", "Write a second, sharper draft", "content-generation"),
]


def print_event(event):
    if event.type.value.startswith(("phase", "run", "mission")):
        print(f"  [{event.type.value}] {event.data}")


async def main():
    config = HunterConfig()
    sellers = default_sellers()
    directory = StaticServiceDirectory([s.service for s in sellers])
    wallet = DevWallet()
    trace = TraceEmitter(print_event)

    async with ServiceClient(http_client=http_client_for(sellers)) as client:
        workflow = NegotiationWorkflow(
            directory,
            client,
            ServiceSelector(ReputationScorer(client)),
            PaymentSettler(wallet),
            recorder=FeedbackRecorder(InMemoryFeedbackLedger(), client, reviewer=wallet.address),
            trace=trace,
        )
        orchestrator = BudgetOrchestrator(
            workflow,
            phase_timeout_seconds=config.commander_phase_timeout_seconds,
            trace=trace,
        )
        budget = CommanderBudget(
            max_total_wei=30 * 10**15,
            max_per_phase_wei=12 * 10**15,
            max_phases=config.commander_max_phases,
        )

        print("=== Commander mission ===\n")
        result = await orchestrator.run("Publish a researched article on DeFi yields", ScriptedPlanner(PHASES), budget)

    print()
    print(result)
    print(f"\n  {result.final_message}")


if __name__ == "__main__":
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")
    asyncio.run(main())
