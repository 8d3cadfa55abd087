"""
examples/scripted_mission.py — One negotiation: discover, pay, verify, rate.

Runs entirely in-process: sellers answer through an httpx.MockTransport and
payments go to a DevWallet, so nothing touches a chain.

Run:
    python examples/scripted_mission.py
    python examples/scripted_mission.py --dishonest     # seller forges its receipt
"""

import asyncio
import logging
import sys
import time

from local_sellers import default_sellers, http_client_for

from hunter_settlement import (
    DevWallet,
    FeedbackRecorder,
    HunterConfig,
    InMemoryFeedbackLedger,
    NegotiationWorkflow,
    PaymentSettler,
    ReputationScorer,
    ServiceClient,
    ServiceSelector,
    StaticServiceDirectory,
    TraceEmitter,
    WorkflowState,
    build_agent_identity,
)


def print_event(event):
    print(f"  [{event.type.value}] {event.data}")


async def main(dishonest: bool):
    config = HunterConfig()
    sellers = default_sellers(dishonest_id="writer-pro" if dishonest else None)
    directory = StaticServiceDirectory([s.service for s in sellers])
    wallet = DevWallet()
    ledger = InMemoryFeedbackLedger()

    async with ServiceClient(http_client=http_client_for(sellers), probe_timeout=config.probe_timeout_seconds) as client:
        workflow = NegotiationWorkflow(
            directory,
            client,
            ServiceSelector(ReputationScorer(client, config.max_concurrent_probes)),
            PaymentSettler(wallet, timeout_seconds=config.payment_timeout_seconds),
            recorder=FeedbackRecorder(ledger, client, reviewer=wallet.address, directory=directory),
            trace=TraceEmitter(print_event),
            identity=build_agent_identity(config, wallet.address, registered_at=int(time.time())),
        )

        print("=== Scripted mission ===\n")
        outcome = await workflow.run("Write a short article about agent-to-agent payments")

    print(f"\n  Service   : {outcome.service.id}")
    print(f"  Paid      : {outcome.payment.amount} wei (tx {outcome.payment.tx_hash})")
    print(f"  Receipt   : {'valid' if outcome.receipt_verified else 'INVALID'}")
    print(f"  State     : {outcome.state.value}")
    if outcome.state is WorkflowState.DISPUTED:
        print(f"  Dispute   : {outcome.dispute.to_dict()}")
    else:
        summary = await ledger.reputation_summary(outcome.feedback.agent_id)
        print(f"  Feedback  : {outcome.feedback.value} ({summary.count} on record, avg {summary.average})")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    asyncio.run(main("--dishonest" in sys.argv))
