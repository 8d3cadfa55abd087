"""
feedback.py — Turn an evaluation into an append-only feedback record.

The counterparty is identified by the agent id its own endpoint
advertises. When it advertises none, the id falls back to
"<chain id>:<provider address, lower-cased>". Duplicate entries for the
same agent and mission are allowed; reading back averages them all.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from typing import Callable, Optional, Protocol, Sequence

from .models import Evaluation, Feedback, FeedbackSummary, ServiceInfo
from .registry import ServiceDirectory
from .service_client import ServiceClient

logger = logging.getLogger("hunter_settlement.feedback")

AUTO_TAGS = ("auto", "delivery")


class FeedbackLedger(Protocol):
    async def append(self, feedback: Feedback) -> None: ...

    async def list_by_agent(self, agent_id: str) -> list[Feedback]: ...

    async def reputation_summary(self, agent_id: str) -> FeedbackSummary: ...


class InMemoryFeedbackLedger:
    """Append-only ledger kept in process memory. Writes are serialised."""

    def __init__(self) -> None:
        self._entries: list[Feedback] = []
        self._lock = asyncio.Lock()

    async def append(self, feedback: Feedback) -> None:
        async with self._lock:
            self._entries.append(feedback)

    async def list_by_agent(self, agent_id: str) -> list[Feedback]:
        return [f for f in self._entries if f.agent_id == agent_id]

    async def reputation_summary(self, agent_id: str) -> FeedbackSummary:
        entries = await self.list_by_agent(agent_id)
        if not entries:
            return FeedbackSummary(count=0, average=0.0, latest=None)
        total = sum(f.value for f in entries)
        return FeedbackSummary(
            count=len(entries),
            average=round(total / len(entries), 2),
            latest=entries[-1],
        )


def score_to_feedback_value(score: float) -> int:
    """score x 10, rounded half up, clamped to [0, 100]."""
    return max(0, min(100, math.floor(score * 10 + 0.5)))


def derive_fallback_agent_id(service: ServiceInfo) -> str:
    prefix = "eip155:"
    chain_id = service.network[len(prefix):] if service.network.startswith(prefix) else "0"
    return f"{chain_id}:{service.provider.lower()}"


def _merge_tags(extra: Sequence[str]) -> tuple[str, ...]:
    tags = list(AUTO_TAGS)
    for tag in extra:
        if tag not in tags:
            tags.append(tag)
    return tuple(tags)


class FeedbackRecorder:
    """Records feedback about sellers on behalf of one reviewer (the hunter)."""

    def __init__(
        self,
        ledger: FeedbackLedger,
        client: ServiceClient,
        reviewer: str,
        directory: Optional[ServiceDirectory] = None,
        hunter_id: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._ledger = ledger
        self._client = client
        self._reviewer = reviewer
        self._directory = directory
        self._hunter_id = hunter_id or reviewer.lower()
        self._clock = clock

    @property
    def ledger(self) -> FeedbackLedger:
        return self._ledger

    async def resolve_agent_id(self, service: ServiceInfo) -> str:
        identity = await self._client.fetch_identity(service)
        return identity.agent_id or derive_fallback_agent_id(service)

    async def record(
        self,
        service: ServiceInfo,
        evaluation: Evaluation,
        mission_id: Optional[str] = None,
        task_type: Optional[str] = None,
        tags: Sequence[str] = (),
    ) -> Feedback:
        agent_id = await self.resolve_agent_id(service)
        feedback = Feedback(
            agent_id=agent_id,
            reviewer=self._reviewer,
            value=score_to_feedback_value(evaluation.score),
            tags=_merge_tags(tags),
            timestamp=int(self._clock()),
            text=evaluation.summary,
            service_id=service.id,
            mission_id=mission_id,
            task_type=task_type or service.task_type,
        )
        await self._ledger.append(feedback)
        logger.info("Feedback recorded: agent=%s value=%d", agent_id, feedback.value)

        if self._directory is not None and mission_id:
            await self._forward_to_registry(feedback, service, mission_id)
        return feedback

    async def _forward_to_registry(self, feedback: Feedback, service: ServiceInfo, mission_id: str) -> None:
        try:
            await self._directory.submit_service_feedback(
                service_id=service.id,
                hunter_id=self._hunter_id,
                mission_id=mission_id,
                score=feedback.value,
                task_type=feedback.task_type or "unknown",
                comment=feedback.text,
            )
        except Exception as exc:
            logger.warning("Registry feedback for %s not delivered: %s", service.id, exc)
