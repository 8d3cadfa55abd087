"""
reputation.py — Turn trust signals into a comparable 0-100 score.

A service either carries a prior reputation summary from the registry
(score on a 0-5 scale, trend, sample count) or it does not. With a summary
the score is computed locally; without one the seller's own endpoint is
probed once. A failed probe yields None, which is kept distinct from a
genuine 0 all the way to the selector.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Sequence

from .models import ReputationSummary, ReputationTrend, ServiceInfo
from .service_client import ServiceClient

logger = logging.getLogger("hunter_settlement.reputation")

TREND_ADJUSTMENT = {
    ReputationTrend.UP: 3.0,
    ReputationTrend.DOWN: -8.0,
    ReputationTrend.FLAT: 0.0,
}
SPARSE_SAMPLE_COUNT = 3
# under-sampled providers keep at least this score so newcomers still get picked
EXPLORATION_FLOOR = 55.0


def normalize_reputation(summary: ReputationSummary) -> float:
    """Scale a 0-5 summary to 0-100, adjust for trend, floor sparse samples."""
    normalized = summary.score * 20 + TREND_ADJUSTMENT[summary.trend]
    if summary.count < SPARSE_SAMPLE_COUNT:
        normalized = max(normalized, EXPLORATION_FLOOR)
    return round(max(0.0, min(100.0, normalized)), 2)


class ReputationScorer:
    """Score services; at most ``max_concurrency`` probes in flight."""

    def __init__(self, client: ServiceClient, max_concurrency: int = 8):
        self._client = client
        self._semaphore = asyncio.Semaphore(max_concurrency)

    async def score(self, service: ServiceInfo) -> Optional[float]:
        if service.reputation is not None:
            return normalize_reputation(service.reputation)
        async with self._semaphore:
            reported = await self._client.fetch_reported_reputation(service)
        if reported is None:
            logger.debug("No reputation available for %s", service.id)
        return reported

    async def score_all(self, services: Sequence[ServiceInfo]) -> dict[str, float]:
        """
        Score every candidate concurrently and wait for all of them.

        Candidates with an unknown score are left out of the mapping.
        """
        scores = await asyncio.gather(*(self.score(s) for s in services))
        return {
            service.id: value
            for service, value in zip(services, scores)
            if value is not None
        }
