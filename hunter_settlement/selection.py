"""
selection.py — Rank discovered services by price and reputation.

Policy, in order:

  1. Candidates scoring above 70 whose trend is not "down" are preferred
     over everyone else.
  2. Inside a tier, candidates are ordered by a weighted blend of
     reputation and relative price (0.7 / 0.3).
  3. When no candidate has a usable score (all absent or below the
     exploration floor), the blend shifts toward price (0.4 / 0.6) but a
     known reputation can still beat the cheapest offer.

An absent score contributes 0 to the blend, so an unscored service is
never chosen only because it is cheapest when scored alternatives exist.
Ties are broken by lower price, then by input order.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Mapping, Optional, Sequence

from .errors import NoCandidatesError
from .models import ReputationTrend, ServiceInfo
from .reputation import EXPLORATION_FLOOR, ReputationScorer

logger = logging.getLogger("hunter_settlement.selection")

STRONG_SCORE = 70.0
BALANCED_WEIGHTS = (0.7, 0.3)
COST_WEIGHTS = (0.4, 0.6)

TASK_TYPE_PATTERNS: list[tuple[str, re.Pattern]] = [
    ("smart-contract-audit", re.compile(r"audit|security|vulnerabilit|solidity|reentrancy|审计|漏洞", re.I)),
    ("defi-analysis", re.compile(r"defi|tvl|yield|protocol|liquidity|收益|流动性|借贷", re.I)),
    ("content-generation", re.compile(r"write|content|article|tweet|analysis|文案|写作|总结", re.I)),
]


def infer_task_type(goal: str) -> Optional[str]:
    for task_type, pattern in TASK_TYPE_PATTERNS:
        if pattern.search(goal):
            return task_type
    return None


def filter_by_task_type(services: Sequence[ServiceInfo], task_type: Optional[str]) -> list[ServiceInfo]:
    """Keep services matching ``task_type`` (or untyped); keep all if none match."""
    if not task_type:
        return list(services)
    matched = [s for s in services if not s.task_type or s.task_type == task_type]
    return matched if matched else list(services)


def price_score(price: int, min_price: int, max_price: int) -> float:
    """1.0 for the cheapest candidate, 0.0 for the most expensive."""
    if max_price == min_price:
        return 1.0
    return (max_price - price) / (max_price - min_price)


def is_strong(service: ServiceInfo, score: Optional[float]) -> bool:
    if score is None or score <= STRONG_SCORE:
        return False
    return service.reputation is None or service.reputation.trend is not ReputationTrend.DOWN


@dataclass
class Selection:
    """The chosen service plus the full ranking it came from."""
    service: ServiceInfo
    ranked: list[ServiceInfo]
    scores: dict[str, float] = field(default_factory=dict)

    def reason_for(self, service: ServiceInfo) -> dict:
        by_price = sorted(self.ranked, key=lambda s: s.price)
        rank = next(i for i, s in enumerate(by_price, start=1) if s.id == service.id)
        pct = self.scores.get(service.id)
        parts = []
        if pct is not None and pct > 0:
            parts.append(f"reputation {round(pct)}%")
        if rank == 1:
            parts.append("cheapest")
        elif rank == 2:
            parts.append("cheapest #2")
        else:
            parts.append(f"price rank #{rank}/{len(self.ranked)}")
        return {
            "reason": f"Selected: {', '.join(parts)}",
            "reputationPct": round(pct) if pct is not None else None,
            "priceRank": rank,
            "totalCandidates": len(self.ranked),
        }


def rank_services(
    services: Sequence[ServiceInfo],
    scores: Mapping[str, float],
) -> list[ServiceInfo]:
    """Order candidates by the selection policy. Pure and deterministic."""
    if not services:
        return []

    min_price = min(s.price for s in services)
    max_price = max(s.price for s in services)
    usable = [v for v in scores.values() if v >= EXPLORATION_FLOOR]
    rep_weight, cost_weight = BALANCED_WEIGHTS if usable else COST_WEIGHTS

    def key(indexed: tuple[int, ServiceInfo]) -> tuple:
        index, service = indexed
        score = scores.get(service.id)
        reputation = max(0.0, min(100.0, score)) / 100 if score is not None else 0.0
        blended = reputation * rep_weight + price_score(service.price, min_price, max_price) * cost_weight
        tier = 0 if is_strong(service, score) else 1
        return (tier, -blended, service.price, index)

    return [s for _, s in sorted(enumerate(services), key=key)]


class ServiceSelector:
    """Scores candidates with a ReputationScorer, then ranks them."""

    def __init__(self, scorer: ReputationScorer):
        self._scorer = scorer

    async def select(self, services: Sequence[ServiceInfo]) -> Selection:
        """
        Rank ``services`` and pick the first.

        Raises:
            NoCandidatesError: ``services`` is empty.
        """
        if not services:
            raise NoCandidatesError("No service found in registry")
        scores = await self._scorer.score_all(services)
        ranked = rank_services(services, scores)
        selection = Selection(service=ranked[0], ranked=ranked, scores=scores)
        logger.info(
            "Selected %s of %d candidates (scored=%d)",
            selection.service.id, len(services), len(scores),
        )
        return selection
