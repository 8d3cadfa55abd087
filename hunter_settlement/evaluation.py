"""Score delivered work. Anything with ``evaluate(result) -> Evaluation`` can replace the default."""

from __future__ import annotations

from typing import Protocol

from .models import Evaluation


class Evaluator(Protocol):
    def evaluate(self, result: str) -> Evaluation: ...


class OutcomeEvaluator:
    """Length heuristic: >600 chars scores 9, >200 scores 7, else 5."""

    def evaluate(self, result: str) -> Evaluation:
        length = len(result.strip())
        if length > 600:
            return Evaluation(score=9, summary="Detailed and high-signal output.")
        if length > 200:
            return Evaluation(score=7, summary="Reasonable detail for the task.")
        return Evaluation(score=5, summary="Result is short; could be expanded.")
