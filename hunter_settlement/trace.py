"""
trace.py — Ordered lifecycle events for observability.

The workflow and the commander push TraceEvents into a caller-supplied
sink (a dashboard stream, a list in tests). Events are purely additive:
a sink that raises is logged and ignored, never allowed to fail a run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

logger = logging.getLogger("hunter_settlement.trace")


class TraceEventType(str, Enum):
    RUN_STARTED = "run_started"
    MISSION_DECOMPOSED = "mission_decomposed"
    PHASE_STARTED = "phase_started"
    PHASE_COMPLETED = "phase_completed"
    SERVICES_DISCOVERED = "services_discovered"
    SERVICE_SELECTED = "service_selected"
    QUOTE_RECEIVED = "quote_received"
    PAYMENT_STATE = "payment_state"
    RECEIPT_VERIFIED = "receipt_verified"
    DISPUTE_REPORTED = "dispute_reported"
    EVALUATION_COMPLETED = "evaluation_completed"
    FEEDBACK_SUBMITTED = "feedback_submitted"
    RUN_COMPLETED = "run_completed"
    RUN_FAILED = "run_failed"


@dataclass(frozen=True)
class TraceEvent:
    type: TraceEventType
    at: str
    data: Optional[Any] = None

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "at": self.at, "data": self.data}


TraceSink = Callable[[TraceEvent], None]


class TraceEmitter:
    """Stamp and forward events to an optional sink."""

    def __init__(self, sink: Optional[TraceSink] = None):
        self._sink = sink

    def emit(self, event_type: TraceEventType, data: Optional[Any] = None) -> None:
        if self._sink is None:
            return
        event = TraceEvent(
            type=event_type,
            at=datetime.now(timezone.utc).isoformat(),
            data=data,
        )
        try:
            self._sink(event)
        except Exception as exc:
            logger.warning("Trace sink failed on %s: %s", event_type.value, exc)
