"""
models.py — Shared dataclasses for hunter-settlement.

These are the data structures passed between the selector, settler,
verifier, recorder, workflow and commander. Keeping them in one file
avoids circular imports.

Amounts are integer minor units (wei) everywhere. They are rendered as
decimal strings only at the edges (trace events, error details, JSON).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

NATIVE_TRANSFER_SCHEME = "native-transfer"
NATIVE_ASSET = "native"


def parse_wei(value: Any) -> int:
    """Parse a non-negative integer amount given as int or digit string."""
    if isinstance(value, bool):
        raise ValueError(f"Invalid wei amount: {value!r}")
    if isinstance(value, int):
        if value < 0:
            raise ValueError(f"Invalid wei amount: {value!r}")
        return value
    text = str(value).strip()
    if not text.isdigit():
        raise ValueError(f"Invalid wei amount: {value!r}")
    return int(text)


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------

class ReputationTrend(str, Enum):
    UP = "up"
    DOWN = "down"
    FLAT = "flat"

    @classmethod
    def parse(cls, raw: Any) -> "ReputationTrend":
        # registries publish "stable" for a flat trend
        if raw == "stable":
            return cls.FLAT
        try:
            return cls(raw)
        except ValueError:
            return cls.FLAT


@dataclass(frozen=True)
class ReputationSummary:
    """Prior reputation published alongside a service: score on a 0-5 scale."""
    score: float
    trend: ReputationTrend = ReputationTrend.FLAT
    count: int = 0

    @classmethod
    def from_dict(cls, data: dict) -> "ReputationSummary":
        return cls(
            score=float(data.get("score", 0.0)),
            trend=ReputationTrend.parse(data.get("trend", "flat")),
            count=int(data.get("count", 0)),
        )


@dataclass(frozen=True)
class ServiceInfo:
    """
    A candidate seller as seen in one discovery round.

    ``network`` is a CAIP-2 style chain id, e.g. "eip155:10143".
    """
    id: str
    network: str
    provider: str
    endpoint: str
    price: int
    currency: str = "MON"
    task_type: Optional[str] = None
    name: str = ""
    description: str = ""
    reputation: Optional[ReputationSummary] = None

    @property
    def base_url(self) -> str:
        return self.endpoint.rstrip("/")

    @classmethod
    def from_dict(cls, data: dict) -> "ServiceInfo":
        reputation = data.get("reputation")
        return cls(
            id=str(data["id"]),
            network=str(data.get("network", "")),
            provider=str(data["provider"]),
            endpoint=str(data["endpoint"]),
            price=parse_wei(data.get("price", 0)),
            currency=str(data.get("currency", "MON")),
            task_type=data.get("taskType"),
            name=str(data.get("name", "")),
            description=str(data.get("description", "")),
            reputation=ReputationSummary.from_dict(reputation) if isinstance(reputation, dict) else None,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "endpoint": self.endpoint,
            "taskType": self.task_type,
            "price": str(self.price),
            "currency": self.currency,
            "network": self.network,
            "provider": self.provider,
        }
        if self.reputation is not None:
            data["reputation"] = {
                "score": self.reputation.score,
                "trend": self.reputation.trend.value,
                "count": self.reputation.count,
            }
        return data


@dataclass(frozen=True)
class ServiceIdentity:
    """Identity a seller advertises at GET {endpoint}/identity. Both fields may be unknown."""
    agent_id: Optional[str] = None
    onchain_agent_token_id: Optional[str] = None


@dataclass(frozen=True)
class AgentIdentity:
    """The hunter's own identity record, as registered with the registry."""
    agent_id: str
    name: str
    description: str
    wallet_address: str
    registered_at: int
    trust_models: tuple[str, ...] = ("reputation", "crypto-economic")
    active: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "agentId": self.agent_id,
            "name": self.name,
            "description": self.description,
            "walletAddress": self.wallet_address,
            "trustModels": list(self.trust_models),
            "active": self.active,
            "registeredAt": self.registered_at,
        }


# ---------------------------------------------------------------------------
# Quote, payment, delivery
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Quote:
    """A seller's payment requirement, taken from its 402 response."""
    scheme: str
    asset: str
    amount: int
    pay_to: str
    network: str
    request_hash: str
    task_type: str
    timestamp: int
    max_timeout_seconds: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "scheme": self.scheme,
            "asset": self.asset,
            "amount": str(self.amount),
            "payTo": self.pay_to,
            "network": self.network,
            "requestHash": self.request_hash,
            "taskType": self.task_type,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class PaymentTx:
    """Result of one settled transfer. Produced once per accepted quote."""
    tx_hash: str
    sender: str
    receiver: str
    amount: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "txHash": self.tx_hash,
            "from": self.sender,
            "to": self.receiver,
            "amountWei": str(self.amount),
        }


@dataclass(frozen=True)
class Balance:
    wei: int
    display: str


def _receipt_timestamp(value: Any) -> Optional[int]:
    """Unix seconds, or None when absent. Anything else is a malformed receipt."""
    from .errors import MalformedReceipt

    if value is None or value == "":
        return None
    if isinstance(value, int) and not isinstance(value, bool) and value >= 0:
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    raise MalformedReceipt(
        f"Receipt timestamp is not a unix time in seconds: {value!r}",
        details={"timestamp": value},
    )


@dataclass(frozen=True)
class Receipt:
    """Seller-signed attestation binding a request hash to a result hash."""
    request_hash: str
    result_hash: str
    provider: str
    timestamp: Optional[int]
    signature: str

    @classmethod
    def from_dict(cls, data: dict) -> "Receipt":
        # Missing keys are kept as empty values; verify_receipt() reports them.
        return cls(
            request_hash=str(data.get("requestHash") or ""),
            result_hash=str(data.get("resultHash") or ""),
            provider=str(data.get("provider") or ""),
            timestamp=_receipt_timestamp(data.get("timestamp")),
            signature=str(data.get("signature") or ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "requestHash": self.request_hash,
            "resultHash": self.result_hash,
            "provider": self.provider,
            "timestamp": self.timestamp,
            "signature": self.signature,
        }


@dataclass(frozen=True)
class ReceiptVerification:
    is_valid: bool
    provider: str


@dataclass(frozen=True)
class ExecutionResult:
    """What a seller returns after accepting payment."""
    result: str
    receipt: Receipt
    payment_status: str
    payment_tx: str
    network: str = ""


@dataclass(frozen=True)
class Evaluation:
    score: float
    summary: str


# ---------------------------------------------------------------------------
# Feedback
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Feedback:
    """One append-only feedback entry about a counterparty."""
    agent_id: str
    reviewer: str
    value: int
    tags: tuple[str, ...]
    timestamp: int
    text: Optional[str] = None
    service_id: Optional[str] = None
    mission_id: Optional[str] = None
    task_type: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "agentId": self.agent_id,
            "reviewer": self.reviewer,
            "value": self.value,
            "tags": list(self.tags),
            "text": self.text,
            "timestamp": self.timestamp,
            "serviceId": self.service_id,
            "missionId": self.mission_id,
            "taskType": self.task_type,
        }


@dataclass(frozen=True)
class FeedbackSummary:
    count: int
    average: float
    latest: Optional[Feedback] = None


# ---------------------------------------------------------------------------
# Workflow outcome
# ---------------------------------------------------------------------------

class WorkflowState(str, Enum):
    DISCOVERING = "discovering"
    SELECTING = "selecting"
    QUOTING = "quoting"
    PAYING = "paying"
    EXECUTING = "executing"
    VERIFYING = "verifying"
    EVALUATING = "evaluating"
    FEEDBACK = "feedback"
    DONE = "done"
    DISPUTED = "disputed"


@dataclass(frozen=True)
class DisputeReport:
    """Raised against a seller whose receipt did not verify."""
    service_id: str
    provider: str
    request_hash: str
    result_hash: str
    tx_hash: str
    amount: int
    reason: str = "receipt signature does not recover to provider"

    def to_dict(self) -> dict[str, Any]:
        return {
            "serviceId": self.service_id,
            "provider": self.provider,
            "requestHash": self.request_hash,
            "resultHash": self.result_hash,
            "txHash": self.tx_hash,
            "amountWei": str(self.amount),
            "reason": self.reason,
        }


@dataclass
class NegotiationOutcome:
    """Everything one negotiation produced, in the order it was produced."""
    mission_id: str
    goal: str
    state: WorkflowState
    service: ServiceInfo
    quote: Quote
    payment: PaymentTx
    execution: ExecutionResult
    verification: ReceiptVerification
    evaluation: Optional[Evaluation] = None
    feedback: Optional[Feedback] = None
    dispute: Optional[DisputeReport] = None
    quote_attempts: list[dict] = field(default_factory=list)
    history: list[WorkflowState] = field(default_factory=list)

    @property
    def receipt_verified(self) -> bool:
        return self.verification.is_valid

    def raise_for_dispute(self) -> None:
        from .errors import ReceiptInvalid

        if self.state is WorkflowState.DISPUTED:
            raise ReceiptInvalid(
                "Receipt signature verification failed",
                details=self.dispute.to_dict() if self.dispute else {},
            )


# ---------------------------------------------------------------------------
# Commander
# ---------------------------------------------------------------------------

@dataclass
class CommanderBudget:
    """
    Spending ceiling shared by all phases of one mission.

    Invariant: spent_wei <= max_total_wei. Only the orchestrator mutates it.
    """
    max_total_wei: int
    max_per_phase_wei: int
    max_phases: int
    spent_wei: int = 0
    phase_count: int = 0

    @property
    def remaining_wei(self) -> int:
        return max(0, self.max_total_wei - self.spent_wei)

    def snapshot(self) -> "CommanderBudget":
        return CommanderBudget(
            max_total_wei=self.max_total_wei,
            max_per_phase_wei=self.max_per_phase_wei,
            max_phases=self.max_phases,
            spent_wei=self.spent_wei,
            phase_count=self.phase_count,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "maxTotalWei": str(self.max_total_wei),
            "maxPerPhaseWei": str(self.max_per_phase_wei),
            "maxPhases": self.max_phases,
            "spentWei": str(self.spent_wei),
            "phaseCount": self.phase_count,
        }


@dataclass(frozen=True)
class CommanderPhase:
    name: str
    goal: str
    task_type: Optional[str] = None


@dataclass
class CommanderPhaseResult:
    index: int
    phase: CommanderPhase
    success: bool
    content: str
    budget: CommanderBudget
    spent_wei: int = 0
    outcome: Optional[NegotiationOutcome] = None
    error: Optional[dict] = None


@dataclass
class CommanderRunResult:
    mission_id: str
    goal: str
    phases: list[CommanderPhaseResult] = field(default_factory=list)
    budget: Optional[CommanderBudget] = None
    stop_reason: Optional[str] = None
    final_message: str = ""

    @property
    def success_count(self) -> int:
        return sum(1 for p in self.phases if p.success)

    @property
    def all_failed(self) -> bool:
        return bool(self.phases) and self.success_count == 0

    def __str__(self) -> str:
        lines = [
            "=== Commander Mission Summary ===",
            f"  Mission   : {self.mission_id}",
            f"  Phases    : {self.success_count}/{len(self.phases)} succeeded",
        ]
        if self.budget is not None:
            lines.append(
                f"  Spent     : {self.budget.spent_wei} / {self.budget.max_total_wei} wei"
            )
        if self.stop_reason:
            lines.append(f"  Stopped   : {self.stop_reason}")
        for p in self.phases:
            status = "ok" if p.success else "failed"
            lines.append(f"    [{p.index}] {p.phase.name}: {status} spent={p.spent_wei}")
        return "\n".join(lines)
