"""
hunter-settlement — Pay-per-task service buying for autonomous agents.

Public API:
    HunterConfig             — Environment-driven configuration
    NegotiationWorkflow      — One discover/select/quote/pay/verify/feedback run
    BudgetOrchestrator       — Multi-phase missions under a spending cap
    ScriptedPlanner          — Fixed list of commander phases
    ServiceSelector          — Reputation/price ranking of candidates
    ReputationScorer         — Bounded-concurrency reputation probes
    PaymentSettler           — Quote validation, balance check, transfer
    ServiceClient            — HTTP client for seller endpoints
    RegistryClient           — HTTP client for the service registry
    StaticServiceDirectory   — In-process registry
    Web3Wallet / DevWallet   — Funding wallets (on-chain / in-memory)
    FeedbackRecorder         — Evaluation -> feedback record
    InMemoryFeedbackLedger   — Append-only feedback store
    TraceEmitter             — Structured event stream
    verify_receipt           — Recover and compare a receipt's signer
    sign_receipt             — Produce a seller receipt (for sellers and tests)
    HunterError              — Base exception; see errors.ErrorKind
"""

__version__ = "0.1.0"

from .commander import (
    BudgetOrchestrator,
    ScriptedPlanner,
    apply_phase_spend,
    budget_block_reason,
    budget_from_config,
    check_phase_spend,
)
from .config import HunterConfig
from .errors import (
    BudgetExceeded,
    ErrorKind,
    HunterError,
    InsufficientBalance,
    InternalError,
    MalformedReceipt,
    NetworkTimeout,
    NoCandidatesError,
    PaymentSubmitFailed,
    PhaseTimeout,
    QuoteRequestFailed,
    ReceiptInvalid,
    UnsupportedPaymentScheme,
    WorkflowCancelled,
    as_hunter_error,
    describe_error,
)
from .evaluation import OutcomeEvaluator
from .feedback import FeedbackRecorder, InMemoryFeedbackLedger
from .models import (
    CommanderBudget,
    CommanderPhase,
    CommanderPhaseResult,
    CommanderRunResult,
    NegotiationOutcome,
    PaymentTx,
    Quote,
    Receipt,
    ReputationSummary,
    ReputationTrend,
    ServiceInfo,
    WorkflowState,
)
from .payment import PaymentSettler
from .receipts import calculate_request_hash, calculate_result_hash, sign_receipt, verify_receipt
from .registry import RegistryClient, StaticServiceDirectory, build_agent_identity
from .reputation import ReputationScorer, normalize_reputation
from .selection import ServiceSelector, rank_services
from .service_client import ServiceClient
from .trace import TraceEmitter, TraceEvent, TraceEventType
from .wallet import DevWallet, Web3Wallet, wallet_from_config
from .workflow import NegotiationWorkflow

__all__ = [
    "__version__",
    "HunterConfig",
    "NegotiationWorkflow",
    "BudgetOrchestrator",
    "ScriptedPlanner",
    "apply_phase_spend",
    "budget_block_reason",
    "budget_from_config",
    "check_phase_spend",
    "ServiceSelector",
    "rank_services",
    "ReputationScorer",
    "normalize_reputation",
    "PaymentSettler",
    "ServiceClient",
    "RegistryClient",
    "StaticServiceDirectory",
    "build_agent_identity",
    "Web3Wallet",
    "DevWallet",
    "wallet_from_config",
    "FeedbackRecorder",
    "InMemoryFeedbackLedger",
    "OutcomeEvaluator",
    "TraceEmitter",
    "TraceEvent",
    "TraceEventType",
    "calculate_request_hash",
    "calculate_result_hash",
    "sign_receipt",
    "verify_receipt",
    "CommanderBudget",
    "CommanderPhase",
    "CommanderPhaseResult",
    "CommanderRunResult",
    "NegotiationOutcome",
    "PaymentTx",
    "Quote",
    "Receipt",
    "ReputationSummary",
    "ReputationTrend",
    "ServiceInfo",
    "WorkflowState",
    "ErrorKind",
    "HunterError",
    "NoCandidatesError",
    "UnsupportedPaymentScheme",
    "InsufficientBalance",
    "MalformedReceipt",
    "ReceiptInvalid",
    "BudgetExceeded",
    "NetworkTimeout",
    "QuoteRequestFailed",
    "PaymentSubmitFailed",
    "WorkflowCancelled",
    "PhaseTimeout",
    "InternalError",
    "as_hunter_error",
    "describe_error",
]

