"""
errors.py — Closed error taxonomy for hunter-settlement.

Every failure the hunter surfaces to a caller is a HunterError with a fixed
``kind``. Each kind has one subclass so callers can still use ``except``
clauses, but dashboards and logs only need ``kind``/``code``/``status``/
``details`` to render a precise message.

Propagation:
  - reputation and identity probes never raise; they degrade to "unknown"
  - quote, payment, execution and receipt failures abort the negotiation
  - anything unexpected is wrapped by as_hunter_error() as InternalError
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from .models import PaymentTx


class ErrorKind(str, Enum):
    NO_CANDIDATES = "no_candidates"
    UNSUPPORTED_PAYMENT_SCHEME = "unsupported_payment_scheme"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    MALFORMED_RECEIPT = "malformed_receipt"
    RECEIPT_INVALID = "receipt_invalid"
    BUDGET_EXCEEDED = "budget_exceeded"
    NETWORK_TIMEOUT = "network_timeout"
    QUOTE_REQUEST_FAILED = "quote_request_failed"
    PAYMENT_SUBMIT_FAILED = "payment_submit_failed"
    CANCELLED = "cancelled"
    PHASE_TIMEOUT = "phase_timeout"
    INTERNAL = "internal"


class HunterError(Exception):
    """
    Base exception for every hunter failure.

    ``payment`` is set by the workflow when the failure happened after funds
    were already sent, so budget accounting can still charge the phase.
    """

    kind: ErrorKind = ErrorKind.INTERNAL
    default_status: int = 500
    default_code: str = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        *,
        status: Optional[int] = None,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status = status if status is not None else self.default_status
        self.code = code or self.default_code
        self.details = details or {}
        self.payment: Optional["PaymentTx"] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "code": self.code,
            "status": self.status,
            "message": self.message,
            "details": dict(self.details),
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, status={self.status}, message={self.message!r})"


class NoCandidatesError(HunterError):
    """No service is available to negotiate with."""
    kind = ErrorKind.NO_CANDIDATES
    default_status = 404
    default_code = "NO_SERVICE_AVAILABLE"


class UnsupportedPaymentScheme(HunterError):
    """Quote does not use the native-transfer scheme on the native asset."""
    kind = ErrorKind.UNSUPPORTED_PAYMENT_SCHEME
    default_status = 422
    default_code = "UNSUPPORTED_PAYMENT_SCHEME"


class InsufficientBalance(HunterError):
    """Wallet balance is below the quoted amount; no transfer was attempted."""
    kind = ErrorKind.INSUFFICIENT_BALANCE
    default_status = 422
    default_code = "INSUFFICIENT_BALANCE"


class MalformedReceipt(HunterError):
    """Receipt is missing fields or carries an unparseable provider address."""
    kind = ErrorKind.MALFORMED_RECEIPT
    default_status = 422
    default_code = "MALFORMED_RECEIPT"


class ReceiptInvalid(HunterError):
    """Receipt signature does not recover to the declared provider."""
    kind = ErrorKind.RECEIPT_INVALID
    default_status = 422
    default_code = "RECEIPT_INVALID"


class BudgetExceeded(HunterError):
    """Commander budget would be exceeded by the pending payment."""
    kind = ErrorKind.BUDGET_EXCEEDED
    default_status = 402
    default_code = "BUDGET_EXCEEDED"


class NetworkTimeout(HunterError):
    """A network call did not finish within its deadline."""
    kind = ErrorKind.NETWORK_TIMEOUT
    default_status = 504
    default_code = "NETWORK_TIMEOUT"


class QuoteRequestFailed(HunterError):
    """Seller did not answer the quote request with a 402 payment requirement."""
    kind = ErrorKind.QUOTE_REQUEST_FAILED
    default_status = 502
    default_code = "QUOTE_REQUEST_FAILED"


class PaymentSubmitFailed(HunterError):
    """Seller rejected or failed to process the payment proof."""
    kind = ErrorKind.PAYMENT_SUBMIT_FAILED
    default_status = 502
    default_code = "PAYMENT_SUBMIT_FAILED"


class WorkflowCancelled(HunterError):
    """Cancellation was requested before any payment was submitted."""
    kind = ErrorKind.CANCELLED
    default_status = 499
    default_code = "COMMANDER_INTERRUPTED"


class PhaseTimeout(HunterError):
    """A commander phase ran past its deadline before paying."""
    kind = ErrorKind.PHASE_TIMEOUT
    default_status = 504
    default_code = "COMMANDER_PHASE_TIMEOUT"


class InternalError(HunterError):
    """Catch-all for unexpected failures."""


ERROR_CLASSES: dict[ErrorKind, type[HunterError]] = {
    ErrorKind.NO_CANDIDATES: NoCandidatesError,
    ErrorKind.UNSUPPORTED_PAYMENT_SCHEME: UnsupportedPaymentScheme,
    ErrorKind.INSUFFICIENT_BALANCE: InsufficientBalance,
    ErrorKind.MALFORMED_RECEIPT: MalformedReceipt,
    ErrorKind.RECEIPT_INVALID: ReceiptInvalid,
    ErrorKind.BUDGET_EXCEEDED: BudgetExceeded,
    ErrorKind.NETWORK_TIMEOUT: NetworkTimeout,
    ErrorKind.QUOTE_REQUEST_FAILED: QuoteRequestFailed,
    ErrorKind.PAYMENT_SUBMIT_FAILED: PaymentSubmitFailed,
    ErrorKind.CANCELLED: WorkflowCancelled,
    ErrorKind.PHASE_TIMEOUT: PhaseTimeout,
    ErrorKind.INTERNAL: InternalError,
}

_USER_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.NO_CANDIDATES: "No available service was found in the registry",
    ErrorKind.UNSUPPORTED_PAYMENT_SCHEME: "No supported native-transfer payment quote was found",
    ErrorKind.INSUFFICIENT_BALANCE: "Hunter wallet has insufficient balance",
    ErrorKind.MALFORMED_RECEIPT: "The delivery receipt is incomplete",
    ErrorKind.RECEIPT_INVALID: "Receipt signature verification failed",
    ErrorKind.BUDGET_EXCEEDED: "The mission budget does not cover this payment",
    ErrorKind.NETWORK_TIMEOUT: "A network call timed out",
    ErrorKind.QUOTE_REQUEST_FAILED: "No service returned a valid quote",
    ErrorKind.PAYMENT_SUBMIT_FAILED: "Submitting payment proof to the service failed",
    ErrorKind.CANCELLED: "The run was interrupted before payment",
    ErrorKind.PHASE_TIMEOUT: "A commander phase timed out",
    ErrorKind.INTERNAL: "Unexpected hunter failure",
}


def as_hunter_error(exc: BaseException) -> HunterError:
    """Return exc unchanged if it is a HunterError, else wrap it as InternalError."""
    if isinstance(exc, HunterError):
        return exc
    message = str(exc) or "Unexpected hunter failure"
    wrapped = InternalError(message, details={"exception": type(exc).__name__})
    wrapped.__cause__ = exc
    return wrapped


def error_from_kind(kind: ErrorKind, message: str, **kwargs: Any) -> HunterError:
    return ERROR_CLASSES[kind](message, **kwargs)


def describe_error(error: HunterError) -> str:
    """
    Render a dashboard message for an error.

    Balance shortfalls and budget overruns include the numbers from
    ``details`` so the caller does not have to re-derive them.
    """
    base = _USER_MESSAGES[error.kind]
    if error.kind is ErrorKind.INSUFFICIENT_BALANCE:
        have = error.details.get("balanceWei")
        need = error.details.get("requiredWei")
        if have is not None and need is not None:
            return f"{base} (have {have} wei, need {need} wei)"
    if error.kind is ErrorKind.BUDGET_EXCEEDED:
        remaining = error.details.get("remainingWei")
        need = error.details.get("requiredWei")
        if remaining is not None and need is not None:
            return f"{base} (remaining {remaining} wei, need {need} wei)"
    if error.kind in (ErrorKind.CANCELLED, ErrorKind.PHASE_TIMEOUT):
        return error.message
    return base
