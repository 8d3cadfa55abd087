"""
service_client.py — HTTP client for individual seller endpoints.

Every seller exposes the same small surface:

    POST {endpoint}/execute      without paymentTx -> 402 + payment requirement
    POST {endpoint}/execute      with paymentTx    -> 200 + result + signed receipt
    GET  {endpoint}/identity                       -> advertised agent identity
    GET  {endpoint}/reputation                     -> self-reported average

Identity and reputation are informational: they run under the probe
deadline and return "unknown" on any failure. Quote and execute calls
raise typed errors. Execute is never retried because the seller consumes
the payment proof on the first successful call.

Pass http_client in tests to inject a mock transport.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

import httpx

from .errors import HunterError, NoCandidatesError, PaymentSubmitFailed, QuoteRequestFailed, UnsupportedPaymentScheme
from .models import (
    NATIVE_TRANSFER_SCHEME,
    ExecutionResult,
    PaymentTx,
    Quote,
    Receipt,
    ServiceIdentity,
    ServiceInfo,
    parse_wei,
)
from .transport import probe_json, raise_for_status

logger = logging.getLogger("hunter_settlement.service_client")


@dataclass
class QuoteAttempt:
    service_id: str
    ok: bool
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {"serviceId": self.service_id, "ok": self.ok, "error": self.error}


@dataclass
class QuoteSelection:
    """The first candidate that answered with a usable quote, plus the attempt log."""
    service: ServiceInfo
    quote: Quote
    attempts: list[QuoteAttempt] = field(default_factory=list)


def parse_quote(payload: Any) -> Quote:
    """
    Pick the native-transfer entry out of a 402 payment-required body.

    Raises:
        UnsupportedPaymentScheme: no native-transfer entry is offered.
        QuoteRequestFailed:       the body is not a payment requirement.
    """
    if not isinstance(payload, dict):
        raise QuoteRequestFailed("Quote response is not a JSON object")
    accepts = payload.get("accepts")
    context = payload.get("paymentContext")
    if not isinstance(accepts, list) or not isinstance(context, dict):
        raise QuoteRequestFailed(
            "Quote response is missing accepts[] or paymentContext",
            details={"keys": sorted(payload.keys())},
        )

    accept = next(
        (a for a in accepts if isinstance(a, dict) and a.get("scheme") == NATIVE_TRANSFER_SCHEME),
        None,
    )
    if accept is None:
        raise UnsupportedPaymentScheme(
            "No native-transfer quote found",
            details={"schemes": [a.get("scheme") for a in accepts if isinstance(a, dict)]},
        )

    try:
        return Quote(
            scheme=str(accept["scheme"]),
            asset=str(accept.get("asset", "")),
            amount=parse_wei(accept["amount"]),
            pay_to=str(accept["payTo"]),
            network=str(accept.get("network", "")),
            request_hash=str(context["requestHash"]),
            task_type=str(context.get("taskType", "")),
            timestamp=int(context.get("timestamp", 0)),
            max_timeout_seconds=int(accept.get("maxTimeoutSeconds", 0)),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise QuoteRequestFailed(f"Quote response is malformed: {exc}") from exc


def parse_execution(payload: Any) -> ExecutionResult:
    if not isinstance(payload, dict) or not isinstance(payload.get("receipt"), dict):
        raise PaymentSubmitFailed("Execute response is missing result or receipt")
    payment = payload.get("payment") if isinstance(payload.get("payment"), dict) else {}
    return ExecutionResult(
        result=str(payload.get("result", "")),
        receipt=Receipt.from_dict(payload["receipt"]),
        payment_status=str(payment.get("status", "")),
        payment_tx=str(payment.get("transaction", "")),
        network=str(payment.get("network", "")),
    )


class ServiceClient:
    """Talks to seller endpoints on behalf of one hunter."""

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        probe_timeout: float = 1.2,
        quote_timeout: float = 30.0,
        execute_timeout: float = 90.0,
    ):
        self._http = http_client or httpx.AsyncClient(
            headers={"Content-Type": "application/json", "X-Client": "hunter-settlement/0.1.0"},
        )
        self._probe_timeout = probe_timeout
        self._quote_timeout = quote_timeout
        self._execute_timeout = execute_timeout

    @property
    def http(self) -> httpx.AsyncClient:
        return self._http

    @property
    def probe_timeout(self) -> float:
        return self._probe_timeout

    # ------------------------------------------------------------------
    # Informational probes
    # ------------------------------------------------------------------

    async def fetch_reported_reputation(self, service: ServiceInfo) -> Optional[float]:
        """Return the seller's self-reported average, or None when unknown."""
        payload = await probe_json(self._http, f"{service.base_url}/reputation", self._probe_timeout)
        if not isinstance(payload, dict):
            return None
        average = payload.get("average")
        if isinstance(average, bool) or not isinstance(average, (int, float)):
            return None
        if not math.isfinite(average):
            return None
        return float(average)

    async def fetch_identity(self, service: ServiceInfo) -> ServiceIdentity:
        payload = await probe_json(self._http, f"{service.base_url}/identity", self._probe_timeout)
        if not isinstance(payload, dict):
            return ServiceIdentity()
        identity = payload.get("identity") if isinstance(payload.get("identity"), dict) else {}
        onchain = payload.get("onchain") if isinstance(payload.get("onchain"), dict) else {}
        agent_id = identity.get("agentId")
        token_id = onchain.get("agentTokenId")
        return ServiceIdentity(
            agent_id=str(agent_id) if agent_id else None,
            onchain_agent_token_id=str(token_id) if token_id is not None else None,
        )

    # ------------------------------------------------------------------
    # Quote
    # ------------------------------------------------------------------

    async def request_quote(self, service: ServiceInfo, task_type: str, task_input: str) -> Quote:
        """
        Ask a seller what it charges for the task.

        Raises:
            QuoteRequestFailed:       seller did not answer 402 or is unreachable.
            UnsupportedPaymentScheme: seller offers no native-transfer option.
        """
        try:
            resp = await self._http.post(
                f"{service.base_url}/execute",
                json={"taskType": task_type, "taskInput": task_input},
                timeout=self._quote_timeout,
            )
        except httpx.HTTPError as exc:
            raise QuoteRequestFailed(
                f"[request_quote] {service.id} unreachable: {exc}",
                details={"serviceId": service.id},
            ) from exc
        raise_for_status(resp, "request_quote", QuoteRequestFailed, expected_status=402)
        try:
            payload = resp.json()
        except ValueError as exc:
            raise QuoteRequestFailed("Quote response is not JSON") from exc
        quote = parse_quote(payload)
        logger.info(
            "Quote from %s: amount=%d payTo=%s network=%s",
            service.id, quote.amount, quote.pay_to, quote.network,
        )
        return quote

    async def request_quote_with_fallback(
        self,
        services: Sequence[ServiceInfo],
        task_type: str,
        task_input: str,
    ) -> QuoteSelection:
        """Try candidates in ranked order until one returns a usable quote."""
        attempts: list[QuoteAttempt] = []
        last_error: Optional[HunterError] = None
        for service in services:
            try:
                quote = await self.request_quote(service, task_type, task_input)
            except HunterError as exc:
                logger.warning("Quote from %s failed: %s", service.id, exc.message)
                attempts.append(QuoteAttempt(service.id, ok=False, error=exc.message))
                last_error = exc
                continue
            attempts.append(QuoteAttempt(service.id, ok=True))
            return QuoteSelection(service=service, quote=quote, attempts=attempts)

        if last_error is None:
            raise NoCandidatesError("No service found in registry")
        last_error.details.setdefault("attempts", [a.to_dict() for a in attempts])
        raise last_error

    # ------------------------------------------------------------------
    # Execute
    # ------------------------------------------------------------------

    async def submit_payment(
        self,
        service: ServiceInfo,
        payment: PaymentTx,
        quote: Quote,
        task_input: str,
    ) -> ExecutionResult:
        """
        Hand the payment proof to the seller and collect the result.

        Raises:
            PaymentSubmitFailed: seller rejected the proof or was unreachable.
        """
        try:
            resp = await self._http.post(
                f"{service.base_url}/execute",
                json={
                    "paymentTx": payment.tx_hash,
                    "taskType": quote.task_type,
                    "taskInput": task_input,
                    "timestamp": quote.timestamp,
                },
                timeout=self._execute_timeout,
            )
        except httpx.HTTPError as exc:
            raise PaymentSubmitFailed(
                f"[submit_payment] {service.id} unreachable: {exc}",
                details={"serviceId": service.id, "txHash": payment.tx_hash},
            ) from exc
        raise_for_status(resp, "submit_payment", PaymentSubmitFailed)
        try:
            payload = resp.json()
        except ValueError as exc:
            raise PaymentSubmitFailed("Execute response is not JSON") from exc
        execution = parse_execution(payload)
        logger.info(
            "Result from %s: %d chars, payment=%s",
            service.id, len(execution.result), execution.payment_status,
        )
        return execution

    # ------------------------------------------------------------------
    # Context manager support
    # ------------------------------------------------------------------

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "ServiceClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()
