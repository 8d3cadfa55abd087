"""
payment.py — Validate a quote and move funds exactly once.

settle() is deliberately NOT retried anywhere: a transfer that has been
submitted cannot be safely resubmitted without a ledger idempotency key.
The order of checks is fixed:

  1. scheme/asset must be native-transfer/native  -> UnsupportedPaymentScheme
  2. balance must cover the quoted amount          -> InsufficientBalance
  3. transfer + wait for confirmation depth        -> PaymentTx

Submissions from one wallet are serialised with a lock so two concurrent
negotiations never race for the same nonce.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .errors import HunterError, InsufficientBalance, InternalError, NetworkTimeout, UnsupportedPaymentScheme
from .models import NATIVE_ASSET, NATIVE_TRANSFER_SCHEME, PaymentTx, Quote
from .wallet import NOTHING_SENT_CODES, FundingWallet

logger = logging.getLogger("hunter_settlement.payment")


def validate_quote(quote: Quote) -> None:
    """Raise UnsupportedPaymentScheme unless the quote is a native transfer."""
    if quote.scheme != NATIVE_TRANSFER_SCHEME or quote.asset != NATIVE_ASSET:
        raise UnsupportedPaymentScheme(
            f"Only {NATIVE_TRANSFER_SCHEME}/{NATIVE_ASSET} is supported",
            details={"scheme": quote.scheme, "asset": quote.asset},
        )


class PaymentSettler:
    """Executes one funds transfer per accepted quote."""

    def __init__(
        self,
        wallet: FundingWallet,
        timeout_seconds: float = 120.0,
        lock: Optional[asyncio.Lock] = None,
    ):
        self._wallet = wallet
        self._timeout = timeout_seconds
        # one lock per wallet identity; share it if several settlers use one wallet
        self._lock = lock or asyncio.Lock()

    @property
    def wallet(self) -> FundingWallet:
        return self._wallet

    async def check_balance(self) -> int:
        balance = await self._wallet.get_balance()
        return balance.wei

    async def settle(self, quote: Quote) -> PaymentTx:
        """
        Pay ``quote.amount`` to ``quote.pay_to`` and return the PaymentTx.

        Raises:
            UnsupportedPaymentScheme: quote is not native-transfer/native.
            InsufficientBalance:      balance < amount; no transfer attempted.
            NetworkTimeout:           transfer or confirmation exceeded the deadline
                                      or the transfer state is unknown.
            InternalError:            the wallet failed in any other way.

        Unless a wallet error code guarantees nothing was sent, the raised
        error carries ``possibleSpendWei`` so budgets can charge it.
        """
        validate_quote(quote)

        async with self._lock:
            balance_wei = await self.check_balance()
            if balance_wei < quote.amount:
                raise InsufficientBalance(
                    "Hunter wallet has insufficient balance",
                    details={"balanceWei": str(balance_wei), "requiredWei": str(quote.amount)},
                )

            logger.info(
                "Paying %d wei to %s (request=%s)",
                quote.amount, quote.pay_to, quote.request_hash,
            )
            try:
                tx_hash = await asyncio.wait_for(
                    self._wallet.transfer(quote.pay_to, quote.amount),
                    timeout=self._timeout,
                )
            except asyncio.TimeoutError as exc:
                raise NetworkTimeout(
                    f"Payment not confirmed within {self._timeout:.0f}s",
                    details={
                        "payTo": quote.pay_to,
                        "amountWei": str(quote.amount),
                        "possibleSpendWei": str(quote.amount),
                    },
                ) from exc
            except HunterError as exc:
                if exc.code not in NOTHING_SENT_CODES:
                    exc.details.setdefault("possibleSpendWei", str(quote.amount))
                raise
            except Exception as exc:
                # the wallet cannot say whether value left it
                raise InternalError(
                    f"Payment transfer failed: {exc}",
                    code="PAYMENT_TRANSFER_FAILED",
                    details={
                        "payTo": quote.pay_to,
                        "amountWei": str(quote.amount),
                        "possibleSpendWei": str(quote.amount),
                    },
                ) from exc

        payment = PaymentTx(
            tx_hash=tx_hash,
            sender=self._wallet.address,
            receiver=quote.pay_to,
            amount=quote.amount,
        )
        logger.info("Payment confirmed: tx=%s amount=%d", payment.tx_hash, payment.amount)
        return payment
