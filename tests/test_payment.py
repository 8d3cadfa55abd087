"""
test_payment.py — Quote validation and funds transfer.

Tests cover:
  - unsupported scheme/asset rejected before the wallet is touched
  - insufficient balance rejected before transfer, with numbers in details
  - successful settle returns a PaymentTx for exactly the quoted amount
  - transfer deadline -> NetworkTimeout carrying possibleSpendWei
  - wallet failures wrapped as InternalError
  - concurrent settles on one wallet are serialised
  - failures that may follow a sent transfer carry possibleSpendWei
  - DevWallet debits and records transfers
  - Web3Wallet separates "not sent" from "sent, state unknown"
"""

from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest
from eth_account import Account
from web3 import Web3
from web3.exceptions import TimeExhausted

from fakes import RecordingWallet, UnconfirmedWallet
from hunter_settlement.errors import InsufficientBalance, InternalError, NetworkTimeout, UnsupportedPaymentScheme
from hunter_settlement.models import Quote
from hunter_settlement.payment import PaymentSettler, validate_quote
from hunter_settlement.wallet import DevWallet, FundingWallet, Web3Wallet

PAY_TO = "0x000000000000000000000000000000000000dEaD"


def _quote(amount: int = 100, scheme: str = "native-transfer", asset: str = "native") -> Quote:
    return Quote(
        scheme=scheme,
        asset=asset,
        amount=amount,
        pay_to=PAY_TO,
        network="eip155:10143",
        request_hash="0x" + "ab" * 32,
        task_type="content-generation",
        timestamp=1_700_000_000,
    )


# ---------------------------------------------------------------------------
# 1. Validation
# ---------------------------------------------------------------------------

class TestValidateQuote:

    def test_native_transfer_is_accepted(self):
        validate_quote(_quote())

    @pytest.mark.parametrize("scheme, asset", [("exact", "native"), ("native-transfer", "USDC")])
    def test_other_schemes_rejected(self, scheme, asset):
        with pytest.raises(UnsupportedPaymentScheme):
            validate_quote(_quote(scheme=scheme, asset=asset))


# ---------------------------------------------------------------------------
# 2. settle
# ---------------------------------------------------------------------------

class TestSettle:

    @pytest.mark.asyncio
    async def test_success_pays_quoted_amount(self, wallet):
        payment = await PaymentSettler(wallet).settle(_quote(amount=250))
        assert payment.amount == 250
        assert payment.receiver == PAY_TO
        assert payment.sender == wallet.address
        assert wallet.transfers == [(PAY_TO, 250)]

    @pytest.mark.asyncio
    async def test_unsupported_scheme_never_touches_wallet(self):
        wallet = RecordingWallet(fail_on_transfer=True)
        with pytest.raises(UnsupportedPaymentScheme):
            await PaymentSettler(wallet).settle(_quote(scheme="exact"))

    @pytest.mark.asyncio
    async def test_insufficient_balance_fails_before_transfer(self):
        wallet = RecordingWallet(balance_wei=50, fail_on_transfer=True)
        with pytest.raises(InsufficientBalance) as exc_info:
            await PaymentSettler(wallet).settle(_quote(amount=100))
        assert exc_info.value.details == {"balanceWei": "50", "requiredWei": "100"}
        assert exc_info.value.status == 422

    @pytest.mark.asyncio
    async def test_exact_balance_is_enough(self):
        wallet = RecordingWallet(balance_wei=100)
        await PaymentSettler(wallet).settle(_quote(amount=100))
        assert wallet.balance_wei == 0

    @pytest.mark.asyncio
    async def test_transfer_deadline_raises_network_timeout(self):
        wallet = RecordingWallet(delay=0.5)
        with pytest.raises(NetworkTimeout) as exc_info:
            await PaymentSettler(wallet, timeout_seconds=0.05).settle(_quote(amount=70))
        assert exc_info.value.details["possibleSpendWei"] == "70"

    @pytest.mark.asyncio
    async def test_wallet_error_is_wrapped(self):
        class BrokenWallet(RecordingWallet):
            async def transfer(self, to, amount_wei):
                raise ConnectionError("rpc down")

        with pytest.raises(InternalError) as exc_info:
            await PaymentSettler(BrokenWallet()).settle(_quote())
        assert exc_info.value.code == "PAYMENT_TRANSFER_FAILED"
        assert exc_info.value.details["possibleSpendWei"] == "100"

    @pytest.mark.asyncio
    async def test_lost_transaction_is_reported_as_possible_spend(self):
        wallet = UnconfirmedWallet()
        with pytest.raises(InternalError) as exc_info:
            await PaymentSettler(wallet).settle(_quote(amount=60))
        assert wallet.transfers == [(PAY_TO, 60)]
        assert exc_info.value.details["possibleSpendWei"] == "60"

    @pytest.mark.asyncio
    async def test_wallet_timeout_gets_possible_spend(self):
        class SlowChainWallet(RecordingWallet):
            async def transfer(self, to, amount_wei):
                raise NetworkTimeout("not mined", details={"txHash": "0xabc"})

        with pytest.raises(NetworkTimeout) as exc_info:
            await PaymentSettler(SlowChainWallet()).settle(_quote(amount=40))
        assert exc_info.value.details == {"txHash": "0xabc", "possibleSpendWei": "40"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("code", ["PAYMENT_NOT_SENT", "PAYMENT_REJECTED", "PAYMENT_REVERTED"])
    async def test_nothing_sent_codes_are_not_charged(self, code):
        class RefusingWallet(RecordingWallet):
            async def transfer(self, to, amount_wei):
                raise InternalError("refused", code=code)

        with pytest.raises(InternalError) as exc_info:
            await PaymentSettler(RefusingWallet()).settle(_quote())
        assert "possibleSpendWei" not in exc_info.value.details

    @pytest.mark.asyncio
    async def test_concurrent_settles_are_serialised(self):
        wallet = RecordingWallet(delay=0.02)
        settler = PaymentSettler(wallet)
        payments = await asyncio.gather(*(settler.settle(_quote(amount=10)) for _ in range(4)))
        assert wallet.max_in_flight == 1
        assert len({p.tx_hash for p in payments}) == 4

    @pytest.mark.asyncio
    async def test_serialised_settles_recheck_balance(self):
        wallet = RecordingWallet(balance_wei=150, delay=0.01)
        settler = PaymentSettler(wallet)
        results = await asyncio.gather(
            settler.settle(_quote(amount=100)),
            settler.settle(_quote(amount=100)),
            return_exceptions=True,
        )
        assert sum(isinstance(r, InsufficientBalance) for r in results) == 1
        assert wallet.balance_wei == 50


# ---------------------------------------------------------------------------
# 3. DevWallet
# ---------------------------------------------------------------------------

class TestDevWallet:

    def test_satisfies_protocol(self):
        assert isinstance(DevWallet(), FundingWallet)

    @pytest.mark.asyncio
    async def test_transfer_debits_and_records(self):
        wallet = DevWallet(balance_wei=1_000)
        tx_hash = await wallet.transfer(PAY_TO, 400)
        assert tx_hash.startswith("0x") and len(tx_hash) == 66
        assert (await wallet.get_balance()).wei == 600
        assert wallet.transfers == [(PAY_TO, 400, tx_hash)]

    @pytest.mark.asyncio
    async def test_overdraw_rejected(self):
        wallet = DevWallet(balance_wei=10)
        with pytest.raises(InternalError) as exc_info:
            await wallet.transfer(PAY_TO, 11)
        assert exc_info.value.code == "PAYMENT_REJECTED"


# ---------------------------------------------------------------------------
# 4. Web3Wallet
# ---------------------------------------------------------------------------

async def _resolved(value):
    return value


class FakeEth:
    """The slice of ``AsyncWeb3.eth`` a native transfer touches."""

    def __init__(self, nonce_error=None, receipt_error=None, status=1, block_number=10):
        self.nonce_error = nonce_error
        self.receipt_error = receipt_error
        self.status = status
        self.head = block_number
        self.sent = []

    async def get_balance(self, address):
        return 10**18

    async def get_transaction_count(self, address, block_identifier):
        if self.nonce_error is not None:
            raise self.nonce_error
        return 0

    @property
    def gas_price(self):
        return _resolved(10**9)

    @property
    def max_priority_fee(self):
        return _resolved(10**8)

    @property
    def block_number(self):
        return _resolved(self.head)

    async def send_raw_transaction(self, raw):
        self.sent.append(raw)
        return b"\x12" * 32

    async def wait_for_transaction_receipt(self, tx_hash, timeout, poll_latency):
        if self.receipt_error is not None:
            raise self.receipt_error
        return {"status": self.status, "blockNumber": self.head}


def _web3_wallet(eth: FakeEth) -> Web3Wallet:
    return Web3Wallet(
        Web3.to_hex(Account.create().key),
        rpc_url="http://rpc.invalid",
        chain_id=10143,
        poll_interval=0.01,
        w3=SimpleNamespace(eth=eth),
    )


class TestWeb3Wallet:

    @pytest.mark.asyncio
    async def test_confirmed_transfer_returns_hash(self):
        eth = FakeEth()
        tx_hash = await _web3_wallet(eth).transfer(PAY_TO, 60)
        assert tx_hash == "0x" + "12" * 32
        assert len(eth.sent) == 1

    @pytest.mark.asyncio
    async def test_receipt_timeout_after_send_is_possible_spend(self):
        eth = FakeEth(receipt_error=TimeExhausted("not in chain"))
        with pytest.raises(NetworkTimeout) as exc_info:
            await _web3_wallet(eth).transfer(PAY_TO, 60)
        assert len(eth.sent) == 1
        assert exc_info.value.details["possibleSpendWei"] == "60"
        assert exc_info.value.details["txHash"] == "0x" + "12" * 32

    @pytest.mark.asyncio
    async def test_rpc_error_after_send_is_possible_spend(self):
        eth = FakeEth(receipt_error=ConnectionError("rpc dropped"))
        with pytest.raises(NetworkTimeout) as exc_info:
            await _web3_wallet(eth).transfer(PAY_TO, 60)
        assert exc_info.value.details["possibleSpendWei"] == "60"

    @pytest.mark.asyncio
    async def test_failure_before_send_is_not_sent(self):
        eth = FakeEth(nonce_error=ConnectionError("rpc down"))
        with pytest.raises(InternalError) as exc_info:
            await _web3_wallet(eth).transfer(PAY_TO, 60)
        assert eth.sent == []
        assert exc_info.value.code == "PAYMENT_NOT_SENT"

    @pytest.mark.asyncio
    async def test_revert_is_not_charged(self):
        with pytest.raises(InternalError) as exc_info:
            await PaymentSettler(_web3_wallet(FakeEth(status=0))).settle(_quote(amount=60))
        assert exc_info.value.code == "PAYMENT_REVERTED"
        assert "possibleSpendWei" not in exc_info.value.details

    @pytest.mark.asyncio
    async def test_settle_charges_lost_web3_transfer(self):
        wallet = _web3_wallet(FakeEth(receipt_error=TimeExhausted("not in chain")))
        with pytest.raises(NetworkTimeout) as exc_info:
            await PaymentSettler(wallet).settle(_quote(amount=60))
        assert exc_info.value.details["possibleSpendWei"] == "60"
