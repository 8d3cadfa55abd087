"""Funding wallets: the only place the hunter's key signs or sends value."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional, Protocol, runtime_checkable

from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import TimeExhausted

from .config import HunterConfig
from .errors import InternalError, NetworkTimeout
from .models import Balance

logger = logging.getLogger("hunter_settlement.wallet")

NATIVE_TRANSFER_GAS = 21_000
DEV_WALLET_BALANCE_WEI = 100 * 10**18

# wallet error codes that guarantee no value left the wallet
PAYMENT_NOT_SENT = "PAYMENT_NOT_SENT"
PAYMENT_REJECTED = "PAYMENT_REJECTED"
PAYMENT_REVERTED = "PAYMENT_REVERTED"
NOTHING_SENT_CODES = frozenset({PAYMENT_NOT_SENT, PAYMENT_REJECTED, PAYMENT_REVERTED})


@runtime_checkable
class FundingWallet(Protocol):
    """Capabilities the settler needs from a wallet. Keys never leave it."""

    @property
    def address(self) -> str: ...

    async def get_balance(self) -> Balance: ...

    async def transfer(self, to: str, amount_wei: int) -> str:
        """Send ``amount_wei`` to ``to``, wait for confirmation, return the tx hash."""
        ...

    def sign_message(self, text: str) -> str: ...


def format_native(wei: int) -> str:
    return str(Web3.from_wei(wei, "ether"))


class Web3Wallet:
    """
    Native-currency wallet backed by a JSON-RPC node.

    transfer() returns only after the transaction is mined and
    ``confirmations`` blocks deep (the mining block counts as one).
    """

    def __init__(
        self,
        private_key: str,
        rpc_url: str,
        chain_id: int,
        confirmations: int = 1,
        poll_interval: float = 2.0,
        receipt_timeout: float = 120.0,
        w3: Optional[AsyncWeb3] = None,
    ):
        self._account = Account.from_key(private_key)
        self._w3 = w3 or AsyncWeb3(AsyncHTTPProvider(rpc_url))
        self._chain_id = chain_id
        self._confirmations = confirmations
        self._poll_interval = poll_interval
        self._receipt_timeout = receipt_timeout

    @property
    def address(self) -> str:
        return self._account.address

    async def get_balance(self) -> Balance:
        wei = int(await self._w3.eth.get_balance(self.address))
        return Balance(wei=wei, display=format_native(wei))

    async def transfer(self, to: str, amount_wei: int) -> str:
        try:
            nonce = await self._w3.eth.get_transaction_count(self.address, "pending")
            tx = {
                "to": Web3.to_checksum_address(to),
                "value": int(amount_wei),
                "nonce": nonce,
                "chainId": self._chain_id,
                "gas": NATIVE_TRANSFER_GAS,
                "maxFeePerGas": await self._w3.eth.gas_price * 2,
                "maxPriorityFeePerGas": await self._w3.eth.max_priority_fee,
            }
            signed = self._account.sign_transaction(tx)
        except Exception as exc:
            raise InternalError(
                f"Transfer not sent: {exc}",
                code=PAYMENT_NOT_SENT,
                details={"to": to, "amountWei": str(amount_wei)},
            ) from exc

        # once send_raw_transaction is called the funds may move even if it raises
        unconfirmed = {"to": to, "amountWei": str(amount_wei), "possibleSpendWei": str(amount_wei)}
        try:
            raw_hash = await self._w3.eth.send_raw_transaction(signed.raw_transaction)
            tx_hash = Web3.to_hex(raw_hash)
            unconfirmed["txHash"] = tx_hash
            logger.info("Transfer submitted: tx=%s to=%s amount=%d", tx_hash, to, amount_wei)

            receipt = await self._w3.eth.wait_for_transaction_receipt(
                raw_hash, timeout=self._receipt_timeout, poll_latency=self._poll_interval
            )
        except TimeExhausted as exc:
            raise NetworkTimeout(
                f"Transfer not mined within {self._receipt_timeout:.0f}s",
                details=unconfirmed,
            ) from exc
        except Exception as exc:
            raise NetworkTimeout(f"Transfer state unknown: {exc}", details=unconfirmed) from exc

        if receipt["status"] == 0:
            raise InternalError(
                "Transfer reverted on chain",
                code=PAYMENT_REVERTED,
                details={"txHash": tx_hash},
            )
        try:
            await self._wait_for_confirmations(receipt["blockNumber"], tx_hash)
        except Exception as exc:
            raise NetworkTimeout(f"Transfer {tx_hash} mined but not confirmed: {exc}", details=unconfirmed) from exc
        return tx_hash

    async def _wait_for_confirmations(self, block_number: int, tx_hash: str) -> None:
        while True:
            current = await self._w3.eth.block_number
            confirmations = current - block_number + 1
            if confirmations >= self._confirmations:
                logger.info("Transfer %s confirmed (%d confirmations)", tx_hash, confirmations)
                return
            logger.debug("Transfer %s: %d/%d confirmations", tx_hash, confirmations, self._confirmations)
            await asyncio.sleep(self._poll_interval)

    def sign_message(self, text: str) -> str:
        signed = self._account.sign_message(encode_defunct(text=text))
        return Web3.to_hex(signed.signature)


class DevWallet:
    """
    Throwaway local wallet for running without a funded key.

    Starts with a fixed balance, debits it on transfer and returns a
    synthetic keccak tx hash. Nothing touches a chain.
    """

    def __init__(self, balance_wei: int = DEV_WALLET_BALANCE_WEI, private_key: Optional[str] = None):
        self._account = Account.from_key(private_key) if private_key else Account.create()
        self._balance_wei = balance_wei
        self.transfers: list[tuple[str, int, str]] = []

    @property
    def address(self) -> str:
        return self._account.address

    async def get_balance(self) -> Balance:
        return Balance(wei=self._balance_wei, display=format_native(self._balance_wei))

    async def transfer(self, to: str, amount_wei: int) -> str:
        if amount_wei > self._balance_wei:
            raise InternalError(
                "Dev wallet balance too low",
                code=PAYMENT_REJECTED,
                details={"balanceWei": str(self._balance_wei), "requiredWei": str(amount_wei)},
            )
        seed = f"{self.address}:{to}:{amount_wei}:{time.time_ns()}"
        tx_hash = Web3.to_hex(Web3.keccak(text=seed))
        self._balance_wei -= amount_wei
        self.transfers.append((to, amount_wei, tx_hash))
        logger.info("Dev transfer: tx=%s to=%s amount=%d", tx_hash, to, amount_wei)
        return tx_hash

    def sign_message(self, text: str) -> str:
        signed = self._account.sign_message(encode_defunct(text=text))
        return Web3.to_hex(signed.signature)


def wallet_from_config(config: HunterConfig) -> FundingWallet:
    """Web3Wallet when a private key is configured, DevWallet otherwise."""
    if config.private_key is None:
        logger.warning("HUNTER_PRIVATE_KEY not set; using a local dev wallet")
        return DevWallet()
    return Web3Wallet(
        private_key=config.private_key,
        rpc_url=config.rpc_url,
        chain_id=config.chain_id,
        confirmations=config.confirmations,
        receipt_timeout=config.payment_timeout_seconds,
    )
