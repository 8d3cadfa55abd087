"""
receipts.py — Delivery receipt hashing, signing and verification.

A seller proves delivery by signing the keccak256 of its result text with
the key behind its advertised provider address. Anyone holding the
receipt can check it without trusting the seller or the hunter:

  1. calculate_result_hash()  — keccak256 over the UTF-8 result text.
  2. calculate_request_hash() — keccak256 over the solidity-packed
                                (taskType, taskInput, timestamp, provider).
  3. sign_receipt()           — seller side: EIP-191 personal_sign over
                                the result hash string.
  4. verify_receipt()         — recover the signer and compare it with
                                the declared provider.

verify_receipt() is pure. A receipt whose signature belongs to someone
else is a normal outcome (is_valid=False), not an exception; only a
receipt with missing fields raises MalformedReceipt.
"""

from __future__ import annotations

import logging

from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import Web3

from .errors import MalformedReceipt
from .models import Receipt, ReceiptVerification

logger = logging.getLogger("hunter_settlement.receipts")

_REQUIRED_FIELDS = ("request_hash", "result_hash", "provider", "timestamp", "signature")


# ---------------------------------------------------------------------------
# Hashing
# ---------------------------------------------------------------------------

def calculate_result_hash(result: str) -> str:
    """Return the 0x-prefixed keccak256 of the UTF-8 encoded result."""
    return Web3.to_hex(Web3.keccak(text=result))


def calculate_request_hash(
    task_type: str,
    task_input: str,
    timestamp: int,
    provider_address: str,
) -> str:
    """Hash a task request the same way sellers bind it into their quote."""
    return Web3.to_hex(
        Web3.solidity_keccak(
            ["string", "string", "uint256", "address"],
            [task_type, task_input, int(timestamp), Web3.to_checksum_address(provider_address)],
        )
    )


# ---------------------------------------------------------------------------
# Addresses
# ---------------------------------------------------------------------------

def normalize_address(address: str) -> str:
    """Return the EIP-55 checksum form. Raises ValueError on anything else."""
    if not Web3.is_address(address):
        raise ValueError(f"Not an address: {address!r}")
    return Web3.to_checksum_address(address)


def same_address(a: str, b: str) -> bool:
    return normalize_address(a) == normalize_address(b)


# ---------------------------------------------------------------------------
# Sign / verify
# ---------------------------------------------------------------------------

def sign_receipt(
    private_key: str,
    request_hash: str,
    result: str,
    timestamp: int,
) -> Receipt:
    """Build and sign a receipt for ``result`` (seller side)."""
    account = Account.from_key(private_key)
    result_hash = calculate_result_hash(result)
    signed = account.sign_message(encode_defunct(text=result_hash))
    return Receipt(
        request_hash=request_hash,
        result_hash=result_hash,
        provider=account.address,
        timestamp=timestamp,
        signature=Web3.to_hex(signed.signature),
    )


def recover_signer(result_hash: str, signature: str) -> str:
    """Recover the address that personal_signed ``result_hash``."""
    return Account.recover_message(encode_defunct(text=result_hash), signature=signature)


def verify_receipt(receipt: Receipt) -> ReceiptVerification:
    """
    Check that ``receipt.signature`` over ``receipt.result_hash`` recovers
    to ``receipt.provider`` (compared after checksum normalisation).

    Raises:
        MalformedReceipt: a required field is empty or provider is not an address.
    """
    missing = [name for name in _REQUIRED_FIELDS if getattr(receipt, name) in (None, "")]
    if missing:
        raise MalformedReceipt(
            f"Receipt is missing required fields: {', '.join(missing)}",
            details={"missing": missing},
        )
    try:
        expected = normalize_address(receipt.provider)
    except ValueError as exc:
        raise MalformedReceipt(
            f"Receipt provider is not a valid address: {receipt.provider!r}",
            details={"provider": receipt.provider},
        ) from exc

    try:
        recovered = recover_signer(receipt.result_hash, receipt.signature)
    except Exception as exc:
        # unrecoverable signature bytes are an invalid signature, not a malformed receipt
        logger.info("Receipt signature unrecoverable for %s: %s", receipt.request_hash, exc)
        return ReceiptVerification(is_valid=False, provider=receipt.provider)

    is_valid = normalize_address(recovered) == expected
    if not is_valid:
        logger.warning(
            "Receipt %s signed by %s, declared provider %s",
            receipt.request_hash, recovered, receipt.provider,
        )
    return ReceiptVerification(is_valid=is_valid, provider=receipt.provider)
