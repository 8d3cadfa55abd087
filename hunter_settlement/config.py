"""
config.py — Environment-driven configuration for hunter-settlement.

All settings have defaults so a developer only needs to export
HUNTER_PRIVATE_KEY (and optionally HUNTER_RPC_URL) for a working testnet
setup. Without a private key the hunter runs against a local dev wallet.
"""

import os
from typing import Optional

from pydantic import BaseModel, field_validator

DEFAULT_MAX_TOTAL_WEI = 60_000_000_000_000_000
DEFAULT_MAX_PER_PHASE_WEI = 20_000_000_000_000_000
DEFAULT_MAX_PHASES = 6
DEFAULT_PHASE_TIMEOUT_SECONDS = 45.0


def _env_wei(name: str, fallback: int) -> int:
    raw = os.getenv(name, "").strip()
    return int(raw) if raw.isdigit() else fallback


def _env_positive_int(name: str, fallback: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw.isdigit() or int(raw) <= 0:
        return fallback
    return int(raw)


def _env_positive_float(name: str, fallback: float) -> float:
    raw = os.getenv(name, "").strip()
    try:
        value = float(raw)
    except ValueError:
        return fallback
    return value if value > 0 else fallback


def _env_private_key() -> Optional[str]:
    raw = os.getenv("HUNTER_PRIVATE_KEY", "").strip()
    if not raw or raw == "0x...":
        return None
    return raw


class HunterConfig(BaseModel):
    """
    Configuration for the hunter (buyer) agent.

    Reads from environment variables by default:
        HUNTER_RPC_URL            — JSON-RPC endpoint of the settlement chain
        CHAIN_ID                  — chain id (default: 10143)
        HUNTER_PRIVATE_KEY        — funding key; unset means dev wallet
        REGISTRY_SERVICE_URL      — service registry base URL
        HUNTER_AGENT_ID           — explicit agent id (default: derived from address)
        HUNTER_AGENT_NAME         — display name for registration
        HUNTER_PROBE_TIMEOUT      — reputation/identity probe deadline, seconds (1.2)
        HUNTER_PAYMENT_TIMEOUT    — transfer + confirmation deadline, seconds (120)
        HUNTER_CONFIRMATIONS      — confirmation depth to wait for (default: 1)
        COMMANDER_MAX_TOTAL_WEI   — commander mission spending cap
        COMMANDER_MAX_PER_PHASE_WEI — commander per-phase spending cap
        COMMANDER_MAX_PHASES      — commander phase limit
        COMMANDER_PHASE_TIMEOUT   — commander per-phase deadline, seconds
    """

    rpc_url: str = os.getenv("HUNTER_RPC_URL", "https://testnet-rpc.monad.xyz")
    chain_id: int = int(os.getenv("CHAIN_ID", "10143"))
    private_key: Optional[str] = _env_private_key()
    registry_url: str = os.getenv("REGISTRY_SERVICE_URL", "http://localhost:3003")
    agent_id: Optional[str] = os.getenv("HUNTER_AGENT_ID") or None
    agent_name: str = os.getenv("HUNTER_AGENT_NAME", "Rebel Agent")
    agent_description: str = os.getenv(
        "HUNTER_AGENT_DESCRIPTION",
        "Autonomous agent that discovers services, negotiates payment, and verifies results.",
    )

    probe_timeout_seconds: float = _env_positive_float("HUNTER_PROBE_TIMEOUT", 1.2)
    quote_timeout_seconds: float = _env_positive_float("HUNTER_QUOTE_TIMEOUT", 30.0)
    execute_timeout_seconds: float = _env_positive_float("HUNTER_EXECUTE_TIMEOUT", 90.0)
    payment_timeout_seconds: float = _env_positive_float("HUNTER_PAYMENT_TIMEOUT", 120.0)
    confirmations: int = _env_positive_int("HUNTER_CONFIRMATIONS", 1)
    max_concurrent_probes: int = _env_positive_int("HUNTER_MAX_CONCURRENT_PROBES", 8)

    commander_max_total_wei: int = _env_wei("COMMANDER_MAX_TOTAL_WEI", DEFAULT_MAX_TOTAL_WEI)
    commander_max_per_phase_wei: int = _env_wei(
        "COMMANDER_MAX_PER_PHASE_WEI", DEFAULT_MAX_PER_PHASE_WEI
    )
    commander_max_phases: int = _env_positive_int("COMMANDER_MAX_PHASES", DEFAULT_MAX_PHASES)
    commander_phase_timeout_seconds: float = _env_positive_float(
        "COMMANDER_PHASE_TIMEOUT", DEFAULT_PHASE_TIMEOUT_SECONDS
    )

    @property
    def is_mock_mode(self) -> bool:
        return self.private_key is None

    @property
    def network(self) -> str:
        return f"eip155:{self.chain_id}"

    @field_validator("confirmations")
    @classmethod
    def validate_confirmations(cls, v: int) -> int:
        if v < 1:
            raise ValueError("confirmations must be at least 1")
        return v

    @field_validator("probe_timeout_seconds")
    @classmethod
    def validate_probe_timeout(cls, v: float) -> float:
        if v <= 0 or v > 30:
            raise ValueError("probe_timeout_seconds must be in (0, 30]")
        return v

    @field_validator("payment_timeout_seconds")
    @classmethod
    def validate_payment_timeout(cls, v: float) -> float:
        if v < 1 or v > 3600:
            raise ValueError("payment_timeout_seconds must be between 1 and 3600")
        return v

    @field_validator("commander_max_total_wei", "commander_max_per_phase_wei")
    @classmethod
    def validate_wei(cls, v: int) -> int:
        if v < 0:
            raise ValueError("wei limits must be non-negative")
        return v

    @field_validator("commander_max_phases", "max_concurrent_probes")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v
