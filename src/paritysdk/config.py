"""
Client configuration.

Values come from keyword arguments or from the environment, optionally
seeded from a .env file:

    PARITY_RPC_URL          JSON-RPC endpoint (default http://127.0.0.1:8545)
    PARITY_CHAIN_ID         chain id to sign for (default: ask the node)
    PARITY_TOKEN_ADDRESS    ParityToken contract
    PARITY_STAKE_ADDRESS    StakeWallet contract (optional)
    PRIVATE_KEY             signing key (optional; read-only mode without it)
    PARITY_RECEIPT_TIMEOUT  seconds to wait for a transaction to be mined
    PARITY_POLL_INTERVAL    seconds between receipt polls
    PARITY_GAS_LIMIT        gas limit for every transaction
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .chain.rpc import DEFAULT_RPC_URL, DEFAULT_TIMEOUT
from .chain.tx import DEFAULT_GAS_LIMIT, DEFAULT_POLL_INTERVAL, DEFAULT_RECEIPT_TIMEOUT
from .keys import load_private_key

DEFAULT_ENV_FILE = Path(".env")


def get_rpc_url() -> str:
    """Get the RPC URL from environment or default."""
    return os.environ.get("PARITY_RPC_URL", DEFAULT_RPC_URL)


def get_chain_id() -> Optional[int]:
    """Get the chain ID from environment, if set."""
    value = os.environ.get("PARITY_CHAIN_ID")
    return int(value) if value else None


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    return float(value) if value else default


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    return int(value) if value else default


@dataclass(frozen=True)
class ClientConfig:
    """Everything ParityClient needs to connect and bind both contracts."""
    token_address: str
    rpc_url: str = DEFAULT_RPC_URL
    chain_id: Optional[int] = None
    stake_address: Optional[str] = None
    private_key: Optional[str] = None
    request_timeout: float = DEFAULT_TIMEOUT
    receipt_timeout: float = DEFAULT_RECEIPT_TIMEOUT
    poll_interval: float = DEFAULT_POLL_INTERVAL
    gas_limit: int = DEFAULT_GAS_LIMIT

    def __repr__(self) -> str:
        key = "set" if self.private_key else "unset"
        return (
            f"ClientConfig(rpc_url={self.rpc_url!r}, chain_id={self.chain_id}, "
            f"token_address={self.token_address!r}, stake_address={self.stake_address!r}, "
            f"private_key={key})"
        )

    @classmethod
    def from_env(cls, env_path: Optional[Path] = None, **overrides: object) -> "ClientConfig":
        """
        Build a config from the environment.

        Args:
            env_path: .env file to load first (default: ./.env if present)
            overrides: Fields that take precedence over the environment

        Raises:
            ValueError: If PARITY_TOKEN_ADDRESS is missing or a number is malformed
        """
        env_path = env_path or DEFAULT_ENV_FILE
        if env_path.exists():
            load_dotenv(env_path, override=False)

        values: dict[str, object] = {
            "rpc_url": get_rpc_url(),
            "chain_id": get_chain_id(),
            "token_address": os.environ.get("PARITY_TOKEN_ADDRESS"),
            "stake_address": os.environ.get("PARITY_STAKE_ADDRESS") or None,
            "private_key": load_private_key(),
            "receipt_timeout": _env_float("PARITY_RECEIPT_TIMEOUT", DEFAULT_RECEIPT_TIMEOUT),
            "poll_interval": _env_float("PARITY_POLL_INTERVAL", DEFAULT_POLL_INTERVAL),
            "gas_limit": _env_int("PARITY_GAS_LIMIT", DEFAULT_GAS_LIMIT),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})

        if not values["token_address"]:
            raise ValueError(
                "PARITY_TOKEN_ADDRESS not set. Pass token_address or set it "
                f"in the environment or {env_path}."
            )
        return cls(**values)  # type: ignore[arg-type]
