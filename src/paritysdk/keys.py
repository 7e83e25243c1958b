"""
ECDSA / secp256k1 key handling for the Parity SDK.

Keys are only ever held in memory.  They can be supplied directly or read
from the PRIVATE_KEY environment variable (optionally loaded from a .env
file); this module never writes key material anywhere.

Dependencies: eth-account (lightweight, no full web3.py needed)
"""

from __future__ import annotations

import os
import secrets
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from eth_account import Account
from eth_account.signers.local import LocalAccount

from .errors import InvalidKeyError


@dataclass(frozen=True)
class Credential:
    """A signing key bound to one chain id."""
    account: LocalAccount
    chain_id: int

    @property
    def address(self) -> str:
        return self.account.address

    def __repr__(self) -> str:
        # Never render key material.
        return f"Credential(address={self.address}, chain_id={self.chain_id})"


def normalize_private_key(private_key: str) -> str:
    """Ensure a hex private key carries the 0x prefix."""
    private_key = private_key.strip()
    if not private_key.startswith("0x"):
        private_key = "0x" + private_key
    return private_key


def credential_from_key(private_key: str, chain_id: int) -> Credential:
    """
    Build a Credential from a hex private key.

    Args:
        private_key: Hex private key, with or without 0x prefix
        chain_id: Chain the transactor signs for

    Raises:
        InvalidKeyError: If the key is not a valid secp256k1 private key
    """
    if not isinstance(private_key, str) or not private_key.strip():
        raise InvalidKeyError("Private key is empty.")
    try:
        account = Account.from_key(normalize_private_key(private_key))
    except (ValueError, TypeError) as exc:
        raise InvalidKeyError(f"Invalid private key: {exc}") from exc
    return Credential(account=account, chain_id=chain_id)


def generate_key() -> tuple[str, str]:
    """
    Generate a new ECDSA/secp256k1 keypair.

    Returns:
        Tuple of (private_key_hex, address)
    """
    private_key = "0x" + secrets.token_hex(32)
    account = Account.from_key(private_key)
    return private_key, account.address


def load_private_key(env_path: Optional[Path] = None) -> Optional[str]:
    """
    Read PRIVATE_KEY from the environment.

    Args:
        env_path: Optional .env file to load first

    Returns:
        0x-prefixed hex private key, or None when none is configured
    """
    if env_path is not None and env_path.exists():
        load_dotenv(env_path, override=False)

    private_key = os.environ.get("PRIVATE_KEY")
    if not private_key:
        return None
    return normalize_private_key(private_key)
