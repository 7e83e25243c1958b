from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence, Union

from eth_hash.auto import keccak

from .errors import DecodeError

ZERO_ADDRESS = "0x" + "00" * 20

BlockTag = Union[int, str]

# Indexed event field name -> accepted values.  Missing or empty = match any.
CallFilter = Mapping[str, Sequence[Any]]


def to_checksum_address(address: str) -> str:
    """Convert an address to EIP-55 checksummed format."""
    addr = address.lower().replace("0x", "")
    addr_hash = keccak(addr.encode("utf-8")).hex()
    result = "0x"
    for i, c in enumerate(addr):
        if c in "abcdef":
            result += c.upper() if int(addr_hash[i], 16) >= 8 else c
        else:
            result += c
    return result


def to_address(value: Union[str, bytes]) -> str:
    """
    Normalize an address to its checksummed string form.

    Accepts 0x-prefixed hex (any case) or 20 raw bytes.  Two addresses are
    equal when their normalized forms are equal.

    Raises:
        ValueError: If the value is not exactly 20 bytes
    """
    if isinstance(value, (bytes, bytearray)):
        raw = bytes(value)
    else:
        text = value[2:] if value[:2].lower() == "0x" else value
        try:
            raw = bytes.fromhex(text)
        except ValueError as exc:
            raise ValueError(f"Invalid address: {value!r}") from exc
    if len(raw) != 20:
        raise ValueError(f"Address must be 20 bytes, got {len(raw)}: {value!r}")
    return to_checksum_address(raw.hex())


def hex_to_int(value: Optional[str]) -> int:
    if value is None:
        return 0
    return int(value, 16)


def hex_to_bytes(value: str) -> bytes:
    return bytes.fromhex(value[2:] if value.startswith("0x") else value)


@dataclass(frozen=True)
class StakeRecord:
    """
    Stake held by the staking contract for one device ID.

    ``exists=False`` means the contract has no record for the device; it is a
    normal answer, not an error.
    """
    amount: int
    device_id: str
    wallet_address: str
    exists: bool

    @classmethod
    def missing(cls, device_id: str) -> "StakeRecord":
        return cls(amount=0, device_id=device_id, wallet_address=ZERO_ADDRESS, exists=False)


@dataclass(frozen=True)
class PendingTransaction:
    """A submitted transaction whose outcome is not yet known."""
    tx_hash: str
    sender: str
    to: str
    nonce: int
    method: str = ""

    def __str__(self) -> str:
        return self.tx_hash


@dataclass(frozen=True)
class Receipt:
    tx_hash: str
    status: int
    block_number: int
    gas_used: int
    logs: tuple[dict[str, Any], ...] = ()

    @property
    def succeeded(self) -> bool:
        return self.status == 1

    @classmethod
    def from_rpc(cls, payload: dict[str, Any]) -> "Receipt":
        """
        Parse an eth_getTransactionReceipt result.

        Raises:
            DecodeError: If the receipt has no status (pre-Byzantium) or a
                field is malformed
        """
        if payload.get("status") is None:
            raise DecodeError(
                f"Receipt for {payload.get('transactionHash')} carries no status field"
            )
        try:
            return cls(
                tx_hash=payload["transactionHash"],
                status=hex_to_int(payload["status"]),
                block_number=hex_to_int(payload.get("blockNumber")),
                gas_used=hex_to_int(payload.get("gasUsed")),
                logs=tuple(payload.get("logs") or ()),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise DecodeError(f"Malformed receipt: {exc!r}") from exc


@dataclass(frozen=True)
class LogMeta:
    """Where a log came from."""
    address: str
    block_number: int
    tx_hash: str
    log_index: int


@dataclass(frozen=True)
class EventRecord:
    """
    One decoded contract event.

    ``args`` holds every field by name, indexed and non-indexed alike.
    Indexed fields of dynamic type (string, bytes, arrays) are only
    available as their 32-byte Keccak hash.
    """
    event: str
    args: Mapping[str, Any]
    indexed: tuple[str, ...]
    meta: LogMeta

    def __getitem__(self, name: str) -> Any:
        return self.args[name]


@dataclass(frozen=True)
class BlockRange:
    start: BlockTag = 0
    end: BlockTag = "latest"


@dataclass(frozen=True)
class TokenInfo:
    name: str
    symbol: str
    decimals: int


__all__ = [
    "BlockRange",
    "BlockTag",
    "CallFilter",
    "EventRecord",
    "LogMeta",
    "PendingTransaction",
    "Receipt",
    "StakeRecord",
    "TokenInfo",
    "ZERO_ADDRESS",
    "hex_to_bytes",
    "hex_to_int",
    "to_address",
    "to_checksum_address",
]
