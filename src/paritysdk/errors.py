"""
Error taxonomy for the Parity SDK.

Every error raised by the SDK derives from ParityError.  Lower-level
exceptions (httpx, eth-abi, eth-account) are chained with ``raise ... from``
so the original cause is never lost.  Nothing in the SDK retries on error.
"""

from __future__ import annotations

from typing import Any, Optional


class ParityError(RuntimeError):
    exit_code: int = 1

    #: Workflow phase that failed ("approve" or "stake"), when relevant.
    phase: Optional[str] = None

    def __str__(self) -> str:
        message = super().__str__()
        if self.phase:
            return f"[{self.phase}] {message}"
        return message


class ChainConnectionError(ParityError, ConnectionError):
    """The node is unreachable or the HTTP session failed."""

    exit_code = 2


class UnauthenticatedError(ParityError):
    """A state-changing operation was attempted without a credential."""

    exit_code = 3


class InvalidKeyError(ParityError, ValueError):
    exit_code = 3


class RpcError(ParityError):
    """The node answered with a JSON-RPC error object."""

    def __init__(self, code: Optional[int], message: str, data: Any = None) -> None:
        super().__init__(f"RPC error {code}: {message}" if code is not None else f"RPC error: {message}")
        self.code = code
        self.rpc_message = message
        self.data = data


class CallError(ParityError):
    """A read-only contract call was rejected or reverted."""

    exit_code = 4

    def __init__(self, message: str, reason: Optional[str] = None) -> None:
        super().__init__(message)
        self.reason = reason


class TransactError(ParityError):
    """A state-changing call could not be submitted."""

    exit_code = 5

    def __init__(self, message: str, reason: Optional[str] = None) -> None:
        super().__init__(message)
        self.reason = reason


class TransactionRevertedError(TransactError):
    """A transaction was mined but its status is failure."""

    def __init__(self, tx_hash: str, receipt: Any = None) -> None:
        super().__init__(f"Transaction {tx_hash} reverted")
        self.tx_hash = tx_hash
        self.receipt = receipt


class EncodeError(ParityError, ValueError):
    """Arguments do not fit the declared ABI input types."""

    exit_code = 6


class DecodeError(ParityError):
    """A response does not match the schema it was decoded against."""

    exit_code = 6


class ConfirmationTimeoutError(ParityError, TimeoutError):
    exit_code = 7

    def __init__(self, tx_hash: str, timeout: float) -> None:
        super().__init__(f"Transaction {tx_hash} not mined within {timeout}s")
        self.tx_hash = tx_hash
        self.timeout = timeout


class SubscriptionError(ParityError):
    """A live log subscription was dropped by the transport."""

    exit_code = 8


class StakeWalletUnavailableError(ParityError):
    exit_code = 3


__all__ = [
    "CallError",
    "ChainConnectionError",
    "ConfirmationTimeoutError",
    "DecodeError",
    "EncodeError",
    "InvalidKeyError",
    "ParityError",
    "RpcError",
    "StakeWalletUnavailableError",
    "SubscriptionError",
    "TransactError",
    "TransactionRevertedError",
    "UnauthenticatedError",
]
