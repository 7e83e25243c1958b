"""
Chain Connection - Session, credential, and transaction lifecycle.

Uses eth-account for signing and the httpx-based JSON-RPC client for
sending.  A Connection owns one RPC session; it is released exactly once by
whoever created it.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Optional, Union

from ..errors import (
    ChainConnectionError,
    ConfirmationTimeoutError,
    TransactError,
    TransactionRevertedError,
    UnauthenticatedError,
)
from ..keys import Credential, credential_from_key
from ..types import ZERO_ADDRESS, PendingTransaction, Receipt, to_address
from .rpc import DEFAULT_TIMEOUT, HttpTransport, RpcClient, Transport

logger = logging.getLogger(__name__)

DEFAULT_GAS_LIMIT = 500_000
DEFAULT_RECEIPT_TIMEOUT = 120.0
DEFAULT_POLL_INTERVAL = 2.0


@dataclass(frozen=True)
class TransactContext:
    """
    Snapshot of the signer used for state-changing calls.

    A context keeps signing with the credential it was taken from even if
    the connection's credential is replaced afterwards.
    """
    credential: Credential
    gas_limit: int = DEFAULT_GAS_LIMIT

    @property
    def address(self) -> str:
        return self.credential.address

    @property
    def chain_id(self) -> int:
        return self.credential.chain_id


class Connection:
    """
    One session to an EVM node plus the caller's signing credential.

    Create with connect().  Thread-safe: the credential may be swapped at any
    time; operations that already took a TransactContext are unaffected.
    """

    def __init__(
        self,
        rpc: RpcClient,
        chain_id: int,
        endpoint: str = "",
        gas_limit: int = DEFAULT_GAS_LIMIT,
        receipt_timeout: float = DEFAULT_RECEIPT_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        self.rpc = rpc
        self.chain_id = chain_id
        self.endpoint = endpoint
        self.gas_limit = gas_limit
        self.receipt_timeout = receipt_timeout
        self.poll_interval = poll_interval
        self._credential: Optional[Credential] = None
        self._lock = threading.Lock()
        self._closed = False

    def __repr__(self) -> str:
        return f"Connection({self.endpoint or 'custom transport'}, chain_id={self.chain_id})"

    # ---- lifecycle ----------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Release the RPC session.  Further calls are no-ops."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self.rpc.close()
        logger.debug("closed connection to %s", self.endpoint or "transport")

    def __enter__(self) -> "Connection":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # ---- credential ---------------------------------------------------

    def set_credential(self, private_key: str, chain_id: Optional[int] = None) -> Credential:
        """
        Install a signing key, replacing any previous one.

        Raises:
            InvalidKeyError: If the key is malformed
        """
        credential = credential_from_key(private_key, self.chain_id if chain_id is None else chain_id)
        with self._lock:
            self._credential = credential
        logger.info("credential set for %s (chain %d)", credential.address, credential.chain_id)
        return credential

    def clear_credential(self) -> None:
        with self._lock:
            self._credential = None

    @property
    def credential(self) -> Optional[Credential]:
        with self._lock:
            return self._credential

    @property
    def address(self) -> str:
        """Address of the current credential, or the zero address."""
        credential = self.credential
        return credential.address if credential else ZERO_ADDRESS

    def transact_options(self, gas_limit: Optional[int] = None) -> TransactContext:
        """
        Snapshot the current credential for a state-changing call.

        Raises:
            UnauthenticatedError: If no credential is set
        """
        credential = self.credential
        if credential is None:
            raise UnauthenticatedError(
                "Wallet not authenticated. Set a private key before sending transactions."
            )
        return TransactContext(credential=credential, gas_limit=gas_limit or self.gas_limit)

    # ---- transactions -------------------------------------------------

    def submit(self, context: TransactContext, to: str, data: bytes, method: str = "") -> PendingTransaction:
        """
        Build, sign, and send a contract call transaction.

        Only submission happens here; use wait_mined() for confirmation.

        Returns:
            PendingTransaction for the submitted transaction

        Raises:
            RpcError: If the node rejects the transaction
            ChainConnectionError: If the node is unreachable
        """
        self.ensure_open()
        account = context.credential.account
        nonce = self.rpc.get_nonce(account.address)
        gas_price = self.rpc.gas_price()

        tx = {
            "to": to_address(to),
            "data": "0x" + bytes(data).hex(),
            "value": 0,
            "nonce": nonce,
            "gas": context.gas_limit,
            "gasPrice": gas_price,
            "chainId": context.chain_id,
        }

        signed = account.sign_transaction(tx)
        raw_tx = "0x" + bytes(signed.raw_transaction).hex()
        tx_hash = self.rpc.send_raw_transaction(raw_tx)
        if not tx_hash:
            raise TransactError(f"Node returned no transaction hash for {method or 'transaction'}")

        logger.info("submitted %s tx %s from %s (nonce %d)", method or "contract", tx_hash, account.address, nonce)
        return PendingTransaction(
            tx_hash=tx_hash,
            sender=account.address,
            to=tx["to"],
            nonce=nonce,
            method=method,
        )

    def wait_mined(
        self,
        tx: Union[PendingTransaction, str],
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
    ) -> Receipt:
        """
        Wait for a transaction receipt.

        Args:
            tx: Pending transaction or its hash
            timeout: Maximum wait time in seconds
            poll_interval: Polling interval in seconds

        Returns:
            Receipt, whatever its status

        Raises:
            ConfirmationTimeoutError: If no receipt appears within timeout
        """
        self.ensure_open()
        tx_hash = tx.tx_hash if isinstance(tx, PendingTransaction) else tx
        timeout = self.receipt_timeout if timeout is None else timeout
        poll_interval = self.poll_interval if poll_interval is None else poll_interval

        deadline = time.monotonic() + timeout
        while True:
            payload = self.rpc.get_receipt(tx_hash)
            if payload is not None:
                receipt = Receipt.from_rpc(payload)
                logger.info(
                    "tx %s mined in block %d (status %d)",
                    tx_hash, receipt.block_number, receipt.status,
                )
                return receipt
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise ConfirmationTimeoutError(tx_hash, timeout)
            time.sleep(min(poll_interval, remaining))

    def wait_successful(
        self,
        tx: Union[PendingTransaction, str],
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
    ) -> Receipt:
        """
        Wait for a transaction and require that it did not revert.

        Raises:
            ConfirmationTimeoutError: If no receipt appears within timeout
            TransactionRevertedError: If the transaction was mined with status 0
        """
        receipt = self.wait_mined(tx, timeout=timeout, poll_interval=poll_interval)
        if not receipt.succeeded:
            logger.warning("tx %s reverted", receipt.tx_hash)
            raise TransactionRevertedError(receipt.tx_hash, receipt)
        return receipt

    def transaction_sender(self, tx_hash: str) -> str:
        """Read the sender of a submitted transaction back from the node."""
        payload = self.rpc.get_transaction(tx_hash)
        if payload is None:
            raise TransactError(f"Transaction {tx_hash} is unknown to the node")
        return to_address(payload["from"])

    def native_balance(self, address: str) -> int:
        """Native-coin (gas) balance in wei."""
        return self.rpc.get_balance(to_address(address))

    def ensure_open(self) -> None:
        """Raise ChainConnectionError once the connection has been closed."""
        if self._closed:
            raise ChainConnectionError("Connection is closed.")


def connect(
    endpoint: str,
    chain_id: Optional[int] = None,
    *,
    transport: Optional[Transport] = None,
    timeout: float = DEFAULT_TIMEOUT,
    gas_limit: int = DEFAULT_GAS_LIMIT,
    receipt_timeout: float = DEFAULT_RECEIPT_TIMEOUT,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
) -> Connection:
    """
    Open a session to an EVM node.

    The node is probed with eth_chainId; when chain_id is None the node's
    own chain id is used for signing.

    Args:
        endpoint: JSON-RPC URL
        chain_id: Chain id to sign for
        transport: Custom transport (defaults to HTTP via httpx)

    Raises:
        ChainConnectionError: If the node cannot be reached
    """
    rpc = RpcClient(transport or HttpTransport(endpoint, timeout=timeout))
    try:
        node_chain_id = rpc.chain_id()
    except ChainConnectionError:
        rpc.close()
        raise
    except Exception as exc:
        rpc.close()
        raise ChainConnectionError(f"{endpoint} did not answer eth_chainId: {exc}") from exc

    if chain_id is not None and chain_id != node_chain_id:
        logger.warning("configured chain id %d differs from node chain id %d", chain_id, node_chain_id)

    logger.debug("connected to %s (chain %d)", endpoint, node_chain_id)
    return Connection(
        rpc,
        chain_id if chain_id is not None else node_chain_id,
        endpoint=endpoint,
        gas_limit=gas_limit,
        receipt_timeout=receipt_timeout,
        poll_interval=poll_interval,
    )
