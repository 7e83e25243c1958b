"""
JSON-RPC Client for EVM nodes.

Lightweight alternative to web3.py: uses httpx for HTTP and returns raw
JSON results.  Encoding and decoding live in chain.abi; signing lives in
chain.tx.
"""

from __future__ import annotations

import itertools
import logging
import threading
from typing import Any, Optional, Protocol

import httpx

from ..errors import ChainConnectionError, RpcError
from ..types import BlockTag, hex_to_int

logger = logging.getLogger(__name__)

DEFAULT_RPC_URL = "http://127.0.0.1:8545"
DEFAULT_TIMEOUT = 30.0


class Transport(Protocol):
    """Anything that can carry a JSON-RPC request to a node."""

    def request(self, method: str, params: list) -> Any:
        ...

    def close(self) -> None:
        ...


def _unwrap(data: Any) -> Any:
    if not isinstance(data, dict):
        raise RpcError(None, f"Malformed JSON-RPC response: {data!r}")
    if "error" in data and data["error"] is not None:
        error = data["error"]
        if isinstance(error, dict):
            raise RpcError(error.get("code"), str(error.get("message", "")), error.get("data"))
        raise RpcError(None, str(error))
    return data.get("result")


class HttpTransport:
    """JSON-RPC over a single persistent httpx session."""

    def __init__(self, url: str, timeout: float = DEFAULT_TIMEOUT, client: Optional[httpx.Client] = None) -> None:
        self.url = url
        self._client = client or httpx.Client(timeout=timeout)
        self._ids = itertools.count(1)
        self._lock = threading.Lock()
        self._closed = False

    def request(self, method: str, params: list) -> Any:
        """
        Make a JSON-RPC call.

        Args:
            method: RPC method name (e.g., "eth_call")
            params: RPC parameters

        Returns:
            Result field from the RPC response

        Raises:
            ChainConnectionError: If the node cannot be reached
            RpcError: If the node answers with an error object
        """
        with self._lock:
            if self._closed:
                raise ChainConnectionError(f"Connection to {self.url} is closed.")
            request_id = next(self._ids)
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": request_id,
        }
        logger.debug("rpc -> %s #%d", method, request_id)

        try:
            response = self._client.post(self.url, json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as exc:
            raise ChainConnectionError(
                f"{self.url} answered HTTP {exc.response.status_code} to {method}"
            ) from exc
        except httpx.HTTPError as exc:
            raise ChainConnectionError(f"Cannot reach {self.url}: {exc}") from exc
        except RuntimeError as exc:
            # httpx refuses to send once the session was closed mid-request.
            raise ChainConnectionError(f"Connection to {self.url} is closed.") from exc
        except ValueError as exc:
            raise ChainConnectionError(f"{self.url} returned non-JSON body for {method}") from exc

        return _unwrap(data)

    def close(self) -> None:
        with self._lock:
            self._closed = True
        self._client.close()


class RpcClient:
    """Typed helpers over a Transport for the eth_* methods the SDK uses."""

    def __init__(self, transport: Transport) -> None:
        self.transport = transport

    def request(self, method: str, params: list) -> Any:
        return self.transport.request(method, params)

    def close(self) -> None:
        self.transport.close()

    # ---- chain state --------------------------------------------------

    def chain_id(self) -> int:
        return hex_to_int(self.request("eth_chainId", []))

    def block_number(self) -> int:
        return hex_to_int(self.request("eth_blockNumber", []))

    def gas_price(self) -> int:
        """
        Get current gas price.

        Returns:
            Gas price in wei
        """
        return hex_to_int(self.request("eth_gasPrice", []))

    def get_balance(self, address: str, block: BlockTag = "latest") -> int:
        """
        Get native-coin balance for an address.

        Returns:
            Balance in wei
        """
        return hex_to_int(self.request("eth_getBalance", [address, encode_block(block)]))

    def get_nonce(self, address: str, block: BlockTag = "pending") -> int:
        """
        Get transaction nonce for an address.

        Uses the "pending" tag by default so that back-to-back submissions
        from one account do not collide.
        """
        return hex_to_int(self.request("eth_getTransactionCount", [address, encode_block(block)]))

    # ---- calls and transactions ---------------------------------------

    def call(self, to: str, data: str, block: BlockTag = "latest", sender: Optional[str] = None) -> str:
        """
        Execute a read-only call (eth_call).

        Returns:
            0x-prefixed hex return data
        """
        tx: dict[str, Any] = {"to": to, "data": data}
        if sender:
            tx["from"] = sender
        result = self.request("eth_call", [tx, encode_block(block)])
        return result or "0x"

    def send_raw_transaction(self, raw_tx: str) -> str:
        """
        Send a signed raw transaction.

        Returns:
            Transaction hash (0x-prefixed hex)
        """
        return self.request("eth_sendRawTransaction", [raw_tx])

    def get_transaction(self, tx_hash: str) -> Optional[dict]:
        return self.request("eth_getTransactionByHash", [tx_hash])

    def get_receipt(self, tx_hash: str) -> Optional[dict]:
        return self.request("eth_getTransactionReceipt", [tx_hash])

    # ---- logs -----------------------------------------------------------

    def get_logs(
        self,
        address: str,
        topics: list,
        from_block: BlockTag,
        to_block: BlockTag,
    ) -> list[dict]:
        params = {
            "address": address,
            "topics": topics,
            "fromBlock": encode_block(from_block),
            "toBlock": encode_block(to_block),
        }
        result = self.request("eth_getLogs", [params])
        if not isinstance(result, list):
            raise RpcError(None, f"unexpected eth_getLogs result type: {type(result).__name__}")
        return result

    def new_filter(self, address: str, topics: list, from_block: BlockTag = "latest") -> str:
        params = {"address": address, "topics": topics, "fromBlock": encode_block(from_block)}
        return self.request("eth_newFilter", [params])

    def filter_changes(self, filter_id: str) -> list[dict]:
        return self.request("eth_getFilterChanges", [filter_id]) or []

    def uninstall_filter(self, filter_id: str) -> bool:
        return bool(self.request("eth_uninstallFilter", [filter_id]))


def encode_block(block: BlockTag) -> str:
    """Encode a block number or tag for a JSON-RPC parameter."""
    if isinstance(block, int):
        if block < 0:
            raise ValueError(f"Block number must be non-negative: {block}")
        return hex(block)
    return block
