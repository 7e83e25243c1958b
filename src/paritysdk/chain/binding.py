"""
Contract Binding - typed calls, transactions, and events for one contract.

A ContractBinding pairs a ContractSchema with an address and a Connection.
The same class serves every contract the SDK talks to; facades such as
TokenFacade only choose method names and shape the results.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from ..errors import CallError, RpcError, TransactError
from ..types import BlockRange, BlockTag, CallFilter, PendingTransaction, hex_to_bytes, to_address
from .abi import ContractSchema
from .events import DEFAULT_CHUNK_SIZE, DEFAULT_SUBSCRIPTION_POLL, LogQuery, LogSubscription
from .tx import Connection, TransactContext

logger = logging.getLogger(__name__)


class ContractBinding:
    """Read, write, and event access to one deployed contract."""

    def __init__(self, connection: Connection, address: str, schema: ContractSchema) -> None:
        self.connection = connection
        self.address = to_address(address)
        self.schema = schema

    def __repr__(self) -> str:
        return f"ContractBinding({self.schema.name or 'contract'}@{self.address})"

    # ---- encoding -----------------------------------------------------

    def encode(self, method: str, *args: Any) -> bytes:
        """Calldata for ``method(*args)``."""
        return self.schema.encode_call(method, args)

    def decode_input(self, data: bytes) -> tuple[str, tuple[Any, ...]]:
        """Inverse of encode(): (method, arguments) from calldata."""
        return self.schema.decode_input(data)

    def _reason(self, exc: RpcError) -> str:
        return self.schema.decode_revert(exc.data) or exc.rpc_message

    # ---- read ---------------------------------------------------------

    def call_all(self, method: str, *args: Any, block: BlockTag = "latest") -> tuple[Any, ...]:
        """
        Read-only call returning every declared output.

        Raises:
            CallError: If the call reverts or the node rejects it
            DecodeError: If the return data does not match the schema
        """
        self.connection.ensure_open()
        data = self.encode(method, *args)
        try:
            result = self.connection.rpc.call(self.address, "0x" + data.hex(), block=block)
        except RpcError as exc:
            reason = self._reason(exc)
            raise CallError(f"{method} call failed: {reason}", reason=reason) from exc
        return self.schema.decode_output(method, hex_to_bytes(result))

    def call(self, method: str, *args: Any, block: BlockTag = "latest") -> Any:
        """
        Read-only call (eth_call) against the latest block unless told otherwise.

        Returns:
            The single output, a tuple for several outputs, None for none
        """
        values = self.call_all(method, *args, block=block)
        if not values:
            return None
        if len(values) == 1:
            return values[0]
        return values

    # ---- write --------------------------------------------------------

    def transact(self, context: TransactContext, method: str, *args: Any) -> PendingTransaction:
        """
        Submit a state-changing call.  Does not wait for mining.

        Raises:
            TransactError: If the node rejects the transaction
        """
        data = self.encode(method, *args)
        try:
            return self.connection.submit(context, self.address, data, method=method)
        except RpcError as exc:
            reason = self._reason(exc)
            raise TransactError(f"{method} submission failed: {reason}", reason=reason) from exc

    # ---- events -------------------------------------------------------

    def query_logs(
        self,
        event: str,
        filters: Optional[CallFilter] = None,
        blocks: Optional[BlockRange] = None,
        chunk_size: Optional[int] = DEFAULT_CHUNK_SIZE,
    ) -> LogQuery:
        """Historical ``event`` logs matching ``filters`` within ``blocks``."""
        return LogQuery(
            self.connection.rpc,
            self.address,
            self.schema,
            event,
            filters=filters,
            blocks=blocks,
            chunk_size=chunk_size,
        )

    def subscribe_logs(
        self,
        event: str,
        filters: Optional[CallFilter] = None,
        poll_interval: float = DEFAULT_SUBSCRIPTION_POLL,
    ) -> LogSubscription:
        """Live ``event`` logs matching ``filters`` from now on."""
        self.connection.ensure_open()
        return LogSubscription(
            self.connection.rpc,
            self.address,
            self.schema,
            event,
            filters=filters,
            poll_interval=poll_interval,
        )
