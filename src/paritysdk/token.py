"""
Token Facade - ParityToken (ERC-20 with data-carrying transfers).

Reads map one-to-one onto contract calls.  Writes take a TransactContext
and return a PendingTransaction; the SDK does no local balance or
allowance checks, so a bad transfer surfaces as a revert once mined.
"""

from __future__ import annotations

from typing import Any, Optional, Sequence

from .chain.abi import ContractSchema, token_schema
from .chain.binding import ContractBinding
from .chain.events import LogQuery, LogSubscription
from .chain.tx import Connection, TransactContext
from .errors import DecodeError
from .types import BlockRange, PendingTransaction, TokenInfo, to_address


def require_amount(value: Any, what: str) -> int:
    """A decoded amount must be a non-negative integer."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise DecodeError(f"{what} decoded as {type(value).__name__}, expected an integer")
    if value < 0:
        raise DecodeError(f"{what} decoded as negative amount {value}")
    return value


def _address_filter(name: str, values: Optional[Sequence[str]]) -> dict[str, list[str]]:
    if not values:
        return {}
    return {name: [to_address(v) for v in values]}


class TokenFacade:
    """Typed access to the ParityToken contract."""

    def __init__(
        self,
        connection: Connection,
        address: str,
        schema: Optional[ContractSchema] = None,
    ) -> None:
        self.binding = ContractBinding(connection, address, schema or token_schema())

    @property
    def address(self) -> str:
        return self.binding.address

    def __repr__(self) -> str:
        return f"TokenFacade({self.address})"

    # ---- reads --------------------------------------------------------

    def name(self) -> str:
        return self.binding.call("name")

    def symbol(self) -> str:
        return self.binding.call("symbol")

    def decimals(self) -> int:
        return self.binding.call("decimals")

    def total_supply(self) -> int:
        return require_amount(self.binding.call("totalSupply"), "totalSupply")

    def balance_of(self, account: str) -> int:
        return require_amount(self.binding.call("balanceOf", to_address(account)), "balanceOf")

    def allowance(self, owner: str, spender: str) -> int:
        value = self.binding.call("allowance", to_address(owner), to_address(spender))
        return require_amount(value, "allowance")

    def owner(self) -> str:
        return self.binding.call("owner")

    def token_info(self) -> TokenInfo:
        return TokenInfo(name=self.name(), symbol=self.symbol(), decimals=self.decimals())

    # ---- writes -------------------------------------------------------

    def transfer(self, context: TransactContext, to: str, amount: int) -> PendingTransaction:
        return self.binding.transact(context, "transfer", to_address(to), amount)

    def approve(self, context: TransactContext, spender: str, amount: int) -> PendingTransaction:
        return self.binding.transact(context, "approve", to_address(spender), amount)

    def transfer_from(
        self, context: TransactContext, sender: str, to: str, amount: int
    ) -> PendingTransaction:
        return self.binding.transact(
            context, "transferFrom", to_address(sender), to_address(to), amount
        )

    def mint(self, context: TransactContext, to: str, amount: int) -> PendingTransaction:
        return self.binding.transact(context, "mint", to_address(to), amount)

    def burn(self, context: TransactContext, amount: int) -> PendingTransaction:
        return self.binding.transact(context, "burn", amount)

    def transfer_with_data(
        self, context: TransactContext, to: str, amount: int, data: bytes
    ) -> PendingTransaction:
        return self.binding.transact(context, "transferWithData", to_address(to), amount, bytes(data))

    def transfer_with_data_and_callback(
        self, context: TransactContext, to: str, amount: int, data: bytes
    ) -> PendingTransaction:
        return self.binding.transact(
            context, "transferWithDataAndCallback", to_address(to), amount, bytes(data)
        )

    def transfer_ownership(self, context: TransactContext, new_owner: str) -> PendingTransaction:
        return self.binding.transact(context, "transferOwnership", to_address(new_owner))

    def renounce_ownership(self, context: TransactContext) -> PendingTransaction:
        return self.binding.transact(context, "renounceOwnership")

    # ---- events -------------------------------------------------------

    def transfers(
        self,
        senders: Optional[Sequence[str]] = None,
        recipients: Optional[Sequence[str]] = None,
        blocks: Optional[BlockRange] = None,
    ) -> LogQuery:
        filters = {**_address_filter("from", senders), **_address_filter("to", recipients)}
        return self.binding.query_logs("Transfer", filters, blocks)

    def approvals(
        self,
        owners: Optional[Sequence[str]] = None,
        spenders: Optional[Sequence[str]] = None,
        blocks: Optional[BlockRange] = None,
    ) -> LogQuery:
        filters = {**_address_filter("owner", owners), **_address_filter("spender", spenders)}
        return self.binding.query_logs("Approval", filters, blocks)

    def ownership_transfers(
        self,
        previous_owners: Optional[Sequence[str]] = None,
        new_owners: Optional[Sequence[str]] = None,
        blocks: Optional[BlockRange] = None,
    ) -> LogQuery:
        filters = {
            **_address_filter("previousOwner", previous_owners),
            **_address_filter("newOwner", new_owners),
        }
        return self.binding.query_logs("OwnershipTransferred", filters, blocks)

    def watch_transfers(
        self,
        senders: Optional[Sequence[str]] = None,
        recipients: Optional[Sequence[str]] = None,
        **kwargs: Any,
    ) -> LogSubscription:
        filters = {**_address_filter("from", senders), **_address_filter("to", recipients)}
        return self.binding.subscribe_logs("Transfer", filters, **kwargs)

    def watch_approvals(
        self,
        owners: Optional[Sequence[str]] = None,
        spenders: Optional[Sequence[str]] = None,
        **kwargs: Any,
    ) -> LogSubscription:
        filters = {**_address_filter("owner", owners), **_address_filter("spender", spenders)}
        return self.binding.subscribe_logs("Approval", filters, **kwargs)
