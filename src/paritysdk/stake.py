"""
Stake Orchestrator - StakeWallet operations keyed by device ID.

Staking pulls tokens through the ERC-20 allowance mechanism, so stake()
runs two causally ordered transactions: approve the stake contract, wait
until that approval is mined successfully, then submit the stake.  The
wait is a hard barrier; if approval fails in any way the stake transaction
is never sent.

Flow of stake():
    UNAUTHENTICATED -> AUTHENTICATED -> APPROVAL_SUBMITTED
        -> APPROVAL_CONFIRMED -> STAKE_SUBMITTED
Any non-terminal state may move to FAILED.  There is no way back.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable, Optional, Sequence

from .chain.abi import ContractSchema, stake_schema
from .chain.binding import ContractBinding
from .chain.events import LogQuery, LogSubscription
from .chain.tx import Connection, TransactContext
from .errors import ParityError
from .token import TokenFacade, require_amount
from .types import BlockRange, PendingTransaction, StakeRecord, to_address

logger = logging.getLogger(__name__)

APPROVE_PHASE = "approve"
STAKE_PHASE = "stake"


class StakeState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    APPROVAL_SUBMITTED = "approval_submitted"
    APPROVAL_CONFIRMED = "approval_confirmed"
    STAKE_SUBMITTED = "stake_submitted"
    FAILED = "failed"


_FORWARD = [
    StakeState.UNAUTHENTICATED,
    StakeState.AUTHENTICATED,
    StakeState.APPROVAL_SUBMITTED,
    StakeState.APPROVAL_CONFIRMED,
    StakeState.STAKE_SUBMITTED,
]


class StakeFlow:
    """Forward-only state tracker for one stake() invocation."""

    def __init__(
        self,
        device_id: str,
        amount: int,
        on_state: Optional[Callable[[StakeState], None]] = None,
    ) -> None:
        self.device_id = device_id
        self.amount = amount
        self.state = StakeState.UNAUTHENTICATED
        self.history: list[StakeState] = [self.state]
        self.error: Optional[BaseException] = None
        self._on_state = on_state

    @property
    def terminal(self) -> bool:
        return self.state in (StakeState.STAKE_SUBMITTED, StakeState.FAILED)

    def advance(self, state: StakeState) -> None:
        if self.terminal:
            raise RuntimeError(f"stake flow already ended in {self.state.value}")
        if state is not StakeState.FAILED:
            expected = _FORWARD[_FORWARD.index(self.state) + 1]
            if state is not expected:
                raise RuntimeError(f"illegal stake transition {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)
        logger.info("stake %s for %s: %s", self.amount, self.device_id, state.value)
        if self._on_state is not None:
            self._on_state(state)

    def fail(self, error: BaseException) -> None:
        self.error = error
        if not self.terminal:
            self.advance(StakeState.FAILED)


def _device_filter(name: str, values: Optional[Sequence[str]]) -> dict[str, list[str]]:
    return {name: list(values)} if values else {}


class StakeOrchestrator:
    """Typed access to the StakeWallet contract plus the stake workflow."""

    def __init__(
        self,
        connection: Connection,
        address: str,
        token: TokenFacade,
        schema: Optional[ContractSchema] = None,
    ) -> None:
        self.connection = connection
        self.token = token
        self.binding = ContractBinding(connection, address, schema or stake_schema())

    @property
    def address(self) -> str:
        return self.binding.address

    def __repr__(self) -> str:
        return f"StakeOrchestrator({self.address}, token={self.token.address})"

    # ---- workflow -----------------------------------------------------

    def stake(
        self,
        amount: int,
        device_id: str,
        *,
        timeout: Optional[float] = None,
        on_state: Optional[Callable[[StakeState], None]] = None,
    ) -> PendingTransaction:
        """
        Approve the stake contract for ``amount`` and stake it for ``device_id``.

        Both transactions are signed by the credential in place when the call
        starts, and the stake names that credential's address as the wallet.

        Args:
            amount: Token amount in base units
            device_id: Device the stake is recorded under
            timeout: Seconds to wait for the approval to be mined
            on_state: Called with every StakeState the flow enters

        Returns:
            PendingTransaction of the stake call; confirming it is up to the caller

        Raises:
            UnauthenticatedError: If no credential is set
            ConfirmationTimeoutError: If the approval is not mined in time
            TransactionRevertedError: If the approval was mined but reverted
            TransactError: If either submission is rejected
        Every error carries ``phase`` ("approve" or "stake").
        """
        flow = StakeFlow(device_id, amount, on_state)
        phase = APPROVE_PHASE
        try:
            context = self.connection.transact_options()
            flow.advance(StakeState.AUTHENTICATED)

            approval = self.token.approve(context, self.address, amount)
            flow.advance(StakeState.APPROVAL_SUBMITTED)

            self.connection.wait_successful(approval, timeout=timeout)
            flow.advance(StakeState.APPROVAL_CONFIRMED)

            phase = STAKE_PHASE
            pending = self.binding.transact(context, "stake", amount, device_id, context.address)
            flow.advance(StakeState.STAKE_SUBMITTED)
        except Exception as exc:
            if isinstance(exc, ParityError):
                exc.phase = phase
            logger.warning("stake %s for %s failed during %s: %s", amount, device_id, phase, exc)
            flow.fail(exc)
            raise
        return pending

    # ---- reads --------------------------------------------------------

    def get_stake_info(self, device_id: str) -> StakeRecord:
        """Stake record for ``device_id``; ``exists`` is False when there is none."""
        amount, stored_id, wallet, exists = self.binding.call("getStakeInfo", device_id)
        if not exists:
            return StakeRecord.missing(device_id)
        return StakeRecord(
            amount=require_amount(amount, "stake amount"),
            device_id=stored_id,
            wallet_address=to_address(wallet),
            exists=True,
        )

    def get_balance(self, device_id: str) -> int:
        return require_amount(self.binding.call("getBalanceByDeviceID", device_id), "stake balance")

    def token_address(self) -> str:
        return self.binding.call("token")

    # ---- single-call writes -------------------------------------------

    def withdraw_stake(self, context: TransactContext, device_id: str, amount: int) -> PendingTransaction:
        return self.binding.transact(context, "withdrawFunds", device_id, amount)

    def transfer_payment(
        self,
        context: TransactContext,
        creator_device_id: str,
        solver_device_id: str,
        amount: int,
    ) -> PendingTransaction:
        return self.binding.transact(
            context, "transferPayment", creator_device_id, solver_device_id, amount
        )

    def update_wallet_address(
        self, context: TransactContext, device_id: str, new_address: str
    ) -> PendingTransaction:
        return self.binding.transact(context, "updateWalletAddress", device_id, to_address(new_address))

    # ---- events -------------------------------------------------------

    def deposits(
        self,
        device_ids: Optional[Sequence[str]] = None,
        wallets: Optional[Sequence[str]] = None,
        blocks: Optional[BlockRange] = None,
    ) -> LogQuery:
        """StakeDeposited events.  ``deviceID`` in results is the Keccak hash of the ID."""
        filters = {
            **_device_filter("deviceID", device_ids),
            **_device_filter("walletAddress", [to_address(w) for w in wallets or ()]),
        }
        return self.binding.query_logs("StakeDeposited", filters, blocks)

    def withdrawals(
        self,
        device_ids: Optional[Sequence[str]] = None,
        wallets: Optional[Sequence[str]] = None,
        blocks: Optional[BlockRange] = None,
    ) -> LogQuery:
        filters = {
            **_device_filter("deviceID", device_ids),
            **_device_filter("walletAddress", [to_address(w) for w in wallets or ()]),
        }
        return self.binding.query_logs("StakeWithdrawn", filters, blocks)

    def payments(
        self,
        creator_device_ids: Optional[Sequence[str]] = None,
        solver_device_ids: Optional[Sequence[str]] = None,
        blocks: Optional[BlockRange] = None,
    ) -> LogQuery:
        filters = {
            **_device_filter("creatorDeviceID", creator_device_ids),
            **_device_filter("solverDeviceID", solver_device_ids),
        }
        return self.binding.query_logs("PaymentTransferred", filters, blocks)

    def watch_deposits(
        self,
        device_ids: Optional[Sequence[str]] = None,
        **kwargs: Any,
    ) -> LogSubscription:
        return self.binding.subscribe_logs(
            "StakeDeposited", _device_filter("deviceID", device_ids), **kwargs
        )
