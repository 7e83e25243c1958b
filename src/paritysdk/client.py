"""
ParityClient - one entry point for token and staking operations.

Example:
    >>> from paritysdk import ClientConfig, ParityClient
    >>> config = ClientConfig(
    ...     rpc_url="https://node.example",
    ...     chain_id=1337,
    ...     token_address="0x...",
    ...     stake_address="0x...",
    ...     private_key="0x...",
    ... )
    >>> with ParityClient(config) as client:
    ...     tx = client.add_funds(1000, "dev-42")
    ...     client.wait_mined(tx)
    ...     client.get_stake_info("dev-42")
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Optional, Union

from .chain.rpc import Transport
from .chain.tx import Connection, TransactContext, connect
from .config import ClientConfig
from .errors import StakeWalletUnavailableError
from .keys import Credential
from .stake import StakeOrchestrator, StakeState
from .token import TokenFacade
from .types import PendingTransaction, Receipt, StakeRecord, TokenInfo


class ParityClient:
    """
    Connection, token facade, and stake orchestrator behind one object.

    The client owns its connection and closes it exactly once.  Reads work
    without a key; writes need one, given in the config or through
    set_private_key().
    """

    def __init__(self, config: ClientConfig, transport: Optional[Transport] = None) -> None:
        self.config = config
        self.connection: Connection = connect(
            config.rpc_url,
            config.chain_id,
            transport=transport,
            timeout=config.request_timeout,
            gas_limit=config.gas_limit,
            receipt_timeout=config.receipt_timeout,
            poll_interval=config.poll_interval,
        )
        try:
            self.token = TokenFacade(self.connection, config.token_address)
            if config.private_key:
                self.set_private_key(config.private_key)
            self._stake: Optional[StakeOrchestrator] = None
            if config.stake_address:
                self._stake = StakeOrchestrator(self.connection, config.stake_address, self.token)
        except Exception:
            self.connection.close()
            raise

    @classmethod
    def from_env(
        cls,
        env_path: Optional[Path] = None,
        transport: Optional[Transport] = None,
        **overrides: Any,
    ) -> "ParityClient":
        return cls(ClientConfig.from_env(env_path, **overrides), transport=transport)

    def __repr__(self) -> str:
        return f"ParityClient({self.connection!r}, address={self.address})"

    # ---- lifecycle ----------------------------------------------------

    def close(self) -> None:
        self.connection.close()

    def __enter__(self) -> "ParityClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # ---- credential ---------------------------------------------------

    def set_private_key(self, private_key: str) -> Credential:
        """Replace the signing key.  Already-submitted transactions are unaffected."""
        return self.connection.set_credential(private_key)

    @property
    def address(self) -> str:
        """Wallet address, or the zero address before a key is set."""
        return self.connection.address

    def transact_options(self) -> TransactContext:
        return self.connection.transact_options()

    @property
    def stake_wallet(self) -> StakeOrchestrator:
        if self._stake is None:
            raise StakeWalletUnavailableError("Stake wallet not initialized; no stake address configured.")
        return self._stake

    def wait_mined(self, tx: Union[PendingTransaction, str], timeout: Optional[float] = None) -> Receipt:
        return self.connection.wait_mined(tx, timeout=timeout)

    # ---- token --------------------------------------------------------

    def get_balance(self, address: Optional[str] = None) -> int:
        """Token balance of ``address`` (default: own wallet)."""
        return self.token.balance_of(address or self.address)

    def get_token_info(self) -> TokenInfo:
        return self.token.token_info()

    def get_allowance(self, owner: str, spender: str) -> int:
        return self.token.allowance(owner, spender)

    def get_total_supply(self) -> int:
        return self.token.total_supply()

    def transfer(self, to: str, amount: int) -> PendingTransaction:
        return self.token.transfer(self.transact_options(), to, amount)

    def approve(self, spender: str, amount: int) -> PendingTransaction:
        return self.token.approve(self.transact_options(), spender, amount)

    def transfer_from(self, sender: str, to: str, amount: int) -> PendingTransaction:
        return self.token.transfer_from(self.transact_options(), sender, to, amount)

    def mint(self, to: str, amount: int) -> PendingTransaction:
        return self.token.mint(self.transact_options(), to, amount)

    def burn(self, amount: int) -> PendingTransaction:
        return self.token.burn(self.transact_options(), amount)

    def transfer_with_data(self, to: str, amount: int, data: bytes) -> PendingTransaction:
        return self.token.transfer_with_data(self.transact_options(), to, amount, data)

    def transfer_with_data_and_callback(self, to: str, amount: int, data: bytes) -> PendingTransaction:
        return self.token.transfer_with_data_and_callback(self.transact_options(), to, amount, data)

    # ---- staking ------------------------------------------------------

    def get_stake_info(self, device_id: str) -> StakeRecord:
        return self.stake_wallet.get_stake_info(device_id)

    def get_stake_balance(self, device_id: str) -> int:
        return self.stake_wallet.get_balance(device_id)

    def add_funds(
        self,
        amount: int,
        device_id: str,
        timeout: Optional[float] = None,
        on_state: Optional[Callable[[StakeState], None]] = None,
    ) -> PendingTransaction:
        """Approve and stake ``amount`` for ``device_id``.  See StakeOrchestrator.stake."""
        return self.stake_wallet.stake(amount, device_id, timeout=timeout, on_state=on_state)

    def transfer_payment(self, creator_device_id: str, solver_device_id: str, amount: int) -> PendingTransaction:
        return self.stake_wallet.transfer_payment(
            self.transact_options(), creator_device_id, solver_device_id, amount
        )

    def withdraw_funds(self, device_id: str, amount: int) -> PendingTransaction:
        return self.stake_wallet.withdraw_stake(self.transact_options(), device_id, amount)

    def update_wallet_address(self, device_id: str, new_address: str) -> PendingTransaction:
        return self.stake_wallet.update_wallet_address(self.transact_options(), device_id, new_address)

