__all__ = [
    # Client
    "ClientConfig",
    "ParityClient",
    # Contracts
    "ContractBinding",
    "ContractSchema",
    "StakeOrchestrator",
    "StakeState",
    "TokenFacade",
    # Connection
    "Connection",
    "TransactContext",
    "connect",
    # Events
    "LogQuery",
    "LogSubscription",
    # Keys
    "Credential",
    "credential_from_key",
    "generate_key",
    # Types
    "BlockRange",
    "EventRecord",
    "LogMeta",
    "PendingTransaction",
    "Receipt",
    "StakeRecord",
    "TokenInfo",
    "ZERO_ADDRESS",
    "to_address",
    # Errors
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

from .chain.abi import ContractSchema
from .chain.binding import ContractBinding
from .chain.events import LogQuery, LogSubscription
from .chain.tx import Connection, TransactContext, connect
from .client import ParityClient
from .config import ClientConfig
from .errors import (
    CallError,
    ChainConnectionError,
    ConfirmationTimeoutError,
    DecodeError,
    EncodeError,
    InvalidKeyError,
    ParityError,
    RpcError,
    StakeWalletUnavailableError,
    SubscriptionError,
    TransactError,
    TransactionRevertedError,
    UnauthenticatedError,
)
from .keys import Credential, credential_from_key, generate_key
from .stake import StakeOrchestrator, StakeState
from .token import TokenFacade
from .types import (
    ZERO_ADDRESS,
    BlockRange,
    EventRecord,
    LogMeta,
    PendingTransaction,
    Receipt,
    StakeRecord,
    TokenInfo,
    to_address,
)

__version__ = "0.3.0"
