"""
Shared fixtures: an in-memory EVM node that speaks just enough JSON-RPC.

FakeNode executes ParityToken and StakeWallet calls against plain dicts,
mines every transaction into its own block, and records logs so that
eth_getLogs and filter polling behave like a real node.  It plugs into the
SDK as a Transport, so nothing in the tests touches the network.
"""

from __future__ import annotations

import itertools
import json
import threading
from dataclasses import dataclass, field
from typing import Any, Iterator, Optional

import httpx
import pytest
import rlp
from eth_abi import encode
from eth_account import Account
from eth_hash.auto import keccak

from paritysdk.chain.abi import ContractSchema, abi_type, stake_schema, token_schema
from paritysdk.chain.rpc import HttpTransport
from paritysdk.client import ParityClient
from paritysdk.config import ClientConfig
from paritysdk.errors import ChainConnectionError, RpcError
from paritysdk.types import ZERO_ADDRESS, hex_to_bytes, hex_to_int, to_address

CHAIN_ID = 1337

OWNER_KEY = "0x" + "11" * 32
ALICE_KEY = "0x" + "22" * 32
BOB_KEY = "0x" + "33" * 32

OWNER = Account.from_key(OWNER_KEY).address
ALICE = Account.from_key(ALICE_KEY).address
BOB = Account.from_key(BOB_KEY).address

TOKEN_ADDRESS = to_address("0x" + "a1" * 20)
STAKE_ADDRESS = to_address("0x" + "b2" * 20)

INITIAL_SUPPLY = 1_000_000 * 10**18


class Revert(Exception):
    """Contract-level revert inside FakeNode."""


@dataclass
class _Filter:
    address: str
    topics: list
    cursor: int


@dataclass
class FakeNode:
    """
    In-memory node implementing the Transport protocol.

    Knobs for tests:
      hold_receipts   - accept transactions but never mine them
      revert_methods  - methods that are mined with status 0
      reject_methods  - methods whose submission is refused with an RPC error
      call_overrides  - method -> raw hex return data for eth_call
      call_errors     - method -> (code, message, data) raised by eth_call
      drop()          - every later request fails as if the socket closed
    """

    chain_id: int = CHAIN_ID
    hold_receipts: bool = False
    revert_methods: set = field(default_factory=set)
    reject_methods: set = field(default_factory=set)
    call_overrides: dict = field(default_factory=dict)
    call_errors: dict = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.token = token_schema()
        self.stake = stake_schema()
        self.block = 1
        self.balances: dict[str, int] = {OWNER: INITIAL_SUPPLY}
        self.allowances: dict[tuple[str, str], int] = {}
        self.total_supply = INITIAL_SUPPLY
        self.owner = OWNER
        self.stakes: dict[str, list] = {}
        self.transactions: dict[str, dict] = {}
        self.receipts: dict[str, dict] = {}
        self.pending: list[str] = []
        self.logs: list[dict] = []
        self.filters: dict[str, _Filter] = {}
        self.requests: list[tuple[str, list]] = []
        self.sent: list[tuple[str, tuple, str]] = []
        self.close_count = 0
        self._dropped = False
        self._filter_ids = itertools.count(1)
        self._lock = threading.RLock()

    # ---- transport ----------------------------------------------------

    def request(self, method: str, params: list) -> Any:
        with self._lock:
            if self._dropped:
                raise ChainConnectionError("Cannot reach fake node: connection reset")
            self.requests.append((method, params))
            handler = getattr(self, "_" + method, None)
            if handler is None:
                raise RpcError(-32601, f"method {method} not found")
            return handler(*params)

    def close(self) -> None:
        self.close_count += 1

    def drop(self) -> None:
        with self._lock:
            self._dropped = True

    def methods(self) -> list[str]:
        return [m for m, _ in self.requests]

    # ---- chain state --------------------------------------------------

    def _eth_chainId(self) -> str:
        return hex(self.chain_id)

    def _eth_blockNumber(self) -> str:
        return hex(self.block)

    def _eth_gasPrice(self) -> str:
        return hex(1_000_000_000)

    def _eth_getBalance(self, address: str, block: str) -> str:
        return hex(10**18)

    def _eth_getTransactionCount(self, address: str, block: str) -> str:
        sender = to_address(address)
        return hex(sum(1 for tx in self.transactions.values() if tx["from"] == sender))

    # ---- calls --------------------------------------------------------

    def _schema_for(self, address: str):
        address = to_address(address)
        if address == TOKEN_ADDRESS:
            return self.token
        if address == STAKE_ADDRESS:
            return self.stake
        return None

    def _eth_call(self, tx: dict, block: str) -> str:
        schema = self._schema_for(tx["to"])
        if schema is None:
            return "0x"
        name, args = schema.decode_input(hex_to_bytes(tx["data"]))
        if name in self.call_errors:
            raise RpcError(*self.call_errors[name])
        if name in self.call_overrides:
            return self.call_overrides[name]
        values = self._view(name, args)
        outputs = schema.function(name)["outputs"]
        return "0x" + encode([abi_type(p) for p in outputs], values).hex()

    def _view(self, name: str, args: tuple) -> list:
        if name == "name":
            return ["Parity Token"]
        if name == "symbol":
            return ["PRTY"]
        if name == "decimals":
            return [18]
        if name == "totalSupply":
            return [self.total_supply]
        if name == "balanceOf":
            return [self.balances.get(args[0], 0)]
        if name == "allowance":
            return [self.allowances.get((args[0], args[1]), 0)]
        if name == "owner":
            return [self.owner]
        if name == "getStakeInfo":
            record = self.stakes.get(args[0])
            if record is None:
                return [(0, "", ZERO_ADDRESS, False)]
            return [(record[0], args[0], record[1], True)]
        if name == "getBalanceByDeviceID":
            record = self.stakes.get(args[0])
            return [record[0] if record else 0]
        if name == "token":
            return [TOKEN_ADDRESS]
        raise RpcError(3, "execution reverted", None)

    # ---- transactions -------------------------------------------------

    def _eth_sendRawTransaction(self, raw_tx: str) -> str:
        raw = hex_to_bytes(raw_tx)
        nonce, _gas_price, _gas, to, _value, data, _v, _r, _s = rlp.decode(raw)
        sender = Account.recover_transaction(raw_tx)
        to = to_address(to)
        schema = self._schema_for(to)
        name, args = schema.decode_input(data)
        if name in self.reject_methods:
            raise RpcError(-32000, "insufficient funds for gas * price + value")

        tx_hash = "0x" + keccak(raw).hex()
        self.transactions[tx_hash] = {
            "hash": tx_hash,
            "from": sender,
            "to": to,
            "nonce": hex(int.from_bytes(nonce, "big")),
            "input": "0x" + data.hex(),
            "method": name,
            "args": args,
        }
        self.sent.append((name, args, sender))
        if self.hold_receipts:
            self.pending.append(tx_hash)
        else:
            self._mine(tx_hash)
        return tx_hash

    def mine_pending(self) -> None:
        with self._lock:
            pending, self.pending = self.pending, []
            for tx_hash in pending:
                self._mine(tx_hash)

    def _mine(self, tx_hash: str) -> None:
        tx = self.transactions[tx_hash]
        self.block += 1
        emitted: list[dict] = []
        status = 1
        if tx["method"] in self.revert_methods:
            status = 0
        else:
            snapshot = self._snapshot()
            try:
                self._execute(tx["to"], tx["method"], tx["args"], tx["from"], emitted)
            except Revert:
                self._restore(snapshot)
                emitted = []
                status = 0

        for index, log in enumerate(emitted):
            log.update(
                blockNumber=hex(self.block),
                transactionHash=tx_hash,
                logIndex=hex(index),
            )
        self.logs.extend(emitted)
        self.receipts[tx_hash] = {
            "transactionHash": tx_hash,
            "status": hex(status),
            "blockNumber": hex(self.block),
            "gasUsed": hex(21_000),
            "logs": emitted,
        }

    def _eth_getTransactionByHash(self, tx_hash: str) -> Optional[dict]:
        tx = self.transactions.get(tx_hash)
        if tx is None:
            return None
        return {k: tx[k] for k in ("hash", "from", "to", "nonce", "input")}

    def _eth_getTransactionReceipt(self, tx_hash: str) -> Optional[dict]:
        return self.receipts.get(tx_hash)

    # ---- contract semantics -------------------------------------------

    def _snapshot(self) -> tuple:
        return (
            dict(self.balances),
            dict(self.allowances),
            self.total_supply,
            self.owner,
            {k: list(v) for k, v in self.stakes.items()},
        )

    def _restore(self, snapshot: tuple) -> None:
        self.balances, self.allowances, self.total_supply, self.owner, self.stakes = snapshot

    def _move(self, sender: str, to: str, amount: int, out: list) -> None:
        if self.balances.get(sender, 0) < amount:
            raise Revert("insufficient balance")
        self.balances[sender] = self.balances.get(sender, 0) - amount
        self.balances[to] = self.balances.get(to, 0) + amount
        out.append(self.emit(self.token, TOKEN_ADDRESS, "Transfer", sender, to, amount))

    def _spend_allowance(self, owner: str, spender: str, amount: int) -> None:
        allowed = self.allowances.get((owner, spender), 0)
        if allowed < amount:
            raise Revert("insufficient allowance")
        self.allowances[(owner, spender)] = allowed - amount

    def _execute(self, to: str, name: str, args: tuple, sender: str, out: list) -> None:
        if to == TOKEN_ADDRESS:
            self._execute_token(name, args, sender, out)
        else:
            self._execute_stake(name, args, sender, out)

    def _execute_token(self, name: str, args: tuple, sender: str, out: list) -> None:
        if name in ("transfer", "transferWithData", "transferWithDataAndCallback"):
            self._move(sender, args[0], args[1], out)
        elif name == "approve":
            self.allowances[(sender, args[0])] = args[1]
            out.append(self.emit(self.token, TOKEN_ADDRESS, "Approval", sender, args[0], args[1]))
        elif name == "transferFrom":
            self._spend_allowance(args[0], sender, args[2])
            self._move(args[0], args[1], args[2], out)
        elif name == "mint":
            if sender != self.owner:
                raise Revert("OwnableUnauthorizedAccount")
            self.total_supply += args[1]
            self.balances[args[0]] = self.balances.get(args[0], 0) + args[1]
            out.append(self.emit(self.token, TOKEN_ADDRESS, "Transfer", ZERO_ADDRESS, args[0], args[1]))
        elif name == "burn":
            self._move(sender, ZERO_ADDRESS, args[0], out)
            self.balances.pop(ZERO_ADDRESS, None)
            self.total_supply -= args[0]
        elif name in ("transferOwnership", "renounceOwnership"):
            if sender != self.owner:
                raise Revert("OwnableUnauthorizedAccount")
            new_owner = args[0] if args else ZERO_ADDRESS
            out.append(
                self.emit(self.token, TOKEN_ADDRESS, "OwnershipTransferred", self.owner, new_owner)
            )
            self.owner = new_owner
        else:
            raise Revert(f"unknown token method {name}")

    def _execute_stake(self, name: str, args: tuple, sender: str, out: list) -> None:
        if name == "stake":
            amount, device_id, wallet = args
            self._spend_allowance(sender, STAKE_ADDRESS, amount)
            self._move(sender, STAKE_ADDRESS, amount, out)
            record = self.stakes.setdefault(device_id, [0, wallet])
            record[0] += amount
            record[1] = wallet
            out.append(self.emit(self.stake, STAKE_ADDRESS, "StakeDeposited", device_id, wallet, amount))
        elif name == "withdrawFunds":
            device_id, amount = args
            record = self.stakes.get(device_id)
            if record is None or record[1] != sender or record[0] < amount:
                raise Revert("cannot withdraw")
            record[0] -= amount
            self._move(STAKE_ADDRESS, sender, amount, out)
            out.append(self.emit(self.stake, STAKE_ADDRESS, "StakeWithdrawn", device_id, sender, amount))
        elif name == "transferPayment":
            creator, solver, amount = args
            source, target = self.stakes.get(creator), self.stakes.get(solver)
            if source is None or target is None or source[0] < amount:
                raise Revert("cannot pay")
            source[0] -= amount
            target[0] += amount
            out.append(self.emit(self.stake, STAKE_ADDRESS, "PaymentTransferred", creator, solver, amount))
        elif name == "updateWalletAddress":
            device_id, new_wallet = args
            record = self.stakes.get(device_id)
            if record is None or record[1] != sender:
                raise Revert("not the wallet owner")
            old_wallet, record[1] = record[1], new_wallet
            out.append(
                self.emit(self.stake, STAKE_ADDRESS, "WalletAddressUpdated", device_id, old_wallet, new_wallet)
            )
        else:
            raise Revert(f"unknown stake method {name}")

    # ---- logs ---------------------------------------------------------

    @staticmethod
    def emit(schema, address: str, event: str, *values: Any) -> dict:
        """Build a raw log for ``event`` the way a node would report it."""
        entry = schema.event(event)
        topics = ["0x" + schema.event_topic(event).hex()]
        plain_types, plain_values = [], []
        for param, value in zip(entry["inputs"], values):
            if param.get("indexed"):
                topics.append(schema.encode_topic(param, value))
            else:
                plain_types.append(abi_type(param))
                plain_values.append(value)
        return {
            "address": address.lower(),
            "topics": topics,
            "data": "0x" + encode(plain_types, plain_values).hex(),
            "blockNumber": None,
            "transactionHash": None,
            "logIndex": None,
        }

    def add_log(self, log: dict, block: Optional[int] = None, **fields: Any) -> dict:
        """
        Append a raw log directly, as if some transaction emitted it.

        ``fields`` replace the metadata the node would assign.
        """
        with self._lock:
            if block is None:
                self.block += 1
                block = self.block
            log = {
                **log,
                "blockNumber": hex(block),
                "transactionHash": "0x" + keccak(str(len(self.logs)).encode()).hex(),
                "logIndex": hex(0),
                **fields,
            }
            self.logs.append(log)
            return log

    @staticmethod
    def _topics_match(criteria: list, topics: list) -> bool:
        for position, wanted in enumerate(criteria):
            if wanted is None:
                continue
            if position >= len(topics):
                return False
            accepted = wanted if isinstance(wanted, list) else [wanted]
            if topics[position].lower() not in [t.lower() for t in accepted]:
                return False
        return True

    def _matches(self, log: dict, address: str, topics: list) -> bool:
        return log["address"].lower() == address.lower() and self._topics_match(topics, log["topics"])

    def _block_arg(self, value: str) -> int:
        if value in ("latest", "pending", "safe", "finalized"):
            return self.block
        if value == "earliest":
            return 0
        return hex_to_int(value)

    def _eth_getLogs(self, params: dict) -> list[dict]:
        lo = self._block_arg(params.get("fromBlock", "latest"))
        hi = self._block_arg(params.get("toBlock", "latest"))
        return [
            dict(log)
            for log in self.logs
            if lo <= hex_to_int(log["blockNumber"]) <= hi
            and self._matches(log, params["address"], params.get("topics") or [])
        ]

    def _eth_newFilter(self, params: dict) -> str:
        filter_id = hex(next(self._filter_ids))
        self.filters[filter_id] = _Filter(params["address"], params.get("topics") or [], len(self.logs))
        return filter_id

    def _eth_getFilterChanges(self, filter_id: str) -> list[dict]:
        flt = self.filters.get(filter_id)
        if flt is None:
            raise RpcError(-32000, "filter not found")
        fresh = self.logs[flt.cursor:]
        flt.cursor = len(self.logs)
        return [dict(log) for log in fresh if self._matches(log, flt.address, flt.topics)]

    def _eth_uninstallFilter(self, filter_id: str) -> bool:
        return self.filters.pop(filter_id, None) is not None


# ============ Fixtures ============


@pytest.fixture()
def node() -> FakeNode:
    return FakeNode()


@pytest.fixture()
def config() -> ClientConfig:
    return ClientConfig(
        token_address=TOKEN_ADDRESS,
        stake_address=STAKE_ADDRESS,
        chain_id=CHAIN_ID,
        receipt_timeout=2.0,
        poll_interval=0.01,
    )


@pytest.fixture()
def client(node: FakeNode, config: ClientConfig) -> Iterator[ParityClient]:
    """Client without a key; tests install the one they need."""
    with ParityClient(config, transport=node) as c:
        yield c


@pytest.fixture()
def funded_client(node: FakeNode, client: ParityClient) -> ParityClient:
    """Client signing as ALICE, who holds 10_000 base units."""
    node.balances[ALICE] = 10_000
    client.set_private_key(ALICE_KEY)
    return client


def http_transport(node: FakeNode) -> HttpTransport:
    """A real HttpTransport whose requests are answered by ``node``."""

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        envelope: dict[str, Any] = {"jsonrpc": "2.0", "id": body["id"]}
        try:
            envelope["result"] = node.request(body["method"], body["params"])
        except RpcError as exc:
            envelope["error"] = {"code": exc.code, "message": exc.rpc_message, "data": exc.data}
        return httpx.Response(200, json=envelope)

    return HttpTransport(
        "http://fake-node.test", client=httpx.Client(transport=httpx.MockTransport(handler))
    )


def _signed(param: dict) -> dict:
    param = {**param, "type": "int256" if param["type"] == "uint256" else param["type"]}
    if "components" in param:
        param["components"] = [_signed(c) for c in param["components"]]
    return param


def signed_outputs(schema: ContractSchema) -> ContractSchema:
    """Copy of ``schema`` whose uint256 return values are declared int256."""
    abi = []
    for entry in schema.abi:
        if entry.get("type") == "function":
            entry = {**entry, "outputs": [_signed(o) for o in entry.get("outputs", [])]}
        abi.append(entry)
    return ContractSchema(abi, name=f"{schema.name}-signed")
