"""
ABI Schema - Contract interface descriptions and ABI encoding.

Interface schemas ship as JSON under paritysdk/abis/ and are loaded once
per process.  ContractSchema turns a schema into selectors, topics, and
eth-abi encode/decode calls for one contract.
"""

from __future__ import annotations

import json
import re
from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Any, Optional, Sequence

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError, EncodingError
from eth_hash.auto import keccak

from ..errors import DecodeError, EncodeError
from ..types import (
    ZERO_ADDRESS,
    CallFilter,
    EventRecord,
    LogMeta,
    hex_to_bytes,
    hex_to_int,
    to_address,
    to_checksum_address,
)

ABI_DIR = Path(__file__).resolve().parent.parent / "abis"

TOKEN_CONTRACT = "ParityToken"
STAKE_CONTRACT = "StakeWallet"

# Error(string) and Panic(uint256) revert payloads
ERROR_SELECTOR = bytes.fromhex("08c379a0")
PANIC_SELECTOR = bytes.fromhex("4e487b71")

_ARRAY_SUFFIX = re.compile(r"\[(\d*)\]$")
_DYNAMIC_BASES = ("string", "bytes")


@lru_cache(maxsize=16)
def load_abi(contract_name: str) -> tuple[dict[str, Any], ...]:
    """
    Load the ABI for a contract shipped with the SDK.

    Args:
        contract_name: Contract name (e.g., "ParityToken", "StakeWallet")

    Returns:
        ABI entries as an immutable tuple of dicts

    Raises:
        FileNotFoundError: If no schema with that name is bundled
    """
    abi_path = ABI_DIR / f"{contract_name}.json"
    if not abi_path.exists():
        raise FileNotFoundError(f"ABI not found: {abi_path}")

    with abi_path.open("r", encoding="utf-8") as f:
        artifact = json.load(f)

    # Accept both a bare ABI list and a Foundry/Hardhat artifact.
    if isinstance(artifact, dict):
        artifact = artifact["abi"]
    return tuple(artifact)


def abi_type(param: dict[str, Any]) -> str:
    """Canonical type string for an ABI parameter, expanding tuples."""
    kind = param["type"]
    if not kind.startswith("tuple"):
        return kind
    inner = ",".join(abi_type(c) for c in param.get("components", []))
    return f"({inner}){kind[len('tuple'):]}"


def _element_param(param: dict[str, Any]) -> Optional[dict[str, Any]]:
    """For an array parameter, the parameter describing one element."""
    match = _ARRAY_SUFFIX.search(param["type"])
    if not match:
        return None
    return {**param, "type": param["type"][: match.start()]}


def _is_dynamic(param: dict[str, Any]) -> bool:
    kind = param["type"]
    return kind in _DYNAMIC_BASES or kind.startswith("tuple") or kind.endswith("]")


def _normalize(param: dict[str, Any], value: Any) -> Any:
    """Checksum every address inside a decoded value."""
    element = _element_param(param)
    if element is not None:
        return tuple(_normalize(element, v) for v in value)
    if param["type"] == "tuple":
        return tuple(_normalize(c, v) for c, v in zip(param.get("components", []), value))
    if param["type"] == "address" and isinstance(value, str):
        return to_checksum_address(value)
    return value


def _matches_type(param: dict[str, Any], value: Any) -> bool:
    kind = param["type"]
    if _element_param(param) is not None or kind == "tuple":
        return isinstance(value, (tuple, list))
    if kind.startswith(("uint", "int")):
        return isinstance(value, int) and not isinstance(value, bool)
    if kind == "bool":
        return isinstance(value, bool)
    if kind in ("address", "string"):
        return isinstance(value, str)
    if kind.startswith("bytes"):
        return isinstance(value, bytes)
    if kind.startswith(("fixed", "ufixed")):
        return isinstance(value, Decimal)
    return True


class ContractSchema:
    """
    Interface description of one contract.

    Function and event names are assumed unique; overloaded entries resolve
    to the first declaration.
    """

    def __init__(self, abi: Sequence[dict[str, Any]], name: str = "") -> None:
        self.name = name
        self.abi = tuple(abi)
        self._functions: dict[str, dict[str, Any]] = {}
        self._events: dict[str, dict[str, Any]] = {}
        self._errors: dict[bytes, dict[str, Any]] = {}
        for entry in self.abi:
            kind = entry.get("type")
            if kind == "function":
                self._functions.setdefault(entry["name"], entry)
            elif kind == "event":
                self._events.setdefault(entry["name"], entry)
            elif kind == "error":
                self._errors.setdefault(self._selector_for(entry), entry)
        self._by_selector = {self._selector_for(f): f for f in self._functions.values()}
        self._by_topic = {self._topic_for(e): e for e in self._events.values()}

    @classmethod
    def load(cls, contract_name: str) -> "ContractSchema":
        return _cached_schema(contract_name)

    def __repr__(self) -> str:
        return f"ContractSchema({self.name or '?'}, {len(self._functions)} functions, {len(self._events)} events)"

    # ---- lookup -------------------------------------------------------

    def function(self, name: str) -> dict[str, Any]:
        try:
            return self._functions[name]
        except KeyError:
            raise ValueError(f"Function {name} not found in ABI") from None

    def event(self, name: str) -> dict[str, Any]:
        try:
            return self._events[name]
        except KeyError:
            raise ValueError(f"Event {name} not found in ABI") from None

    @property
    def function_names(self) -> list[str]:
        return sorted(self._functions)

    @property
    def event_names(self) -> list[str]:
        return sorted(self._events)

    @staticmethod
    def _signature(entry: dict[str, Any]) -> str:
        types = ",".join(abi_type(p) for p in entry.get("inputs", []))
        return f"{entry['name']}({types})"

    def _selector_for(self, entry: dict[str, Any]) -> bytes:
        # NOTE: Keccak-256 != SHA3-256 (NIST). Never use hashlib.sha3_256 here.
        return keccak(self._signature(entry).encode("utf-8"))[:4]

    def _topic_for(self, entry: dict[str, Any]) -> bytes:
        return keccak(self._signature(entry).encode("utf-8"))

    def selector(self, function_name: str) -> bytes:
        return self._selector_for(self.function(function_name))

    def event_topic(self, event_name: str) -> bytes:
        return self._topic_for(self.event(event_name))

    def is_read_only(self, function_name: str) -> bool:
        return self.function(function_name).get("stateMutability") in ("view", "pure")

    # ---- calls --------------------------------------------------------

    def encode_call(self, function_name: str, args: Sequence[Any]) -> bytes:
        """
        ABI-encode a function call.

        Returns:
            4-byte selector followed by the encoded arguments

        Raises:
            EncodeError: If the arguments do not fit the declared input types
        """
        func = self.function(function_name)
        inputs = func.get("inputs", [])
        if len(args) != len(inputs):
            raise EncodeError(
                f"{function_name} expects {len(inputs)} arguments, got {len(args)}"
            )
        input_types = [abi_type(p) for p in inputs]
        try:
            encoded_args = encode(input_types, list(args)) if args else b""
        except (EncodingError, TypeError, ValueError, OverflowError) as exc:
            raise EncodeError(f"Cannot encode arguments for {function_name}: {exc}") from exc
        return self._selector_for(func) + encoded_args

    def decode_input(self, data: bytes) -> tuple[str, tuple[Any, ...]]:
        """Decode calldata back into (function_name, arguments)."""
        func = self._by_selector.get(bytes(data[:4]))
        if func is None:
            raise DecodeError(f"Unknown selector 0x{bytes(data[:4]).hex()}")
        inputs = func.get("inputs", [])
        try:
            values = decode([abi_type(p) for p in inputs], bytes(data[4:]))
        except (DecodingError, ValueError) as exc:
            raise DecodeError(f"Malformed calldata for {func['name']}: {exc}") from exc
        return func["name"], tuple(_normalize(p, v) for p, v in zip(inputs, values))

    def decode_output(self, function_name: str, data: bytes) -> tuple[Any, ...]:
        """
        ABI-decode the return data of a function.

        The first output must decode to the Python type of its declared ABI
        type; a mismatch is never coerced.

        Raises:
            DecodeError: On empty, truncated, or mistyped return data
        """
        outputs = self.function(function_name).get("outputs", [])
        if not outputs:
            return ()
        if not data:
            raise DecodeError(
                f"Empty return data for {function_name}; is the address a contract?"
            )
        try:
            values = decode([abi_type(p) for p in outputs], bytes(data))
        except (DecodingError, ValueError, OverflowError) as exc:
            raise DecodeError(f"Malformed return data for {function_name}: {exc}") from exc

        if not _matches_type(outputs[0], values[0]):
            raise DecodeError(
                f"{function_name} returned {type(values[0]).__name__}, "
                f"expected {abi_type(outputs[0])}"
            )
        return tuple(_normalize(p, v) for p, v in zip(outputs, values))

    def decode_revert(self, data: Optional[str]) -> Optional[str]:
        """Human-readable revert reason from revert data, if any."""
        if not data or not isinstance(data, str):
            return None
        try:
            raw = hex_to_bytes(data)
        except ValueError:
            return None
        if len(raw) < 4:
            return None
        selector, payload = raw[:4], raw[4:]
        try:
            if selector == ERROR_SELECTOR:
                return decode(["string"], payload)[0]
            if selector == PANIC_SELECTOR:
                return f"Panic(0x{decode(['uint256'], payload)[0]:02x})"
            custom = self._errors.get(selector)
            if custom is not None:
                inputs = custom.get("inputs", [])
                values = decode([abi_type(p) for p in inputs], payload)
                rendered = ", ".join(str(_normalize(p, v)) for p, v in zip(inputs, values))
                return f"{custom['name']}({rendered})"
        except (DecodingError, ValueError):
            return None
        return None

    # ---- events -------------------------------------------------------

    def encode_topic(self, param: dict[str, Any], value: Any) -> str:
        """Encode one indexed-field value the way the node stores it in a topic."""
        kind = param["type"]
        if kind == "string":
            raw = keccak(value.encode("utf-8") if isinstance(value, str) else bytes(value))
        elif kind == "bytes":
            raw = keccak(bytes(value))
        elif _is_dynamic(param):
            raise EncodeError(f"Filtering on indexed {kind} fields is not supported")
        else:
            try:
                raw = encode([kind], [value])
            except (EncodingError, TypeError, ValueError, OverflowError) as exc:
                raise EncodeError(f"Cannot encode topic value for {param['name']}: {exc}") from exc
        return "0x" + raw.hex()

    def topic_filter(self, event_name: str, filters: Optional[CallFilter] = None) -> list[Any]:
        """
        Build the eth_getLogs ``topics`` array for an event.

        Each indexed field maps to a list of accepted topic values (OR), or
        None for match-any.  Trailing match-any positions are dropped.

        Raises:
            ValueError: If the filter names a field that is not indexed
        """
        entry = self.event(event_name)
        filters = filters or {}
        indexed = [p for p in entry.get("inputs", []) if p.get("indexed")]
        indexed_names = {p["name"] for p in indexed}
        unknown = set(filters) - indexed_names
        if unknown:
            raise ValueError(
                f"{event_name} has no indexed field(s): {', '.join(sorted(unknown))}"
            )

        topics: list[Any] = ["0x" + self._topic_for(entry).hex()]
        for param in indexed:
            values = filters.get(param["name"]) or ()
            if values:
                topics.append([self.encode_topic(param, v) for v in values])
            else:
                topics.append(None)
        while topics and topics[-1] is None:
            topics.pop()
        return topics

    def decode_event(self, event_name: str, log: dict[str, Any]) -> EventRecord:
        """
        Decode a raw log as the given event.

        Every field of the log is parsed here, so a corrupt or foreign log
        surfaces as DecodeError and nothing else.

        Raises:
            DecodeError: If the log is not a well-formed instance of the event
        """
        entry = self.event(event_name)
        inputs = entry.get("inputs", [])
        indexed = [p for p in inputs if p.get("indexed")]
        plain = [p for p in inputs if not p.get("indexed")]

        try:
            topics = [hex_to_bytes(t) for t in log.get("topics") or []]
            if not topics or topics[0] != self._topic_for(entry):
                raise DecodeError(f"Log is not a {event_name} event")
            if len(topics) - 1 != len(indexed):
                raise DecodeError(
                    f"{event_name} log has {len(topics) - 1} indexed topics, expected {len(indexed)}"
                )

            args: dict[str, Any] = {}
            for param, topic in zip(indexed, topics[1:]):
                if _is_dynamic(param):
                    args[param["name"]] = topic
                else:
                    args[param["name"]] = _normalize(param, decode([param["type"]], topic)[0])
            data = hex_to_bytes(log.get("data") or "0x")
            values = decode([abi_type(p) for p in plain], data) if plain else ()
            for param, value in zip(plain, values):
                args[param["name"]] = _normalize(param, value)

            meta = LogMeta(
                address=to_address(log.get("address") or ZERO_ADDRESS),
                block_number=hex_to_int(log.get("blockNumber")),
                tx_hash=log.get("transactionHash") or "",
                log_index=hex_to_int(log.get("logIndex")),
            )
        except (DecodingError, ValueError, TypeError, AttributeError, OverflowError) as exc:
            raise DecodeError(f"Malformed {event_name} log: {exc}") from exc

        return EventRecord(
            event=event_name,
            args=MappingProxyType({p["name"]: args[p["name"]] for p in inputs}),
            indexed=tuple(p["name"] for p in indexed),
            meta=meta,
        )

    def event_name_for(self, log: dict[str, Any]) -> Optional[str]:
        topics = log.get("topics") or []
        if not topics:
            return None
        entry = self._by_topic.get(hex_to_bytes(topics[0]))
        return entry["name"] if entry else None


@lru_cache(maxsize=16)
def _cached_schema(contract_name: str) -> ContractSchema:
    return ContractSchema(load_abi(contract_name), name=contract_name)


def token_schema() -> ContractSchema:
    """Load ParityToken schema."""
    return ContractSchema.load(TOKEN_CONTRACT)


def stake_schema() -> ContractSchema:
    """Load StakeWallet schema."""
    return ContractSchema.load(STAKE_CONTRACT)
