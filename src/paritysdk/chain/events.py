"""
Event retrieval - historical log queries and live log subscriptions.

LogQuery is a lazy, finite, restartable iterable over eth_getLogs.
LogSubscription installs a node-side filter and a background thread that
polls eth_getFilterChanges, pushing decoded events into a queue until the
caller cancels or the transport drops.
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import Any, Iterator, Optional

from ..errors import ChainConnectionError, DecodeError, ParityError, RpcError, SubscriptionError
from ..types import BlockRange, BlockTag, CallFilter, EventRecord
from .abi import ContractSchema
from .rpc import RpcClient

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 5_000
DEFAULT_SUBSCRIPTION_POLL = 1.0

_CANCELLED = object()


class LogQuery:
    """
    Historical events of one kind, fetched lazily in ascending block order.

    Nothing is fetched until iteration starts; every new iteration runs the
    query again from the first block.  A log that fails to decode aborts the
    iteration with DecodeError.
    """

    def __init__(
        self,
        rpc: RpcClient,
        address: str,
        schema: ContractSchema,
        event: str,
        filters: Optional[CallFilter] = None,
        blocks: Optional[BlockRange] = None,
        chunk_size: Optional[int] = DEFAULT_CHUNK_SIZE,
    ) -> None:
        if chunk_size is not None and chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.rpc = rpc
        self.address = address
        self.schema = schema
        self.event = event
        self.blocks = blocks or BlockRange()
        self.chunk_size = chunk_size
        # Built eagerly so a bad filter fails at the call site.
        self.topics = schema.topic_filter(event, filters)

    def __repr__(self) -> str:
        return f"LogQuery({self.event}@{self.address}, {self.blocks.start}..{self.blocks.end})"

    def _resolve(self, block: BlockTag, latest: Optional[int]) -> Optional[int]:
        if isinstance(block, int):
            return block
        if block == "earliest":
            return 0
        if block == "latest":
            return latest
        return None

    def _windows(self) -> Iterator[tuple[BlockTag, BlockTag]]:
        start, end = self.blocks.start, self.blocks.end
        if self.chunk_size is None:
            yield start, end
            return

        latest = self.rpc.block_number() if "latest" in (start, end) else None
        lo, hi = self._resolve(start, latest), self._resolve(end, latest)
        if lo is None or hi is None:
            # "safe", "finalized", "pending": let the node resolve it.
            yield start, end
            return

        while lo <= hi:
            upper = min(lo + self.chunk_size - 1, hi)
            yield lo, upper
            lo = upper + 1

    def __iter__(self) -> Iterator[EventRecord]:
        for lo, hi in self._windows():
            logs = self.rpc.get_logs(self.address, self.topics, lo, hi)
            logger.debug("%s: %d logs in blocks %s..%s", self.event, len(logs), lo, hi)
            for log in logs:
                yield self.schema.decode_event(self.event, log)

    def all(self) -> list[EventRecord]:
        return list(self)


class LogSubscription:
    """
    Live events of one kind, delivered in the order the node reports them.

    Iterate to receive events as they arrive, or call get() with a timeout.
    cancel() (or leaving a ``with`` block) stops delivery at once, discards
    anything still buffered, and uninstalls the node filter.  A dropped
    transport ends the stream with SubscriptionError; a log that does not
    decode ends it with DecodeError.
    """

    def __init__(
        self,
        rpc: RpcClient,
        address: str,
        schema: ContractSchema,
        event: str,
        filters: Optional[CallFilter] = None,
        poll_interval: float = DEFAULT_SUBSCRIPTION_POLL,
    ) -> None:
        self.rpc = rpc
        self.address = address
        self.schema = schema
        self.event = event
        self.poll_interval = poll_interval
        topics = schema.topic_filter(event, filters)

        try:
            self.filter_id = rpc.new_filter(address, topics)
        except RpcError as exc:
            raise SubscriptionError(f"Node refused a {event} filter: {exc}") from exc

        self._queue: "queue.Queue[Any]" = queue.Queue()
        self._stop = threading.Event()
        self._error: Optional[ParityError] = None
        self._thread = threading.Thread(
            target=self._run, name=f"parity-{event}-{self.filter_id}", daemon=True
        )
        self._thread.start()
        logger.info("subscribed to %s at %s (filter %s)", event, address, self.filter_id)

    def __repr__(self) -> str:
        state = "cancelled" if self.cancelled else ("failed" if self._error else "active")
        return f"LogSubscription({self.event}@{self.address}, {state})"

    # ---- producer -----------------------------------------------------

    def _run(self) -> None:
        try:
            self._poll()
        except Exception as exc:
            # Anything escaping the poll loop still has to end the stream.
            error = SubscriptionError(f"{self.event} subscription failed: {exc!r}")
            error.__cause__ = exc
            self._fail(error)

    def _poll(self) -> None:
        while not self._stop.is_set():
            try:
                logs = self.rpc.filter_changes(self.filter_id)
            except (ChainConnectionError, RpcError) as exc:
                if self._stop.is_set():
                    return
                error = SubscriptionError(f"{self.event} subscription dropped: {exc}")
                error.__cause__ = exc
                self._fail(error)
                return

            for log in logs:
                if self._stop.is_set():
                    return
                try:
                    record = self.schema.decode_event(self.event, log)
                except DecodeError as exc:
                    self._fail(exc)
                    return
                self._queue.put(record)

            self._stop.wait(self.poll_interval)

    def _fail(self, error: ParityError) -> None:
        logger.warning("%s subscription %s ended: %s", self.event, self.filter_id, error)
        self._error = error
        self._queue.put(error)

    # ---- consumer -----------------------------------------------------

    @property
    def cancelled(self) -> bool:
        return self._stop.is_set()

    @property
    def error(self) -> Optional[ParityError]:
        """Terminal error, if the stream ended on its own."""
        return self._error

    def get(self, timeout: Optional[float] = None) -> Optional[EventRecord]:
        """
        Next event, or None on timeout or after cancellation.

        Raises:
            SubscriptionError: If the transport dropped
            DecodeError: If a delivered log did not decode
        """
        if self.cancelled:
            return None
        if self._error is not None and self._queue.empty():
            raise self._error
        try:
            item = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
        if item is _CANCELLED or self.cancelled:
            return None
        if isinstance(item, ParityError):
            raise item
        return item

    def __iter__(self) -> Iterator[EventRecord]:
        while not self.cancelled:
            if self._error is not None and self._queue.empty():
                raise self._error
            item = self._queue.get()
            if item is _CANCELLED or self.cancelled:
                return
            if isinstance(item, ParityError):
                raise item
            yield item

    def cancel(self) -> None:
        """Stop delivery and release the node filter.  Safe to call twice."""
        if self._stop.is_set():
            return
        self._stop.set()

        # Drop buffered events, then wake any blocked consumer.
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                break
        self._queue.put(_CANCELLED)

        if self._thread is not threading.current_thread():
            self._thread.join(timeout=max(self.poll_interval, 1.0) * 2)

        try:
            self.rpc.uninstall_filter(self.filter_id)
        except (ChainConnectionError, RpcError) as exc:
            logger.warning("could not uninstall filter %s: %s", self.filter_id, exc)
        logger.info("cancelled %s subscription (filter %s)", self.event, self.filter_id)

    def __enter__(self) -> "LogSubscription":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.cancel()
