from __future__ import annotations

import threading
from typing import Any, Callable, Mapping, Protocol, Sequence

from loguru import logger
from web3 import Web3
from web3.exceptions import Web3Exception

from app.core.config import settings
from app.models import EventKind

from .abi import CONTRACT_EVENT_NAMES, load_abi
from .errors import EventSourceError


RawLog = Mapping[str, Any]
LogHandler = Callable[[RawLog], None]

_SOURCE_ERRORS = (Web3Exception, ValueError, OSError)


class EventSource(Protocol):
    """Capabilities the indexer consumes from the chain."""

    def block_number(self) -> int: ...

    def query_range(self, kind: EventKind, from_block: int) -> Sequence[RawLog]: ...

    def subscribe(
        self, kind: EventKind, handler: LogHandler, *, from_block: int | None = None
    ) -> None: ...

    def get_transaction(self, transaction_hash: str) -> RawLog: ...

    def get_transaction_receipt(self, transaction_hash: str) -> RawLog: ...

    def price_at(self, market_id: int, block_number: int) -> tuple[int, int]: ...


class ChainEventSource:
    """web3.py-backed event source for the DTF market contract.

    Live delivery polls ``eth_getLogs`` per event kind from a dedicated
    thread, so handlers for different kinds may run concurrently.
    """

    def __init__(
        self,
        *,
        rpc_url: str | None = None,
        contract_address: str | None = None,
        abi_path: str | None = None,
        timeout: float | None = None,
        poll_interval: float | None = None,
        web3: Web3 | None = None,
    ) -> None:
        address = contract_address or settings.contract_address
        if not address:
            raise ValueError("CONTRACT_ADDRESS must be configured to index contract events")
        self.rpc_url = rpc_url or settings.rpc_url
        self.timeout = timeout or settings.rpc_timeout_seconds
        self.poll_interval = poll_interval or settings.live_poll_interval_seconds
        self.w3 = web3 or Web3(
            Web3.HTTPProvider(self.rpc_url, request_kwargs={"timeout": self.timeout})
        )
        self.contract = self.w3.eth.contract(
            address=Web3.to_checksum_address(address),
            abi=load_abi(abi_path if abi_path is not None else settings.contract_abi_path),
        )
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []

    def _contract_event(self, kind: EventKind):
        return getattr(self.contract.events, CONTRACT_EVENT_NAMES[kind])

    def block_number(self) -> int:
        try:
            return int(self.w3.eth.block_number)
        except _SOURCE_ERRORS as exc:
            raise EventSourceError(f"Failed to read chain head: {exc}") from exc

    def query_range(
        self, kind: EventKind, from_block: int, to_block: int | str = "latest"
    ) -> Sequence[RawLog]:
        event_name = CONTRACT_EVENT_NAMES[kind]
        logger.debug("Fetching {} logs from block {} to {}", event_name, from_block, to_block)
        try:
            return list(
                self._contract_event(kind).get_logs(from_block=from_block, to_block=to_block)
            )
        except _SOURCE_ERRORS as exc:
            raise EventSourceError(f"Failed to query {event_name} logs: {exc}") from exc

    def get_transaction(self, transaction_hash: str) -> RawLog:
        try:
            return self.w3.eth.get_transaction(transaction_hash)
        except _SOURCE_ERRORS as exc:
            raise EventSourceError(
                f"Failed to fetch transaction {transaction_hash}: {exc}"
            ) from exc

    def get_transaction_receipt(self, transaction_hash: str) -> RawLog:
        try:
            return self.w3.eth.get_transaction_receipt(transaction_hash)
        except _SOURCE_ERRORS as exc:
            raise EventSourceError(
                f"Failed to fetch receipt for {transaction_hash}: {exc}"
            ) from exc

    def price_at(self, market_id: int, block_number: int) -> tuple[int, int]:
        try:
            yes_price, no_price = self.contract.functions.getSharePrices(market_id).call(
                block_identifier=block_number
            )
        except _SOURCE_ERRORS as exc:
            raise EventSourceError(
                f"Failed to read share prices for DTF {market_id} at block {block_number}: {exc}"
            ) from exc
        return int(yes_price), int(no_price)

    # ------------------------------------------------------------------
    # Live delivery

    def subscribe(
        self, kind: EventKind, handler: LogHandler, *, from_block: int | None = None
    ) -> None:
        start = from_block if from_block is not None else self.block_number() + 1
        thread = threading.Thread(
            target=self._poll,
            args=(kind, handler, start),
            name=f"dtf-{CONTRACT_EVENT_NAMES[kind]}",
            daemon=True,
        )
        self._threads.append(thread)
        thread.start()
        logger.info("Subscribed to {} from block {}", CONTRACT_EVENT_NAMES[kind], start)

    def _poll(self, kind: EventKind, handler: LogHandler, next_block: int) -> None:
        event_name = CONTRACT_EVENT_NAMES[kind]
        while not self._stop.is_set():
            try:
                head = self.block_number()
                if head >= next_block:
                    for raw_log in self.query_range(kind, next_block, head):
                        self._deliver(event_name, handler, raw_log)
                    next_block = head + 1
            except EventSourceError as exc:
                logger.warning("Polling {} failed, retrying next interval: {}", event_name, exc)
            self._stop.wait(self.poll_interval)

    @staticmethod
    def _deliver(event_name: str, handler: LogHandler, raw_log: RawLog) -> None:
        try:
            handler(raw_log)
        except Exception:  # noqa: BLE001
            logger.exception("Unhandled error in {} subscription handler", event_name)

    def stop(self) -> None:
        self._stop.set()
        for thread in self._threads:
            thread.join(timeout=self.poll_interval + self.timeout)
        self._threads.clear()

    def wait(self) -> None:
        """Block until ``stop`` is called."""

        while not self._stop.wait(1.0):
            pass
