from __future__ import annotations

from dataclasses import dataclass
from functools import partial

from loguru import logger
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.core.config import settings
from app.db import ensure_position_uniqueness
from app.domain import Applied, ApplyResult, DomainEvent, Fatal, Skipped
from app.models import EventKind

from .client import ChainEventSource, EventSource, RawLog
from .errors import IndexerError
from .handlers import EventApplier
from .normalize import normalize_log
from .ordering import order_events
from .publisher import MarketUpdatePublisher
from .reconcile import cleanup_duplicate_positions


# Fetch order only; application order comes from order_events.
INDEXED_KINDS: tuple[EventKind, ...] = (
    EventKind.MARKET_CREATED,
    EventKind.SHARES_PURCHASED,
    EventKind.MARKET_SETTLED,
    EventKind.TOKENS_WITHDRAWN,
)


@dataclass(slots=True)
class BackfillSummary:
    from_block: int
    to_block: int
    fetched: int = 0
    discarded: int = 0
    applied: int = 0
    skipped: int = 0
    aborted: bool = False


class EventIndexer:
    """Reconcile, backfill, then follow the live subscription."""

    def __init__(
        self,
        source: EventSource,
        *,
        session_factory: sessionmaker[Session] | None = None,
        bind: Engine | None = None,
        publisher: MarketUpdatePublisher | None = None,
        applier: EventApplier | None = None,
        lookback_blocks: int | None = None,
        reconcile_on_startup: bool | None = None,
    ) -> None:
        self._source = source
        self._session_factory = session_factory
        if bind is None and session_factory is not None:
            bind = session_factory.kw.get("bind")
        self._bind = bind
        self._applier = applier or EventApplier(
            source, session_factory=session_factory, publisher=publisher
        )
        self.lookback_blocks = (
            settings.backfill_lookback_blocks if lookback_blocks is None else lookback_blocks
        )
        self.reconcile_on_startup = (
            settings.reconcile_on_startup
            if reconcile_on_startup is None
            else reconcile_on_startup
        )

    def start(self, *, live: bool = True) -> BackfillSummary:
        logger.info("Starting event indexing")
        if self.reconcile_on_startup:
            self.reconcile()
        self.enforce_position_uniqueness()
        summary = self.backfill()
        if live:
            self.subscribe_live(from_block=None if summary.aborted else summary.to_block + 1)
        return summary

    # ------------------------------------------------------------------
    # Startup reconciliation

    def reconcile(self) -> int:
        try:
            return cleanup_duplicate_positions(self._session_factory)
        except SQLAlchemyError:
            logger.exception("Duplicate position cleanup failed, continuing startup")
            return 0

    def enforce_position_uniqueness(self) -> bool:
        try:
            ensure_position_uniqueness(self._bind)
        except SQLAlchemyError:
            logger.exception(
                "Could not enforce one position per DTF/user/side; duplicate rows "
                "remain, run with reconciliation enabled to collapse them"
            )
            return False
        return True

    # ------------------------------------------------------------------
    # Historical phase

    def backfill(self) -> BackfillSummary:
        try:
            head = self._source.block_number()
        except IndexerError as exc:
            logger.error("Cannot determine chain head, skipping backfill: {}", exc)
            return BackfillSummary(from_block=0, to_block=0, aborted=True)

        summary = BackfillSummary(from_block=max(0, head - self.lookback_blocks), to_block=head)
        logger.info(
            "Fetching historical events from block {} to {}",
            summary.from_block,
            summary.to_block,
        )

        events: list[DomainEvent] = []
        for kind in INDEXED_KINDS:
            try:
                raw_logs = self._source.query_range(kind, summary.from_block)
            except IndexerError as exc:
                logger.error("Skipping historical {} logs: {}", kind.value, exc)
                continue
            summary.fetched += len(raw_logs)
            for raw_log in raw_logs:
                try:
                    events.append(normalize_log(kind, raw_log, self._source))
                except IndexerError as exc:
                    summary.discarded += 1
                    logger.warning("Discarding historical {} log: {}", kind.value, exc)

        ordered = order_events(events)
        for position, event in enumerate(ordered):
            result = self.process(event)
            if isinstance(result, Applied):
                summary.applied += 1
            elif isinstance(result, Skipped):
                summary.skipped += 1
            else:
                summary.aborted = True
                logger.error(
                    "Backfill stopped at block {} ({} events left unapplied)",
                    event.location.block_number,
                    len(ordered) - position - 1,
                )
                break

        logger.info(
            "Backfill finished: fetched={} applied={} skipped={} discarded={} aborted={}",
            summary.fetched,
            summary.applied,
            summary.skipped,
            summary.discarded,
            summary.aborted,
        )
        return summary

    # ------------------------------------------------------------------
    # Live phase

    def subscribe_live(self, *, from_block: int | None = None) -> None:
        for kind in INDEXED_KINDS:
            self._source.subscribe(kind, partial(self.handle_live_log, kind), from_block=from_block)

    def handle_live_log(self, kind: EventKind, raw_log: RawLog) -> ApplyResult:
        try:
            event = normalize_log(kind, raw_log, self._source)
        except IndexerError as exc:
            logger.warning("Discarding live {} log: {}", kind.value, exc)
            return Skipped(str(exc))
        return self.process(event)

    # ------------------------------------------------------------------

    def process(self, event: DomainEvent) -> ApplyResult:
        result = self._applier.apply(event)
        if isinstance(result, Skipped):
            logger.warning(
                "Skipped {} for DTF {} (tx {}): {}",
                event.kind.value,
                event.market_id,
                event.location.transaction_hash,
                result.reason,
            )
        elif isinstance(result, Fatal):
            logger.opt(exception=result.error).error(
                "Failed to apply {} for DTF {} (tx {})",
                event.kind.value,
                event.market_id,
                event.location.transaction_hash,
            )
        return result


def build_indexer(
    *,
    publisher: MarketUpdatePublisher | None = None,
    lookback_blocks: int | None = None,
    reconcile_on_startup: bool | None = None,
) -> tuple[EventIndexer, ChainEventSource]:
    """Wire an indexer against the configured node and database."""

    source = ChainEventSource()
    indexer = EventIndexer(
        source,
        publisher=publisher,
        lookback_blocks=lookback_blocks,
        reconcile_on_startup=reconcile_on_startup,
    )
    return indexer, source
