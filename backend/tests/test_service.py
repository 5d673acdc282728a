from __future__ import annotations

import pytest
from sqlalchemy import inspect, select
from sqlalchemy.exc import OperationalError

from app.db import POSITION_UNIQUE_INDEX
from app.domain import Applied, Fatal, Skipped
from app.models import EventKind, Market, Position, User
from chain_fakes import (
    BUYER,
    UNIT,
    created_log,
    make_log,
    purchase_log,
    settled_log,
    tx_hash,
    withdrawn_log,
)
from indexer.errors import EventSourceError
from indexer.service import INDEXED_KINDS, EventIndexer


class RecordingApplier:
    """Applier double that records application order and returns canned results."""

    def __init__(self, results: dict[int, object] | None = None) -> None:
        self.applied = []
        self._results = results or {}

    def apply(self, event):
        self.applied.append(event)
        return self._results.get(event.location.block_number, Applied())


def _indexer(source, session_factory, **kwargs) -> EventIndexer:
    kwargs.setdefault("lookback_blocks", 50)
    kwargs.setdefault("reconcile_on_startup", False)
    return EventIndexer(source, session_factory=session_factory, **kwargs)


def test_backfill_queries_bounded_window(source, session_factory):
    """Verify every kind is fetched from head minus the lookback window."""
    summary = _indexer(source, session_factory).backfill()

    assert (summary.from_block, summary.to_block) == (50, 100)
    assert source.queries == [(kind, 50) for kind in INDEXED_KINDS]


def test_backfill_window_is_clamped_at_genesis(source, session_factory):
    """Verify the window never starts below block zero."""
    source.head = 20

    summary = _indexer(source, session_factory).backfill()

    assert summary.from_block == 0


def test_backfill_applies_in_block_and_index_order(source, session_factory):
    """Verify logs of all kinds are applied in ascending (block, index) order."""
    withdrawn_log(source, 7, block=90)
    settled_log(source, 7, block=80, index=1)
    purchase_log(source, 7, block=80, index=0)
    created_log(source, 7, block=60, index=3)
    applier = RecordingApplier()

    summary = _indexer(source, session_factory, applier=applier).backfill()

    assert summary.fetched == 4
    assert summary.applied == 4
    assert [event.kind for event in applier.applied] == [
        EventKind.MARKET_CREATED,
        EventKind.SHARES_PURCHASED,
        EventKind.MARKET_SETTLED,
        EventKind.TOKENS_WITHDRAWN,
    ]


def test_backfill_skips_events_outside_window(source, session_factory):
    """Verify logs older than the lookback window are not applied."""
    created_log(source, 1, block=10)
    created_log(source, 2, block=70)
    applier = RecordingApplier()

    _indexer(source, session_factory, applier=applier).backfill()

    assert [event.market_id for event in applier.applied] == [2]


def test_backfill_continues_after_skips_and_discards(source, session_factory):
    """Verify skipped and undecodable events do not stop the backfill."""
    created_log(source, 7, block=60)
    source.add_log(
        EventKind.MARKET_SETTLED,
        make_log({"dtfId": "seven"}, transaction_hash=tx_hash(1), block_number=61),
    )
    settled_log(source, 7, block=70)
    withdrawn_log(source, 7, block=80)
    applier = RecordingApplier({70: Skipped("already settled")})

    summary = _indexer(source, session_factory, applier=applier).backfill()

    assert summary.discarded == 1
    assert summary.skipped == 1
    assert summary.applied == 2
    assert summary.aborted is False


def test_backfill_continues_when_one_kind_cannot_be_fetched(source, session_factory):
    """Verify a failing query for one kind does not block the others."""
    created_log(source, 7, block=60)
    source.query_errors[EventKind.SHARES_PURCHASED] = EventSourceError("range too large")
    applier = RecordingApplier()

    summary = _indexer(source, session_factory, applier=applier).backfill()

    assert summary.applied == 1


def test_fatal_result_stops_backfill(source, session_factory):
    """Verify a fatal outcome halts the historical phase."""
    created_log(source, 7, block=60)
    settled_log(source, 7, block=70)
    withdrawn_log(source, 7, block=80)
    applier = RecordingApplier({70: Fatal(RuntimeError("store down"))})

    summary = _indexer(source, session_factory, applier=applier).backfill()

    assert summary.aborted is True
    assert summary.applied == 1
    assert [event.location.block_number for event in applier.applied] == [60, 70]


def test_start_subscribes_after_backfilled_head(source, session_factory):
    """Verify live subscriptions resume right after the backfilled range."""
    _indexer(source, session_factory, applier=RecordingApplier()).start()

    assert [(kind, from_block) for kind, _, from_block in source.subscriptions] == [
        (kind, 101) for kind in INDEXED_KINDS
    ]


def test_start_after_aborted_backfill_subscribes_from_head(source, session_factory):
    """Verify an aborted backfill still starts the live phase at the current head."""
    source.head_error = EventSourceError("node unreachable")

    summary = _indexer(source, session_factory).start()

    assert summary.aborted is True
    assert [from_block for _, _, from_block in source.subscriptions] == [None] * len(INDEXED_KINDS)


def test_start_without_live_phase(source, session_factory):
    """Verify backfill-only runs never subscribe."""
    _indexer(source, session_factory, applier=RecordingApplier()).start(live=False)

    assert source.subscriptions == []


def test_live_delivery_is_applied(source, session_factory):
    """Verify live logs are normalized and applied through the store."""
    indexer = _indexer(source, session_factory)
    indexer.start()

    result = source.deliver(EventKind.MARKET_CREATED, created_log(source, 7, block=101))

    assert isinstance(result, Applied)
    with session_factory() as session:
        assert session.get(Market, 7) is not None


def test_live_decode_error_is_skipped(source, session_factory):
    """Verify undecodable live logs are skipped without raising."""
    indexer = _indexer(source, session_factory)

    result = indexer.handle_live_log(
        EventKind.MARKET_SETTLED,
        make_log({"yesWon": True}, transaction_hash=tx_hash(1), block_number=101),
    )

    assert isinstance(result, Skipped)


def test_live_fatal_result_is_returned_not_raised(source, session_factory):
    """Verify a fatal live outcome is reported and the callback keeps working."""
    applier = RecordingApplier({101: Fatal(RuntimeError("store down"))})
    indexer = _indexer(source, session_factory, applier=applier)
    indexer.start()

    first = source.deliver(EventKind.MARKET_SETTLED, settled_log(source, 7, block=101))
    second = source.deliver(EventKind.MARKET_SETTLED, settled_log(source, 8, block=102))

    assert isinstance(first, Fatal)
    assert isinstance(second, Applied)


def test_overlap_between_backfill_and_live_is_absorbed(source, session_factory):
    """Verify a purchase seen by both phases is only counted once."""
    created_log(source, 7, block=90)
    raw_purchase = purchase_log(source, 7, block=95, amount=3 * UNIT)
    indexer = _indexer(source, session_factory)
    indexer.start()

    result = source.deliver(EventKind.SHARES_PURCHASED, raw_purchase)

    assert isinstance(result, Skipped)
    with session_factory() as session:
        (position,) = session.execute(select(Position)).scalars().all()
        assert position.user_address == BUYER
        assert position.share_amount == pytest.approx(3.0)


def test_startup_reconciliation_installs_unique_index(source, engine, session_factory):
    """Verify reconciliation runs before backfill and enforces uniqueness."""
    indexer = _indexer(source, session_factory, reconcile_on_startup=True)

    indexer.start(live=False)

    index_names = {index["name"] for index in inspect(engine).get_indexes("positions")}
    assert POSITION_UNIQUE_INDEX in index_names


def _position_indexes(engine) -> set[str]:
    return {index["name"] for index in inspect(engine).get_indexes("positions")}


def test_unique_index_installed_without_reconciliation(source, engine, session_factory):
    """Verify startup enforces one position per tuple even when cleanup is disabled."""
    _indexer(source, session_factory, reconcile_on_startup=False).start(live=False)

    assert POSITION_UNIQUE_INDEX in _position_indexes(engine)


def test_legacy_duplicates_without_reconciliation_do_not_block_startup(
    source, engine, session_factory
):
    """Verify startup proceeds, without the index, when unreconciled duplicates remain."""
    with session_factory() as session:
        session.add(User(address=BUYER))
        for label in (1, 2):
            session.add(
                Position(
                    market_id=7,
                    user_address=BUYER,
                    is_yes_position=True,
                    share_amount=1.0,
                    entry_price=500_000,
                    transaction_hash=tx_hash(label),
                )
            )
        session.commit()
    created_log(source, 7, block=90)
    indexer = _indexer(source, session_factory, reconcile_on_startup=False)

    summary = indexer.start()

    assert summary.applied == 1
    assert POSITION_UNIQUE_INDEX not in _position_indexes(engine)
    assert len(source.subscriptions) == len(INDEXED_KINDS)


def test_cleanup_store_error_does_not_block_startup(source, session_factory, monkeypatch):
    """Verify a failing duplicate cleanup is logged and indexing still starts."""

    def failing_cleanup(session_factory=None):
        raise OperationalError("DELETE FROM positions", {}, Exception("database is locked"))

    monkeypatch.setattr("indexer.service.cleanup_duplicate_positions", failing_cleanup)
    created_log(source, 7, block=90)
    indexer = _indexer(source, session_factory, reconcile_on_startup=True)

    summary = indexer.start()

    assert summary.applied == 1
    assert len(source.subscriptions) == len(INDEXED_KINDS)
