from __future__ import annotations

from app.domain import EventLocation, MarketCreated, MarketSettled, SharesPurchased
from chain_fakes import BUYER, CREATOR, tx_hash
from indexer.ordering import event_sort_key, order_events


def _at(block: int, index: int, label: int) -> EventLocation:
    return EventLocation(block_number=block, transaction_hash=tx_hash(label), transaction_index=index)


def test_events_sorted_by_block_then_transaction_index():
    """Verify events apply in ascending (block, transaction index) order."""
    created = MarketCreated(
        market_id=1, location=_at(10, 4, 1), creator=CREATOR, target_valuation=1, is_target_higher=True
    )
    purchase = SharesPurchased(market_id=1, location=_at(11, 0, 2), buyer=BUYER, is_yes=True, amount=1)
    settled = MarketSettled(market_id=1, location=_at(11, 2, 3), yes_won=True)
    earlier = SharesPurchased(market_id=1, location=_at(10, 7, 4), buyer=BUYER, is_yes=False, amount=1)

    ordered = order_events([settled, purchase, earlier, created])

    assert ordered == [created, earlier, purchase, settled]


def test_equal_keys_keep_arrival_order():
    """Verify events sharing a transaction keep their concatenation order."""
    first = MarketSettled(market_id=2, location=_at(5, 1, 9), yes_won=True)
    second = SharesPurchased(market_id=2, location=_at(5, 1, 9), buyer=BUYER, is_yes=True, amount=1)

    assert order_events([first, second]) == [first, second]
    assert order_events([second, first]) == [second, first]


def test_sort_key_ignores_log_index():
    """Verify the sort key is the block and transaction index pair."""
    event = MarketSettled(
        market_id=3,
        location=EventLocation(block_number=8, transaction_hash=tx_hash(1), transaction_index=2, log_index=9),
        yes_won=False,
    )

    assert event_sort_key(event) == (8, 2)
