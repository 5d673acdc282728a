"""Total ordering for a backfilled batch of domain events."""

from __future__ import annotations

from collections.abc import Iterable

from app.domain import DomainEvent


def event_sort_key(event: DomainEvent) -> tuple[int, int]:
    """Order by block, then by the transaction's position within the block.

    Two logs of the same transaction share a key, so their relative order is
    whatever order they arrived in. Extending the key with ``log_index``
    would give true per-log ordering.
    """

    return (event.location.block_number, event.location.transaction_index)


def order_events(events: Iterable[DomainEvent]) -> list[DomainEvent]:
    # sorted() is stable, which keeps arrival order for equal keys.
    return sorted(events, key=event_sort_key)
