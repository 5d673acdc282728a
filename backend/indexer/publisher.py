from __future__ import annotations

from typing import Protocol


class MarketUpdatePublisher(Protocol):
    """Side channel notified after a settlement has been committed."""

    def publish_market_settled(self, market_id: int) -> None: ...


class NullPublisher:
    def publish_market_settled(self, market_id: int) -> None:
        return None
