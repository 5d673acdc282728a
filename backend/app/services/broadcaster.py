"""Fan-out of market updates to server-sent-event clients."""

from __future__ import annotations

import asyncio
import json
import threading
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

from loguru import logger


class MarketUpdateBroadcaster:
    """Thread-safe publisher feeding one asyncio queue per connected client.

    The indexer publishes from its polling threads; each subscriber queue is
    fed through the event loop that created it.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: dict[asyncio.Queue[dict[str, Any]], asyncio.AbstractEventLoop] = {}

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def subscribe(self) -> asyncio.Queue[dict[str, Any]]:
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        with self._lock:
            self._subscribers[queue] = asyncio.get_running_loop()
        return queue

    def unsubscribe(self, queue: asyncio.Queue[dict[str, Any]]) -> None:
        with self._lock:
            self._subscribers.pop(queue, None)

    def publish(self, payload: dict[str, Any]) -> None:
        with self._lock:
            targets = list(self._subscribers.items())
        for queue, loop in targets:
            try:
                loop.call_soon_threadsafe(queue.put_nowait, payload)
            except RuntimeError:
                logger.debug("Dropping subscriber whose event loop has closed")
                self.unsubscribe(queue)

    def publish_market_settled(self, market_id: int) -> None:
        self.publish({"type": "DTFSettled", "dtfID": market_id})

    async def stream(
        self, is_disconnected: Callable[[], Awaitable[bool]] | None = None
    ) -> AsyncIterator[dict[str, str]]:
        """Yield server-sent-event messages until the client goes away."""

        queue = self.subscribe()
        try:
            while True:
                if is_disconnected is not None and await is_disconnected():
                    break
                payload = await queue.get()
                yield {"data": json.dumps(payload)}
        finally:
            self.unsubscribe(queue)


broadcaster = MarketUpdateBroadcaster()
