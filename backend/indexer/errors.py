from __future__ import annotations


class IndexerError(Exception):
    """Base class for failures that skip a single contract event."""


class EventSourceError(IndexerError):
    """Raised when a call to the chain node fails or times out."""


class EventDecodeError(IndexerError):
    """Raised when a log's arguments do not match the expected event shape."""


class MissingEntityError(IndexerError):
    """Raised when a handler needs a row (usually a market) that does not exist."""
