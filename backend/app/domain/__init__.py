"""Domain models representing normalized contract events."""

from .models import (
    Applied,
    ApplyResult,
    DomainEvent,
    EventLocation,
    Fatal,
    MarketCreated,
    MarketSettled,
    SharesPurchased,
    Skipped,
    TokensWithdrawn,
)

__all__ = [
    "Applied",
    "ApplyResult",
    "DomainEvent",
    "EventLocation",
    "Fatal",
    "MarketCreated",
    "MarketSettled",
    "SharesPurchased",
    "Skipped",
    "TokensWithdrawn",
]
