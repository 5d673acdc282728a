"""Typed domain events produced by the normalizer and consumed by the applier."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Union

from app.models import EventKind


@dataclass(frozen=True, slots=True)
class EventLocation:
    """Where a log sits on chain; used for ordering and the audit log."""

    block_number: int
    transaction_hash: str
    transaction_index: int = 0
    log_index: int = 0


@dataclass(frozen=True, slots=True)
class MarketCreated:
    kind: ClassVar[EventKind] = EventKind.MARKET_CREATED

    market_id: int
    location: EventLocation
    creator: str
    target_valuation: int
    is_target_higher: bool
    yes_token: str | None = None
    no_token: str | None = None


@dataclass(frozen=True, slots=True)
class SharesPurchased:
    kind: ClassVar[EventKind] = EventKind.SHARES_PURCHASED

    market_id: int
    location: EventLocation
    buyer: str
    is_yes: bool
    amount: int


@dataclass(frozen=True, slots=True)
class MarketSettled:
    kind: ClassVar[EventKind] = EventKind.MARKET_SETTLED

    market_id: int
    location: EventLocation
    yes_won: bool


@dataclass(frozen=True, slots=True)
class TokensWithdrawn:
    kind: ClassVar[EventKind] = EventKind.TOKENS_WITHDRAWN

    market_id: int
    location: EventLocation
    withdrawer: str


DomainEvent = Union[MarketCreated, SharesPurchased, MarketSettled, TokensWithdrawn]


@dataclass(frozen=True, slots=True)
class Applied:
    detail: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Skipped:
    reason: str


@dataclass(frozen=True, slots=True)
class Fatal:
    error: Exception


ApplyResult = Union[Applied, Skipped, Fatal]
