"""Shared repository result types."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class DuplicatePositionGroup:
    """A (market, user, side) tuple that owns more than one position row."""

    market_id: int
    user_address: str
    is_yes_position: bool
    row_count: int


__all__ = ["DuplicatePositionGroup"]
