"""Repository abstractions for database interactions."""

from .market_repository import MarketRepository
from .position_repository import PositionRepository
from .processing_repository import ProcessingRepository
from .types import DuplicatePositionGroup

__all__ = [
    "MarketRepository",
    "PositionRepository",
    "ProcessingRepository",
    "DuplicatePositionGroup",
]
