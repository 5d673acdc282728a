from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    JSON,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base


class EventKind(str, Enum):
    MARKET_CREATED = "MarketCreated"
    SHARES_PURCHASED = "SharesPurchased"
    MARKET_SETTLED = "MarketSettled"
    TOKENS_WITHDRAWN = "TokensWithdrawn"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"

    address: Mapped[str] = mapped_column(String(42), primary_key=True)
    # Maintained by the read layer, never by the indexer.
    total_volume: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    positions: Mapped[list["Position"]] = relationship("Position", back_populates="user")
    markets: Mapped[list["Market"]] = relationship("Market", back_populates="creator")


class Market(Base):
    __tablename__ = "markets"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    creator_address: Mapped[str] = mapped_column(String(42), ForeignKey("users.address"), nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    expiry_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    target_valuation: Mapped[float] = mapped_column(Float, nullable=False)
    is_target_higher: Mapped[bool] = mapped_column(Boolean, nullable=False)
    yes_token_address: Mapped[str | None] = mapped_column(String(42), nullable=True)
    no_token_address: Mapped[str | None] = mapped_column(String(42), nullable=True)
    yes_pool: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    no_pool: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    distribution_pool: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    is_settled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    yes_won: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    creator: Mapped[User] = relationship("User", back_populates="markets")
    positions: Mapped[list["Position"]] = relationship(
        "Position", back_populates="market", order_by="Position.id"
    )
    events: Mapped[list["MarketEvent"]] = relationship(
        "MarketEvent", back_populates="market", order_by="MarketEvent.id"
    )


class Position(Base):
    __tablename__ = "positions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_address: Mapped[str] = mapped_column(String(42), ForeignKey("users.address"), nullable=False)
    market_id: Mapped[int] = mapped_column(ForeignKey("markets.id"), nullable=False)
    is_yes_position: Mapped[bool] = mapped_column(Boolean, nullable=False)
    share_amount: Mapped[float] = mapped_column(Float, nullable=False)
    # Fixed-point price (6 fractional digits) of the purchase that opened the row.
    entry_price: Mapped[int] = mapped_column(BigInteger, nullable=False)
    claimed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    transaction_hash: Mapped[str] = mapped_column(String(66), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    user: Mapped[User] = relationship("User", back_populates="positions")
    market: Mapped[Market] = relationship("Market", back_populates="positions")


class MarketEvent(Base):
    """Append-only audit log of applied contract events."""

    __tablename__ = "events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    market_id: Mapped[int] = mapped_column(ForeignKey("markets.id"), nullable=False)
    event_type: Mapped[str] = mapped_column(String, nullable=False)
    transaction_hash: Mapped[str] = mapped_column(String(66), nullable=False)
    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    data: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    market: Mapped[Market] = relationship("Market", back_populates="events")


class ProcessedEvent(Base):
    __tablename__ = "processed_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_type: Mapped[str] = mapped_column(String, nullable=False)
    transaction_hash: Mapped[str] = mapped_column(String(66), nullable=False)
    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    processed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("event_type", "transaction_hash", name="uq_processed_event_key"),
    )
