"""Position persistence, including the duplicate-position grouping query."""

from __future__ import annotations

from datetime import datetime
from typing import Sequence

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session, selectinload

from app.models import Position, utcnow

from .types import DuplicatePositionGroup


class PositionRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Mutations

    def create_position(
        self,
        *,
        market_id: int,
        user_address: str,
        is_yes_position: bool,
        share_amount: float,
        entry_price: int,
        transaction_hash: str,
    ) -> Position:
        record = Position(
            market_id=market_id,
            user_address=user_address,
            is_yes_position=is_yes_position,
            share_amount=share_amount,
            entry_price=entry_price,
            claimed=False,
            transaction_hash=transaction_hash,
        )
        self._session.add(record)
        self._session.flush()
        return record

    def add_shares(self, position_id: int, amount: float) -> None:
        # Incremented in SQL so concurrent purchases never overwrite each other.
        self._session.execute(
            update(Position)
            .where(Position.id == position_id)
            .values(share_amount=Position.share_amount + amount)
            .execution_options(synchronize_session=False)
        )

    def mark_claimed(
        self, market_id: int, user_address: str, *, claimed_at: datetime | None = None
    ) -> int:
        result = self._session.execute(
            update(Position)
            .where(
                Position.market_id == market_id,
                Position.user_address == user_address,
                Position.claimed.is_(False),
            )
            .values(claimed=True, claimed_at=claimed_at or utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    def delete_positions(self, position_ids: Sequence[int]) -> int:
        if not position_ids:
            return 0
        result = self._session.execute(
            delete(Position)
            .where(Position.id.in_(list(position_ids)))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    # ------------------------------------------------------------------
    # Queries

    def find_position(
        self, market_id: int, user_address: str, is_yes_position: bool
    ) -> Position | None:
        query = (
            select(Position)
            .where(
                Position.market_id == market_id,
                Position.user_address == user_address,
                Position.is_yes_position.is_(is_yes_position),
            )
            .order_by(Position.created_at.asc(), Position.id.asc())
            .limit(1)
        )
        return self._session.execute(query).scalars().first()

    def find_duplicate_groups(self) -> list[DuplicatePositionGroup]:
        query = (
            select(
                Position.market_id,
                Position.user_address,
                Position.is_yes_position,
                func.count(Position.id).label("row_count"),
            )
            .group_by(Position.market_id, Position.user_address, Position.is_yes_position)
            .having(func.count(Position.id) > 1)
        )
        return [
            DuplicatePositionGroup(
                market_id=row.market_id,
                user_address=row.user_address,
                is_yes_position=bool(row.is_yes_position),
                row_count=int(row.row_count),
            )
            for row in self._session.execute(query)
        ]

    def list_group(
        self, market_id: int, user_address: str, is_yes_position: bool
    ) -> list[Position]:
        """Rows of one (market, user, side) tuple, earliest-created first."""

        query = (
            select(Position)
            .where(
                Position.market_id == market_id,
                Position.user_address == user_address,
                Position.is_yes_position.is_(is_yes_position),
            )
            .order_by(Position.created_at.asc(), Position.id.asc())
        )
        return list(self._session.execute(query).scalars().all())

    def list_for_market(self, market_id: int) -> list[Position]:
        query = select(Position).where(Position.market_id == market_id).order_by(Position.id)
        return list(self._session.execute(query).scalars().all())

    def list_for_user(self, user_address: str, *, newest_first: bool = False) -> list[Position]:
        ordering = (
            (Position.market_id.desc(), Position.created_at.desc())
            if newest_first
            else (Position.created_at.asc(), Position.id.asc())
        )
        query = (
            select(Position)
            .where(Position.user_address == user_address)
            .options(selectinload(Position.market))
            .order_by(*ordering)
        )
        return list(self._session.execute(query).scalars().all())
