"""Market, user, and audit-log data access helpers."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.orm import Session, selectinload

from app.domain import EventLocation
from app.models import EventKind, Market, MarketEvent, User, utcnow

from .statements import insert_ignoring_conflicts


class MarketRepository:
    """Encapsulate market, user, and event-log persistence concerns."""

    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Mutations

    def ensure_user(self, address: str) -> bool:
        return insert_ignoring_conflicts(
            self._session,
            User,
            {"address": address, "total_volume": 0.0, "created_at": utcnow()},
            index_elements=["address"],
        )

    def create_market_if_absent(
        self,
        *,
        market_id: int,
        creator_address: str,
        name: str,
        target_valuation: float,
        is_target_higher: bool,
        yes_token_address: str | None,
        no_token_address: str | None,
        expiry_time: datetime | None = None,
    ) -> bool:
        """Insert the market row; an existing row is left untouched."""

        now = utcnow()
        return insert_ignoring_conflicts(
            self._session,
            Market,
            {
                "id": market_id,
                "creator_address": creator_address,
                "name": name,
                "expiry_time": expiry_time or now,
                "target_valuation": target_valuation,
                "is_target_higher": is_target_higher,
                "yes_token_address": yes_token_address,
                "no_token_address": no_token_address,
                "yes_pool": 0.0,
                "no_pool": 0.0,
                "distribution_pool": 0.0,
                "is_settled": False,
                "created_at": now,
            },
            index_elements=["id"],
        )

    def settle_market(self, market_id: int, *, yes_won: bool) -> bool:
        """Set the settlement flag only if it is still unset; True if this call settled it."""

        result = self._session.execute(
            update(Market)
            .where(Market.id == market_id, Market.is_settled.is_(False))
            .values(is_settled=True, yes_won=yes_won)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def append_event(
        self,
        *,
        market_id: int,
        kind: EventKind,
        location: EventLocation,
        data: dict[str, Any] | None,
    ) -> MarketEvent:
        record = MarketEvent(
            market_id=market_id,
            event_type=kind.value,
            transaction_hash=location.transaction_hash,
            block_number=location.block_number,
            data=data,
        )
        self._session.add(record)
        self._session.flush()
        return record

    # ------------------------------------------------------------------
    # Queries

    def get_market(self, market_id: int) -> Market | None:
        return self._session.get(Market, market_id)

    def market_exists(self, market_id: int) -> bool:
        query = select(Market.id).where(Market.id == market_id)
        return self._session.execute(query).scalar_one_or_none() is not None

    def event_logged(self, market_id: int, kind: EventKind, transaction_hash: str) -> bool:
        query = select(MarketEvent.id).where(
            MarketEvent.market_id == market_id,
            MarketEvent.event_type == kind.value,
            MarketEvent.transaction_hash == transaction_hash,
        )
        return self._session.execute(query).first() is not None

    def get_user(self, address: str) -> User | None:
        return self._session.get(User, address)

    def list_markets(self, *, with_children: bool = False) -> list[Market]:
        query = select(Market).order_by(Market.id.asc())
        if with_children:
            query = query.options(
                selectinload(Market.positions), selectinload(Market.events)
            )
        return list(self._session.execute(query).scalars().all())

    def get_market_with_children(self, market_id: int) -> Market | None:
        query = (
            select(Market)
            .where(Market.id == market_id)
            .options(selectinload(Market.positions), selectinload(Market.events))
        )
        return self._session.execute(query).scalars().first()

    def list_events(
        self, market_id: int, *, kind: EventKind | None = None
    ) -> list[MarketEvent]:
        query = select(MarketEvent).where(MarketEvent.market_id == market_id)
        if kind is not None:
            query = query.where(MarketEvent.event_type == kind.value)
        query = query.order_by(MarketEvent.id.asc())
        return list(self._session.execute(query).scalars().all())
