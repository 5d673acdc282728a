from __future__ import annotations

from typing import Callable

from loguru import logger
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.db import session_scope
from app.domain import (
    Applied,
    ApplyResult,
    DomainEvent,
    Fatal,
    MarketCreated,
    MarketSettled,
    SharesPurchased,
    Skipped,
    TokensWithdrawn,
)
from app.domain.units import SHARE_DECIMALS, VALUATION_DECIMALS, from_fixed_point
from app.models import EventKind, utcnow
from app.repositories import MarketRepository, PositionRepository, ProcessingRepository

from .client import EventSource
from .errors import IndexerError, MissingEntityError
from .publisher import MarketUpdatePublisher, NullPublisher


def market_name(market_id: int) -> str:
    return f"DTF {market_id}"


class EventApplier:
    """Apply typed domain events to the state store.

    Every handler is idempotent and returns ``Applied``, ``Skipped`` or
    ``Fatal``; the caller decides whether processing continues.
    """

    def __init__(
        self,
        source: EventSource,
        *,
        session_factory: sessionmaker[Session] | None = None,
        publisher: MarketUpdatePublisher | None = None,
    ) -> None:
        self._source = source
        self._session_factory = session_factory
        self._publisher = publisher or NullPublisher()
        self._handlers: dict[type, Callable[..., ApplyResult]] = {
            MarketCreated: self._apply_market_created,
            SharesPurchased: self._apply_shares_purchased,
            MarketSettled: self._apply_market_settled,
            TokensWithdrawn: self._apply_tokens_withdrawn,
        }

    def apply(self, event: DomainEvent) -> ApplyResult:
        handler = self._handlers.get(type(event))
        if handler is None:
            return Skipped(f"no handler for {type(event).__name__}")
        return handler(event)

    def _session(self):
        return session_scope(self._session_factory)

    # ------------------------------------------------------------------
    # MarketCreated

    def _apply_market_created(self, event: MarketCreated) -> ApplyResult:
        target_valuation = from_fixed_point(event.target_valuation, VALUATION_DECIMALS)
        try:
            with self._session() as session:
                markets = MarketRepository(session)
                markets.ensure_user(event.creator)
                created = markets.create_market_if_absent(
                    market_id=event.market_id,
                    creator_address=event.creator,
                    name=market_name(event.market_id),
                    target_valuation=target_valuation,
                    is_target_higher=event.is_target_higher,
                    yes_token_address=event.yes_token,
                    no_token_address=event.no_token,
                )
                if not created:
                    return Skipped(f"DTF {event.market_id} already indexed")
                markets.append_event(
                    market_id=event.market_id,
                    kind=EventKind.MARKET_CREATED,
                    location=event.location,
                    data={
                        "dtfId": event.market_id,
                        "creator": event.creator,
                        "targetValuation": target_valuation,
                        "isTargetHigher": event.is_target_higher,
                        "yesToken": event.yes_token,
                        "noToken": event.no_token,
                    },
                )
        except SQLAlchemyError as exc:
            return Skipped(f"store rejected DTF {event.market_id}: {exc}")

        logger.info("Indexed DTF #{} created by {}", event.market_id, event.creator)
        return Applied({"dtfId": event.market_id, "creator": event.creator})

    # ------------------------------------------------------------------
    # SharesPurchased

    def _entry_price(self, event: SharesPurchased) -> int:
        # Price in effect before the purchase moved it.
        yes_price, no_price = self._source.price_at(
            event.market_id, event.location.block_number - 1
        )
        return yes_price if event.is_yes else no_price

    def _apply_shares_purchased(self, event: SharesPurchased) -> ApplyResult:
        transaction_hash = event.location.transaction_hash
        share_amount = from_fixed_point(event.amount, SHARE_DECIMALS)
        try:
            with self._session() as session:
                if ProcessingRepository(session).has_processed(
                    EventKind.SHARES_PURCHASED, transaction_hash
                ):
                    return Skipped(f"purchase {transaction_hash} already processed")
                needs_price = (
                    PositionRepository(session).find_position(
                        event.market_id, event.buyer, event.is_yes
                    )
                    is None
                )

            entry_price = self._entry_price(event) if needs_price else None

            with self._session() as session:
                ProcessingRepository(session).record_processed(
                    EventKind.SHARES_PURCHASED,
                    transaction_hash,
                    block_number=event.location.block_number,
                )
                MarketRepository(session).ensure_user(event.buyer)
                positions = PositionRepository(session)
                existing = positions.find_position(event.market_id, event.buyer, event.is_yes)
                opened = existing is None
                if opened:
                    if entry_price is None:
                        entry_price = self._entry_price(event)
                    try:
                        # Savepoint so losing the race to open this tuple keeps the marker.
                        with session.begin_nested():
                            position_id = positions.create_position(
                                market_id=event.market_id,
                                user_address=event.buyer,
                                is_yes_position=event.is_yes,
                                share_amount=share_amount,
                                entry_price=entry_price,
                                transaction_hash=transaction_hash,
                            ).id
                    except IntegrityError:
                        existing = positions.find_position(
                            event.market_id, event.buyer, event.is_yes
                        )
                        if existing is None:
                            raise
                        opened = False
                if not opened:
                    positions.add_shares(existing.id, share_amount)
                    position_id = existing.id
        except IndexerError as exc:
            return Skipped(str(exc))
        except IntegrityError:
            return Skipped(f"purchase {transaction_hash} was applied concurrently")
        except SQLAlchemyError as exc:
            return Skipped(f"store rejected purchase {transaction_hash}: {exc}")

        logger.info(
            "{} position {} for DTF {} ({} {} shares, buyer {})",
            "Opened" if opened else "Increased",
            position_id,
            event.market_id,
            share_amount,
            "YES" if event.is_yes else "NO",
            event.buyer,
        )
        return Applied(
            {
                "positionId": position_id,
                "opened": opened,
                "shareAmount": share_amount,
                "entryPrice": entry_price,
            }
        )

    # ------------------------------------------------------------------
    # MarketSettled

    def _apply_market_settled(self, event: MarketSettled) -> ApplyResult:
        try:
            with self._session() as session:
                markets = MarketRepository(session)
                if not markets.market_exists(event.market_id):
                    raise MissingEntityError(f"DTF {event.market_id} not found, skipping settlement")
                # Conditional on the flag being unset, inside the same transaction
                # as the log append, so concurrent deliveries settle once.
                if not markets.settle_market(event.market_id, yes_won=event.yes_won):
                    return Skipped(f"DTF {event.market_id} already settled")
                markets.append_event(
                    market_id=event.market_id,
                    kind=EventKind.MARKET_SETTLED,
                    location=event.location,
                    data={"dtfId": event.market_id, "yesWon": event.yes_won},
                )
        except MissingEntityError as exc:
            return Skipped(str(exc))
        except SQLAlchemyError as exc:
            return Fatal(exc)

        logger.info("Settled DTF {} (yesWon={})", event.market_id, event.yes_won)
        self._publish_settlement(event.market_id)
        return Applied({"dtfId": event.market_id, "yesWon": event.yes_won})

    def _publish_settlement(self, market_id: int) -> None:
        try:
            self._publisher.publish_market_settled(market_id)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to publish settlement of DTF {}", market_id)

    # ------------------------------------------------------------------
    # TokensWithdrawn

    def _apply_tokens_withdrawn(self, event: TokensWithdrawn) -> ApplyResult:
        transaction_hash = event.location.transaction_hash
        try:
            with self._session() as session:
                markets = MarketRepository(session)
                if not markets.market_exists(event.market_id):
                    raise MissingEntityError(
                        f"DTF {event.market_id} not found, cannot process withdrawal"
                    )
                claimed_at = utcnow()
                claimed = PositionRepository(session).mark_claimed(
                    event.market_id, event.withdrawer, claimed_at=claimed_at
                )
                if not markets.event_logged(
                    event.market_id, EventKind.TOKENS_WITHDRAWN, transaction_hash
                ):
                    markets.append_event(
                        market_id=event.market_id,
                        kind=EventKind.TOKENS_WITHDRAWN,
                        location=event.location,
                        data={
                            "dtfId": event.market_id,
                            "userAddress": event.withdrawer,
                            "timestamp": claimed_at.isoformat(),
                        },
                    )
        except MissingEntityError as exc:
            return Skipped(str(exc))
        except SQLAlchemyError as exc:
            return Skipped(f"store rejected withdrawal {transaction_hash}: {exc}")

        logger.info(
            "Indexed TokensWithdrawn for DTF #{} by {} ({} positions claimed)",
            event.market_id,
            event.withdrawer,
            claimed,
        )
        return Applied({"dtfId": event.market_id, "claimedPositions": claimed})
