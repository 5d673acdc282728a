"""Read-side views over indexed markets and positions."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from sqlalchemy.orm import Session

from app.domain.units import price_to_float
from app.models import Market, Position
from app.repositories import MarketRepository, PositionRepository
from app.schemas import (
    Market as MarketSchema,
    MarketBase,
    MarketFees,
    PositionDetail,
    PositionWithMarket,
    Trade,
)


CREATOR_FEE_RATE = 0.012


def position_cost(position: Position) -> float:
    return price_to_float(position.entry_price) * position.share_amount


def side_label(is_yes: bool) -> str:
    return "YES" if is_yes else "NO"


def status_label(market: Market) -> str:
    return "Settled" if market.is_settled else "Active"


def format_usd(value: float, digits: int = 2) -> str:
    return f"${value:.{digits}f}"


def format_roi(roi: float) -> str:
    return f"{'+' if roi > 0 else ''}${roi:.2f}"


def compute_roi(*, total_shares: float, total_cost: float, is_yes: bool, market: Market) -> float:
    """Winning shares redeem at 1; losing shares are worth nothing."""

    if not market.is_settled:
        return total_shares - total_cost
    won = bool(market.yes_won) if is_yes else not market.yes_won
    return total_shares - total_cost if won else -total_cost


@dataclass(slots=True)
class _TradeGroup:
    market: Market
    is_yes: bool
    claimed: bool
    total_shares: float = 0.0
    total_cost: float = 0.0


class MarketService:
    """Read-only facade over indexed markets used by the API."""

    def __init__(self, session: Session):
        self._session = session
        self._market_repo = MarketRepository(session)
        self._position_repo = PositionRepository(session)

    def list_markets(self) -> list[MarketSchema]:
        markets = self._market_repo.list_markets(with_children=True)
        return [MarketSchema.model_validate(market) for market in markets]

    def get_market(self, market_id: int) -> MarketSchema | None:
        market = self._market_repo.get_market_with_children(market_id)
        if market is None:
            return None
        return MarketSchema.model_validate(market)

    def market_fees(self, market_id: int) -> MarketFees | None:
        if not self._market_repo.market_exists(market_id):
            return None
        total_volume = sum(
            position_cost(position) for position in self._position_repo.list_for_market(market_id)
        )
        return MarketFees(total_volume=total_volume, creator_fees=total_volume * CREATOR_FEE_RATE)

    def list_positions(self, user_address: str) -> list[PositionWithMarket]:
        positions = self._position_repo.list_for_user(user_address)
        return [PositionWithMarket.model_validate(position) for position in positions]

    def position_details(self, user_address: str) -> list[PositionDetail]:
        positions = sorted(
            self._position_repo.list_for_user(user_address),
            key=lambda position: (position.created_at, position.id),
            reverse=True,
        )
        return [
            PositionDetail(
                dtf_id=position.market_id,
                dtf_name=position.market.name,
                position_type=side_label(position.is_yes_position),
                shares=position.share_amount,
                entry_price=format_usd(price_to_float(position.entry_price), 6),
                total_cost=format_usd(position_cost(position), 6),
                status=status_label(position.market),
                claimed=position.claimed,
                created_at=position.created_at,
            )
            for position in positions
        ]

    def list_trades(self, user_address: str) -> list[Trade]:
        groups = self._group_trades(self._position_repo.list_for_user(user_address, newest_first=True))
        trades: list[Trade] = []
        for group in groups:
            market = group.market
            average_entry = group.total_cost / group.total_shares if group.total_shares else 0.0
            roi = compute_roi(
                total_shares=group.total_shares,
                total_cost=group.total_cost,
                is_yes=group.is_yes,
                market=market,
            )
            trades.append(
                Trade(
                    dtf_id=market.id,
                    dtf_name=market.name,
                    position=side_label(group.is_yes),
                    shares=group.total_shares,
                    average_entry_price=format_usd(average_entry, 6),
                    total_cost=format_usd(group.total_cost),
                    roi=format_roi(roi),
                    status=status_label(market),
                    claimed=group.claimed,
                    yes_won=market.yes_won,
                    can_claim=market.is_settled and not group.claimed,
                    dtf=MarketBase.model_validate(market),
                )
            )
        return trades

    @staticmethod
    def _group_trades(positions: Sequence[Position]) -> list[_TradeGroup]:
        groups: dict[tuple[int, bool], _TradeGroup] = {}
        for position in positions:
            key = (position.market_id, position.is_yes_position)
            group = groups.get(key)
            if group is None:
                group = _TradeGroup(
                    market=position.market,
                    is_yes=position.is_yes_position,
                    claimed=position.claimed,
                )
                groups[key] = group
            group.total_shares += position.share_amount
            group.total_cost += position_cost(position)
        return list(groups.values())

    def claim(self, user_address: str, market_id: int) -> int:
        claimed = self._position_repo.mark_claimed(market_id, user_address)
        self._session.commit()
        return claimed
