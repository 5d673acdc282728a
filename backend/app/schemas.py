from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class Position(BaseModel):
    id: int
    user_address: str
    market_id: int
    is_yes_position: bool
    share_amount: float
    entry_price: int
    claimed: bool
    claimed_at: datetime | None = None
    transaction_hash: str
    created_at: datetime

    model_config = {"from_attributes": True}


class MarketEvent(BaseModel):
    id: int
    market_id: int
    event_type: str
    transaction_hash: str
    block_number: int
    data: dict[str, Any] | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class MarketBase(BaseModel):
    id: int
    creator_address: str
    name: str
    expiry_time: datetime
    target_valuation: float
    is_target_higher: bool
    yes_token_address: str | None = None
    no_token_address: str | None = None
    yes_pool: float
    no_pool: float
    distribution_pool: float
    is_settled: bool
    yes_won: bool | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class Market(MarketBase):
    positions: list[Position] = Field(default_factory=list)
    events: list[MarketEvent] = Field(default_factory=list)


class PositionWithMarket(Position):
    market: MarketBase


class MarketFees(BaseModel):
    total_volume: float
    creator_fees: float


class PositionDetail(BaseModel):
    dtf_id: int
    dtf_name: str
    position_type: str
    shares: float
    entry_price: str
    total_cost: str
    status: str
    claimed: bool
    created_at: datetime


class Trade(BaseModel):
    dtf_id: int
    dtf_name: str
    position: str
    shares: float
    average_entry_price: str
    total_cost: str
    roi: str
    status: str
    claimed: bool
    yes_won: bool | None = None
    can_claim: bool
    dtf: MarketBase


class ClaimResult(BaseModel):
    success: bool
    claimed_positions: int
