"""Fixed-point scales used by the DTF market contract."""

from __future__ import annotations

from decimal import Decimal


VALUATION_DECIMALS = 18
SHARE_DECIMALS = 18
PRICE_DECIMALS = 6


def from_fixed_point(value: int, decimals: int) -> float:
    """Convert an on-chain fixed-point integer into a real number."""

    return float(Decimal(value).scaleb(-decimals))


def price_to_float(price: int) -> float:
    return from_fixed_point(price, PRICE_DECIMALS)
