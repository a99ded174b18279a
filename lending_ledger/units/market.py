"""
market.py - Leveraged Trading Markets

A market unit carries the leverage and maintenance parameters the margin
engine reads when opening and liquidating leveraged positions. It holds no
balances and its terms never change after registration.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Any

from ..core import LedgerView, Unit, UNIT_TYPE_MARKET, UnitNotRegistered, _freeze_state
from ..fixed_point import BPS, checked_mul, mul_div


@dataclass(frozen=True, slots=True)
class MarketTerms:
    """
    Immutable market parameters (basis points; leverage 10000 = 1x).
    """
    symbol: str
    max_leverage: int
    optimal_leverage: int
    maintenance_margin_ratio: int
    liquidation_fee: int


def load_market(view: LedgerView, symbol: str) -> MarketTerms:
    """
    Raises:
        UnitNotRegistered: If no market is registered under symbol
    """
    if not view.has_unit(symbol):
        raise UnitNotRegistered(f"Market {symbol} not registered")
    raw = view.get_unit_state(symbol)
    return MarketTerms(
        symbol=symbol,
        max_leverage=raw['max_leverage'],
        optimal_leverage=raw['optimal_leverage'],
        maintenance_margin_ratio=raw['maintenance_margin_ratio'],
        liquidation_fee=raw['liquidation_fee'],
    )


def to_state_dict(terms: MarketTerms) -> Dict[str, Any]:
    return {
        'max_leverage': terms.max_leverage,
        'optimal_leverage': terms.optimal_leverage,
        'maintenance_margin_ratio': terms.maintenance_margin_ratio,
        'liquidation_fee': terms.liquidation_fee,
    }


def calculate_margin_requirement(size: int, price: int, maintenance_margin_ratio: int) -> int:
    """
    Maintenance margin for a position of size units at price.

    Example:
        >>> calculate_margin_requirement(10, 100, 500)
        50
    """
    return mul_div(checked_mul(size, price), maintenance_margin_ratio, BPS)


def create_market(
    symbol: str,
    max_leverage: int = 100_000,
    optimal_leverage: int = 50_000,
    maintenance_margin_ratio: int = 500,
    liquidation_fee: int = 100,
) -> Unit:
    """
    Create a leveraged trading market.

    Args:
        symbol: Market identifier (e.g., "BTC-PERP"); also the key for trade prices
        max_leverage: Highest leverage a position may open at (bps, >= 10000)
        optimal_leverage: Advisory leverage (bps, between 10000 and max_leverage)
        maintenance_margin_ratio: Maintenance ratio used for liquidation prices (bps)
        liquidation_fee: Fee charged on liquidation (bps)

    Raises:
        ValueError: On any parameter outside its range
    """
    if not symbol or not symbol.strip():
        raise ValueError("symbol cannot be empty")
    if max_leverage < BPS:
        raise ValueError(f"max_leverage must be at least 10000, got {max_leverage}")
    if not BPS <= optimal_leverage <= max_leverage:
        raise ValueError(
            f"optimal_leverage must be in [10000, {max_leverage}], got {optimal_leverage}"
        )
    if not 0 < maintenance_margin_ratio <= BPS:
        raise ValueError(
            f"maintenance_margin_ratio must be in (0, 10000], got {maintenance_margin_ratio}"
        )
    if not 0 <= liquidation_fee <= BPS:
        raise ValueError(f"liquidation_fee must be in [0, 10000], got {liquidation_fee}")

    terms = MarketTerms(
        symbol=symbol,
        max_leverage=max_leverage,
        optimal_leverage=optimal_leverage,
        maintenance_margin_ratio=maintenance_margin_ratio,
        liquidation_fee=liquidation_fee,
    )
    return Unit(
        symbol=symbol,
        name=f"{symbol} market",
        unit_type=UNIT_TYPE_MARKET,
        _frozen_state=_freeze_state(to_state_dict(terms)),
    )
