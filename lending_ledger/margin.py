"""
margin.py - Leveraged Trading Margin Engine

Opens, closes, funds and liquidates leveraged positions inside a user's
PositionState. Prices are settled inputs from the trading venue; this module
only sizes margin and keeps the books.

State machine (per leveraged position):
    OPEN -> CLOSED       close_position()
    OPEN -> LIQUIDATED   liquidate_position() / monitor()
Both targets are terminal and the entry leaves the position.

Key Formulas:
    notional          = size * price
    required_margin   = notional * 10000 / leverage
    impact            = maintenance_margin_ratio * leverage / 10000
    liquidation_price = entry * (10000 - impact) / 10000     (LONG, 0 if impact >= 10000)
                      = entry * (10000 + impact) / 10000     (SHORT)
    pnl               = |exit - entry| * size * leverage / 10000
    funding           = notional * |rate_bps_per_hour| / 1_000_000  (signed by rate, flipped for SHORT)
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from typing import List, Mapping, Optional, Tuple

from .core import (
    PriceSnapshot,
    InvalidAmount, InvalidLeverage, LeverageExceedsMaximum, InsufficientCollateral,
    HealthFactorTooLow, PositionAlreadyClosed, PositionNotLiquidatable,
    MaxPositionsReached,
)
from .fixed_point import (
    BPS, checked_add, checked_mul, checked_sub, checked_signed_add, checked_signed_sub, mul_div,
)
from .risk import (
    DEFAULT_TRADING_HAIRCUT,
    available_trading_collateral, borrowing_capacity, leveraged_exposure, total_debt_value,
)
from .units.market import MarketTerms
from .units.position import (
    LeveragedPosition, PositionState,
    MAX_LEVERAGED_POSITIONS, SIDE_LONG, SIDE_SHORT,
    STATUS_OPEN, STATUS_CLOSED, STATUS_LIQUIDATED,
    find_leveraged, mark_debts, open_leveraged,
)


MIN_LEVERAGE_HEALTH_FACTOR = 12000
FUNDING_DENOMINATOR = 1_000_000


@dataclass(frozen=True, slots=True)
class CloseResult:
    position: PositionState
    closed: LeveragedPosition
    pnl: int


@dataclass(frozen=True, slots=True)
class LiquidationRecord:
    """A leveraged position removed by liquidation and what was left of its margin."""
    position_id: int
    market: str
    side: str
    price: int
    loss: int
    remaining_margin: int


# ============================================================================
# PURE CALCULATIONS
# ============================================================================

def calculate_liquidation_price(side: str, entry_price: int, leverage: int, maintenance_margin_ratio: int) -> int:
    """
    Price at which a position is liquidated.

    Example:
        >>> calculate_liquidation_price(SIDE_LONG, 100, 100_000, 500)
        50
    """
    impact = mul_div(maintenance_margin_ratio, leverage, BPS)
    if side == SIDE_LONG:
        if impact >= BPS:
            return 0
        return mul_div(entry_price, BPS - impact, BPS)
    if side == SIDE_SHORT:
        return mul_div(entry_price, checked_add(BPS, impact), BPS)
    raise ValueError(f"Unknown side: {side}")


def calculate_pnl(side: str, entry_price: int, exit_price: int, size: int, leverage: int) -> Tuple[int, bool]:
    """
    Returns:
        (magnitude, is_profit)
    """
    if side not in (SIDE_LONG, SIDE_SHORT):
        raise ValueError(f"Unknown side: {side}")
    diff = abs(exit_price - entry_price)
    magnitude = mul_div(checked_mul(diff, size), leverage, BPS)
    if side == SIDE_LONG:
        is_profit = exit_price > entry_price
    else:
        is_profit = exit_price < entry_price
    return magnitude, is_profit


def signed_pnl(side: str, entry_price: int, exit_price: int, size: int, leverage: int) -> int:
    magnitude, is_profit = calculate_pnl(side, entry_price, exit_price, size, leverage)
    return magnitude if is_profit else -magnitude


def is_at_liquidation_price(position: LeveragedPosition, price: int) -> bool:
    if position.side == SIDE_LONG:
        return price <= position.liquidation_price
    return price >= position.liquidation_price


def _require_open(position: LeveragedPosition) -> None:
    if not position.is_open:
        raise PositionAlreadyClosed(f"Leveraged position {position.id} is {position.status}")


def _without(position: PositionState, position_id: int) -> Tuple[LeveragedPosition, ...]:
    return tuple(p for p in position.leveraged if p.id != position_id)


# ============================================================================
# STATE TRANSITIONS
# ============================================================================

def open_position(
    position: PositionState,
    market: MarketTerms,
    side: str,
    size: int,
    price: int,
    leverage: int,
    snapshot: PriceSnapshot,
    now: int,
    client_id: Optional[str] = None,
    haircut: int = DEFAULT_TRADING_HAIRCUT,
    min_leverage_health_factor: int = MIN_LEVERAGE_HEALTH_FACTOR,
    max_positions: int = MAX_LEVERAGED_POSITIONS,
    borrow_indices: Optional[Mapping[str, int]] = None,
) -> Tuple[PositionState, LeveragedPosition]:
    """
    Open a leveraged position backed by the user's collateral.

    Args:
        position: User's position
        market: Market terms (max leverage, maintenance ratio)
        side: SIDE_LONG or SIDE_SHORT
        size: Position size in market units
        price: Settled entry price
        leverage: Basis points, 10000 = 1x
        snapshot: Collateral prices keyed by reserve symbol
        now: Open time
        client_id: Optional caller reference
        borrow_indices: Borrow index per reserve, so existing debt is valued
            with accrued interest

    Returns:
        (new position, opened LeveragedPosition)

    Raises:
        InvalidLeverage: If leverage < 10000
        LeverageExceedsMaximum: If leverage > market.max_leverage
        InsufficientCollateral: If available trading collateral < required margin
        HealthFactorTooLow: If the simulated health factor < min_leverage_health_factor
        MaxPositionsReached: If the position already holds max_positions trades
    """
    if side not in (SIDE_LONG, SIDE_SHORT):
        raise ValueError(f"Unknown side: {side}")
    if leverage < BPS:
        raise InvalidLeverage(f"Leverage must be at least 10000, got {leverage}")
    if leverage > market.max_leverage:
        raise LeverageExceedsMaximum(
            f"Leverage {leverage} exceeds {market.symbol} maximum {market.max_leverage}"
        )
    if size <= 0 or price <= 0:
        raise InvalidAmount(f"Size and price must be positive, got size={size} price={price}")

    notional = checked_mul(size, price)
    required_margin = mul_div(notional, BPS, leverage)

    valued = mark_debts(position, borrow_indices or {})
    available = available_trading_collateral(valued, snapshot, haircut)
    if available < required_margin:
        raise InsufficientCollateral(
            f"Required margin {required_margin} exceeds available trading collateral {available}"
        )

    weighted, _ = borrowing_capacity(position, snapshot)
    remaining = weighted - required_margin if weighted > required_margin else 0
    exposure = checked_add(
        checked_add(total_debt_value(valued, snapshot), leveraged_exposure(position)),
        notional,
    )
    simulated = mul_div(remaining, BPS, exposure)
    if simulated < min_leverage_health_factor:
        raise HealthFactorTooLow(
            f"Health factor after open would be {simulated}, "
            f"minimum is {min_leverage_health_factor}"
        )

    if len(position.leveraged) >= max_positions:
        raise MaxPositionsReached(
            f"{position.owner} already has {len(position.leveraged)} leveraged positions"
        )

    opened = LeveragedPosition(
        id=max((p.id for p in position.leveraged), default=0) + 1,
        market=market.symbol,
        side=side,
        size=size,
        entry_price=price,
        leverage=leverage,
        margin_used=required_margin,
        notional_value=notional,
        liquidation_price=calculate_liquidation_price(
            side, price, leverage, market.maintenance_margin_ratio
        ),
        status=STATUS_OPEN,
        opened_at=now,
        client_id=client_id,
    )
    new_position = replace(
        position,
        leveraged=position.leveraged + (opened,),
        locked_trading_margin=checked_add(position.locked_trading_margin, required_margin),
    )
    return new_position, opened


def close_position(position: PositionState, position_id: int, exit_price: int) -> CloseResult:
    """
    Close a leveraged position at a settled exit price.

    Releases its margin and books pnl net of accrued funding into realized_pnl.

    Raises:
        PositionNotFound: If position_id is unknown
        PositionAlreadyClosed: If the position is not OPEN
        InvalidAmount: If exit_price is not positive
    """
    if exit_price <= 0:
        raise InvalidAmount(f"Exit price must be positive, got {exit_price}")
    target = find_leveraged(position, position_id)
    _require_open(target)

    pnl = signed_pnl(target.side, target.entry_price, exit_price, target.size, target.leverage)
    closed = replace(target, status=STATUS_CLOSED)
    new_position = replace(
        position,
        leveraged=_without(position, position_id),
        locked_trading_margin=checked_sub(position.locked_trading_margin, target.margin_used),
        realized_pnl=checked_signed_sub(
            checked_signed_add(position.realized_pnl, pnl), target.funding_accrued
        ),
    )
    return CloseResult(position=new_position, closed=closed, pnl=pnl)


def liquidate_position(
    position: PositionState,
    position_id: int,
    price: int,
) -> Tuple[PositionState, LiquidationRecord]:
    """
    Liquidate a leveraged position whose price has reached its liquidation price.

    The margin left over is margin_used - loss, floored at 0; nothing is left
    when the price is 0 or the position shows a profit. The margin consumed
    is booked as a realized loss.

    Raises:
        PositionNotFound: If position_id is unknown
        PositionAlreadyClosed: If the position is not OPEN
        PositionNotLiquidatable: If price has not reached the liquidation price
    """
    target = find_leveraged(position, position_id)
    _require_open(target)
    if not is_at_liquidation_price(target, price):
        raise PositionNotLiquidatable(
            f"Position {position_id} at {price} has not reached {target.liquidation_price}"
        )

    loss, is_profit = calculate_pnl(target.side, target.entry_price, price, target.size, target.leverage)
    if price == 0 or is_profit or loss >= target.margin_used:
        remaining = 0
    else:
        remaining = target.margin_used - loss

    record = LiquidationRecord(
        position_id=target.id,
        market=target.market,
        side=target.side,
        price=price,
        loss=0 if is_profit else loss,
        remaining_margin=remaining,
    )
    new_position = replace(
        position,
        leveraged=_without(position, position_id),
        locked_trading_margin=checked_sub(position.locked_trading_margin, target.margin_used),
        realized_pnl=checked_signed_sub(position.realized_pnl, target.margin_used - remaining),
    )
    return new_position, record


def monitor(
    position: PositionState,
    current_prices: Mapping[str, int],
) -> Tuple[PositionState, List[LiquidationRecord]]:
    """
    Liquidate every open position whose market price has crossed its
    liquidation price. Markets without a price are skipped.
    """
    flagged = [
        p for p in open_leveraged(position)
        if p.market in current_prices and is_at_liquidation_price(p, current_prices[p.market])
    ]
    records = []
    for p in reversed(flagged):
        position, record = liquidate_position(position, p.id, current_prices[p.market])
        records.append(record)
    return position, records


def apply_funding(position: PositionState, rates: Mapping[str, int]) -> PositionState:
    """
    Accrue one funding period onto open positions.

    rates maps market -> signed rate_bps_per_hour; positive means longs pay.
    """
    updated = []
    for p in position.leveraged:
        if not p.is_open or p.market not in rates:
            updated.append(p)
            continue
        rate = rates[p.market]
        amount = mul_div(p.notional_value, abs(rate), FUNDING_DENOMINATOR)
        if rate < 0:
            amount = -amount
        if p.side == SIDE_SHORT:
            amount = -amount
        updated.append(replace(p, funding_accrued=checked_signed_add(p.funding_accrued, amount)))
    return replace(position, leveraged=tuple(updated))
