"""
risk.py - Collateral Risk Engine

Pure solvency functions over a PositionState and an explicit price snapshot.
Nothing here reads the ledger except compute_health_factor(), which loads a
position and delegates.

Key Formulas:
    weighted_collateral = sum(principal * price * threshold / 10000)   (is_collateral entries)
    debt_value          = sum(principal * price)                        (debts)
                        + sum(notional - margin_used)                   (OPEN leveraged positions)
    health_factor       = weighted_collateral * 10000 / debt_value      (HEALTH_FACTOR_MAX if no debt)

Entries whose reserve is missing from the snapshot are skipped: an absent
price means unknown, never zero.

Debt entries are valued at their stored principal. Callers that want accrued
interest included pass a position from mark_debts(), as compute_health_factor()
does with current_borrow_indices().
"""

from __future__ import annotations
from dataclasses import replace
from typing import Dict, Tuple

from .core import LedgerView, PriceSnapshot, MissingPrice
from .fixed_point import (
    BPS, HEALTH_FACTOR_MAX,
    checked_add, checked_mul, checked_sub, mul_div,
)
from .units.position import PositionState, load_position, mark_debts, open_leveraged
from .units.reserve import calculate_refresh, load_reserve


DEFAULT_TRADING_HAIRCUT = 8000


def borrowing_capacity(position: PositionState, snapshot: PriceSnapshot) -> Tuple[int, int]:
    """
    Value the position's collateral.

    Returns:
        (weighted_collateral, total_collateral_raw)
    """
    weighted = 0
    raw = 0
    for entry in position.collaterals:
        if not entry.is_collateral or entry.reserve not in snapshot:
            continue
        price, threshold = snapshot[entry.reserve]
        value = checked_mul(entry.amount_principal, price)
        raw = checked_add(raw, value)
        weighted = checked_add(weighted, mul_div(value, threshold, BPS))
    return weighted, raw


def total_debt_value(position: PositionState, snapshot: PriceSnapshot) -> int:
    """Priced value of borrowed debt, excluding leveraged exposure."""
    total = 0
    for entry in position.debts:
        if entry.reserve not in snapshot:
            continue
        price, _ = snapshot[entry.reserve]
        total = checked_add(total, checked_mul(entry.amount_principal, price))
    return total


def leveraged_exposure(position: PositionState) -> int:
    """Borrowed side of open leveraged positions: notional less posted margin."""
    total = 0
    for p in open_leveraged(position):
        total = checked_add(total, checked_sub(p.notional_value, p.margin_used))
    return total


def calculate_health_factor(
    position: PositionState,
    snapshot: PriceSnapshot,
) -> Tuple[int, PositionState]:
    """
    Compute a fresh health factor.

    Returns:
        (health_factor, position carrying the fresh value)

    Example:
        Collateral 100 units at price 2 with threshold 8000 (weighted 160),
        debt 100 units at price 1:
            >>> hf, _ = calculate_health_factor(position, snapshot)
            >>> hf
            16000
    """
    weighted, _ = borrowing_capacity(position, snapshot)
    debt_value = checked_add(total_debt_value(position, snapshot), leveraged_exposure(position))
    if debt_value == 0:
        health_factor = HEALTH_FACTOR_MAX
    else:
        health_factor = min(mul_div(weighted, BPS, debt_value), HEALTH_FACTOR_MAX)
    return health_factor, replace(position, health_factor=health_factor)


def max_borrowable(
    position: PositionState,
    reserve: str,
    snapshot: PriceSnapshot,
    min_health_factor: int = BPS,
) -> int:
    """
    Largest additional amount of reserve's asset that keeps the health factor
    at or above min_health_factor. Borrow fees are not included.

    Raises:
        MissingPrice: If reserve is not in the snapshot
    """
    if reserve not in snapshot:
        raise MissingPrice(f"No price for {reserve}")
    price, _ = snapshot[reserve]
    if price == 0:
        raise MissingPrice(f"Zero price for {reserve}")

    weighted, _ = borrowing_capacity(position, snapshot)
    debt_value = checked_add(total_debt_value(position, snapshot), leveraged_exposure(position))
    allowed = mul_div(weighted, BPS, min_health_factor)
    if debt_value >= allowed:
        return 0
    return (allowed - debt_value) // price


def available_trading_collateral(
    position: PositionState,
    snapshot: PriceSnapshot,
    haircut: int = DEFAULT_TRADING_HAIRCUT,
) -> int:
    """
    Collateral value free for new leveraged margin.

    (raw collateral - borrowed value - open margin) * haircut / 10000,
    or 0 when usage already meets the raw collateral.
    """
    _, raw = borrowing_capacity(position, snapshot)
    usage = total_debt_value(position, snapshot)
    for p in open_leveraged(position):
        usage = checked_add(usage, p.margin_used)
    if usage >= raw:
        return 0
    return mul_div(raw - usage, haircut, BPS)


def current_borrow_indices(view: LedgerView, position: PositionState) -> Dict[str, int]:
    """Borrow index of every reserve the position owes, refreshed to view.current_time."""
    indices = {}
    for entry in position.debts:
        terms, state = load_reserve(view, entry.reserve)
        indices[entry.reserve] = calculate_refresh(terms, state, view.current_time).borrow_index
    return indices


def compute_health_factor(view: LedgerView, owner: str, snapshot: PriceSnapshot) -> int:
    """Read-only: fresh health factor for owner's position, interest included."""
    position = load_position(view, owner)
    marked = mark_debts(position, current_borrow_indices(view, position))
    health_factor, _ = calculate_health_factor(marked, snapshot)
    return health_factor
