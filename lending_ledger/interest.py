"""
interest.py - Interest Rate Model

Pure functions mapping utilization to rates and compounding indices.
No LedgerView, no hidden state.

Key Formulas (all basis points, annualized):
    utilization  = total_borrowed * 10000 / total_deposited
    borrow_rate  = base + slope1 * u / optimal                              (u < optimal)
                 = base + slope1 + slope2 * (u - optimal) / (10000 - optimal)  (u >= optimal)
    supply_rate  = borrow_rate * u / 10000 * (1 - reserve_factor)
    lending_rate = borrow_rate * min(borrowed / lending_supply, 1) * share
    index'       = index * (10000 + rate * elapsed / SECONDS_PER_YEAR) / 10000
"""

from __future__ import annotations
from dataclasses import dataclass

from .fixed_point import (
    BPS, SECONDS_PER_YEAR,
    checked_add, checked_sub, mul_div, to_u64,
)


DEFAULT_BASE_RATE = 200
DEFAULT_SLOPE1 = 800
DEFAULT_SLOPE2 = 3000


@dataclass(frozen=True, slots=True)
class InterestRateCurve:
    """
    Two-segment piecewise-linear borrow rate curve.

    All values are annualized basis points.
    """
    base_rate: int = DEFAULT_BASE_RATE
    slope1: int = DEFAULT_SLOPE1
    slope2: int = DEFAULT_SLOPE2

    def __post_init__(self):
        for name in ("base_rate", "slope1", "slope2"):
            value = getattr(self, name)
            if not isinstance(value, int) or value < 0:
                raise ValueError(f"{name} must be a non-negative int, got {value!r}")


def calculate_utilization(total_borrowed: int, total_deposited: int) -> int:
    """Utilization in basis points; 0 when nothing is deposited."""
    if total_deposited == 0:
        return 0
    return to_u64(mul_div(total_borrowed, BPS, total_deposited))


def calculate_borrow_rate(
    utilization: int,
    optimal_utilization: int,
    curve: InterestRateCurve,
) -> int:
    """
    Annualized borrow rate for a utilization level.

    Both branches agree at utilization == optimal, so the boundary choice only
    affects rounding, never the value.

    Example:
        >>> calculate_borrow_rate(5000, 8000, InterestRateCurve())
        700
    """
    if utilization < optimal_utilization:
        variable = mul_div(curve.slope1, utilization, optimal_utilization)
        return to_u64(checked_add(curve.base_rate, variable))
    excess = checked_sub(utilization, optimal_utilization)
    headroom = checked_sub(BPS, optimal_utilization)
    steep = mul_div(curve.slope2, excess, headroom)
    return to_u64(checked_add(checked_add(curve.base_rate, curve.slope1), steep))


def calculate_supply_rate(borrow_rate: int, utilization: int, reserve_factor: int) -> int:
    """Rate earned by depositors: borrow_rate * u, less the reserve's cut."""
    gross = mul_div(borrow_rate, utilization, BPS)
    cut = mul_div(gross, reserve_factor, BPS)
    return checked_sub(gross, cut)


def calculate_lending_utilization(total_borrowed: int, available_for_lending: int) -> int:
    """Borrowed share of the lending supply in basis points, capped at 10000."""
    if available_for_lending == 0:
        return 0
    return min(mul_div(total_borrowed, BPS, available_for_lending), BPS)


def calculate_lending_rate(
    borrow_rate: int,
    lending_utilization: int,
    lending_interest_share: int,
) -> int:
    """Rate earned by lending-supply depositors."""
    utilized = mul_div(borrow_rate, lending_utilization, BPS)
    return mul_div(utilized, lending_interest_share, BPS)


def compound_index(index: int, rate: int, elapsed_seconds: int) -> int:
    """
    Advance a fixed-point index by a simple-interest step over elapsed seconds.

    Never decreases the index for non-negative rate and elapsed time. Raises
    MathOverflow if any intermediate leaves the u128 range.

    Example:
        >>> compound_index(10**12, 700, 31_536_000)
        1070000000000
    """
    if elapsed_seconds < 0:
        raise ValueError(f"elapsed_seconds cannot be negative, got {elapsed_seconds}")
    if rate == 0 or elapsed_seconds == 0:
        return index
    increment = mul_div(rate, elapsed_seconds, SECONDS_PER_YEAR)
    factor = checked_add(BPS, increment)
    return mul_div(index, factor, BPS)
