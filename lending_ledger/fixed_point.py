"""
fixed_point.py - Checked Integer Arithmetic

Every balance, price, rate and index in the lending core is a plain Python
int. Python ints never wrap, so the bounds below are enforced explicitly:
any result outside [0, bound] raises MathOverflow instead of saturating.

Conventions:
    - Rates, ratios, thresholds and leverage are basis points (BPS = 10_000 = 1.0)
    - Indices are fixed-point with INDEX_ONE = 10**12 = 1.0
    - Division truncates toward zero (floor for the non-negative domain)
"""

from __future__ import annotations

from .core import MathOverflow


# ============================================================================
# CONSTANTS
# ============================================================================

U64_MAX = 2**64 - 1
U128_MAX = 2**128 - 1
I128_MIN = -(2**127)
I128_MAX = 2**127 - 1

BPS = 10_000
INDEX_ONE = 10**12
SECONDS_PER_YEAR = 31_536_000

# Sentinel health factor for positions with no debt-equivalent exposure.
HEALTH_FACTOR_MAX = U64_MAX


# ============================================================================
# CHECKED OPERATIONS
# ============================================================================

def _check(value: int, bound: int, op: str) -> int:
    if value < 0:
        raise MathOverflow(f"{op} underflow: {value}")
    if value > bound:
        raise MathOverflow(f"{op} overflow: {value} > {bound}")
    return value


def checked_add(a: int, b: int, bound: int = U128_MAX) -> int:
    return _check(a + b, bound, "add")


def checked_sub(a: int, b: int, bound: int = U128_MAX) -> int:
    """a - b; raises MathOverflow when b > a."""
    return _check(a - b, bound, "sub")


def checked_mul(a: int, b: int, bound: int = U128_MAX) -> int:
    return _check(a * b, bound, "mul")


def checked_div(a: int, b: int) -> int:
    """Integer division; raises MathOverflow on a zero divisor."""
    if b == 0:
        raise MathOverflow("division by zero")
    if a < 0 or b < 0:
        raise MathOverflow(f"div operands must be non-negative: {a} / {b}")
    return a // b


def mul_div(a: int, b: int, c: int, bound: int = U128_MAX) -> int:
    """
    Compute a * b // c with the intermediate product checked against bound.

    This is the workhorse for every "x * y / scale" in the core.
    """
    return checked_div(checked_mul(a, b, bound), c)


def to_u64(value: int) -> int:
    """Narrow a result to the u64 range (token amounts, rates)."""
    return _check(value, U64_MAX, "u64")


def signed_mul_div(a: int, b: int, c: int) -> int:
    """
    Signed a * b / c, truncating toward zero.

    Magnitudes go through mul_div so the overflow bound still applies;
    the sign is reattached afterwards.
    """
    negative = (a < 0) != (b < 0)
    magnitude = mul_div(abs(a), abs(b), c)
    return -magnitude if negative else magnitude


def checked_signed_add(a: int, b: int) -> int:
    """a + b for signed accumulators (pnl, funding); raises outside the i128 range."""
    value = a + b
    if value < I128_MIN or value > I128_MAX:
        raise MathOverflow(f"signed add out of range: {value}")
    return value


def checked_signed_sub(a: int, b: int) -> int:
    return checked_signed_add(a, -b)
