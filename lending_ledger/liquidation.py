"""
liquidation.py - Liquidation Engine

Decides when a position may be liquidated, how much of its debt a single
liquidation may repay, and how much collateral the liquidator receives.

Key Formulas:
    liquidatable      = health_factor < 10000
    max_liquidation   = total_debt_value * close_factor / 10000
    seized_collateral = amount * debt_price * (10000 + bonus) / 10000 / collateral_price

execute_liquidation() is pure: it returns the new position and reserve states
without touching the ledger. The position's cached health factor is left as
it was before the liquidation; the next mutating operation refreshes it.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from typing import Mapping, Optional, Tuple

from .core import (
    PriceSnapshot,
    CannotLiquidate, CloseFactorExceeded, InsufficientCollateral, InsufficientLiquidity,
    InvalidAmount, MissingPrice, WithdrawalExceedsBalance,
    CollateralNotFound, DebtNotFound,
)
from .fixed_point import BPS, checked_add, checked_mul, checked_sub, mul_div
from .risk import calculate_health_factor, total_debt_value
from .units.position import (
    PositionState, debt_owed, find_collateral, find_debt, mark_debts, remove_collateral, repay_debt,
)
from .units.reserve import ReserveTerms, ReserveState, calculate_withdrawal


DEFAULT_CLOSE_FACTOR = 5000
MIN_HEALTH_FACTOR = 10000


@dataclass(frozen=True, slots=True)
class LiquidationResult:
    """
    Outcome of one liquidation.

    When debt and collateral live in the same reserve, debt_reserve and
    collateral_reserve are the same combined state.
    """
    position: PositionState
    debt_reserve: ReserveState
    collateral_reserve: ReserveState
    repaid: int
    seized: int


def _price(snapshot: PriceSnapshot, reserve: str) -> int:
    if reserve not in snapshot:
        raise MissingPrice(f"No price for {reserve}")
    price, _ = snapshot[reserve]
    if price == 0:
        raise MissingPrice(f"Zero price for {reserve}")
    return price


def is_liquidatable(
    position: PositionState,
    snapshot: PriceSnapshot,
    min_health_factor: int = MIN_HEALTH_FACTOR,
) -> bool:
    health_factor, _ = calculate_health_factor(position, snapshot)
    return health_factor < min_health_factor


def max_liquidation_value(
    position: PositionState,
    snapshot: PriceSnapshot,
    close_factor: int = DEFAULT_CLOSE_FACTOR,
) -> int:
    """Largest debt value one liquidation may repay."""
    return mul_div(total_debt_value(position, snapshot), close_factor, BPS)


def calculate_seized_collateral(
    amount: int,
    debt_price: int,
    collateral_price: int,
    liquidation_bonus: int,
) -> int:
    """
    Collateral tokens paid to a liquidator who repays amount of debt.

    Raises:
        MissingPrice: If collateral_price is 0

    Example:
        >>> calculate_seized_collateral(100, 1, 1, 500)
        105
    """
    if collateral_price == 0:
        raise MissingPrice("Collateral price is zero")
    value = checked_mul(amount, debt_price)
    with_bonus = mul_div(value, checked_add(BPS, liquidation_bonus), BPS)
    return with_bonus // collateral_price


def find_optimal_debt_to_liquidate(
    position: PositionState,
    snapshot: PriceSnapshot,
    close_factor: int = DEFAULT_CLOSE_FACTOR,
) -> Optional[Tuple[str, int]]:
    """
    Pick which debt to liquidate and how much of it.

    Prefers the largest debt that fits entirely under the close-factor cap;
    otherwise takes the pro-rata share of the largest debt. Ties go to the
    entry seen first.

    Returns:
        (reserve, amount), or None if no debt is priced or the pro-rata
        share rounds to nothing
    """
    cap = max_liquidation_value(position, snapshot, close_factor)
    best_fit: Optional[Tuple[str, int, int]] = None
    largest: Optional[Tuple[str, int, int]] = None

    for entry in position.debts:
        if entry.reserve not in snapshot:
            continue
        price, _ = snapshot[entry.reserve]
        value = checked_mul(entry.amount_principal, price)
        if value <= cap and (best_fit is None or value > best_fit[2]):
            best_fit = (entry.reserve, entry.amount_principal, value)
        if largest is None or value > largest[2]:
            largest = (entry.reserve, entry.amount_principal, value)

    if best_fit is not None:
        return best_fit[0], best_fit[1]
    if largest is not None:
        reserve, amount, value = largest
        partial = mul_div(cap, amount, value)
        if partial > 0:
            return reserve, partial
    return None


def execute_liquidation(
    position: PositionState,
    debt_reserve: str,
    collateral_reserve: str,
    amount: int,
    snapshot: PriceSnapshot,
    debt_terms: ReserveTerms,
    debt_state: ReserveState,
    collateral_state: ReserveState,
    close_factor: int = DEFAULT_CLOSE_FACTOR,
    min_health_factor: int = MIN_HEALTH_FACTOR,
    borrow_indices: Optional[Mapping[str, int]] = None,
) -> LiquidationResult:
    """
    Repay amount of the position's debt in exchange for bonus-marked collateral.

    Args:
        position: Borrower's position
        debt_reserve: Reserve symbol of the debt being repaid
        collateral_reserve: Reserve symbol of the collateral being seized
        amount: Debt tokens repaid by the liquidator
        snapshot: Prices keyed by reserve symbol
        debt_terms: Terms of debt_reserve (supplies the liquidation bonus)
        debt_state: Refreshed state of debt_reserve
        collateral_state: Refreshed state of collateral_reserve; ignored when
            both symbols are the same
        close_factor: Share of total debt value one liquidation may repay
        min_health_factor: Health factor below which liquidation is allowed
        borrow_indices: Borrow index per reserve for valuing the other debts
            with interest; debt_reserve always uses debt_state.borrow_index

    Raises:
        CannotLiquidate: If the position is healthy
        MissingPrice: If either reserve is unpriced
        DebtNotFound / CollateralNotFound: If an entry is missing
        WithdrawalExceedsBalance: If amount exceeds what the debt owes
        CloseFactorExceeded: If amount is worth more than the cap
        InsufficientCollateral: If the entry cannot cover the seizure
        InsufficientLiquidity: If the collateral vault cannot pay out the seizure
    """
    if amount <= 0:
        raise InvalidAmount(f"Liquidation amount must be positive, got {amount}")
    indices = {**(borrow_indices or {}), debt_reserve: debt_state.borrow_index}
    valued = mark_debts(position, indices)
    if not is_liquidatable(valued, snapshot, min_health_factor):
        raise CannotLiquidate(f"{position.owner} is not liquidatable")

    debt_price = _price(snapshot, debt_reserve)
    collateral_price = _price(snapshot, collateral_reserve)

    debt = find_debt(position, debt_reserve)
    if debt is None:
        raise DebtNotFound(f"{position.owner} has no debt in {debt_reserve}")
    owed = debt_owed(debt, debt_state.borrow_index)
    if amount > owed:
        raise WithdrawalExceedsBalance(
            f"Cannot repay {amount} of {debt_reserve}: {owed} is owed"
        )

    cap = max_liquidation_value(valued, snapshot, close_factor)
    if checked_mul(amount, debt_price) > cap:
        raise CloseFactorExceeded(
            f"Repay value {amount * debt_price} exceeds close-factor cap {cap}"
        )

    seized = calculate_seized_collateral(
        amount, debt_price, collateral_price, debt_terms.liquidation_bonus
    )
    collateral = find_collateral(position, collateral_reserve)
    if collateral is None:
        raise CollateralNotFound(f"{position.owner} has no collateral in {collateral_reserve}")
    if seized == 0:
        raise InvalidAmount(f"Liquidating {amount} of {debt_reserve} seizes no collateral")
    if collateral.amount_principal < seized:
        raise InsufficientCollateral(
            f"Seizure of {seized} exceeds collateral principal {collateral.amount_principal}"
        )

    new_position, principal = repay_debt(position, debt_reserve, amount, debt_state.borrow_index)
    new_position, _ = remove_collateral(new_position, collateral_reserve, seized)

    new_debt_state = replace(debt_state, total_borrowed=checked_sub(debt_state.total_borrowed, principal))
    base = new_debt_state if collateral_reserve == debt_reserve else collateral_state
    if base.total_deposited - base.total_borrowed < seized:
        raise InsufficientLiquidity(
            f"{collateral_reserve} cannot pay out {seized}: "
            f"liquidity is {base.total_deposited - base.total_borrowed}"
        )
    new_collateral_state = calculate_withdrawal(base, seized, collateral.is_lending)
    if collateral_reserve == debt_reserve:
        new_debt_state = new_collateral_state

    return LiquidationResult(
        position=new_position,
        debt_reserve=new_debt_state,
        collateral_reserve=new_collateral_state,
        repaid=amount,
        seized=seized,
    )
