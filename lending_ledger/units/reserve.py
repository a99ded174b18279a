"""
reserve.py - Reserve Units (one liquidity pool per asset)

This module provides reserve unit creation and interest accrual using the
pure function architecture used across the package.

ARCHITECTURE (Pure Function Pattern):
=====================================

1. FROZEN DATACLASSES (explicit inputs):
   - ReserveTerms: Immutable pool configuration (set at creation, never changes)
   - ReserveState: Immutable snapshot of aggregates and indices

2. PURE CALCULATION FUNCTIONS (calculate_*):
   - Take all inputs explicitly as parameters
   - No LedgerView, no hidden state

3. ADAPTER FUNCTIONS (load_reserve / to_state_dict):
   - The ONLY place that touches LedgerView for reserve reads

4. CONVENIENCE FUNCTIONS (compute_*):
   - Combine loading + pure calculation + transaction building

Key Formulas:
    utilization        = total_borrowed * 10000 / total_deposited
    borrow_index'      = borrow_index * (10000 + borrow_rate * dt / YEAR) / 10000
    lending_index'     = lending_index * (10000 + lending_rate * dt / YEAR) / 10000
    deposit_to_scaled  = amount * 10**12 / lending_index
    scaled_to_amount   = scaled * lending_index / 10**12
"""

from __future__ import annotations
from dataclasses import dataclass, replace
import logging
from typing import Dict, Any, Optional, Tuple

from ..core import (
    LedgerView, PendingTransaction, Unit, UnitStateChange,
    TransactionOrigin, OriginType,
    UNIT_TYPE_RESERVE, ClockRegression, UnitNotRegistered,
    build_transaction, empty_pending_transaction,
    _freeze_state,
)
from ..fixed_point import BPS, INDEX_ONE, checked_add, checked_sub, mul_div
from ..interest import (
    InterestRateCurve,
    calculate_utilization, calculate_borrow_rate, calculate_supply_rate,
    calculate_lending_utilization, calculate_lending_rate, compound_index,
)

logger = logging.getLogger(__name__)


# ============================================================================
# FROZEN DATACLASSES
# ============================================================================

@dataclass(frozen=True, slots=True)
class ReserveTerms:
    """
    Immutable pool configuration - set at creation, never changes.

    Ratios are basis points; min_lending_duration is seconds.
    """
    asset: str
    vault_wallet: str
    optimal_utilization: int
    loan_to_value: int
    liquidation_threshold: int
    liquidation_bonus: int
    borrow_fee: int
    reserve_factor: int
    lending_enabled: bool
    max_lending_ratio: int
    min_lending_duration: int
    lending_fee: int
    lending_interest_share: int
    curve: InterestRateCurve


@dataclass(frozen=True, slots=True)
class ReserveState:
    """
    Immutable snapshot of a reserve's aggregates and indices.

    Each state change creates a NEW instance (value semantics).
    """
    total_deposited: int
    total_borrowed: int
    available_for_lending: int
    total_lent: int
    borrow_index: int
    lending_index: int
    last_update_time: int


@dataclass(frozen=True, slots=True)
class ReserveRates:
    """Current pool analytics (all basis points)."""
    utilization: int
    borrow_rate: int
    supply_rate: int
    lending_rate: int

    @property
    def pool_apy(self) -> int:
        """What depositors earn: the supply rate."""
        return self.supply_rate


# ============================================================================
# ADAPTER FUNCTIONS
# ============================================================================

def load_reserve(view: LedgerView, symbol: str) -> Tuple[ReserveTerms, ReserveState]:
    """
    Load a reserve from ledger state as typed frozen dataclasses.

    Raises:
        UnitNotRegistered: If no reserve is registered under symbol
    """
    if not view.has_unit(symbol):
        raise UnitNotRegistered(f"Reserve {symbol} not registered")
    raw = view.get_unit_state(symbol)
    curve = raw['curve']
    terms = ReserveTerms(
        asset=raw['asset'],
        vault_wallet=raw['vault_wallet'],
        optimal_utilization=raw['optimal_utilization'],
        loan_to_value=raw['loan_to_value'],
        liquidation_threshold=raw['liquidation_threshold'],
        liquidation_bonus=raw['liquidation_bonus'],
        borrow_fee=raw['borrow_fee'],
        reserve_factor=raw['reserve_factor'],
        lending_enabled=raw['lending_enabled'],
        max_lending_ratio=raw['max_lending_ratio'],
        min_lending_duration=raw['min_lending_duration'],
        lending_fee=raw['lending_fee'],
        lending_interest_share=raw['lending_interest_share'],
        curve=InterestRateCurve(curve['base_rate'], curve['slope1'], curve['slope2']),
    )
    state = ReserveState(
        total_deposited=raw['total_deposited'],
        total_borrowed=raw['total_borrowed'],
        available_for_lending=raw['available_for_lending'],
        total_lent=raw['total_lent'],
        borrow_index=raw['borrow_index'],
        lending_index=raw['lending_index'],
        last_update_time=raw['last_update_time'],
    )
    return terms, state


def to_state_dict(terms: ReserveTerms, state: ReserveState) -> Dict[str, Any]:
    """Inverse of load_reserve(); used when building UnitStateChange.new_state."""
    return {
        'asset': terms.asset,
        'vault_wallet': terms.vault_wallet,
        'optimal_utilization': terms.optimal_utilization,
        'loan_to_value': terms.loan_to_value,
        'liquidation_threshold': terms.liquidation_threshold,
        'liquidation_bonus': terms.liquidation_bonus,
        'borrow_fee': terms.borrow_fee,
        'reserve_factor': terms.reserve_factor,
        'lending_enabled': terms.lending_enabled,
        'max_lending_ratio': terms.max_lending_ratio,
        'min_lending_duration': terms.min_lending_duration,
        'lending_fee': terms.lending_fee,
        'lending_interest_share': terms.lending_interest_share,
        'curve': {
            'base_rate': terms.curve.base_rate,
            'slope1': terms.curve.slope1,
            'slope2': terms.curve.slope2,
        },
        'total_deposited': state.total_deposited,
        'total_borrowed': state.total_borrowed,
        'available_for_lending': state.available_for_lending,
        'total_lent': state.total_lent,
        'borrow_index': state.borrow_index,
        'lending_index': state.lending_index,
        'last_update_time': state.last_update_time,
    }


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def calculate_rates(terms: ReserveTerms, state: ReserveState) -> ReserveRates:
    """
    Current utilization and the three annualized rates.

    The lending rate only applies to pools with lending supply; otherwise it
    is reported as the supply rate, which is what the lending index earns.
    """
    utilization = calculate_utilization(state.total_borrowed, state.total_deposited)
    borrow_rate = calculate_borrow_rate(utilization, terms.optimal_utilization, terms.curve)
    supply_rate = calculate_supply_rate(borrow_rate, utilization, terms.reserve_factor)
    if terms.lending_enabled and state.available_for_lending > 0:
        lending_utilization = calculate_lending_utilization(
            state.total_borrowed, state.available_for_lending
        )
        lending_rate = calculate_lending_rate(
            borrow_rate, lending_utilization, terms.lending_interest_share
        )
    else:
        lending_rate = supply_rate
    return ReserveRates(utilization, borrow_rate, supply_rate, lending_rate)


def calculate_refresh(terms: ReserveTerms, state: ReserveState, now: int) -> ReserveState:
    """
    Bring both indices forward to now.

    No-op when nothing is deposited or no time has passed. Indices never
    decrease.

    Raises:
        ClockRegression: If now is earlier than last_update_time
        MathOverflow: If compounding leaves the u128 range
    """
    if now < state.last_update_time:
        raise ClockRegression(
            f"Clock moved backward: {now} < last update {state.last_update_time}"
        )
    if state.total_deposited == 0 or now == state.last_update_time:
        return state

    elapsed = now - state.last_update_time
    rates = calculate_rates(terms, state)
    return replace(
        state,
        borrow_index=compound_index(state.borrow_index, rates.borrow_rate, elapsed),
        lending_index=compound_index(state.lending_index, rates.lending_rate, elapsed),
        last_update_time=now,
    )


def calculate_deposit_to_scaled(state: ReserveState, amount: int) -> int:
    """
    Convert a token amount to lending-index units.

    1:1 while the index is still at INDEX_ONE. A reserve that was emptied
    keeps its grown index, so later deposits are scaled down like any other.
    """
    return mul_div(amount, INDEX_ONE, state.lending_index)


def calculate_scaled_to_amount(state: ReserveState, scaled: int) -> int:
    """Convert lending-index units back to tokens (interest included)."""
    return mul_div(scaled, state.lending_index, INDEX_ONE)


def calculate_borrow_to_scaled(state: ReserveState, amount: int) -> int:
    return mul_div(amount, INDEX_ONE, state.borrow_index)


def calculate_scaled_to_debt(state: ReserveState, scaled: int) -> int:
    return mul_div(scaled, state.borrow_index, INDEX_ONE)


def calculate_lending_capacity(terms: ReserveTerms, state: ReserveState) -> int:
    """Tokens that can still be committed to lending under max_lending_ratio."""
    cap = mul_div(state.total_deposited, terms.max_lending_ratio, BPS)
    if state.total_lent >= cap:
        return 0
    return checked_sub(cap, state.total_lent)


def calculate_available_liquidity(state: ReserveState) -> int:
    """Deposited tokens not currently lent out to borrowers."""
    return checked_sub(state.total_deposited, state.total_borrowed)


def calculate_deposit(state: ReserveState, amount: int, lend: bool = False) -> ReserveState:
    """Add a deposit to the aggregates; lending deposits also count as lending supply."""
    new_state = replace(state, total_deposited=checked_add(state.total_deposited, amount))
    if lend:
        new_state = replace(
            new_state,
            available_for_lending=checked_add(state.available_for_lending, amount),
            total_lent=checked_add(state.total_lent, amount),
        )
    return new_state


def calculate_withdrawal(state: ReserveState, amount: int, lend: bool = False) -> ReserveState:
    """
    Remove a deposit from the aggregates.

    Lending totals are reduced by at most what they hold, so interest credited
    to a lending entry can leave without underflowing them.
    """
    new_state = replace(state, total_deposited=checked_sub(state.total_deposited, amount))
    if lend:
        new_state = replace(
            new_state,
            available_for_lending=state.available_for_lending - min(amount, state.available_for_lending),
            total_lent=state.total_lent - min(amount, state.total_lent),
        )
    return new_state


# ============================================================================
# UNIT FACTORY
# ============================================================================

def create_reserve(
    symbol: str,
    asset: str,
    vault_wallet: str,
    optimal_utilization: int = 8000,
    loan_to_value: int = 7500,
    liquidation_threshold: int = 8000,
    liquidation_bonus: int = 500,
    borrow_fee: int = 0,
    reserve_factor: int = 1000,
    lending_enabled: bool = False,
    max_lending_ratio: int = 8000,
    min_lending_duration: int = 0,
    lending_fee: int = 0,
    lending_interest_share: int = 8000,
    curve: Optional[InterestRateCurve] = None,
    created_at: int = 0,
) -> Unit:
    """
    Create a reserve unit for one asset.

    The reserve holds no balances itself; its tokens sit in vault_wallet,
    which the caller must register with the ledger.

    Args:
        symbol: Reserve identifier (e.g., "RSV_USDC"); also the price snapshot key
        asset: Token symbol held by the reserve
        vault_wallet: Wallet that custodies the reserve's tokens
        optimal_utilization: Kink of the rate curve (bps, exclusive 0..10000)
        loan_to_value: Max borrow ratio (bps, <= 9000)
        liquidation_threshold: Collateral weight in the health factor (bps, <= 9500)
        liquidation_bonus: Liquidator markup on seized collateral (bps, <= 2000)
        borrow_fee: Fee added to new debt (bps)
        reserve_factor: Share of interest withheld from suppliers (bps)
        lending_enabled: Whether deposits may be committed to lending supply
        max_lending_ratio: Max share of deposits committed to lending (bps)
        min_lending_duration: Seconds a lending deposit must stay before withdrawal
        lending_fee: Fee on lending deposits (bps, <= 1000)
        lending_interest_share: Share of borrow interest paid to lenders (bps)
        curve: Interest rate curve (default base=200, slope1=800, slope2=3000)
        created_at: Initial last_update_time

    Raises:
        ValueError: On any parameter outside its range

    Example:
        reserve = create_reserve("RSV_USDC", "USDC", "vault:USDC")
        ledger.register_wallet("vault:USDC")
        ledger.register_unit(reserve)
    """
    if not asset or not asset.strip():
        raise ValueError("asset cannot be empty")
    if not vault_wallet or not vault_wallet.strip():
        raise ValueError("vault_wallet cannot be empty")
    if not 0 < optimal_utilization < BPS:
        raise ValueError(f"optimal_utilization must be in (0, 10000), got {optimal_utilization}")
    if loan_to_value > 9000:
        raise ValueError(f"loan_to_value cannot exceed 9000, got {loan_to_value}")
    if liquidation_threshold > 9500:
        raise ValueError(f"liquidation_threshold cannot exceed 9500, got {liquidation_threshold}")
    if loan_to_value >= liquidation_threshold:
        raise ValueError(
            f"loan_to_value ({loan_to_value}) must be below "
            f"liquidation_threshold ({liquidation_threshold})"
        )
    if liquidation_bonus > 2000:
        raise ValueError(f"liquidation_bonus cannot exceed 2000, got {liquidation_bonus}")
    if max_lending_ratio > BPS:
        raise ValueError(f"max_lending_ratio cannot exceed 10000, got {max_lending_ratio}")
    if lending_fee > 1000:
        raise ValueError(f"lending_fee cannot exceed 1000, got {lending_fee}")
    if lending_interest_share > BPS:
        raise ValueError(f"lending_interest_share cannot exceed 10000, got {lending_interest_share}")
    if reserve_factor > BPS:
        raise ValueError(f"reserve_factor cannot exceed 10000, got {reserve_factor}")
    if borrow_fee > BPS:
        raise ValueError(f"borrow_fee cannot exceed 10000, got {borrow_fee}")
    for name, value in (
        ("loan_to_value", loan_to_value),
        ("liquidation_bonus", liquidation_bonus),
        ("borrow_fee", borrow_fee),
        ("min_lending_duration", min_lending_duration),
        ("lending_fee", lending_fee),
    ):
        if value < 0:
            raise ValueError(f"{name} cannot be negative, got {value}")

    terms = ReserveTerms(
        asset=asset,
        vault_wallet=vault_wallet,
        optimal_utilization=optimal_utilization,
        loan_to_value=loan_to_value,
        liquidation_threshold=liquidation_threshold,
        liquidation_bonus=liquidation_bonus,
        borrow_fee=borrow_fee,
        reserve_factor=reserve_factor,
        lending_enabled=lending_enabled,
        max_lending_ratio=max_lending_ratio,
        min_lending_duration=min_lending_duration,
        lending_fee=lending_fee,
        lending_interest_share=lending_interest_share,
        curve=curve or InterestRateCurve(),
    )
    state = ReserveState(
        total_deposited=0,
        total_borrowed=0,
        available_for_lending=0,
        total_lent=0,
        borrow_index=INDEX_ONE,
        lending_index=INDEX_ONE,
        last_update_time=created_at,
    )
    return Unit(
        symbol=symbol,
        name=f"{asset} reserve",
        unit_type=UNIT_TYPE_RESERVE,
        _frozen_state=_freeze_state(to_state_dict(terms, state)),
    )


# ============================================================================
# CONVENIENCE FUNCTIONS
# ============================================================================

def compute_refresh(view: LedgerView, symbol: str) -> PendingTransaction:
    """
    Refresh a reserve's indices to the ledger's current time.

    Returns an empty transaction when the refresh is a no-op.
    """
    terms, state = load_reserve(view, symbol)
    new_state = calculate_refresh(terms, state, view.current_time)
    if new_state == state:
        return empty_pending_transaction(view)

    logger.debug(
        "Refreshed %s: borrow_index %d -> %d, lending_index %d -> %d",
        symbol, state.borrow_index, new_state.borrow_index,
        state.lending_index, new_state.lending_index,
    )
    change = UnitStateChange(
        unit=symbol,
        old_state=to_state_dict(terms, state),
        new_state=to_state_dict(terms, new_state),
    )
    origin = TransactionOrigin(OriginType.LIFECYCLE, "reserve", symbol, "REFRESH")
    return build_transaction(view, [], [change], origin)


def reserve_contract(
    view: LedgerView,
    symbol: str,
    timestamp: int,
    prices: Dict[str, int],
) -> PendingTransaction:
    """
    SmartContract function for the LifecycleEngine: keeps indices current.
    """
    return compute_refresh(view, symbol)
