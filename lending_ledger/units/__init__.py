"""
Units module - Factory functions and state adapters for protocol units.

- Reserve units: one liquidity pool per asset, with interest indices
- Position units: one per user, holding collateral, debt and leveraged trades
- Market units: leverage and maintenance parameters for trading

All unit factories and related functions are re-exported here for convenience.
"""

# Reserve units
from .reserve import (
    ReserveTerms,
    ReserveState,
    ReserveRates,
    create_reserve,
    load_reserve,
    calculate_rates,
    calculate_refresh,
    calculate_deposit_to_scaled,
    calculate_scaled_to_amount,
    calculate_borrow_to_scaled,
    calculate_scaled_to_debt,
    calculate_lending_capacity,
    calculate_available_liquidity,
    compute_refresh,
    reserve_contract,
)

# Position units
from .position import (
    CollateralEntry,
    DebtEntry,
    LeveragedPosition,
    PositionState,
    MAX_COLLATERALS,
    MAX_DEBTS,
    MAX_LEVERAGED_POSITIONS,
    SIDE_LONG,
    SIDE_SHORT,
    STATUS_OPEN,
    STATUS_CLOSED,
    STATUS_LIQUIDATED,
    create_position,
    load_position,
    position_symbol,
    add_collateral,
    remove_collateral,
    add_debt,
    remove_debt,
    repay_debt,
    debt_owed,
    mark_debts,
    set_collateral_flag,
)

# Market units
from .market import (
    MarketTerms,
    create_market,
    load_market,
    calculate_margin_requirement,
)
