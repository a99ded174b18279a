"""
lending_ledger - Accounting and Risk Core for Cross-Collateralized Lending

Reserves, user positions, health factors, liquidations and leveraged trading
margin on top of an atomic double-entry ledger.

Usage:
    from lending_ledger import (
        Ledger, token, create_reserve, compute_deposit, compute_borrow, SYSTEM_WALLET,
    )

    ledger = Ledger("main")
    ledger.register_unit(token("USDC", "USD Coin"))
    ledger.register_unit(create_reserve("RSV_USDC", "USDC", "vault:USDC"))
    for wallet in ("alice", "vault:USDC", SYSTEM_WALLET):
        ledger.register_wallet(wallet)

    snapshot = {"RSV_USDC": (1, 8000)}
    ledger.execute(compute_deposit(ledger, "alice", "RSV_USDC", 1000, snapshot))
    ledger.execute(compute_borrow(ledger, "alice", "RSV_USDC", 500, snapshot))
"""

# Core types
from .core import (
    LedgerView,
    SmartContract,
    Move,
    Transaction,
    PendingTransaction,
    TransactionOrigin,
    OriginType,
    PriceSnapshot,
    build_transaction,
    empty_pending_transaction,
    Unit,
    UnitStateChange,
    ExecuteResult,
    token,
    SYSTEM_WALLET,
    UNIT_TYPE_TOKEN,
    UNIT_TYPE_RESERVE,
    UNIT_TYPE_POSITION,
    UNIT_TYPE_MARKET,
    # Errors
    LedgerError,
    MathOverflow,
    InvariantViolation,
    InsufficientFunds,
    BalanceConstraintViolation,
    InvalidAmount,
    InsufficientLiquidity,
    InsufficientCollateral,
    HealthFactorTooLow,
    WithdrawalExceedsBalance,
    CannotLiquidate,
    CloseFactorExceeded,
    LeverageExceedsMaximum,
    InvalidLeverage,
    PositionAlreadyClosed,
    PositionNotLiquidatable,
    LendingNotEnabled,
    MaxLendingCapacityReached,
    MinLendingDurationNotMet,
    NotFound,
    UnitNotRegistered,
    WalletNotRegistered,
    CollateralNotFound,
    DebtNotFound,
    PositionNotFound,
    CapacityExceeded,
    MaxCollateralsReached,
    MaxDebtsReached,
    MaxPositionsReached,
    StalePrecondition,
    ClockRegression,
    MissingPrice,
    StalePrice,
)

# Ledger
from .ledger import Ledger

# Arithmetic
from .fixed_point import BPS, INDEX_ONE, SECONDS_PER_YEAR, HEALTH_FACTOR_MAX, U64_MAX, U128_MAX

# Interest rate model
from .interest import (
    InterestRateCurve,
    calculate_utilization,
    calculate_borrow_rate,
    calculate_supply_rate,
    calculate_lending_rate,
    compound_index,
)

# Units
from .units.reserve import (
    ReserveTerms,
    ReserveState,
    create_reserve,
    load_reserve,
    calculate_rates,
    calculate_refresh,
    compute_refresh,
    reserve_contract,
)
from .units.position import (
    CollateralEntry,
    DebtEntry,
    LeveragedPosition,
    PositionState,
    SIDE_LONG,
    SIDE_SHORT,
    STATUS_OPEN,
    STATUS_CLOSED,
    STATUS_LIQUIDATED,
    create_position,
    load_position,
    position_symbol,
)
from .units.market import MarketTerms, create_market, load_market

# Engines
from .risk import (
    calculate_health_factor,
    borrowing_capacity,
    max_borrowable,
    available_trading_collateral,
    compute_health_factor,
)
from .liquidation import (
    LiquidationResult,
    is_liquidatable,
    max_liquidation_value,
    calculate_seized_collateral,
    find_optimal_debt_to_liquidate,
    execute_liquidation,
)
from .margin import (
    CloseResult,
    LiquidationRecord,
    open_position,
    close_position,
    liquidate_position,
    monitor,
    apply_funding,
    calculate_liquidation_price,
    calculate_pnl,
    signed_pnl,
)

# Operations
from .operations import (
    compute_deposit,
    compute_withdraw,
    compute_borrow,
    compute_repay,
    compute_set_collateral,
    compute_claim_yield,
    compute_liquidation,
    compute_open_trade,
    compute_close_trade,
    compute_monitor,
    compute_funding,
    total_yield_earned,
    transact,
    position_contract,
)

# Lifecycle
from .lifecycle_engine import LifecycleEngine, default_contracts

# Pricing
from .pricing_source import PricingSource, StaticPricingSource, TimeSeriesPricingSource, build_snapshot

# Configuration
from .config import ProtocolConfig, DEFAULT_CONFIG, load_config
from .logging_setup import configure_logging

__version__ = '1.0.0'
