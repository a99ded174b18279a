"""
operations.py - User-Facing Protocol Operations

Every operation follows the same shape:

    1. Load the units it touches and refresh their reserves to view.current_time
       (two reserves are refreshed in sorted symbol order)
    2. Run the pure engines (position, risk, liquidation, margin)
    3. Return ONE PendingTransaction holding the token moves and the
       before/after unit states

Nothing here mutates the ledger. A compute_* function either raises before
any transaction exists or returns a transaction the ledger applies
atomically; the ledger rejects it if any unit changed in between.

Example:
    snapshot = {"RSV_USDC": (1, 8000), "RSV_SOL": (150, 7500)}
    tx = compute_deposit(ledger, "alice", "RSV_SOL", 10, snapshot)
    ledger.execute(tx)
    tx = compute_borrow(ledger, "alice", "RSV_USDC", 500, snapshot)
    ledger.execute(tx)
"""

from __future__ import annotations
from dataclasses import replace
import logging
from typing import Dict, Any, List, Mapping, Optional, Tuple

from .config import ProtocolConfig, DEFAULT_CONFIG
from .core import (
    LedgerView, Move, PendingTransaction, PriceSnapshot, Unit, UnitStateChange,
    TransactionOrigin, OriginType,
    build_transaction, empty_pending_transaction,
    InvalidAmount, InsufficientCollateral, InsufficientLiquidity, HealthFactorTooLow,
    LendingNotEnabled, MaxLendingCapacityReached, MinLendingDurationNotMet,
    MissingPrice, CollateralNotFound, DebtNotFound,
)
from .fixed_point import BPS, checked_add, checked_mul, checked_sub, mul_div
from .liquidation import execute_liquidation
from .margin import open_position, close_position, monitor, apply_funding
from .risk import borrowing_capacity, calculate_health_factor, current_borrow_indices, total_debt_value
from .units.market import load_market
from .units.position import (
    CollateralEntry, PositionState,
    create_position, find_collateral, find_debt, load_position, position_symbol,
    state_from_dict, to_state_dict as position_to_state_dict,
    add_collateral, remove_collateral, add_debt, repay_debt, set_collateral_flag,
    debt_owed, mark_debts,
)
from .units.reserve import (
    ReserveTerms, ReserveState,
    load_reserve, to_state_dict as reserve_to_state_dict,
    calculate_refresh, calculate_rates, calculate_deposit, calculate_withdrawal,
    calculate_deposit_to_scaled, calculate_scaled_to_amount, calculate_borrow_to_scaled,
    calculate_available_liquidity,
    compute_refresh,
)

logger = logging.getLogger(__name__)


# ============================================================================
# HELPERS
# ============================================================================

def _require_positive(amount: int, what: str) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmount(f"{what} amount must be an int, got {type(amount).__name__}")
    if amount <= 0:
        raise InvalidAmount(f"{what} amount must be positive, got {amount}")


def _refresh(view: LedgerView, symbol: str) -> Tuple[ReserveTerms, ReserveState, ReserveState]:
    """Load a reserve; returns (terms, stored state, state refreshed to now)."""
    terms, state = load_reserve(view, symbol)
    return terms, state, calculate_refresh(terms, state, view.current_time)


def _reserve_change(symbol: str, terms: ReserveTerms, old: ReserveState, new: ReserveState) -> UnitStateChange:
    return UnitStateChange(
        unit=symbol,
        old_state=reserve_to_state_dict(terms, old),
        new_state=reserve_to_state_dict(terms, new),
    )


def _position_change(old: PositionState, new: PositionState) -> UnitStateChange:
    return UnitStateChange(
        unit=position_symbol(old.owner),
        old_state=position_to_state_dict(old),
        new_state=position_to_state_dict(new),
    )


def _load_or_create_position(view: LedgerView, owner: str) -> Tuple[PositionState, Optional[Unit]]:
    """Load owner's position, or build a fresh unit to register in the same transaction."""
    if view.has_unit(position_symbol(owner)):
        return load_position(view, owner), None
    unit = create_position(owner, view.current_time)
    return state_from_dict(unit.state), unit


def _valued(view: LedgerView, position: PositionState) -> PositionState:
    """position with each debt marked to what it owes at the current borrow index."""
    return mark_debts(position, current_borrow_indices(view, position))


def _refresh_health(view: LedgerView, position: PositionState, snapshot: PriceSnapshot) -> Tuple[int, PositionState]:
    health_factor, _ = calculate_health_factor(_valued(view, position), snapshot)
    return health_factor, replace(
        position, health_factor=health_factor, last_updated=view.current_time
    )


def _require_margin_cover(position: PositionState, snapshot: PriceSnapshot, action: str) -> None:
    """Collateral left must still cover borrowed value plus locked trading margin."""
    if position.locked_trading_margin == 0:
        return
    _, raw = borrowing_capacity(position, snapshot)
    usage = checked_add(total_debt_value(position, snapshot), position.locked_trading_margin)
    if raw < usage:
        raise InsufficientCollateral(
            f"Collateral value {raw} after {action} would not cover debt and locked "
            f"trading margin {usage}"
        )


def _require_health(health_factor: int, minimum: int, action: str) -> None:
    if health_factor < minimum:
        raise HealthFactorTooLow(
            f"Health factor after {action} would be {health_factor}, minimum is {minimum}"
        )


def _origin(source: str, unit_symbol: str, event_type: str) -> TransactionOrigin:
    return TransactionOrigin(OriginType.USER_ACTION, source, unit_symbol, event_type)


# ============================================================================
# YIELD
# ============================================================================

def calculate_accrued_yield(entry: CollateralEntry, state: ReserveState) -> int:
    """Interest earned by a deposit since its principal was last settled."""
    current = calculate_scaled_to_amount(state, entry.amount_scaled)
    if current <= entry.amount_principal:
        return 0
    return current - entry.amount_principal


def total_yield_earned(position: PositionState, reserves: Mapping[str, ReserveState]) -> int:
    """Accrued yield across every deposit whose reserve state is supplied."""
    total = 0
    for entry in position.collaterals:
        if entry.reserve in reserves:
            total = checked_add(total, calculate_accrued_yield(entry, reserves[entry.reserve]))
    return total


# ============================================================================
# LENDING OPERATIONS
# ============================================================================

def compute_deposit(
    view: LedgerView,
    owner: str,
    reserve: str,
    amount: int,
    snapshot: PriceSnapshot,
    use_as_collateral: bool = True,
    lend: bool = False,
    config: ProtocolConfig = DEFAULT_CONFIG,
) -> PendingTransaction:
    """
    Deposit tokens into a reserve.

    The owner's position unit is created in the same transaction on the
    first deposit. A lending deposit also counts toward the reserve's lending
    supply and restarts the entry's minimum holding period.

    Raises:
        InvalidAmount: If amount is not positive
        LendingNotEnabled: If lend is set on a reserve without lending
        MaxLendingCapacityReached: If lending supply would exceed max_lending_ratio
        MaxCollateralsReached: If a new entry is needed and the position is full
    """
    _require_positive(amount, "Deposit")
    now = view.current_time
    terms, stored, state = _refresh(view, reserve)
    position, new_unit = _load_or_create_position(view, owner)

    if lend and not terms.lending_enabled:
        raise LendingNotEnabled(f"{reserve} does not accept lending deposits")

    scaled = calculate_deposit_to_scaled(state, amount)
    new_state = calculate_deposit(state, amount, lend)
    if lend:
        cap = mul_div(new_state.total_deposited, terms.max_lending_ratio, BPS)
        if new_state.total_lent > cap:
            raise MaxLendingCapacityReached(
                f"{reserve} lending supply {new_state.total_lent} would exceed cap {cap}"
            )

    new_position = add_collateral(
        position, reserve, amount, scaled,
        is_collateral=use_as_collateral,
        is_lending=lend,
        deposit_time=now,
        max_entries=config.max_collaterals,
    )
    _, new_position = _refresh_health(view, new_position, snapshot)

    logger.debug("%s deposits %d %s into %s", owner, amount, terms.asset, reserve)
    moves = [Move(amount, terms.asset, owner, terms.vault_wallet, f"deposit_{reserve}")]
    changes = [
        _reserve_change(reserve, terms, stored, new_state),
        _position_change(position, new_position),
    ]
    return build_transaction(
        view, moves, changes, _origin(owner, reserve, "DEPOSIT"),
        units_to_create=(new_unit,) if new_unit is not None else None,
    )


def compute_withdraw(
    view: LedgerView,
    owner: str,
    reserve: str,
    amount: int,
    snapshot: PriceSnapshot,
    config: ProtocolConfig = DEFAULT_CONFIG,
) -> PendingTransaction:
    """
    Withdraw principal from a deposit.

    Raises:
        InvalidAmount: If amount is not positive
        CollateralNotFound: If the owner has no deposit in reserve
        MinLendingDurationNotMet: If a lending deposit is still locked
        WithdrawalExceedsBalance: If amount exceeds the deposit principal
        InsufficientLiquidity: If the reserve cannot pay out amount
        InsufficientCollateral: If what is left cannot cover locked trading margin
        HealthFactorTooLow: If the position would fall below min_health_factor
    """
    _require_positive(amount, "Withdrawal")
    now = view.current_time
    terms, stored, state = _refresh(view, reserve)
    position = load_position(view, owner)

    entry = find_collateral(position, reserve)
    if entry is None:
        raise CollateralNotFound(f"{owner} has no deposit in {reserve}")
    if entry.is_lending and now < entry.deposit_time + terms.min_lending_duration:
        raise MinLendingDurationNotMet(
            f"{owner}'s lending deposit in {reserve} unlocks at "
            f"{entry.deposit_time + terms.min_lending_duration}, now is {now}"
        )

    new_position, _ = remove_collateral(position, reserve, amount)
    liquidity = calculate_available_liquidity(state)
    if liquidity < amount:
        raise InsufficientLiquidity(f"{reserve} liquidity {liquidity} < withdrawal {amount}")
    new_state = calculate_withdrawal(state, amount, entry.is_lending)
    _require_margin_cover(_valued(view, new_position), snapshot, "withdrawal")

    health_factor, new_position = _refresh_health(view, new_position, snapshot)
    _require_health(health_factor, config.min_health_factor, "withdrawal")

    logger.debug("%s withdraws %d %s from %s", owner, amount, terms.asset, reserve)
    moves = [Move(amount, terms.asset, terms.vault_wallet, owner, f"withdraw_{reserve}")]
    changes = [
        _reserve_change(reserve, terms, stored, new_state),
        _position_change(position, new_position),
    ]
    return build_transaction(view, moves, changes, _origin(owner, reserve, "WITHDRAW"))


def compute_borrow(
    view: LedgerView,
    owner: str,
    reserve: str,
    amount: int,
    snapshot: PriceSnapshot,
    config: ProtocolConfig = DEFAULT_CONFIG,
) -> PendingTransaction:
    """
    Borrow tokens against the position's collateral.

    The recorded debt is amount plus the reserve's borrow fee; only amount
    leaves the vault.

    Raises:
        InvalidAmount: If amount is not positive
        InsufficientLiquidity: If the reserve cannot lend amount (or the fee-inclusive debt)
        MissingPrice: If reserve is unpriced
        InsufficientCollateral: If total debt value would exceed weighted collateral
        MaxDebtsReached: If a new entry is needed and the position is full
        HealthFactorTooLow: If the position would fall below min_health_factor
    """
    _require_positive(amount, "Borrow")
    terms, stored, state = _refresh(view, reserve)
    position = load_position(view, owner)

    liquidity = calculate_available_liquidity(state)
    if liquidity < amount:
        raise InsufficientLiquidity(f"{reserve} liquidity {liquidity} < borrow {amount}")
    if reserve not in snapshot:
        raise MissingPrice(f"No price for {reserve}")
    price, _ = snapshot[reserve]

    fee = mul_div(amount, terms.borrow_fee, BPS)
    debt = checked_add(amount, fee)

    weighted, _ = borrowing_capacity(position, snapshot)
    needed = checked_add(total_debt_value(_valued(view, position), snapshot), checked_mul(debt, price))
    if needed > weighted:
        raise InsufficientCollateral(
            f"Debt value {needed} would exceed weighted collateral {weighted}"
        )

    new_state = replace(state, total_borrowed=checked_add(state.total_borrowed, debt))
    if new_state.total_borrowed > new_state.total_deposited:
        raise InsufficientLiquidity(
            f"{reserve} borrows {new_state.total_borrowed} would exceed deposits "
            f"{new_state.total_deposited}"
        )

    rate = calculate_rates(terms, state).borrow_rate
    new_position = add_debt(
        position, reserve, debt, calculate_borrow_to_scaled(state, debt), rate,
        max_entries=config.max_debts,
    )
    health_factor, new_position = _refresh_health(view, new_position, snapshot)
    _require_health(health_factor, config.min_health_factor, "borrow")

    logger.debug("%s borrows %d %s from %s (fee %d)", owner, amount, terms.asset, reserve, fee)
    moves = [Move(amount, terms.asset, terms.vault_wallet, owner, f"borrow_{reserve}")]
    changes = [
        _reserve_change(reserve, terms, stored, new_state),
        _position_change(position, new_position),
    ]
    return build_transaction(view, moves, changes, _origin(owner, reserve, "BORROW"))


def compute_repay(
    view: LedgerView,
    payer: str,
    owner: str,
    reserve: str,
    amount: int,
    snapshot: PriceSnapshot,
) -> PendingTransaction:
    """
    Repay an owner's debt from payer's wallet.

    The debt owes its scaled amount at the current borrow index. Interest is
    paid before principal and stays in the vault; only the principal share
    reduces total_borrowed. Overpayment is capped at what is owed.

    Raises:
        InvalidAmount: If amount is not positive
        DebtNotFound: If the owner has no debt in reserve
    """
    _require_positive(amount, "Repay")
    terms, stored, state = _refresh(view, reserve)
    position = load_position(view, owner)

    entry = find_debt(position, reserve)
    if entry is None:
        raise DebtNotFound(f"{owner} has no debt in {reserve}")
    actual = min(amount, debt_owed(entry, state.borrow_index))

    new_position, principal = repay_debt(position, reserve, actual, state.borrow_index)
    new_state = replace(state, total_borrowed=checked_sub(state.total_borrowed, principal))
    _, new_position = _refresh_health(view, new_position, snapshot)

    logger.debug("%s repays %d %s of %s's debt in %s", payer, actual, terms.asset, owner, reserve)
    moves = [Move(actual, terms.asset, payer, terms.vault_wallet, f"repay_{reserve}")]
    changes = [
        _reserve_change(reserve, terms, stored, new_state),
        _position_change(position, new_position),
    ]
    return build_transaction(view, moves, changes, _origin(payer, reserve, "REPAY"))


def compute_set_collateral(
    view: LedgerView,
    owner: str,
    reserve: str,
    enabled: bool,
    snapshot: PriceSnapshot,
    config: ProtocolConfig = DEFAULT_CONFIG,
) -> PendingTransaction:
    """
    Toggle whether a deposit backs the owner's debt.

    Raises:
        CollateralNotFound: If the owner has no deposit in reserve
        InsufficientCollateral: If disabling would uncover locked trading margin
        HealthFactorTooLow: If disabling would leave the position unhealthy
    """
    position = load_position(view, owner)
    new_position = set_collateral_flag(position, reserve, enabled)
    if not enabled:
        _require_margin_cover(_valued(view, new_position), snapshot, "disabling collateral")
    health_factor, new_position = _refresh_health(view, new_position, snapshot)
    if not enabled:
        _require_health(health_factor, config.min_health_factor, "disabling collateral")

    return build_transaction(
        view, [], [_position_change(position, new_position)],
        _origin(owner, reserve, "SET_COLLATERAL"),
    )


def compute_claim_yield(
    view: LedgerView,
    owner: str,
    reserve: str,
    reinvest: bool,
    snapshot: PriceSnapshot,
) -> PendingTransaction:
    """
    Settle a deposit's accrued yield.

    Reinvesting folds the yield into principal and the reserve's deposits.
    Claiming pays it out of the vault and rescales the entry so that only the
    principal remains.

    Raises:
        CollateralNotFound: If the owner has no deposit in reserve
        InvalidAmount: If no yield has accrued
        InsufficientLiquidity: If the vault cannot pay the yield out
    """
    terms, stored, state = _refresh(view, reserve)
    position = load_position(view, owner)

    entry = find_collateral(position, reserve)
    if entry is None:
        raise CollateralNotFound(f"{owner} has no deposit in {reserve}")
    accrued = calculate_accrued_yield(entry, state)
    if accrued == 0:
        raise InvalidAmount(f"No yield accrued on {owner}'s deposit in {reserve}")

    moves: List[Move] = []
    if reinvest:
        updated = replace(entry, amount_principal=checked_add(entry.amount_principal, accrued))
        new_state = replace(state, total_deposited=checked_add(state.total_deposited, accrued))
    else:
        liquidity = calculate_available_liquidity(state)
        if liquidity < accrued:
            raise InsufficientLiquidity(f"{reserve} liquidity {liquidity} < yield {accrued}")
        updated = replace(entry, amount_scaled=calculate_deposit_to_scaled(state, entry.amount_principal))
        new_state = state
        moves.append(Move(accrued, terms.asset, terms.vault_wallet, owner, f"yield_{reserve}"))

    new_position = replace(
        position,
        collaterals=tuple(updated if c.reserve == reserve else c for c in position.collaterals),
    )
    _, new_position = _refresh_health(view, new_position, snapshot)

    logger.info(
        "%s %s %d %s of yield from %s",
        owner, "reinvests" if reinvest else "claims", accrued, terms.asset, reserve,
    )
    changes = [_position_change(position, new_position)]
    if new_state != stored:
        changes.insert(0, _reserve_change(reserve, terms, stored, new_state))
    return build_transaction(view, moves, changes, _origin(owner, reserve, "CLAIM_YIELD"))


def compute_liquidation(
    view: LedgerView,
    liquidator: str,
    owner: str,
    debt_reserve: str,
    collateral_reserve: str,
    amount: int,
    snapshot: PriceSnapshot,
    config: ProtocolConfig = DEFAULT_CONFIG,
) -> PendingTransaction:
    """
    Repay part of an unhealthy position's debt and seize its collateral.

    The liquidator pays amount of the debt asset into the debt vault and
    receives the bonus-marked collateral from the collateral vault. The
    position's cached health factor is not refreshed.

    Raises:
        CannotLiquidate, CloseFactorExceeded, InsufficientCollateral,
        MissingPrice, DebtNotFound, CollateralNotFound: See execute_liquidation()
    """
    _require_positive(amount, "Liquidation")
    now = view.current_time

    loaded: Dict[str, Tuple[ReserveTerms, ReserveState, ReserveState]] = {}
    for symbol in sorted({debt_reserve, collateral_reserve}):
        loaded[symbol] = _refresh(view, symbol)
    position = load_position(view, owner)

    debt_terms, debt_stored, debt_state = loaded[debt_reserve]
    coll_terms, coll_stored, coll_state = loaded[collateral_reserve]
    result = execute_liquidation(
        position, debt_reserve, collateral_reserve, amount, snapshot,
        debt_terms, debt_state, coll_state,
        close_factor=config.close_factor,
        min_health_factor=config.min_health_factor,
        borrow_indices=current_borrow_indices(view, position),
    )
    new_position = replace(result.position, last_updated=now)

    changes = [_reserve_change(debt_reserve, debt_terms, debt_stored, result.debt_reserve)]
    if collateral_reserve != debt_reserve:
        changes.append(
            _reserve_change(collateral_reserve, coll_terms, coll_stored, result.collateral_reserve)
        )
    changes.append(_position_change(position, new_position))

    logger.info(
        "%s liquidates %s: repays %d %s, seizes %d %s",
        liquidator, owner, result.repaid, debt_terms.asset, result.seized, coll_terms.asset,
    )
    moves = [
        Move(result.repaid, debt_terms.asset, liquidator, debt_terms.vault_wallet,
             f"liquidation_repay_{debt_reserve}"),
        Move(result.seized, coll_terms.asset, coll_terms.vault_wallet, liquidator,
             f"liquidation_seize_{collateral_reserve}"),
    ]
    return build_transaction(view, moves, changes, _origin(liquidator, debt_reserve, "LIQUIDATE"))


# ============================================================================
# TRADING OPERATIONS
# ============================================================================

def compute_open_trade(
    view: LedgerView,
    owner: str,
    market: str,
    side: str,
    size: int,
    price: int,
    leverage: int,
    snapshot: PriceSnapshot,
    client_id: Optional[str] = None,
    config: ProtocolConfig = DEFAULT_CONFIG,
) -> PendingTransaction:
    """
    Open a leveraged position. No tokens move; margin is locked inside the
    position against its collateral.

    Raises:
        See margin.open_position()
    """
    now = view.current_time
    terms = load_market(view, market)
    position = load_position(view, owner)
    new_position, opened = open_position(
        position, terms, side, size, price, leverage, snapshot, now,
        client_id=client_id,
        haircut=config.trading_collateral_haircut,
        min_leverage_health_factor=config.min_leverage_health_factor,
        max_positions=config.max_leveraged_positions,
        borrow_indices=current_borrow_indices(view, position),
    )
    _, new_position = _refresh_health(view, new_position, snapshot)

    logger.info(
        "%s opens %s %s #%d: size %d at %d, leverage %d, margin %d",
        owner, side, market, opened.id, size, price, leverage, opened.margin_used,
    )
    return build_transaction(
        view, [], [_position_change(position, new_position)],
        _origin(owner, market, "OPEN_TRADE"),
    )


def compute_close_trade(
    view: LedgerView,
    owner: str,
    position_id: int,
    exit_price: int,
    snapshot: PriceSnapshot,
) -> PendingTransaction:
    """
    Close a leveraged position at a settled exit price, booking PnL net of
    funding into the position's realized_pnl.
    """
    position = load_position(view, owner)
    result = close_position(position, position_id, exit_price)
    _, new_position = _refresh_health(view, result.position, snapshot)

    logger.info(
        "%s closes %s #%d at %d: pnl %d",
        owner, result.closed.market, position_id, exit_price, result.pnl,
    )
    return build_transaction(
        view, [], [_position_change(position, new_position)],
        _origin(owner, result.closed.market, "CLOSE_TRADE"),
    )


def compute_monitor(
    view: LedgerView,
    owner: str,
    current_prices: Mapping[str, int],
    snapshot: Optional[PriceSnapshot] = None,
) -> PendingTransaction:
    """
    Liquidate the owner's leveraged positions that crossed their liquidation
    price. Returns an empty transaction when nothing is liquidated.

    The health factor is refreshed only when a collateral snapshot is given.
    """
    now = view.current_time
    position = load_position(view, owner)
    new_position, records = monitor(position, current_prices)
    if not records:
        return empty_pending_transaction(view)

    for record in records:
        logger.warning(
            "Liquidated %s's %s %s #%d at %d: loss %d, margin left %d",
            owner, record.side, record.market, record.position_id, record.price,
            record.loss, record.remaining_margin,
        )
    if snapshot is not None:
        _, new_position = _refresh_health(view, new_position, snapshot)
    else:
        new_position = replace(new_position, last_updated=now)

    symbol = position_symbol(owner)
    origin = TransactionOrigin(OriginType.LIFECYCLE, "margin", symbol, "MONITOR")
    return build_transaction(view, [], [_position_change(position, new_position)], origin)


def compute_funding(
    view: LedgerView,
    owner: str,
    rates: Mapping[str, int],
) -> PendingTransaction:
    """
    Accrue one funding period (rate_bps_per_hour per market) onto the
    owner's open positions. Bookkeeping only: funding settles on close.
    """
    position = load_position(view, owner)
    new_position = apply_funding(position, rates)
    if new_position == position:
        return empty_pending_transaction(view)

    symbol = position_symbol(owner)
    origin = TransactionOrigin(OriginType.LIFECYCLE, "margin", symbol, "FUNDING")
    return build_transaction(view, [], [_position_change(position, new_position)], origin)


# ============================================================================
# DISPATCH
# ============================================================================

def _require(kwargs: Dict[str, Any], name: str, event_type: str, symbol: str) -> Any:
    value = kwargs.get(name)
    if value is None:
        raise ValueError(f"Missing '{name}' parameter for {event_type} event on {symbol}")
    return value


def transact(
    view: LedgerView,
    symbol: str,
    event_type: str,
    now: int,
    **kwargs
) -> PendingTransaction:
    """
    Unified entry point routing an event to its compute_* function.

    symbol names the unit the event targets: a reserve for pool events, a
    market for OPEN_TRADE and FUNDING, and a position (POS_<owner>) for
    CLOSE_TRADE and MONITOR.

    Args:
        view: Read-only ledger access
        symbol: Target unit symbol
        event_type: One of:
            - REFRESH
            - DEPOSIT: owner, amount, snapshot (use_as_collateral, lend optional)
            - WITHDRAW: owner, amount, snapshot
            - BORROW: owner, amount, snapshot
            - REPAY: owner, amount, snapshot (payer defaults to owner)
            - SET_COLLATERAL: owner, enabled, snapshot
            - CLAIM_YIELD: owner, snapshot (reinvest defaults to False)
            - LIQUIDATE: liquidator, owner, collateral_reserve, amount, snapshot
            - OPEN_TRADE: owner, side, size, price, leverage, snapshot (client_id optional)
            - FUNDING: owner, rate
            - CLOSE_TRADE: position_id, exit_price, snapshot
            - MONITOR: prices (snapshot optional)
        now: Event time; must equal the ledger's current time
        **kwargs: Event-specific parameters (config is passed through where used)

    Raises:
        ValueError: On an unknown event, a missing parameter, or a mismatched time

    Example:
        tx = transact(ledger, "RSV_USDC", "DEPOSIT", ledger.current_time,
                      owner="alice", amount=1000, snapshot=snapshot)
    """
    if now != view.current_time:
        raise ValueError(f"Event time {now} does not match ledger time {view.current_time}")
    config = kwargs.get('config') or DEFAULT_CONFIG

    if event_type == 'REFRESH':
        return compute_refresh(view, symbol)

    elif event_type == 'DEPOSIT':
        return compute_deposit(
            view,
            _require(kwargs, 'owner', event_type, symbol),
            symbol,
            _require(kwargs, 'amount', event_type, symbol),
            _require(kwargs, 'snapshot', event_type, symbol),
            use_as_collateral=kwargs.get('use_as_collateral', True),
            lend=kwargs.get('lend', False),
            config=config,
        )

    elif event_type == 'WITHDRAW':
        return compute_withdraw(
            view,
            _require(kwargs, 'owner', event_type, symbol),
            symbol,
            _require(kwargs, 'amount', event_type, symbol),
            _require(kwargs, 'snapshot', event_type, symbol),
            config=config,
        )

    elif event_type == 'BORROW':
        return compute_borrow(
            view,
            _require(kwargs, 'owner', event_type, symbol),
            symbol,
            _require(kwargs, 'amount', event_type, symbol),
            _require(kwargs, 'snapshot', event_type, symbol),
            config=config,
        )

    elif event_type == 'REPAY':
        owner = _require(kwargs, 'owner', event_type, symbol)
        return compute_repay(
            view,
            kwargs.get('payer') or owner,
            owner,
            symbol,
            _require(kwargs, 'amount', event_type, symbol),
            _require(kwargs, 'snapshot', event_type, symbol),
        )

    elif event_type == 'SET_COLLATERAL':
        return compute_set_collateral(
            view,
            _require(kwargs, 'owner', event_type, symbol),
            symbol,
            _require(kwargs, 'enabled', event_type, symbol),
            _require(kwargs, 'snapshot', event_type, symbol),
            config=config,
        )

    elif event_type == 'CLAIM_YIELD':
        return compute_claim_yield(
            view,
            _require(kwargs, 'owner', event_type, symbol),
            symbol,
            kwargs.get('reinvest', False),
            _require(kwargs, 'snapshot', event_type, symbol),
        )

    elif event_type == 'LIQUIDATE':
        return compute_liquidation(
            view,
            _require(kwargs, 'liquidator', event_type, symbol),
            _require(kwargs, 'owner', event_type, symbol),
            symbol,
            _require(kwargs, 'collateral_reserve', event_type, symbol),
            _require(kwargs, 'amount', event_type, symbol),
            _require(kwargs, 'snapshot', event_type, symbol),
            config=config,
        )

    elif event_type == 'OPEN_TRADE':
        return compute_open_trade(
            view,
            _require(kwargs, 'owner', event_type, symbol),
            symbol,
            _require(kwargs, 'side', event_type, symbol),
            _require(kwargs, 'size', event_type, symbol),
            _require(kwargs, 'price', event_type, symbol),
            _require(kwargs, 'leverage', event_type, symbol),
            _require(kwargs, 'snapshot', event_type, symbol),
            client_id=kwargs.get('client_id'),
            config=config,
        )

    elif event_type == 'FUNDING':
        return compute_funding(
            view,
            _require(kwargs, 'owner', event_type, symbol),
            {symbol: _require(kwargs, 'rate', event_type, symbol)},
        )

    elif event_type == 'CLOSE_TRADE':
        owner = view.get_unit_state(symbol)['owner']
        return compute_close_trade(
            view,
            owner,
            _require(kwargs, 'position_id', event_type, symbol),
            _require(kwargs, 'exit_price', event_type, symbol),
            _require(kwargs, 'snapshot', event_type, symbol),
        )

    elif event_type == 'MONITOR':
        owner = view.get_unit_state(symbol)['owner']
        return compute_monitor(
            view,
            owner,
            _require(kwargs, 'prices', event_type, symbol),
            kwargs.get('snapshot'),
        )

    else:
        raise ValueError(f"Unknown event type '{event_type}' for {symbol}")


# ============================================================================
# SMART CONTRACT
# ============================================================================

def position_contract(
    view: LedgerView,
    symbol: str,
    timestamp: int,
    prices: Dict[str, int],
) -> PendingTransaction:
    """
    SmartContract function for the LifecycleEngine: liquidates leveraged
    positions whose market price (keyed by market symbol in prices) has
    crossed their liquidation price.
    """
    state = view.get_unit_state(symbol)
    if not state.get('leveraged'):
        return empty_pending_transaction(view)
    return compute_monitor(view, state['owner'], prices)
