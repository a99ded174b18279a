"""
position.py - Per-User Position Units

A position aggregates one user's collateral entries, debt entries and
leveraged trading positions. It is created by the user's first deposit and
never deleted; entries are appended and removed as balances reach zero.

ARCHITECTURE (Pure Function Pattern):
=====================================

1. FROZEN DATACLASSES: CollateralEntry, DebtEntry, LeveragedPosition, PositionState
2. PURE MUTATIONS: add_collateral(), remove_collateral(), add_debt(), remove_debt(),
   repay_debt(), set_collateral_flag() - each returns a NEW PositionState
3. ADAPTERS: load_position() / to_state_dict()

Entry collections are bounded; exceeding a bound raises a CapacityExceeded
subclass rather than silently dropping the entry.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from typing import Dict, Any, List, Mapping, Optional, Tuple

from ..core import (
    LedgerView, Unit, UNIT_TYPE_POSITION,
    InvalidAmount, WithdrawalExceedsBalance, MathOverflow,
    CollateralNotFound, DebtNotFound, PositionNotFound, UnitNotRegistered,
    MaxCollateralsReached, MaxDebtsReached,
    _freeze_state,
)
from ..fixed_point import HEALTH_FACTOR_MAX, INDEX_ONE, checked_add, checked_sub, mul_div


MAX_COLLATERALS = 10
MAX_DEBTS = 10
MAX_LEVERAGED_POSITIONS = 10

SIDE_LONG = "LONG"
SIDE_SHORT = "SHORT"

STATUS_OPEN = "OPEN"
STATUS_CLOSED = "CLOSED"
STATUS_LIQUIDATED = "LIQUIDATED"


# ============================================================================
# FROZEN DATACLASSES
# ============================================================================

@dataclass(frozen=True, slots=True)
class CollateralEntry:
    """
    A deposit into one reserve.

    amount_principal is the token amount at last settlement; amount_scaled is
    the same deposit in lending-index units.
    """
    reserve: str
    amount_principal: int
    amount_scaled: int
    is_collateral: bool = True
    is_lending: bool = False
    deposit_time: int = 0


@dataclass(frozen=True, slots=True)
class DebtEntry:
    """
    A borrow from one reserve, scaled against its borrow index.

    amount_principal is the borrowed amount not yet repaid; amount_scaled
    times the current borrow index is what the entry owes, interest included.
    """
    reserve: str
    amount_principal: int
    amount_scaled: int
    rate_at_open: int


@dataclass(frozen=True, slots=True)
class LeveragedPosition:
    """
    One leveraged trade.

    leverage is basis points (10000 = 1x). funding_accrued is signed:
    positive means the holder owes funding.
    """
    id: int
    market: str
    side: str
    size: int
    entry_price: int
    leverage: int
    margin_used: int
    notional_value: int
    liquidation_price: int
    status: str
    opened_at: int
    client_id: Optional[str] = None
    funding_accrued: int = 0

    @property
    def is_open(self) -> bool:
        return self.status == STATUS_OPEN


@dataclass(frozen=True, slots=True)
class PositionState:
    """
    Immutable snapshot of a user's position.

    health_factor is a cache; risk.calculate_health_factor() returns a copy
    with a fresh value.
    """
    owner: str
    collaterals: Tuple[CollateralEntry, ...] = ()
    debts: Tuple[DebtEntry, ...] = ()
    leveraged: Tuple[LeveragedPosition, ...] = ()
    health_factor: int = HEALTH_FACTOR_MAX
    last_updated: int = 0
    locked_trading_margin: int = 0
    realized_pnl: int = 0


# ============================================================================
# ADAPTER FUNCTIONS
# ============================================================================

def position_symbol(owner: str) -> str:
    """Unit symbol under which an owner's position is registered."""
    return f"POS_{owner}"


def _leveraged_from_dict(raw: Dict[str, Any]) -> LeveragedPosition:
    return LeveragedPosition(
        id=raw['id'],
        market=raw['market'],
        side=raw['side'],
        size=raw['size'],
        entry_price=raw['entry_price'],
        leverage=raw['leverage'],
        margin_used=raw['margin_used'],
        notional_value=raw['notional_value'],
        liquidation_price=raw['liquidation_price'],
        status=raw['status'],
        opened_at=raw['opened_at'],
        client_id=raw.get('client_id'),
        funding_accrued=raw.get('funding_accrued', 0),
    )


def leveraged_to_dict(p: LeveragedPosition) -> Dict[str, Any]:
    return {
        'id': p.id,
        'market': p.market,
        'side': p.side,
        'size': p.size,
        'entry_price': p.entry_price,
        'leverage': p.leverage,
        'margin_used': p.margin_used,
        'notional_value': p.notional_value,
        'liquidation_price': p.liquidation_price,
        'status': p.status,
        'opened_at': p.opened_at,
        'client_id': p.client_id,
        'funding_accrued': p.funding_accrued,
    }


def state_from_dict(raw: Dict[str, Any]) -> PositionState:
    """Build a PositionState from a stored state dict."""
    return PositionState(
        owner=raw['owner'],
        collaterals=tuple(
            CollateralEntry(
                reserve=c['reserve'],
                amount_principal=c['amount_principal'],
                amount_scaled=c['amount_scaled'],
                is_collateral=c['is_collateral'],
                is_lending=c['is_lending'],
                deposit_time=c['deposit_time'],
            )
            for c in raw.get('collaterals', [])
        ),
        debts=tuple(
            DebtEntry(
                reserve=d['reserve'],
                amount_principal=d['amount_principal'],
                amount_scaled=d['amount_scaled'],
                rate_at_open=d['rate_at_open'],
            )
            for d in raw.get('debts', [])
        ),
        leveraged=tuple(_leveraged_from_dict(p) for p in raw.get('leveraged', [])),
        health_factor=raw.get('health_factor', HEALTH_FACTOR_MAX),
        last_updated=raw.get('last_updated', 0),
        locked_trading_margin=raw.get('locked_trading_margin', 0),
        realized_pnl=raw.get('realized_pnl', 0),
    )


def to_state_dict(position: PositionState) -> Dict[str, Any]:
    """Inverse of state_from_dict()."""
    return {
        'owner': position.owner,
        'collaterals': [
            {
                'reserve': c.reserve,
                'amount_principal': c.amount_principal,
                'amount_scaled': c.amount_scaled,
                'is_collateral': c.is_collateral,
                'is_lending': c.is_lending,
                'deposit_time': c.deposit_time,
            }
            for c in position.collaterals
        ],
        'debts': [
            {
                'reserve': d.reserve,
                'amount_principal': d.amount_principal,
                'amount_scaled': d.amount_scaled,
                'rate_at_open': d.rate_at_open,
            }
            for d in position.debts
        ],
        'leveraged': [leveraged_to_dict(p) for p in position.leveraged],
        'health_factor': position.health_factor,
        'last_updated': position.last_updated,
        'locked_trading_margin': position.locked_trading_margin,
        'realized_pnl': position.realized_pnl,
    }


def load_position(view: LedgerView, owner: str) -> PositionState:
    """
    Load an owner's position from the ledger.

    Raises:
        UnitNotRegistered: If the owner has never deposited
    """
    symbol = position_symbol(owner)
    if not view.has_unit(symbol):
        raise UnitNotRegistered(f"No position for {owner}")
    return state_from_dict(view.get_unit_state(symbol))


def create_position(owner: str, created_at: int = 0) -> Unit:
    """Create an empty position unit for owner."""
    if not owner or not owner.strip():
        raise ValueError("owner cannot be empty")
    return Unit(
        symbol=position_symbol(owner),
        name=f"Position of {owner}",
        unit_type=UNIT_TYPE_POSITION,
        _frozen_state=_freeze_state(
            to_state_dict(PositionState(owner=owner, last_updated=created_at))
        ),
    )


# ============================================================================
# LOOKUPS
# ============================================================================

def find_collateral(position: PositionState, reserve: str) -> Optional[CollateralEntry]:
    for entry in position.collaterals:
        if entry.reserve == reserve:
            return entry
    return None


def find_debt(position: PositionState, reserve: str) -> Optional[DebtEntry]:
    for entry in position.debts:
        if entry.reserve == reserve:
            return entry
    return None


def find_leveraged(position: PositionState, position_id: int) -> LeveragedPosition:
    """
    Raises:
        PositionNotFound: If no leveraged position has this id
    """
    for entry in position.leveraged:
        if entry.id == position_id:
            return entry
    raise PositionNotFound(f"{position.owner} has no leveraged position {position_id}")


def open_leveraged(position: PositionState) -> List[LeveragedPosition]:
    return [p for p in position.leveraged if p.is_open]


def _replace_entry(entries: tuple, key: str, new_entry) -> tuple:
    """Swap the entry for reserve `key`, or drop it when new_entry is None."""
    result = []
    for entry in entries:
        if entry.reserve == key:
            if new_entry is not None:
                result.append(new_entry)
        else:
            result.append(entry)
    return tuple(result)


def _scaled_to_remove(amount: int, principal: int, scaled: int) -> int:
    if principal == 0:
        raise MathOverflow("entry has zero principal")
    if amount == principal:
        return scaled
    return mul_div(amount, scaled, principal)


# ============================================================================
# MUTATIONS
# ============================================================================

def add_collateral(
    position: PositionState,
    reserve: str,
    amount: int,
    scaled_amount: int,
    is_collateral: bool = True,
    is_lending: bool = False,
    deposit_time: int = 0,
    max_entries: int = MAX_COLLATERALS,
) -> PositionState:
    """
    Add a deposit to the position.

    Merges into an existing entry for the reserve with checked adds, or
    appends a new entry. A lending deposit restarts the entry's lending clock.

    Raises:
        InvalidAmount: If amount is not positive
        MathOverflow: On overflow of either field
        MaxCollateralsReached: If a new entry is needed and the position is full
    """
    if amount <= 0:
        raise InvalidAmount(f"Deposit amount must be positive, got {amount}")

    existing = find_collateral(position, reserve)
    if existing is not None:
        updated = replace(
            existing,
            amount_principal=checked_add(existing.amount_principal, amount),
            amount_scaled=checked_add(existing.amount_scaled, scaled_amount),
            is_lending=existing.is_lending or is_lending,
            deposit_time=deposit_time if is_lending else existing.deposit_time,
        )
        return replace(position, collaterals=_replace_entry(position.collaterals, reserve, updated))

    if len(position.collaterals) >= max_entries:
        raise MaxCollateralsReached(
            f"{position.owner} already has {len(position.collaterals)} collateral entries"
        )
    entry = CollateralEntry(
        reserve=reserve,
        amount_principal=amount,
        amount_scaled=scaled_amount,
        is_collateral=is_collateral,
        is_lending=is_lending,
        deposit_time=deposit_time,
    )
    return replace(position, collaterals=position.collaterals + (entry,))


def remove_collateral(
    position: PositionState,
    reserve: str,
    amount: int,
) -> Tuple[PositionState, int]:
    """
    Remove amount of principal from the reserve's collateral entry.

    scaled_to_remove = amount * amount_scaled / amount_principal; the entry is
    deleted once its principal reaches exactly zero.

    Returns:
        (new position, scaled units removed)

    Raises:
        CollateralNotFound: If there is no entry for reserve
        InvalidAmount: If amount is not positive
        WithdrawalExceedsBalance: If amount > amount_principal
        MathOverflow: If the entry has zero principal
    """
    entry = find_collateral(position, reserve)
    if entry is None:
        raise CollateralNotFound(f"{position.owner} has no collateral in {reserve}")
    if amount <= 0:
        raise InvalidAmount(f"Withdrawal amount must be positive, got {amount}")
    if entry.amount_principal == 0:
        raise MathOverflow(f"{reserve} entry of {position.owner} has zero principal")
    if amount > entry.amount_principal:
        raise WithdrawalExceedsBalance(
            f"Cannot remove {amount} from {reserve}: principal is {entry.amount_principal}"
        )

    scaled = _scaled_to_remove(amount, entry.amount_principal, entry.amount_scaled)
    principal = checked_sub(entry.amount_principal, amount)
    updated = None
    if principal > 0:
        updated = replace(
            entry,
            amount_principal=principal,
            amount_scaled=checked_sub(entry.amount_scaled, scaled),
        )
    return replace(position, collaterals=_replace_entry(position.collaterals, reserve, updated)), scaled


def add_debt(
    position: PositionState,
    reserve: str,
    amount: int,
    scaled_amount: int,
    rate: int,
    max_entries: int = MAX_DEBTS,
) -> PositionState:
    """
    Add debt to the position; symmetric with add_collateral().

    An existing entry keeps its original rate_at_open.

    Raises:
        InvalidAmount: If amount is not positive
        MathOverflow: On overflow of either field
        MaxDebtsReached: If a new entry is needed and the position is full
    """
    if amount <= 0:
        raise InvalidAmount(f"Borrow amount must be positive, got {amount}")

    existing = find_debt(position, reserve)
    if existing is not None:
        updated = replace(
            existing,
            amount_principal=checked_add(existing.amount_principal, amount),
            amount_scaled=checked_add(existing.amount_scaled, scaled_amount),
        )
        return replace(position, debts=_replace_entry(position.debts, reserve, updated))

    if len(position.debts) >= max_entries:
        raise MaxDebtsReached(f"{position.owner} already has {len(position.debts)} debt entries")
    entry = DebtEntry(
        reserve=reserve,
        amount_principal=amount,
        amount_scaled=scaled_amount,
        rate_at_open=rate,
    )
    return replace(position, debts=position.debts + (entry,))


def remove_debt(
    position: PositionState,
    reserve: str,
    amount: int,
) -> Tuple[PositionState, int]:
    """
    Remove amount of principal from the reserve's debt entry.

    Returns:
        (new position, scaled units removed)

    Raises:
        DebtNotFound: If there is no entry for reserve
        InvalidAmount: If amount is not positive
        WithdrawalExceedsBalance: If amount > amount_principal
        MathOverflow: If the entry has zero principal
    """
    entry = find_debt(position, reserve)
    if entry is None:
        raise DebtNotFound(f"{position.owner} has no debt in {reserve}")
    if amount <= 0:
        raise InvalidAmount(f"Repay amount must be positive, got {amount}")
    if entry.amount_principal == 0:
        raise MathOverflow(f"{reserve} entry of {position.owner} has zero principal")
    if amount > entry.amount_principal:
        raise WithdrawalExceedsBalance(
            f"Cannot repay {amount} to {reserve}: principal is {entry.amount_principal}"
        )

    scaled = _scaled_to_remove(amount, entry.amount_principal, entry.amount_scaled)
    principal = checked_sub(entry.amount_principal, amount)
    updated = None
    if principal > 0:
        updated = replace(
            entry,
            amount_principal=principal,
            amount_scaled=checked_sub(entry.amount_scaled, scaled),
        )
    return replace(position, debts=_replace_entry(position.debts, reserve, updated)), scaled


def debt_owed(entry: DebtEntry, borrow_index: int) -> int:
    """Tokens owed on a debt entry at borrow_index; never less than its principal."""
    return max(entry.amount_principal, mul_div(entry.amount_scaled, borrow_index, INDEX_ONE))


def mark_debts(position: PositionState, borrow_indices: Mapping[str, int]) -> PositionState:
    """
    Copy of position whose debt principals read as what each entry owes at
    borrow_indices. Debts in reserves missing from borrow_indices are kept as
    they are. The result is for valuation and is never stored.
    """
    if not borrow_indices:
        return position
    debts = tuple(
        replace(entry, amount_principal=debt_owed(entry, borrow_indices[entry.reserve]))
        if entry.reserve in borrow_indices else entry
        for entry in position.debts
    )
    return replace(position, debts=debts)


def repay_debt(
    position: PositionState,
    reserve: str,
    amount: int,
    borrow_index: int,
) -> Tuple[PositionState, int]:
    """
    Pay amount of tokens against the reserve's debt entry at borrow_index.

    Accrued interest is settled before principal. The entry is removed once
    everything it owes is paid.

    Returns:
        (new position, principal repaid)

    Raises:
        DebtNotFound: If there is no entry for reserve
        InvalidAmount: If amount is not positive
        WithdrawalExceedsBalance: If amount exceeds what the entry owes

    Example:
        Principal 1,000 borrowed at index 1.0, now owing 1,070 at index 1.07:
            >>> _, principal = repay_debt(position, "RSV_USDC", 100, 1_070_000_000_000)
            >>> principal
            30
    """
    entry = find_debt(position, reserve)
    if entry is None:
        raise DebtNotFound(f"{position.owner} has no debt in {reserve}")
    if amount <= 0:
        raise InvalidAmount(f"Repay amount must be positive, got {amount}")
    owed = debt_owed(entry, borrow_index)
    if amount > owed:
        raise WithdrawalExceedsBalance(f"Cannot repay {amount} to {reserve}: {owed} is owed")

    if amount == owed:
        return (
            replace(position, debts=_replace_entry(position.debts, reserve, None)),
            entry.amount_principal,
        )

    interest = owed - entry.amount_principal
    principal_repaid = amount - interest if amount > interest else 0
    updated = replace(
        entry,
        amount_principal=checked_sub(entry.amount_principal, principal_repaid),
        amount_scaled=checked_sub(entry.amount_scaled, mul_div(amount, entry.amount_scaled, owed)),
    )
    return replace(position, debts=_replace_entry(position.debts, reserve, updated)), principal_repaid


def set_collateral_flag(position: PositionState, reserve: str, enabled: bool) -> PositionState:
    """
    Toggle whether a deposit counts toward the health factor.

    Raises:
        CollateralNotFound: If there is no entry for reserve
    """
    entry = find_collateral(position, reserve)
    if entry is None:
        raise CollateralNotFound(f"{position.owner} has no collateral in {reserve}")
    updated = replace(entry, is_collateral=enabled)
    return replace(position, collaterals=_replace_entry(position.collaterals, reserve, updated))
