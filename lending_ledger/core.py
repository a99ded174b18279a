"""
Core types and pure functions for the lending ledger.

This module provides the foundational data structures and protocols:
1. Protocols: LedgerView for read-only ledger access, SmartContract for polling
2. Immutable data structures: Move, PendingTransaction, Transaction, Unit
3. Exceptions: LedgerError and the lending error taxonomy
4. Type aliases: Positions, BalanceMap, UnitState, PriceSnapshot
5. Unit factories: token()

All quantities are integers in the token's smallest unit. All timestamps are
integer seconds. Nothing in this module can mutate ledger state.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
import copy
import hashlib
from typing import (
    Dict, List, Set, Optional, Any, Protocol,
    Tuple, FrozenSet, runtime_checkable, Mapping
)


# ============================================================================
# CONSTANTS
# ============================================================================

# Reserved wallet for issuance. Exempt from balance validation.
SYSTEM_WALLET = "system"

# Unit type constants (strings, not enum)
UNIT_TYPE_TOKEN = "TOKEN"
UNIT_TYPE_RESERVE = "RESERVE"
UNIT_TYPE_POSITION = "POSITION"
UNIT_TYPE_MARKET = "MARKET"


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Mapping from wallet ID to quantity held by that wallet for a specific unit.
Positions = Dict[str, int]

# Mapping from unit symbol to quantity held in a single wallet.
BalanceMap = Dict[str, int]

# Internal state for a unit: terms, aggregates, entries.
UnitState = Dict[str, Any]

# reserve symbol -> (price, liquidation_threshold_bps). Absent means unknown.
PriceSnapshot = Mapping[str, Tuple[int, int]]


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LedgerView(Protocol):
    """
    Read-only interface to ledger state.

    Every compute_* function takes a LedgerView, which declares its read-only
    intent. The Ledger class implements this protocol and also provides
    mutation methods. For testing, FakeView provides a minimal implementation.
    """

    @property
    def current_time(self) -> int:
        """Return the current logical time of the ledger (seconds)."""
        ...

    def get_balance(self, wallet_id: str, unit_symbol: str) -> int:
        """Return the balance of a unit in a wallet (0 when absent)."""
        ...

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """Return a deep copy of the unit's internal state."""
        ...

    def get_positions(self, unit_symbol: str) -> Positions:
        """Return all non-zero positions for a unit across all wallets."""
        ...

    def list_wallets(self) -> Set[str]:
        """Return the set of all registered wallet IDs."""
        ...

    def get_unit(self, symbol: str) -> 'Unit':
        """Return the Unit object for a given symbol."""
        ...

    def has_unit(self, symbol: str) -> bool:
        """Return True if a unit with this symbol is registered."""
        ...


class SmartContract(Protocol):
    """
    Protocol for lifecycle-aware contracts polled by the LifecycleEngine.

    Contracts receive a LedgerView and return a PendingTransaction directly.
    Use build_transaction() or empty_pending_transaction() to create the return value.
    """

    def check_lifecycle(
        self,
        view: LedgerView,
        symbol: str,
        timestamp: int,
        prices: Dict[str, int],
    ) -> 'PendingTransaction':
        ...


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    Outcome of a transaction execution attempt.

    APPLIED: Transaction was validated and applied to the ledger.
    ALREADY_APPLIED: Intent ID was previously processed (idempotent behavior).
    REJECTED: Validation failed; the ledger is unchanged.
    """
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    REJECTED = "rejected"


class OriginType(Enum):
    """Classification of where a transaction originated."""
    USER_ACTION = "user_action"
    CONTRACT = "contract"
    LIFECYCLE = "lifecycle"
    SYSTEM = "system"
    EXTERNAL = "external"


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for all ledger-related errors."""
    pass


# --- (a) arithmetic ---------------------------------------------------------

class MathOverflow(LedgerError):
    """Raised when a checked operation would overflow, underflow or divide by zero."""
    pass


# --- (b) invariant violations -----------------------------------------------

class InvariantViolation(LedgerError):
    """Base for operations rejected because they would leave state unsafe."""
    pass


class InsufficientFunds(InvariantViolation):
    """Raised when a move would take a wallet balance below the unit's minimum."""
    pass


class BalanceConstraintViolation(InvariantViolation):
    """Raised when a move would violate the unit's min/max balance constraints."""
    pass


class InvalidAmount(InvariantViolation):
    """Raised for zero or negative operation amounts."""
    pass


class InsufficientLiquidity(InvariantViolation):
    """Raised when a reserve cannot cover a withdrawal or borrow."""
    pass


class InsufficientCollateral(InvariantViolation):
    """Raised when collateral cannot cover a borrow, seizure or margin requirement."""
    pass


class HealthFactorTooLow(InvariantViolation):
    """Raised when an operation would leave the health factor below its minimum."""
    pass


class WithdrawalExceedsBalance(InvariantViolation):
    """Raised when removing more than the recorded principal."""
    pass


class CannotLiquidate(InvariantViolation):
    """Raised when liquidating a position whose health factor is at or above 1.0."""
    pass


class CloseFactorExceeded(InvariantViolation):
    """Raised when a liquidation would repay more than the close factor allows."""
    pass


class LeverageExceedsMaximum(InvariantViolation):
    """Raised when requested leverage is above the market maximum."""
    pass


class InvalidLeverage(InvariantViolation):
    """Raised when requested leverage is below 1x."""
    pass


class PositionAlreadyClosed(InvariantViolation):
    """Raised when acting on a leveraged position that is not open."""
    pass


class PositionNotLiquidatable(InvariantViolation):
    """Raised when a leveraged position has not crossed its liquidation price."""
    pass


class LendingNotEnabled(InvariantViolation):
    """Raised when lending into a reserve that does not allow it."""
    pass


class MaxLendingCapacityReached(InvariantViolation):
    """Raised when lending would exceed the reserve's max lending ratio."""
    pass


class MinLendingDurationNotMet(InvariantViolation):
    """Raised when withdrawing a lending deposit before its minimum duration."""
    pass


# --- (c) not found ----------------------------------------------------------

class NotFound(LedgerError):
    """Base for references to things that do not exist."""
    pass


class UnitNotRegistered(NotFound):
    """Raised when operating on a unit that has not been registered."""
    pass


class WalletNotRegistered(NotFound):
    """Raised when operating on a wallet that has not been registered."""
    pass


class CollateralNotFound(NotFound):
    """Raised when a position has no collateral entry for a reserve."""
    pass


class DebtNotFound(NotFound):
    """Raised when a position has no debt entry for a reserve."""
    pass


class PositionNotFound(NotFound):
    """Raised when a leveraged position id does not exist."""
    pass


# --- (d) capacity -----------------------------------------------------------

class CapacityExceeded(LedgerError):
    """Base for bounded collections that are full."""
    pass


class MaxCollateralsReached(CapacityExceeded):
    pass


class MaxDebtsReached(CapacityExceeded):
    pass


class MaxPositionsReached(CapacityExceeded):
    pass


# --- (e) staleness / preconditions ------------------------------------------

class StalePrecondition(LedgerError):
    """Base for clock and price preconditions."""
    pass


class ClockRegression(StalePrecondition):
    """Raised when a timestamp earlier than the last recorded one is observed."""
    pass


class MissingPrice(StalePrecondition):
    """Raised when an operation strictly needs a price the snapshot lacks."""
    pass


class StalePrice(StalePrecondition):
    """Raised when a price observation is older than the allowed age."""
    pass


# ============================================================================
# TRANSACTION ORIGIN
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransactionOrigin:
    """
    Immutable record of a transaction's origin for audit purposes.

    Attributes:
        origin_type: Classification of the origin source
        source_id: Identifier of the specific source (operation, wallet, contract)
        unit_symbol: Symbol of the unit that triggered this (if applicable)
        event_type: Specific event (e.g., "DEPOSIT", "LIQUIDATE", "REFRESH")
    """
    origin_type: OriginType
    source_id: str
    unit_symbol: Optional[str] = None
    event_type: Optional[str] = None

    def __repr__(self) -> str:
        parts = [f"{self.origin_type.value}:{self.source_id}"]
        if self.unit_symbol:
            parts.append(f"unit={self.unit_symbol}")
        if self.event_type:
            parts.append(f"event={self.event_type}")
        return f"Origin({', '.join(parts)})"


# ============================================================================
# UNIT STATE CHANGE
# ============================================================================

@dataclass(frozen=True, slots=True)
class UnitStateChange:
    """
    Complete before/after snapshot of one unit's state.

    old_state doubles as the optimistic-concurrency guard: the ledger rejects
    the transaction if the unit's current state no longer equals it.
    """
    unit: str
    old_state: Any
    new_state: Any

    def changed_fields(self) -> Dict[str, Tuple[Any, Any]]:
        """Return {field: (old, new)} for fields that differ."""
        old = self.old_state if isinstance(self.old_state, dict) else {}
        new = self.new_state if isinstance(self.new_state, dict) else {}
        changes = {}
        for key in set(old.keys()) | set(new.keys()):
            old_val = old.get(key)
            new_val = new.get(key)
            if old_val != new_val:
                changes[key] = (old_val, new_val)
        return changes


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Move:
    """
    A single transfer of tokens between two wallets.

    Attributes:
        quantity: Positive integer amount in the token's smallest unit.
        unit_symbol: The token being transferred (e.g., "USDC").
        source: Wallet debited.
        dest: Wallet credited.
        contract_id: Identifier of the operation generating this move.
        metadata: Optional additional information about the move.
    """
    quantity: int
    unit_symbol: str
    source: str
    dest: str
    contract_id: str
    metadata: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Move source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Move dest cannot be empty")
        if not self.unit_symbol or not self.unit_symbol.strip():
            raise ValueError("Move unit_symbol cannot be empty")
        if not self.contract_id or not self.contract_id.strip():
            raise ValueError("Move contract_id cannot be empty")
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int):
            raise ValueError(f"Move quantity must be int, got {type(self.quantity)}")
        if self.quantity <= 0:
            raise ValueError(f"Move quantity must be positive, got {self.quantity}")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.unit_symbol}: {self.source}→{self.dest})"


def _canonicalize(value: Any) -> str:
    """
    Produce a canonical string representation of a value for hashing.

    Independent of dict insertion order and nesting depth.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return f"N:{value}"
    if isinstance(value, str):
        return f"S:{value}"
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        serialized = ",".join(f"{_canonicalize(k)}:{_canonicalize(v)}" for k, v in items)
        return f"{{{serialized}}}"
    if isinstance(value, (list, tuple)):
        serialized = ",".join(_canonicalize(item) for item in value)
        return f"[{serialized}]"
    return f"R:{repr(value)}"


def _compute_intent_id(
    moves: Tuple[Move, ...],
    state_changes: Tuple[UnitStateChange, ...],
    origin: TransactionOrigin,
    units_to_create: Tuple['Unit', ...] = ()
) -> str:
    """
    Compute a deterministic content hash for a transaction's intent.

    Same semantic content always yields the same intent_id, which is what the
    ledger uses for idempotency.
    """
    sorted_moves = tuple(sorted(
        moves,
        key=lambda m: (m.quantity, m.unit_symbol, m.source, m.dest, m.contract_id)
    ))

    content_parts = [f"origin:{origin.origin_type.value}:{origin.source_id}"]
    if origin.unit_symbol:
        content_parts.append(f"unit:{origin.unit_symbol}")
    if origin.event_type:
        content_parts.append(f"event:{origin.event_type}")

    for unit in sorted(units_to_create, key=lambda u: u.symbol):
        content_parts.append(f"unit_create:{unit.symbol}|{unit.unit_type}")

    for m in sorted_moves:
        content_parts.append(f"move:{m.quantity}|{m.unit_symbol}|{m.source}|{m.dest}|{m.contract_id}")

    for sc in sorted(state_changes, key=lambda s: s.unit):
        content_parts.append(
            f"state_change:{sc.unit}|{_canonicalize(sc.old_state)}|{_canonicalize(sc.new_state)}"
        )

    content = "|".join(content_parts)
    return hashlib.sha256(content.encode()).hexdigest()[:16]


@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    A transaction before execution - represents INTENT.

    Created by compute_* functions and submitted to Ledger.execute().

    Attributes:
        moves: Token transfers between wallets
        state_changes: Unit state changes (old_state and new_state)
        origin: Who/what created this transaction and why
        timestamp: Ledger time when this pending transaction was built
        units_to_create: Units to register before applying state changes
        intent_id: Content-addressable hash (auto-computed)
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: int
    units_to_create: Tuple['Unit', ...] = ()
    intent_id: str = field(default="")

    def __post_init__(self):
        if not self.intent_id:
            computed_id = _compute_intent_id(
                self.moves, self.state_changes, self.origin, self.units_to_create
            )
            object.__setattr__(self, 'intent_id', computed_id)

    def is_empty(self) -> bool:
        """Return True if there are no moves, no state changes and no units to create."""
        return not self.moves and not self.state_changes and not self.units_to_create

    def __repr__(self) -> str:
        return f"PendingTransaction({len(self.moves)} moves, {len(self.state_changes)} deltas, {self.origin})"


def build_transaction(
    view: LedgerView,
    moves: List[Move],
    state_changes: Optional[List[UnitStateChange]] = None,
    origin: Optional[TransactionOrigin] = None,
    units_to_create: Optional[Tuple['Unit', ...]] = None,
) -> PendingTransaction:
    """
    Build a PendingTransaction from moves and state changes.

    Args:
        view: Read-only ledger view (provides current_time)
        moves: Token moves to include
        state_changes: Optional unit state changes
        origin: Transaction origin (defaults to CONTRACT origin)
        units_to_create: Optional units to register as part of the transaction

    Returns:
        A PendingTransaction ready for execution

    Example:
        old_state = view.get_unit_state("RSV_USDC")
        new_state = {**old_state, "total_deposited": old_state["total_deposited"] + 100}
        tx = build_transaction(
            view,
            [Move(100, "USDC", "alice", "vault:USDC", "deposit")],
            [UnitStateChange("RSV_USDC", old_state, new_state)],
        )
    """
    if origin is None:
        origin = TransactionOrigin(
            origin_type=OriginType.CONTRACT,
            source_id="contract",
        )

    copied_changes: Tuple[UnitStateChange, ...] = ()
    if state_changes:
        copied_changes = tuple(
            UnitStateChange(
                unit=sc.unit,
                old_state=copy.deepcopy(sc.old_state),
                new_state=copy.deepcopy(sc.new_state),
            )
            for sc in state_changes
        )

    return PendingTransaction(
        moves=tuple(moves),
        state_changes=copied_changes,
        origin=origin,
        timestamp=view.current_time,
        units_to_create=units_to_create or (),
    )


def empty_pending_transaction(view: LedgerView) -> PendingTransaction:
    """Create an empty PendingTransaction for contracts with nothing to do."""
    return PendingTransaction(
        moves=(),
        state_changes=(),
        origin=TransactionOrigin(OriginType.CONTRACT, "noop"),
        timestamp=view.current_time,
    )


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed, immutable record of ledger state changes - represents FACT.

    Attributes:
        moves: Token transfers that were applied
        state_changes: Unit state changes that were applied
        origin: Who/what created this transaction and why
        timestamp: When the PendingTransaction was built
        intent_id: Content hash from PendingTransaction (for idempotency)
        exec_id: Unique execution identifier (ledger + sequence + time)
        ledger_name: Name of the ledger that executed this
        execution_time: Ledger time at execution
        sequence_number: Monotonic sequence within the ledger
        contract_ids: Set of contract IDs from moves (auto-populated)
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: int
    intent_id: str
    exec_id: str
    ledger_name: str
    execution_time: int
    sequence_number: int
    units_to_create: Tuple['Unit', ...] = ()
    contract_ids: FrozenSet[str] = None

    def __post_init__(self):
        if not self.moves and not self.state_changes and not self.units_to_create:
            raise ValueError("Transaction must have moves, state_changes, or units_to_create")
        if self.contract_ids is None:
            object.__setattr__(
                self, 'contract_ids',
                frozenset(m.contract_id for m in self.moves)
            )

    def __repr__(self) -> str:
        w = 100
        bar = "─" * w

        def pad(text: str) -> str:
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))

        lines = [
            "",
            f"┌{bar}┐",
            f"│{pad(' Transaction: ' + self.exec_id)}│",
            f"├{bar}┤",
            f"│{pad('   intent_id      : ' + self.intent_id)}│",
            f"│{pad('   timestamp      : ' + str(self.timestamp))}│",
            f"│{pad('   execution_time : ' + str(self.execution_time))}│",
            f"│{pad('   sequence       : ' + str(self.sequence_number))}│",
            f"│{pad('   origin         : ' + str(self.origin))}│",
        ]
        if self.units_to_create:
            lines.append(f"├{bar}┤")
            lines.append(f"│{pad(' Units Created (' + str(len(self.units_to_create)) + '):')}│")
            for unit in self.units_to_create:
                lines.append(f"│{pad('   ' + unit.symbol + ' [' + unit.unit_type + ']')}│")
        lines.append(f"├{bar}┤")
        lines.append(f"│{pad(' Moves (' + str(len(self.moves)) + '):')}│")
        for i, move in enumerate(self.moves):
            lines.append(f"│{pad(f'   [{i}] {move.quantity} {move.unit_symbol}: {move.source} → {move.dest}')}│")
        if self.state_changes:
            lines.append(f"├{bar}┤")
            lines.append(f"│{pad(' State Changes (' + str(len(self.state_changes)) + '):')}│")
            for sc in self.state_changes:
                lines.append(f"│{pad('   [' + sc.unit + ']')}│")
                for field_name, (old_val, new_val) in sc.changed_fields().items():
                    lines.append(f"│{pad(f'      {field_name}: {old_val!r} → {new_val!r}')}│")
        lines.append(f"└{bar}┘")
        return "\n".join(lines)


def _freeze_state(state: Optional[UnitState]) -> Tuple[Tuple[str, Any], ...]:
    """Convert a state dict to a tuple of (key, value) pairs sorted by key."""
    if not state:
        return ()
    return tuple(sorted(state.items()))


def _thaw_state(frozen_state: Tuple[Tuple[str, Any], ...]) -> UnitState:
    """Convert a frozen state representation back to a dict."""
    return dict(frozen_state)


@dataclass(frozen=True, slots=True)
class Unit:
    """
    Definition of a unit registered with the ledger.

    Tokens carry balances. Reserves, positions and markets carry state only.

    Attributes:
        symbol: Short identifier (e.g., "USDC", "RSV_USDC", "POS_alice").
        name: Human-readable name.
        unit_type: One of the UNIT_TYPE_* constants.
        min_balance: Minimum allowed balance in any non-system wallet.
        max_balance: Maximum allowed balance (None = unbounded).
        _frozen_state: Internal frozen state representation.
    """
    symbol: str
    name: str
    unit_type: str
    min_balance: int = 0
    max_balance: Optional[int] = None
    _frozen_state: Tuple[Tuple[str, Any], ...] = field(default_factory=tuple)

    @property
    def state(self) -> UnitState:
        """Return the unit's state as a new dict."""
        return _thaw_state(self._frozen_state)


# ============================================================================
# UNIT FACTORIES
# ============================================================================

def token(symbol: str, name: str) -> Unit:
    """
    Create a fungible token unit.

    Balances are non-negative integers in the token's smallest denomination.
    """
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_TOKEN,
        min_balance=0,
    )
