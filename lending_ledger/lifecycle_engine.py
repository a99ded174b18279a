"""
lifecycle_engine.py - Lifecycle Engine

Polls smart contracts registered per unit type and executes whatever they
return.

Execution order each step():
1. Advance ledger time
2. Run smart contract polling over all units in sorted symbol order
3. Repeat until no contract fires (cascading effects)

With the default contracts this refreshes every reserve's indices and then
liquidates leveraged positions whose market crossed its liquidation price.
The transaction log is the audit trail.
"""

from __future__ import annotations
import logging
from typing import Dict, List, Optional, Callable

from .core import (
    PendingTransaction, Transaction,
    ExecuteResult, LedgerError,
    SmartContract,
    UNIT_TYPE_RESERVE, UNIT_TYPE_POSITION,
)
from .ledger import Ledger
from .operations import position_contract
from .units.reserve import reserve_contract

logger = logging.getLogger(__name__)


def default_contracts() -> Dict[str, SmartContract]:
    """Reserve refresh and leveraged-position monitoring."""
    return {
        UNIT_TYPE_RESERVE: reserve_contract,
        UNIT_TYPE_POSITION: position_contract,
    }


class LifecycleEngine:
    """
    Smart contract polling with cascading passes.

    Features:
    - Smart contract polling for event discovery
    - Cascading event support (repeat until stable)
    - Full audit trail via transaction log
    """

    def __init__(
        self,
        ledger: Ledger,
        contracts: Optional[Dict[str, SmartContract]] = None,
    ):
        """
        Initialize lifecycle engine.

        Args:
            ledger: The ledger to operate on
            contracts: Smart contracts for polling (unit_type -> contract);
                defaults to default_contracts()
        """
        self.ledger = ledger
        self.contracts: Dict[str, SmartContract] = (
            contracts if contracts is not None else default_contracts()
        )
        self.max_passes = 10

    def register(self, unit_type: str, contract: SmartContract) -> None:
        """
        Register a smart contract for a unit type.

        Args:
            unit_type: Type of unit (e.g., "RESERVE", "POSITION")
            contract: SmartContract implementation (callable or object with check_lifecycle)
        """
        self.contracts[unit_type] = contract

    def step(
        self,
        timestamp: int,
        prices: Dict[str, int],
    ) -> List[Transaction]:
        """
        Advance time and execute everything the contracts discover.

        Args:
            timestamp: New ledger time (seconds)
            prices: Current market prices keyed by market symbol

        Returns:
            List of executed transactions

        Raises:
            ClockRegression: If timestamp is earlier than the ledger's time
            LedgerError: If a contract returns a non-transaction or its
                transaction is rejected
        """
        self.ledger.advance_time(timestamp)
        executed: List[Transaction] = []

        for pass_num in range(self.max_passes):
            pass_executed = self._process_smart_contracts(timestamp, prices)
            executed.extend(pass_executed)
            if not pass_executed:
                break
        else:
            logger.warning("Lifecycle step at %d hit the %d-pass limit", timestamp, self.max_passes)

        return executed

    def _process_smart_contracts(
        self,
        timestamp: int,
        prices: Dict[str, int],
    ) -> List[Transaction]:
        """Run smart contract polling for event discovery."""
        executed: List[Transaction] = []

        for symbol in sorted(self.ledger.units.keys()):
            unit = self.ledger.units[symbol]
            contract = self.contracts.get(unit.unit_type)

            if not contract:
                continue

            if hasattr(contract, 'check_lifecycle'):
                pending = contract.check_lifecycle(self.ledger, symbol, timestamp, prices)
            else:
                pending = contract(self.ledger, symbol, timestamp, prices)

            if not isinstance(pending, PendingTransaction):
                raise LedgerError(
                    f"Contract for {symbol} must return PendingTransaction, got {type(pending)}"
                )

            if pending.is_empty():
                continue

            exec_result = self.ledger.execute(pending)

            if exec_result == ExecuteResult.REJECTED:
                raise LedgerError(f"Lifecycle event failed for {symbol}: contract execution rejected")

            if exec_result == ExecuteResult.APPLIED:
                logger.debug("Lifecycle %s fired for %s", pending.origin, symbol)
                executed.append(self.ledger.transaction_log[-1])

        return executed

    def run(
        self,
        timestamps: List[int],
        get_prices_at_timestamp: Callable[[int], Dict[str, int]],
    ) -> List[Transaction]:
        """
        Run engine through a sequence of timestamps.

        Args:
            timestamps: Ledger times to process, in order
            get_prices_at_timestamp: Callable returning market prices for a timestamp

        Returns:
            All executed transactions
        """
        all_transactions: List[Transaction] = []

        for timestamp in timestamps:
            prices = get_prices_at_timestamp(timestamp)
            all_transactions.extend(self.step(timestamp, prices))

        return all_transactions
