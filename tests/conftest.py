"""
conftest.py - Shared pytest fixtures for lending ledger tests

Provides common fixtures used across unit and conformance tests:
- Basic ledgers (empty, funded)
- A two-reserve lending ledger with vaults and price snapshot
- A ledger with an open leveraged market
- Comparison utilities
"""

import pytest
from typing import Dict, Tuple

from lending_ledger import (
    Ledger, ExecuteResult, Move, build_transaction,
    token, create_reserve, create_market,
    compute_deposit,
    SYSTEM_WALLET,
)


# =============================================================================
# CONSTANTS
# =============================================================================

T0 = 1_700_000_000

# reserve -> (price, liquidation_threshold)
SNAPSHOT: Dict[str, Tuple[int, int]] = {
    "RSV_USDC": (1, 8000),
    "RSV_SOL": (100, 7500),
}

TOKENS = ("USDC", "SOL")


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def compare_ledger_states(ledger1: Ledger, ledger2: Ledger) -> dict:
    """Compare two ledger states and return differences."""
    balance_diffs = []
    state_diffs = []

    all_wallets = ledger1.registered_wallets | ledger2.registered_wallets
    all_units = set(ledger1.units.keys()) | set(ledger2.units.keys())

    for wallet in all_wallets:
        for unit in all_units:
            bal1 = ledger1.balances.get(wallet, {}).get(unit, 0)
            bal2 = ledger2.balances.get(wallet, {}).get(unit, 0)
            if bal1 != bal2:
                balance_diffs.append({"wallet": wallet, "unit": unit, "ledger1": bal1, "ledger2": bal2})

    for unit_sym in all_units:
        if unit_sym in ledger1.units and unit_sym in ledger2.units:
            state1 = ledger1.get_unit_state(unit_sym)
            state2 = ledger2.get_unit_state(unit_sym)
            if state1 != state2:
                state_diffs.append({"unit": unit_sym, "ledger1": state1, "ledger2": state2})
        elif unit_sym in ledger1.units or unit_sym in ledger2.units:
            state_diffs.append({"unit": unit_sym, "missing": True})

    return {
        "equal": not balance_diffs and not state_diffs,
        "balance_diffs": balance_diffs,
        "state_diffs": state_diffs,
    }


def ledger_state_equals(ledger1: Ledger, ledger2: Ledger) -> bool:
    return compare_ledger_states(ledger1, ledger2)["equal"]


def issue(ledger: Ledger, wallet: str, unit: str, quantity: int) -> None:
    """Mint quantity of unit to wallet out of SYSTEM_WALLET."""
    pending = build_transaction(
        ledger, [Move(quantity, unit, SYSTEM_WALLET, wallet, f"issue_{unit}")]
    )
    execute_ok(ledger, pending)


def make_lending_ledger(
    usdc_kwargs: dict = None,
    sol_kwargs: dict = None,
    initial_time: int = T0,
) -> Ledger:
    """
    Ledger with USDC and SOL tokens, one reserve per token, vault wallets and
    three users. Tokens are issued from SYSTEM_WALLET so supply is conserved.
    """
    ledger = Ledger("lending", initial_time, verbose=False, test_mode=True)
    for symbol in TOKENS:
        ledger.register_unit(token(symbol, symbol))
    ledger.register_unit(create_reserve(
        "RSV_USDC", "USDC", "vault:USDC", created_at=initial_time, **(usdc_kwargs or {})
    ))
    ledger.register_unit(create_reserve(
        "RSV_SOL", "SOL", "vault:SOL",
        loan_to_value=7000, liquidation_threshold=7500, created_at=initial_time,
        **(sol_kwargs or {})
    ))
    for wallet in ("alice", "bob", "liquidator", "vault:USDC", "vault:SOL"):
        ledger.register_wallet(wallet)

    for wallet in ("alice", "bob", "liquidator"):
        issue(ledger, wallet, "USDC", 1_000_000)
        issue(ledger, wallet, "SOL", 10_000)
    return ledger


def execute_ok(ledger: Ledger, pending) -> None:
    result = ledger.execute(pending)
    assert result == ExecuteResult.APPLIED, f"expected APPLIED, got {result}"


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def empty_ledger():
    """Fresh ledger with no registrations."""
    return Ledger("test", verbose=False, test_mode=True)


@pytest.fixture
def basic_ledger():
    """Ledger with USDC and two wallets."""
    ledger = Ledger("test", T0, verbose=False, test_mode=True)
    ledger.register_unit(token("USDC", "USD Coin"))
    ledger.register_wallet("alice")
    ledger.register_wallet("bob")
    return ledger


@pytest.fixture
def funded_ledger(basic_ledger):
    """Basic ledger with alice holding 10,000 USDC."""
    basic_ledger.set_balance("alice", "USDC", 10_000)
    return basic_ledger


@pytest.fixture
def snapshot():
    return dict(SNAPSHOT)


@pytest.fixture
def lending_ledger():
    """Two reserves, no deposits yet."""
    return make_lending_ledger()


@pytest.fixture
def seeded_ledger(lending_ledger, snapshot):
    """
    bob supplies 100,000 USDC; alice deposits 100 SOL as collateral
    (value 10,000, weighted 7,500).
    """
    execute_ok(lending_ledger, compute_deposit(lending_ledger, "bob", "RSV_USDC", 100_000, snapshot))
    execute_ok(lending_ledger, compute_deposit(lending_ledger, "alice", "RSV_SOL", 100, snapshot))
    return lending_ledger


@pytest.fixture
def trading_ledger(seeded_ledger):
    """Seeded ledger with a SOL-PERP market (10x max, 5% maintenance)."""
    seeded_ledger.register_unit(create_market(
        "SOL-PERP", max_leverage=100_000, optimal_leverage=50_000,
        maintenance_margin_ratio=500, liquidation_fee=100,
    ))
    return seeded_ledger
