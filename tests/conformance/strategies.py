"""
Hypothesis strategies and a driver for random protocol operation sequences.

An operation is a tuple:
    ("deposit" | "withdraw" | "borrow" | "repay", user, reserve, amount)
    ("advance", seconds)

apply_operation() builds the pending transaction against the current ledger
and executes it. Operations the protocol refuses to build return None.
"""

from typing import Optional, Tuple

from hypothesis import strategies as st

from tests.conftest import SNAPSHOT
from lending_ledger import (
    Ledger,
    ExecuteResult,
    LedgerError,
    compute_deposit,
    compute_withdraw,
    compute_borrow,
    compute_repay,
)


USERS = ("alice", "bob")
RESERVES = ("RSV_USDC", "RSV_SOL")

Operation = Tuple


def _user_action(kind: str, max_amount: int):
    return st.tuples(
        st.just(kind),
        st.sampled_from(USERS),
        st.sampled_from(RESERVES),
        st.integers(min_value=1, max_value=max_amount),
    )


operation = st.one_of(
    _user_action("deposit", 20_000),
    _user_action("withdraw", 20_000),
    _user_action("borrow", 5_000),
    _user_action("repay", 5_000),
    st.tuples(st.just("advance"), st.integers(min_value=1, max_value=30 * 86_400)),
)

operations = st.lists(operation, min_size=1, max_size=25)


def build_operation(ledger: Ledger, op: Operation, snapshot=SNAPSHOT):
    """Pending transaction for a user action; raises what the protocol raises."""
    kind, user, reserve, amount = op
    if kind == "deposit":
        return compute_deposit(ledger, user, reserve, amount, snapshot)
    if kind == "withdraw":
        return compute_withdraw(ledger, user, reserve, amount, snapshot)
    if kind == "borrow":
        return compute_borrow(ledger, user, reserve, amount, snapshot)
    if kind == "repay":
        return compute_repay(ledger, user, user, reserve, amount, snapshot)
    raise ValueError(f"Unknown operation {kind}")


def apply_operation(ledger: Ledger, op: Operation, snapshot=SNAPSHOT) -> Optional[ExecuteResult]:
    if op[0] == "advance":
        ledger.advance_time(ledger.current_time + op[1])
        return None
    try:
        pending = build_operation(ledger, op, snapshot)
    except LedgerError:
        return None
    return ledger.execute(pending)
