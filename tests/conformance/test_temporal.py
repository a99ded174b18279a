"""
Temporal Conformance Tests

INVARIANT: Time only moves forward and history can be reconstructed.

    advance_time(t) with t < now ⟹ ClockRegression
    clone_at(t) = state of the ledger as it was at t
    replay() = current state

Reserve indices and last_update_time are part of unit state, so clone_at()
also rewinds accrued interest.
"""

import pytest
from hypothesis import given, settings, HealthCheck
from hypothesis import strategies as st

from tests.conftest import T0, execute_ok, compare_ledger_states, make_lending_ledger
from tests.conformance.strategies import operations, apply_operation
from lending_ledger import (
    ClockRegression,
    ExecuteResult,
    compute_borrow,
    compute_refresh,
    load_reserve,
)


class TestClock:

    @given(st.integers(min_value=1, max_value=10**6))
    @settings(max_examples=20, deadline=None)
    def test_clock_never_moves_backward(self, delta):
        ledger = make_lending_ledger()
        ledger.advance_time(T0 + delta)
        with pytest.raises(ClockRegression):
            ledger.advance_time(T0 + delta - 1)
        assert ledger.current_time == T0 + delta

    def test_log_execution_times_are_ordered(self, seeded_ledger, snapshot):
        seeded_ledger.advance_time(T0 + 100)
        execute_ok(seeded_ledger, compute_borrow(seeded_ledger, "alice", "RSV_USDC", 500, snapshot))
        times = [tx.execution_time for tx in seeded_ledger.transaction_log]
        assert times == sorted(times)
        assert times[-1] == T0 + 100

    def test_pending_from_the_future_is_rejected(self, seeded_ledger):
        ahead = seeded_ledger.clone()
        ahead.advance_time(T0 + 60)
        pending = compute_refresh(ahead, "RSV_USDC")
        assert seeded_ledger.execute(pending) == ExecuteResult.REJECTED


class TestCloneAt:

    @given(operations)
    @settings(max_examples=40, deadline=None, suppress_health_check=[HealthCheck.too_slow])
    def test_clone_at_matches_recorded_history(self, ops):
        """
        PROPERTY: For every time t the ledger passed through, clone_at(t)
        equals the ledger as it stood just before the clock left t.
        """
        ledger = make_lending_ledger()
        checkpoints = []

        for op in ops:
            if op[0] == "advance":
                checkpoints.append((ledger.current_time, ledger.clone()))
            apply_operation(ledger, op)
        checkpoints.append((ledger.current_time, ledger.clone()))

        for when, expected in checkpoints:
            past = ledger.clone_at(when)
            diff = compare_ledger_states(past, expected)
            assert diff["equal"], (when, diff)
            assert past.current_time == when
            assert len(past.transaction_log) == len(expected.transaction_log)

    def test_clone_at_rewinds_interest(self, seeded_ledger, snapshot):
        execute_ok(seeded_ledger, compute_borrow(seeded_ledger, "alice", "RSV_USDC", 5_000, snapshot))
        _, at_borrow = load_reserve(seeded_ledger, "RSV_USDC")

        seeded_ledger.advance_time(T0 + 86_400)
        execute_ok(seeded_ledger, compute_refresh(seeded_ledger, "RSV_USDC"))
        _, later = load_reserve(seeded_ledger, "RSV_USDC")
        assert later.borrow_index > at_borrow.borrow_index

        _, rewound = load_reserve(seeded_ledger.clone_at(T0), "RSV_USDC")
        assert rewound == at_borrow


class TestReplay:

    @given(operations)
    @settings(max_examples=40, deadline=None, suppress_health_check=[HealthCheck.too_slow])
    def test_replay_reproduces_state(self, ops):
        ledger = make_lending_ledger()
        for op in ops:
            apply_operation(ledger, op)

        replayed = ledger.replay()
        diff = compare_ledger_states(replayed, ledger)
        assert diff["equal"], diff
        assert [tx.intent_id for tx in replayed.transaction_log] == [
            tx.intent_id for tx in ledger.transaction_log
        ]
