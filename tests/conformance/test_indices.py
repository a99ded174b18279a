"""
Index Monotonicity Conformance Tests

INVARIANT: For every reserve r and times t1 ≤ t2:
    borrow_index(r, t1) ≤ borrow_index(r, t2)
    lending_index(r, t1) ≤ lending_index(r, t2)

Both indices start at INDEX_ONE and only compound forward, whatever mix of
deposits, borrows, repayments and withdrawals moves utilization around.
"""

from hypothesis import given, settings, HealthCheck
from hypothesis import strategies as st

from tests.conftest import execute_ok, make_lending_ledger
from tests.conformance.strategies import operations, apply_operation, RESERVES
from lending_ledger import (
    INDEX_ONE,
    compute_refresh,
    load_reserve,
)


def indices(ledger):
    result = {}
    for reserve in RESERVES:
        _, state = load_reserve(ledger, reserve)
        result[reserve] = (state.borrow_index, state.lending_index)
    return result


class TestIndexMonotonicity:

    @given(operations)
    @settings(max_examples=60, deadline=None, suppress_health_check=[HealthCheck.too_slow])
    def test_indices_never_decrease(self, ops):
        ledger = make_lending_ledger()
        previous = indices(ledger)
        assert all(pair == (INDEX_ONE, INDEX_ONE) for pair in previous.values())

        for op in ops:
            apply_operation(ledger, op)
            current = indices(ledger)
            for reserve in RESERVES:
                assert current[reserve][0] >= previous[reserve][0], reserve
                assert current[reserve][1] >= previous[reserve][1], reserve
            previous = current

    @given(operations, st.lists(st.integers(min_value=0, max_value=365 * 86_400), min_size=1, max_size=10))
    @settings(max_examples=40, deadline=None, suppress_health_check=[HealthCheck.too_slow])
    def test_refresh_steps_never_decrease(self, ops, steps):
        """
        PROPERTY: Refreshing in arbitrary time steps (including zero-length
        ones) never lowers an index.
        """
        ledger = make_lending_ledger()
        for op in ops:
            apply_operation(ledger, op)

        previous = indices(ledger)
        for step in steps:
            ledger.advance_time(ledger.current_time + step)
            for reserve in RESERVES:
                pending = compute_refresh(ledger, reserve)
                if not pending.is_empty():
                    execute_ok(ledger, pending)
            current = indices(ledger)
            for reserve in RESERVES:
                assert current[reserve][0] >= previous[reserve][0]
                assert current[reserve][1] >= previous[reserve][1]
            previous = current
