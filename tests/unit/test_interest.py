"""
test_interest.py - Unit tests for the interest rate model

Tests:
- Utilization, including the empty pool
- Both branches of the borrow rate curve and the kink
- Supply and lending rates
- Index compounding over one year and its monotonicity
"""

import pytest
from hypothesis import given, strategies as st

from lending_ledger import (
    InterestRateCurve,
    calculate_utilization,
    calculate_borrow_rate,
    calculate_supply_rate,
    calculate_lending_rate,
    compound_index,
    INDEX_ONE,
    SECONDS_PER_YEAR,
)
from lending_ledger.interest import calculate_lending_utilization


CURVE = InterestRateCurve(base_rate=200, slope1=800, slope2=3000)


class TestUtilization:

    def test_half_borrowed(self):
        assert calculate_utilization(500_000, 1_000_000) == 5000

    def test_empty_pool(self):
        assert calculate_utilization(0, 0) == 0

    def test_truncates(self):
        assert calculate_utilization(1, 3) == 3333


class TestBorrowRate:

    def test_below_optimal(self):
        assert calculate_borrow_rate(5000, 8000, CURVE) == 700

    def test_zero_utilization_is_base(self):
        assert calculate_borrow_rate(0, 8000, CURVE) == 200

    def test_at_optimal(self):
        assert calculate_borrow_rate(8000, 8000, CURVE) == 1000

    def test_above_optimal(self):
        assert calculate_borrow_rate(9000, 8000, CURVE) == 2500

    def test_full_utilization(self):
        assert calculate_borrow_rate(10_000, 8000, CURVE) == 4000

    @given(st.integers(min_value=0, max_value=9999))
    def test_monotonic_in_utilization(self, utilization):
        assert (
            calculate_borrow_rate(utilization, 8000, CURVE)
            <= calculate_borrow_rate(utilization + 1, 8000, CURVE)
        )


class TestCurveValidation:

    def test_defaults(self):
        assert InterestRateCurve() == CURVE

    def test_negative_slope_rejected(self):
        with pytest.raises(ValueError, match="slope1"):
            InterestRateCurve(slope1=-1)


class TestSupplyAndLendingRates:

    def test_supply_rate_less_reserve_factor(self):
        # gross 700 * 5000 / 10000 = 350, less 10%
        assert calculate_supply_rate(700, 5000, 1000) == 315

    def test_supply_rate_idle_pool(self):
        assert calculate_supply_rate(200, 0, 1000) == 0

    def test_lending_utilization_capped(self):
        assert calculate_lending_utilization(5000, 2500) == 10_000

    def test_lending_utilization_empty(self):
        assert calculate_lending_utilization(5000, 0) == 0

    def test_lending_rate(self):
        assert calculate_lending_rate(700, 10_000, 8000) == 560


class TestCompoundIndex:

    def test_one_year(self):
        assert compound_index(INDEX_ONE, 700, SECONDS_PER_YEAR) == 1_070_000_000_000

    def test_no_time(self):
        assert compound_index(INDEX_ONE, 700, 0) == INDEX_ONE

    def test_zero_rate(self):
        assert compound_index(INDEX_ONE, 0, SECONDS_PER_YEAR) == INDEX_ONE

    def test_negative_elapsed_rejected(self):
        with pytest.raises(ValueError):
            compound_index(INDEX_ONE, 700, -1)

    @given(
        st.integers(min_value=INDEX_ONE, max_value=10 * INDEX_ONE),
        st.integers(min_value=0, max_value=50_000),
        st.integers(min_value=0, max_value=10 * SECONDS_PER_YEAR),
    )
    def test_never_decreases(self, index, rate, elapsed):
        assert compound_index(index, rate, elapsed) >= index
