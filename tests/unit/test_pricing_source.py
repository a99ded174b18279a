"""
test_pricing_source.py - Unit tests for pricing_source.py

Tests:
- StaticPricingSource: static prices, updates, never stale
- TimeSeriesPricingSource: point-in-time lookup (incremental and batch initialization)
- build_snapshot: thresholds, missing observations, staleness
"""

import pytest

from lending_ledger import (
    PricingSource,
    StaticPricingSource,
    TimeSeriesPricingSource,
    build_snapshot,
    StalePrice,
)


THRESHOLDS = {"RSV_SOL": 7500, "RSV_USDC": 8000}


class TestStaticPricingSource:
    """Tests for StaticPricingSource."""

    def test_get_price(self):
        source = StaticPricingSource({"RSV_SOL": 150, "RSV_USDC": 1})
        assert source.get_price("RSV_SOL", 0) == 150
        assert source.get_price("RSV_USDC", 10**9) == 1

    def test_unknown_symbol(self):
        assert StaticPricingSource({"RSV_SOL": 150}).get_price("RSV_BTC", 0) is None

    def test_observation_is_made_now(self):
        source = StaticPricingSource({"RSV_SOL": 150})
        assert source.get_observation("RSV_SOL", 500) == (150, 500)

    def test_get_prices(self):
        source = StaticPricingSource({"RSV_SOL": 150, "RSV_USDC": 1})
        assert source.get_prices({"RSV_SOL", "RSV_BTC"}, 0) == {"RSV_SOL": 150}

    def test_input_is_copied(self):
        prices = {"RSV_SOL": 150}
        source = StaticPricingSource(prices)
        prices["RSV_SOL"] = 1
        assert source.get_price("RSV_SOL", 0) == 150

    def test_updates(self):
        source = StaticPricingSource({"RSV_SOL": 150})
        source.update_price("RSV_SOL", 160)
        source.update_prices({"RSV_USDC": 1})
        assert source.get_prices({"RSV_SOL", "RSV_USDC"}, 0) == {"RSV_SOL": 160, "RSV_USDC": 1}

    def test_never_stale(self):
        source = StaticPricingSource({"RSV_SOL": 150})
        assert source.snapshot(["RSV_SOL"], THRESHOLDS, now=10**9, max_age=0) == {"RSV_SOL": (150, 7500)}

    def test_satisfies_protocol(self):
        assert isinstance(StaticPricingSource({}), PricingSource)

    def test_repr(self):
        assert "StaticPricingSource" in repr(StaticPricingSource({"RSV_SOL": 150}))


class TestTimeSeriesPricingSource:
    """Tests for TimeSeriesPricingSource."""

    @pytest.fixture
    def source(self):
        return TimeSeriesPricingSource({
            "RSV_SOL": [(120, 149), (0, 150), (60, 151)],
            "RSV_USDC": [(0, 1)],
            "RSV_EMPTY": [],
        })

    def test_batch_paths_are_sorted(self, source):
        assert source.get_all_timestamps("RSV_SOL") == [0, 60, 120]
        assert "RSV_EMPTY" not in source.price_history

    def test_latest_at_or_before(self, source):
        assert source.get_price("RSV_SOL", 0) == 150
        assert source.get_price("RSV_SOL", 59) == 150
        assert source.get_price("RSV_SOL", 60) == 151
        assert source.get_price("RSV_SOL", 10_000) == 149

    def test_observation_carries_timestamp(self, source):
        assert source.get_observation("RSV_SOL", 100) == (151, 60)

    def test_before_first_observation(self):
        source = TimeSeriesPricingSource({"RSV_SOL": [(100, 150)]})
        assert source.get_observation("RSV_SOL", 99) is None
        assert source.get_price("RSV_SOL", 99) is None

    def test_unknown_symbol(self, source):
        assert source.get_observation("RSV_BTC", 0) is None

    def test_add_price_out_of_order(self):
        source = TimeSeriesPricingSource()
        source.add_price("RSV_SOL", 60, 151)
        source.add_price("RSV_SOL", 0, 150)
        assert source.get_all_timestamps("RSV_SOL") == [0, 60]
        assert source.get_price("RSV_SOL", 30) == 150

    def test_add_prices(self):
        source = TimeSeriesPricingSource()
        source.add_prices({"RSV_SOL": 150, "RSV_USDC": 1}, 10)
        assert source.get_prices({"RSV_SOL", "RSV_USDC", "RSV_BTC"}, 10) == {"RSV_SOL": 150, "RSV_USDC": 1}

    def test_all_timestamps_union(self, source):
        source.add_price("RSV_USDC", 90, 1)
        assert source.get_all_timestamps() == [0, 60, 90, 120]

    def test_repr(self, source):
        assert repr(source) == "TimeSeriesPricingSource(2 symbols, 4 observations)"


class TestBuildSnapshot:
    """Tests for build_snapshot()."""

    @pytest.fixture
    def source(self):
        return TimeSeriesPricingSource({"RSV_SOL": [(100, 150)], "RSV_USDC": [(100, 1)]})

    def test_snapshot(self, source):
        snap = build_snapshot(source, ["RSV_SOL", "RSV_USDC"], THRESHOLDS, now=130, max_age=60)
        assert snap == {"RSV_SOL": (150, 7500), "RSV_USDC": (1, 8000)}

    def test_skips_reserve_without_threshold(self, source):
        snap = build_snapshot(source, ["RSV_SOL"], {"RSV_USDC": 8000}, now=100, max_age=60)
        assert snap == {}

    def test_skips_reserve_without_observation(self, source):
        snap = build_snapshot(source, ["RSV_SOL", "RSV_BTC"], {**THRESHOLDS, "RSV_BTC": 7000}, now=100, max_age=60)
        assert snap == {"RSV_SOL": (150, 7500)}

    def test_age_at_limit_is_fresh(self, source):
        snap = build_snapshot(source, ["RSV_SOL"], THRESHOLDS, now=160, max_age=60)
        assert snap == {"RSV_SOL": (150, 7500)}

    def test_stale(self, source):
        with pytest.raises(StalePrice):
            build_snapshot(source, ["RSV_SOL"], THRESHOLDS, now=161, max_age=60)

    def test_method_delegates(self, source):
        assert source.snapshot(["RSV_USDC"], THRESHOLDS, now=100, max_age=0) == {"RSV_USDC": (1, 8000)}
