"""
pricing_source.py - Price snapshots for risk computations

Risk functions never fetch prices: they take a PriceSnapshot mapping reserve
symbol -> (price, liquidation_threshold_bps). This module builds those
snapshots from an in-process price store and enforces the one oracle
precondition the core cares about, staleness.

Classes:
- PricingSource: Protocol defining the pricing interface
- StaticPricingSource: Time-independent prices (never stale)
- TimeSeriesPricingSource: Time-varying prices with historical data

Prices are integers in a common quote unit.
"""

from __future__ import annotations
from bisect import bisect_right
from typing import Dict, Set, Optional, List, Tuple, Iterable, Mapping, Protocol, runtime_checkable

from .core import PriceSnapshot, StalePrice


# (price, observed_at)
Observation = Tuple[int, int]


@runtime_checkable
class PricingSource(Protocol):
    """
    Protocol for pricing sources.

    Implementations provide get_observation(); get_price(), get_prices() and
    snapshot() are built on it.
    """

    def get_observation(self, symbol: str, timestamp: int) -> Optional[Observation]:
        """Latest (price, observed_at) at or before timestamp, or None."""
        ...

    def get_price(self, symbol: str, timestamp: int) -> Optional[int]:
        ...

    def get_prices(self, symbols: Set[str], timestamp: int) -> Dict[str, int]:
        ...

    def snapshot(
        self,
        reserves: Iterable[str],
        thresholds: Mapping[str, int],
        now: int,
        max_age: int,
    ) -> PriceSnapshot:
        ...


def build_snapshot(
    source: PricingSource,
    reserves: Iterable[str],
    thresholds: Mapping[str, int],
    now: int,
    max_age: int,
) -> PriceSnapshot:
    """
    Build a PriceSnapshot for reserves at time now.

    Reserves without an observation (or without a threshold) are left out of
    the snapshot rather than priced at zero.

    Raises:
        StalePrice: If an observation is more than max_age seconds old
    """
    snapshot: Dict[str, Tuple[int, int]] = {}
    for reserve in sorted(set(reserves)):
        if reserve not in thresholds:
            continue
        observation = source.get_observation(reserve, now)
        if observation is None:
            continue
        price, observed_at = observation
        if now - observed_at > max_age:
            raise StalePrice(
                f"Price for {reserve} observed at {observed_at} is older than {max_age}s at {now}"
            )
        snapshot[reserve] = (price, thresholds[reserve])
    return snapshot


class StaticPricingSource:
    """
    Pricing source with static prices (time-independent).

    Every observation counts as made at the requested time, so static prices
    are never stale.
    """

    def __init__(self, prices: Dict[str, int]):
        """
        Args:
            prices: Dictionary mapping symbols to integer prices
        """
        self.prices = prices.copy()

    def get_observation(self, symbol: str, timestamp: int) -> Optional[Observation]:
        price = self.prices.get(symbol)
        if price is None:
            return None
        return price, timestamp

    def get_price(self, symbol: str, timestamp: int) -> Optional[int]:
        """Get static price (timestamp is ignored)."""
        return self.prices.get(symbol)

    def get_prices(self, symbols: Set[str], timestamp: int) -> Dict[str, int]:
        return {s: self.prices[s] for s in symbols if s in self.prices}

    def update_price(self, symbol: str, price: int) -> None:
        self.prices[symbol] = price

    def update_prices(self, prices: Dict[str, int]) -> None:
        self.prices.update(prices)

    def snapshot(
        self,
        reserves: Iterable[str],
        thresholds: Mapping[str, int],
        now: int,
        max_age: int,
    ) -> PriceSnapshot:
        return build_snapshot(self, reserves, thresholds, now, max_age)

    def __repr__(self):
        return f"StaticPricingSource({len(self.prices)} prices)"


class TimeSeriesPricingSource:
    """
    Pricing source with time-varying prices.

    Stores historical price data and supports point-in-time valuation.
    Uses the most recent price at or before the requested timestamp; its
    timestamp is what staleness is measured against.

    Examples:
        # Empty initialization
        pricer = TimeSeriesPricingSource()
        pricer.add_price('RSV_SOL', 1_700_000_000, 150)

        # Batch initialization with price paths
        pricer = TimeSeriesPricingSource({
            'RSV_SOL': [(0, 150), (60, 151), (120, 149)],
            'RSV_USDC': [(0, 1)],
        })
    """

    def __init__(self, price_paths: Optional[Dict[str, List[Tuple[int, int]]]] = None):
        self.price_history: Dict[str, List[Tuple[int, int]]] = {}

        if price_paths:
            for symbol, path in price_paths.items():
                if not path:
                    continue
                self.price_history[symbol] = sorted(path, key=lambda x: x[0])

    def add_price(self, symbol: str, timestamp: int, price: int) -> None:
        """Add a price observation for symbol at timestamp."""
        history = self.price_history.setdefault(symbol, [])
        history.append((timestamp, price))
        history.sort(key=lambda x: x[0])

    def add_prices(self, prices: Dict[str, int], timestamp: int) -> None:
        """Add multiple price observations at the same timestamp."""
        for symbol, price in prices.items():
            self.add_price(symbol, timestamp, price)

    def get_observation(self, symbol: str, timestamp: int) -> Optional[Observation]:
        """
        Latest observation at or before timestamp.

        Uses binary search for O(log n) lookup.
        """
        history = self.price_history.get(symbol)
        if not history:
            return None

        timestamps = [ts for ts, _ in history]
        idx = bisect_right(timestamps, timestamp)
        if idx == 0:
            return None

        observed_at, price = history[idx - 1]
        return price, observed_at

    def get_price(self, symbol: str, timestamp: int) -> Optional[int]:
        observation = self.get_observation(symbol, timestamp)
        return None if observation is None else observation[0]

    def get_prices(self, symbols: Set[str], timestamp: int) -> Dict[str, int]:
        prices = {}
        for symbol in symbols:
            price = self.get_price(symbol, timestamp)
            if price is not None:
                prices[symbol] = price
        return prices

    def get_all_timestamps(self, symbol: Optional[str] = None) -> List[int]:
        """
        Sorted timestamps for symbol, or the union across all symbols.
        """
        if symbol:
            return [ts for ts, _ in self.price_history.get(symbol, [])]

        all_times: Set[int] = set()
        for path in self.price_history.values():
            all_times.update(ts for ts, _ in path)
        return sorted(all_times)

    def snapshot(
        self,
        reserves: Iterable[str],
        thresholds: Mapping[str, int],
        now: int,
        max_age: int,
    ) -> PriceSnapshot:
        return build_snapshot(self, reserves, thresholds, now, max_age)

    def __repr__(self):
        total_observations = sum(len(history) for history in self.price_history.values())
        return f"TimeSeriesPricingSource({len(self.price_history)} symbols, {total_observations} observations)"
