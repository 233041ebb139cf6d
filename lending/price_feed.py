"""
price_feed.py - Oracle price input for reserves

Supplies (price, timestamp) pairs keyed by a reserve's price_identifier.
Transport and signature checks live outside the core; a feed here is a
plain lookup that the market consults in refresh_prices().

Classes:
- PriceUpdate: One oracle observation
- PriceFeed: Protocol defining the lookup interface
- StaticPriceFeed: Fixed prices, stamped with the query time
- TimeSeriesPriceFeed: Historical observations, each keeping its own timestamp

Prices are fixed-point Decimals in USD per whole token.
"""

from __future__ import annotations
from bisect import bisect_right
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Protocol, Set, Tuple, runtime_checkable

from .fixed_point import Decimal


@dataclass(frozen=True, slots=True)
class PriceUpdate:
    """A price together with the time it was observed (seconds)."""
    price: Decimal
    timestamp: int

    def __post_init__(self):
        if self.price.is_zero():
            raise ValueError("oracle price must be positive")


@runtime_checkable
class PriceFeed(Protocol):
    """
    Protocol for oracle price sources.

    get_price() returns the latest observation at or before the query time,
    or None when the feed knows nothing about the identifier yet.
    """

    def get_price(self, price_identifier: str, timestamp: int) -> Optional[PriceUpdate]:
        ...


class StaticPriceFeed:
    """
    Feed with constant prices.

    Every lookup is reported as observed at the query time, so prices from
    this feed are never stale.
    """

    def __init__(self, prices: Optional[Dict[str, Decimal]] = None):
        self.prices: Dict[str, Decimal] = dict(prices or {})

    def get_price(self, price_identifier: str, timestamp: int) -> Optional[PriceUpdate]:
        price = self.prices.get(price_identifier)
        if price is None:
            return None
        return PriceUpdate(price, timestamp)

    def update_price(self, price_identifier: str, price: Decimal):
        self.prices[price_identifier] = price

    def update_prices(self, prices: Dict[str, Decimal]):
        self.prices.update(prices)

    def __repr__(self):
        return f"StaticPriceFeed({len(self.prices)} prices)"


class TimeSeriesPriceFeed:
    """
    Feed backed by recorded observations.

    A lookup returns the most recent observation at or before the query
    time with that observation's own timestamp, so a feed that stops
    publishing eventually yields prices the reserve rejects as stale.

    Example:
        feed = TimeSeriesPriceFeed({"SUI": [(0, Decimal.from_int(1)), (30, Decimal.from_str("1.1"))]})
        feed.get_price("SUI", 45)   # PriceUpdate(Decimal(1.1), 30)
    """

    def __init__(self, price_paths: Optional[Dict[str, Iterable[Tuple[int, Decimal]]]] = None):
        self.price_history: Dict[str, List[Tuple[int, Decimal]]] = {}
        if price_paths:
            for identifier, path in price_paths.items():
                path = list(path)
                if path:
                    self.price_history[identifier] = sorted(path, key=lambda x: x[0])

    def add_price(self, price_identifier: str, timestamp: int, price: Decimal):
        history = self.price_history.setdefault(price_identifier, [])
        history.append((timestamp, price))
        history.sort(key=lambda x: x[0])

    def add_prices(self, prices: Dict[str, Decimal], timestamp: int):
        for identifier, price in prices.items():
            self.add_price(identifier, timestamp, price)

    def get_price(self, price_identifier: str, timestamp: int) -> Optional[PriceUpdate]:
        history = self.price_history.get(price_identifier)
        if not history:
            return None

        idx = bisect_right([ts for ts, _ in history], timestamp)
        if idx == 0:
            return None
        observed_at, price = history[idx - 1]
        return PriceUpdate(price, observed_at)

    def get_all_timestamps(self, price_identifier: Optional[str] = None) -> List[int]:
        """Sorted observation times for one identifier, or the union of all."""
        if price_identifier:
            return [ts for ts, _ in self.price_history.get(price_identifier, [])]
        all_times: Set[int] = set()
        for path in self.price_history.values():
            all_times.update(ts for ts, _ in path)
        return sorted(all_times)

    def __repr__(self):
        observations = sum(len(history) for history in self.price_history.values())
        return f"TimeSeriesPriceFeed({len(self.price_history)} identifiers, {observations} observations)"
