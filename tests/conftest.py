"""Shared fixtures for the citronus_client test suite."""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Optional

import pytest

from citronus_client.market_data.metadata_cache import MarketMetadataCache


class FakeClock:
    """Monotonic clock that only moves when told to; ``sleep`` advances it."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


BTC_USDT: Dict[str, Any] = {
    "symbol": "BTC/USDT",
    "base_coin": "BTC",
    "quote_coin": "USDT",
    "trade_base_precision": 6,
    "trade_quote_precision": 2,
    "quote_tick_size": "0.01",
    "min_order_qty": "0.0001",
    "max_order_qty": "100",
    "min_order_amt": "5",
    "max_order_amt": "1000000",
    "limit_commission": "0.001",
    "market_commission": "0.002",
}

ETH_USDT: Dict[str, Any] = {
    "symbol": "ETH/USDT",
    "base_coin": "ETH",
    "quote_coin": "USDT",
    "trade_base_precision": 4,
    "trade_quote_precision": 2,
    "quote_tick_size": "0.05",
    "min_order_qty": "0.001",
    "min_order_amt": "5",
}


class MarketsFetcher:
    """Stands in for ``client.markets``; records every call."""

    def __init__(self, markets: Optional[List[Dict[str, Any]]] = None) -> None:
        self.markets = list(markets if markets is not None else [BTC_USDT, ETH_USDT])
        self.calls: List[tuple] = []

    def __call__(self, category: str, symbol: Optional[str]) -> Any:
        self.calls.append((category, symbol))
        if symbol is None:
            return list(self.markets)
        return [m for m in self.markets if m["symbol"] == symbol]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def markets_fetcher() -> MarketsFetcher:
    return MarketsFetcher()


@pytest.fixture
def metadata_cache(markets_fetcher: MarketsFetcher, clock: FakeClock) -> MarketMetadataCache:
    cache = MarketMetadataCache(markets_fetcher, clock=clock)
    cache.refresh()
    return cache


def dec(value: str) -> Decimal:
    return Decimal(value)
