# tests/test_metadata_cache.py

import threading
from decimal import Decimal

import pytest

from citronus_client.connection.exceptions import ErrorKind, InvalidRequestError
from citronus_client.market_data.exceptions import MalformedMarketError, MarketNotFoundError
from citronus_client.market_data.metadata_cache import MarketMetadataCache
from citronus_client.market_data.metadata_store import MarketMetadataStore
from citronus_client.market_data.models import MarketMetadata
from conftest import BTC_USDT, ETH_USDT, MarketsFetcher


def test_market_metadata_parses_decimal_fields():
    market = MarketMetadata.from_payload(BTC_USDT)

    assert market.base_coin == "BTC"
    assert market.quote_tick_size == Decimal("0.01")
    assert market.min_order_amt == Decimal("5")
    assert market.commission_rates == {"limit": Decimal("0.001"), "market": Decimal("0.002")}


def test_tick_size_defaults_to_quote_precision():
    payload = dict(BTC_USDT)
    del payload["quote_tick_size"]
    assert MarketMetadata.from_payload(payload).quote_tick_size == Decimal("0.01")


def test_malformed_market_raises():
    with pytest.raises(MalformedMarketError):
        MarketMetadata.from_payload({"symbol": "BTC/USDT"})


def test_refresh_populates_cache(metadata_cache):
    assert metadata_cache.symbols() == ["BTC/USDT", "ETH/USDT"]
    assert metadata_cache.get("ETH/USDT").quote_tick_size == Decimal("0.05")


def test_unknown_symbol_is_invalid_pair(metadata_cache):
    with pytest.raises(MarketNotFoundError) as exc_info:
        metadata_cache.get("DOGE/USDT")
    assert isinstance(exc_info.value, InvalidRequestError)
    assert exc_info.value.kind is ErrorKind.INVALID_PAIR


def test_get_fresh_refetches_only_stale_symbol(metadata_cache, markets_fetcher, clock):
    markets_fetcher.calls.clear()

    metadata_cache.get_fresh("BTC/USDT", max_age=60)
    assert markets_fetcher.calls == []

    clock.advance(61)
    metadata_cache.get_fresh("BTC/USDT", max_age=60)
    assert markets_fetcher.calls == [("spot", "BTC/USDT")]
    assert metadata_cache.age("BTC/USDT") == 0
    assert metadata_cache.age("ETH/USDT") == 61


def test_get_fresh_raises_for_delisted_symbol(metadata_cache, markets_fetcher, clock):
    markets_fetcher.markets = [ETH_USDT]
    clock.advance(1000)

    with pytest.raises(MarketNotFoundError):
        metadata_cache.get_fresh("BTC/USDT")
    assert "BTC/USDT" not in metadata_cache.symbols()


def test_full_refresh_drops_delisted_symbols(metadata_cache, markets_fetcher):
    markets_fetcher.markets = [BTC_USDT]

    metadata_cache.refresh()

    assert metadata_cache.symbols() == ["BTC/USDT"]


def test_refresh_locks_do_not_outlive_their_symbols(metadata_cache, markets_fetcher, clock):
    clock.advance(1000)
    metadata_cache.get_fresh("BTC/USDT")
    metadata_cache.get_fresh("ETH/USDT")
    for unknown in ("DOGE/USDT", "XRP/USDT"):
        with pytest.raises(MarketNotFoundError):
            metadata_cache.get_fresh(unknown)
    assert set(metadata_cache._refresh_locks) == {"*", "BTC/USDT", "ETH/USDT"}

    markets_fetcher.markets = [BTC_USDT]
    metadata_cache.refresh()
    assert set(metadata_cache._refresh_locks) == {"*", "BTC/USDT"}

    metadata_cache.invalidate("BTC/USDT")
    assert set(metadata_cache._refresh_locks) == {"*"}

    metadata_cache.get_fresh("BTC/USDT")
    metadata_cache.invalidate()
    assert metadata_cache._refresh_locks == {}


def test_malformed_entries_are_skipped(clock):
    fetcher = MarketsFetcher([BTC_USDT, {"symbol": "BAD/USDT"}])
    cache = MarketMetadataCache(fetcher, clock=clock)

    cache.refresh()

    assert cache.symbols() == ["BTC/USDT"]


def test_concurrent_get_fresh_fetches_once(clock):
    gate = threading.Event()
    fetcher = MarketsFetcher()

    def slow_fetch(category, symbol):
        gate.wait(timeout=2)
        return fetcher(category, symbol)

    cache = MarketMetadataCache(slow_fetch, clock=clock)
    results = []
    threads = [
        threading.Thread(target=lambda: results.append(cache.get_fresh("BTC/USDT")))
        for _ in range(5)
    ]
    for t in threads:
        t.start()
    gate.set()
    for t in threads:
        t.join()

    assert len(results) == 5
    assert fetcher.calls == [("spot", "BTC/USDT")]


def test_store_round_trip_marks_entries_stale(tmp_path, metadata_cache, clock):
    store = MarketMetadataStore(tmp_path / "markets.json")
    metadata_cache.save(store)

    fetcher = MarketsFetcher()
    warm = MarketMetadataCache(fetcher, clock=clock)
    assert warm.load(store) == 2
    assert warm.get("BTC/USDT") == metadata_cache.get("BTC/USDT")

    warm.get_fresh("BTC/USDT")
    assert fetcher.calls == [("spot", "BTC/USDT")]
