# src/citronus_client/market_data/metadata_cache.py

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from citronus_client.logging_config import structured_log_extra

from .exceptions import MalformedMarketError, MarketNotFoundError
from .metadata_store import MarketMetadataStore
from .models import MarketMetadata

logger = logging.getLogger(__name__)

MarketsFetcher = Callable[[str, Optional[str]], Any]

DEFAULT_MAX_AGE_SECONDS = 300.0
_ALL_SYMBOLS = "*"


@dataclass(frozen=True)
class _CacheEntry:
    metadata: MarketMetadata
    fetched_at: float


def _market_entries(payload: Any) -> List[Dict[str, Any]]:
    if isinstance(payload, dict):
        nested = payload.get("markets")
        if isinstance(nested, list):
            return nested
        return [payload]
    if isinstance(payload, list):
        return [entry for entry in payload if isinstance(entry, dict)]
    return []


class MarketMetadataCache:
    """
    Holds per-symbol trading rules fetched from the ``markets`` method.

    Entries have no TTL of their own; callers that need an upper bound on
    staleness use :meth:`get_fresh`. Network fetches run outside the map
    lock, and refreshes are serialized per symbol, so refreshing one symbol
    never blocks reads or refreshes of another.
    """

    def __init__(
        self,
        fetcher: MarketsFetcher,
        category: str = "spot",
        max_age_seconds: float = DEFAULT_MAX_AGE_SECONDS,
        clock: Optional[Callable[[], float]] = None,
    ):
        self._fetcher = fetcher
        self.category = category
        self.max_age_seconds = max_age_seconds
        self._clock = clock or time.monotonic
        self._entries: Dict[str, _CacheEntry] = {}
        self._lock = threading.Lock()
        self._refresh_locks: Dict[str, threading.Lock] = {}

    @classmethod
    def from_client(cls, client: Any, config: Any = None, **kwargs: Any) -> "MarketMetadataCache":
        """Wires the cache to a :class:`CitronusRESTClient` (and optional ``AppConfig``)."""
        if config is not None:
            kwargs.setdefault("category", config.market_data.category)
            kwargs.setdefault("max_age_seconds", config.market_data.metadata_max_age_seconds)
        return cls(lambda category, symbol: client.markets(category, symbol), **kwargs)

    def _refresh_lock(self, key: str) -> threading.Lock:
        with self._lock:
            lock = self._refresh_locks.get(key)
            if lock is None:
                lock = self._refresh_locks[key] = threading.Lock()
            return lock

    def _prune_refresh_locks_locked(self, keys) -> None:
        # Held locks stay; their holder still needs them.
        for key in keys:
            lock = self._refresh_locks.get(key)
            if lock is not None and not lock.locked() and key not in self._entries:
                del self._refresh_locks[key]

    def _prune_refresh_lock(self, key: str) -> None:
        with self._lock:
            self._prune_refresh_locks_locked([key])

    def _parse(self, payload: Any, category: str) -> List[MarketMetadata]:
        parsed = []
        for entry in _market_entries(payload):
            try:
                parsed.append(MarketMetadata.from_payload(entry, category=category))
            except MalformedMarketError as exc:
                logger.warning(
                    "Skipping malformed market entry",
                    extra=structured_log_extra(event="market_entry_malformed", error=str(exc)),
                )
        return parsed

    def refresh(
        self, category: Optional[str] = None, symbol: Optional[str] = None
    ) -> List[MarketMetadata]:
        """
        Fetches metadata for ``symbol`` (or the whole category) and replaces the
        cached entries. A full refresh drops symbols the exchange no longer lists.
        """
        category = category or self.category
        try:
            with self._refresh_lock(symbol or _ALL_SYMBOLS):
                return self._refresh_locked(category, symbol)
        finally:
            if symbol is not None:
                self._prune_refresh_lock(symbol)

    def _refresh_locked(self, category: str, symbol: Optional[str]) -> List[MarketMetadata]:
        markets = self._parse(self._fetcher(category, symbol), category)
        now = self._clock()

        with self._lock:
            if symbol is not None:
                markets = [m for m in markets if m.symbol == symbol]
                if not markets:
                    self._entries.pop(symbol, None)
                    raise MarketNotFoundError(symbol)
                self._entries[symbol] = _CacheEntry(markets[0], now)
            else:
                listed = {m.symbol for m in markets}
                delisted = [
                    s for s, e in self._entries.items()
                    if e.metadata.category == category and s not in listed
                ]
                for stale in delisted:
                    del self._entries[stale]
                self._prune_refresh_locks_locked(delisted)
                for market in markets:
                    self._entries[market.symbol] = _CacheEntry(market, now)

        logger.info(
            "Market metadata refreshed",
            extra=structured_log_extra(
                event="markets_refreshed", symbol=symbol, category=category, count=len(markets)
            ),
        )
        return markets

    def get(self, symbol: str) -> MarketMetadata:
        """Returns cached metadata, raising :class:`MarketNotFoundError` when absent."""
        with self._lock:
            entry = self._entries.get(symbol)
        if entry is None:
            raise MarketNotFoundError(symbol)
        return entry.metadata

    def age(self, symbol: str) -> Optional[float]:
        with self._lock:
            entry = self._entries.get(symbol)
        if entry is None:
            return None
        return self._clock() - entry.fetched_at

    def _is_fresh(self, symbol: str, max_age: float) -> bool:
        age = self.age(symbol)
        return age is not None and age <= max_age

    def get_fresh(self, symbol: str, max_age: Optional[float] = None) -> MarketMetadata:
        """
        Returns metadata no older than ``max_age`` seconds (the cache default
        when omitted), refreshing that single symbol first when needed.
        """
        bound = self.max_age_seconds if max_age is None else max_age
        if self._is_fresh(symbol, bound):
            return self.get(symbol)

        try:
            with self._refresh_lock(symbol):
                # Another caller may have refreshed while we waited for the lock.
                if not self._is_fresh(symbol, bound):
                    self._refresh_locked(self.category, symbol)
        finally:
            self._prune_refresh_lock(symbol)
        return self.get(symbol)

    def invalidate(self, symbol: Optional[str] = None) -> None:
        """Drops one symbol, or every cached entry when ``symbol`` is None."""
        with self._lock:
            if symbol is None:
                self._entries.clear()
                self._prune_refresh_locks_locked(list(self._refresh_locks))
            else:
                self._entries.pop(symbol, None)
                self._prune_refresh_locks_locked([symbol])

    def symbols(self) -> List[str]:
        with self._lock:
            return sorted(self._entries)

    def save(self, store: MarketMetadataStore) -> None:
        with self._lock:
            markets = [e.metadata for e in self._entries.values()]
        store.save(markets)

    def load(self, store: MarketMetadataStore) -> int:
        """
        Warms the cache from disk. Loaded entries are marked stale so
        :meth:`get_fresh` still refetches them before validation.
        """
        markets = store.load()
        with self._lock:
            for market in markets:
                if market.symbol not in self._entries:
                    self._entries[market.symbol] = _CacheEntry(market, float("-inf"))
        return len(markets)
