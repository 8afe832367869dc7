"""Local channel state rebuilt from WebSocket snapshots and increments."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from citronus_client.decimals import to_decimal
from citronus_client.execution.models import Balance

Level = Tuple[Decimal, Decimal]


def _levels(entries: Any) -> Iterable[Level]:
    if entries is not None and not isinstance(entries, list):
        raise ValueError(f"Book side must be a list of levels, got {type(entries).__name__}")
    for entry in entries or []:
        if isinstance(entry, dict):
            price, amount = entry.get("price"), entry.get("amount", entry.get("qty"))
        elif isinstance(entry, (list, tuple)) and len(entry) >= 2:
            price, amount = entry[0], entry[1]
        else:
            raise ValueError(f"Malformed book level: {entry!r}")
        yield to_decimal(price, "price"), to_decimal(amount, "amount")


def _book_frame(data: Any) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise ValueError(f"Order book frame must be an object, got {type(data).__name__}")
    return data


class OrderBookState:
    """Price levels for one symbol. A zero amount in an increment removes the level."""

    def __init__(self) -> None:
        self.bids: Dict[Decimal, Decimal] = {}
        self.asks: Dict[Decimal, Decimal] = {}

    def apply_snapshot(self, data: Dict[str, Any]) -> None:
        data = _book_frame(data)
        bids = {p: a for p, a in _levels(data.get("bids")) if a > 0}
        asks = {p: a for p, a in _levels(data.get("asks")) if a > 0}
        self.bids, self.asks = bids, asks

    def apply_delta(self, data: Dict[str, Any]) -> None:
        data = _book_frame(data)
        # Parse both sides before touching the book so a bad frame leaves it unchanged.
        updates = [
            (self.bids, list(_levels(data.get("bids")))),
            (self.asks, list(_levels(data.get("asks")))),
        ]
        for book, levels in updates:
            for price, amount in levels:
                if amount == 0:
                    book.pop(price, None)
                else:
                    book[price] = amount

    def sorted_bids(self) -> List[Level]:
        return sorted(self.bids.items(), key=lambda level: level[0], reverse=True)

    def sorted_asks(self) -> List[Level]:
        return sorted(self.asks.items(), key=lambda level: level[0])

    @property
    def best_bid(self) -> Optional[Level]:
        return max(self.bids.items(), key=lambda level: level[0]) if self.bids else None

    @property
    def best_ask(self) -> Optional[Level]:
        return min(self.asks.items(), key=lambda level: level[0]) if self.asks else None


class BalanceBook:
    """Wallet balances keyed by coin."""

    def __init__(self) -> None:
        self.balances: Dict[str, Balance] = {}

    @staticmethod
    def _entries(data: Any) -> List[Dict[str, Any]]:
        if isinstance(data, dict):
            nested = data.get("balances")
            return nested if isinstance(nested, list) else [data]
        if data is not None and not isinstance(data, list):
            raise ValueError(f"Balance frame must be an object or a list, got {type(data).__name__}")
        return [entry for entry in data or [] if isinstance(entry, dict)]

    def apply_snapshot(self, data: Any) -> None:
        balances = [Balance.from_payload(entry) for entry in self._entries(data)]
        self.balances = {b.coin: b for b in balances}

    def apply_delta(self, data: Any) -> None:
        balances = [Balance.from_payload(entry) for entry in self._entries(data)]
        for balance in balances:
            self.balances[balance.coin] = balance

    def get(self, coin: str) -> Optional[Balance]:
        return self.balances.get(coin)


def new_state(family: str) -> Any:
    if family == "wallets":
        return BalanceBook()
    if family == "orderbook":
        return OrderBookState()
    return None
