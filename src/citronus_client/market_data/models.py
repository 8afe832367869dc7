from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional

from citronus_client.decimals import format_decimal, optional_decimal, to_decimal

from .exceptions import MalformedMarketError


def _first(payload: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = payload.get(key)
        if value is not None and value != "":
            return value
    return None


@dataclass(frozen=True)
class MarketMetadata:
    """Trading rules for one symbol, as published by the ``markets`` method."""

    symbol: str
    base_coin: str
    quote_coin: str
    trade_base_precision: int
    trade_quote_precision: int
    quote_tick_size: Decimal
    min_order_qty: Optional[Decimal] = None
    max_order_qty: Optional[Decimal] = None
    min_order_amt: Optional[Decimal] = None
    max_order_amt: Optional[Decimal] = None
    commission_rates: Dict[str, Decimal] = field(default_factory=dict)
    category: str = "spot"

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], category: str = "spot") -> "MarketMetadata":
        symbol = _first(payload, "symbol", "name")
        if not symbol:
            raise MalformedMarketError(f"Market entry has no symbol: {payload!r}")
        symbol = str(symbol)

        base, _, quote = symbol.partition("/")
        base_coin = str(_first(payload, "base_coin", "base") or base)
        quote_coin = str(_first(payload, "quote_coin", "quote") or quote)

        try:
            base_precision = int(_first(payload, "trade_base_precision", "base_precision"))
            quote_precision = int(_first(payload, "trade_quote_precision", "quote_precision"))
        except (TypeError, ValueError) as exc:
            raise MalformedMarketError(f"Market {symbol} has no usable precision") from exc

        try:
            tick = optional_decimal(payload.get("quote_tick_size"), "quote_tick_size")
            if tick is None:
                tick = Decimal(1).scaleb(-quote_precision)
            if tick <= 0:
                raise MalformedMarketError(f"Market {symbol} has a non-positive tick size")

            commissions: Dict[str, Decimal] = {}
            raw_commissions = payload.get("commission_rates")
            if isinstance(raw_commissions, dict):
                for order_type, rate in raw_commissions.items():
                    commissions[str(order_type)] = to_decimal(rate, "commission_rate")
            for order_type in ("market", "limit", "stop_limit"):
                rate = payload.get(f"{order_type}_commission")
                if rate is not None:
                    commissions[order_type] = to_decimal(rate, f"{order_type}_commission")

            return cls(
                symbol=symbol,
                base_coin=base_coin,
                quote_coin=quote_coin,
                trade_base_precision=base_precision,
                trade_quote_precision=quote_precision,
                quote_tick_size=tick,
                min_order_qty=optional_decimal(payload.get("min_order_qty"), "min_order_qty"),
                max_order_qty=optional_decimal(payload.get("max_order_qty"), "max_order_qty"),
                min_order_amt=optional_decimal(payload.get("min_order_amt"), "min_order_amt"),
                max_order_amt=optional_decimal(payload.get("max_order_amt"), "max_order_amt"),
                commission_rates=commissions,
                category=str(payload.get("category") or category),
            )
        except (TypeError, ValueError) as exc:
            raise MalformedMarketError(f"Market {symbol} has malformed numeric fields: {exc}") from exc

    def to_payload(self) -> Dict[str, Any]:
        def _fmt(value: Optional[Decimal]) -> Optional[str]:
            return format_decimal(value) if value is not None else None

        return {
            "symbol": self.symbol,
            "base_coin": self.base_coin,
            "quote_coin": self.quote_coin,
            "trade_base_precision": self.trade_base_precision,
            "trade_quote_precision": self.trade_quote_precision,
            "quote_tick_size": _fmt(self.quote_tick_size),
            "min_order_qty": _fmt(self.min_order_qty),
            "max_order_qty": _fmt(self.max_order_qty),
            "min_order_amt": _fmt(self.min_order_amt),
            "max_order_amt": _fmt(self.max_order_amt),
            "commission_rates": {k: format_decimal(v) for k, v in self.commission_rates.items()},
            "category": self.category,
        }
