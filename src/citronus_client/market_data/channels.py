"""Channel families and the locally derived keys used to route WebSocket frames.

Server-assigned subscription ids are reissued on every reconnect, so the
subscription registry is keyed by :class:`ChannelKey` instead: the channel
family plus the asset/symbol/interval parameters the subscription was made
with. Inbound data frames echo those parameters, which lets a frame be
routed back to its channel on any connection.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional


@dataclass(frozen=True)
class ChannelFamily:
    name: str
    command: str
    inbound_method: str
    private: bool = False
    stateful: bool = False

    @property
    def unsubscribe_command(self) -> str:
        return f"unsubscribe.{self.name}"


WALLETS = ChannelFamily("wallets", "subscribe.wallets", "balances", private=True, stateful=True)
ORDERBOOK = ChannelFamily("orderbook", "subscribe.orderbook", "orderbook", stateful=True)
KLINES = ChannelFamily("klines", "subscribe.klines", "kline")
COINS = ChannelFamily("coins", "subscribe.coins", "ticker")

FAMILIES: Dict[str, ChannelFamily] = {f.name: f for f in (WALLETS, ORDERBOOK, KLINES, COINS)}

# Inbound data frames name the channel differently from the subscribe command.
_BY_METHOD: Dict[str, ChannelFamily] = {}
for _family in FAMILIES.values():
    _BY_METHOD[_family.inbound_method] = _family
    _BY_METHOD[_family.command] = _family
    _BY_METHOD[_family.name] = _family


def family_for_method(method: str) -> Optional[ChannelFamily]:
    return _BY_METHOD.get(method)


def _param(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


@dataclass(frozen=True)
class ChannelKey:
    family: str
    asset: Optional[str] = None
    symbol: Optional[str] = None
    interval: Optional[str] = None

    def __post_init__(self) -> None:
        if self.family not in FAMILIES:
            raise ValueError(f"Unknown channel family: {self.family!r}")
        object.__setattr__(self, "asset", _param(self.asset))
        object.__setattr__(self, "symbol", _param(self.symbol))
        object.__setattr__(self, "interval", _param(self.interval))

    @property
    def channel(self) -> ChannelFamily:
        return FAMILIES[self.family]

    @property
    def private(self) -> bool:
        return self.channel.private

    def params(self) -> Dict[str, str]:
        params: Dict[str, str] = {}
        for name in ("asset", "symbol", "interval"):
            value = getattr(self, name)
            if value is not None:
                params[name] = value
        return params

    @classmethod
    def from_frame(cls, method: str, params: Optional[Mapping[str, Any]]) -> Optional["ChannelKey"]:
        family = family_for_method(method)
        if family is None:
            return None
        params = params or {}
        return cls(
            family=family.name,
            asset=params.get("asset"),
            symbol=params.get("symbol"),
            interval=params.get("interval"),
        )

    def __str__(self) -> str:
        parts = [self.family] + [v for v in (self.asset, self.symbol, self.interval) if v]
        return ":".join(parts)
