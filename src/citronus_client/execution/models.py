# src/citronus_client/execution/models.py

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional

from citronus_client.connection.exceptions import ErrorKind, InvalidRequestError
from citronus_client.decimals import optional_decimal, to_decimal

from .exceptions import MalformedOrderError, OrderStateError


class OrderSide(str, Enum):
    BUY = "buy"
    SELL = "sell"


class OrderType(str, Enum):
    MARKET = "market"
    LIMIT = "limit"
    STOP_LIMIT = "stop_limit"


class OrderStatus(str, Enum):
    CREATED = "created"
    PLACED = "placed"
    IN_ORDER_BOOK = "in_order_book"
    PARTIALLY_FULFILLED = "partially_fulfilled"
    FULFILLED = "fulfilled"
    COMPLETED = "completed"
    MARKED_FOR_CANCEL = "marked_for_cancel"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    def can_transition_to(self, new: "OrderStatus") -> bool:
        return new is self or new in ALLOWED_TRANSITIONS[self]


TERMINAL_STATUSES: FrozenSet[OrderStatus] = frozenset(
    {OrderStatus.FULFILLED, OrderStatus.COMPLETED, OrderStatus.CANCELED}
)

_LIFECYCLE = (
    OrderStatus.CREATED,
    OrderStatus.PLACED,
    OrderStatus.IN_ORDER_BOOK,
    OrderStatus.PARTIALLY_FULFILLED,
)
_EXITS = frozenset(
    {
        OrderStatus.FULFILLED,
        OrderStatus.COMPLETED,
        OrderStatus.MARKED_FOR_CANCEL,
        OrderStatus.CANCELED,
    }
)

# Updates may be missed, so forward moves can skip intermediate states; a fill can
# still win the race against a pending cancel.
ALLOWED_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    status: frozenset(_LIFECYCLE[index + 1:]) | _EXITS
    for index, status in enumerate(_LIFECYCLE)
}
ALLOWED_TRANSITIONS[OrderStatus.MARKED_FOR_CANCEL] = frozenset(
    {OrderStatus.CANCELED, OrderStatus.FULFILLED, OrderStatus.COMPLETED}
)
for _terminal in TERMINAL_STATUSES:
    ALLOWED_TRANSITIONS[_terminal] = frozenset()


def _enum_value(enum_cls: Any, value: Any, field_name: str) -> Any:
    try:
        return enum_cls(value.value if isinstance(value, Enum) else str(value).lower())
    except ValueError as exc:
        raise InvalidRequestError(
            f"Unsupported {field_name}: {value!r}", kind=ErrorKind.INVALID_PARAMS
        ) from exc


def _request_decimal(value: Any, field_name: str) -> Optional[Decimal]:
    try:
        return optional_decimal(value, field_name)
    except (TypeError, ValueError) as exc:
        raise InvalidRequestError(str(exc), kind=ErrorKind.INVALID_PARAMS) from exc


@dataclass(frozen=True)
class OrderRequest:
    """An order the caller wants to place. Validated by :class:`OrderValidator`."""

    symbol: str
    side: OrderSide
    type: OrderType
    amount: Optional[Decimal] = None
    total: Optional[Decimal] = None
    price: Optional[Decimal] = None
    stop_price: Optional[Decimal] = None
    client_id: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "side", _enum_value(OrderSide, self.side, "side"))
        object.__setattr__(self, "type", _enum_value(OrderType, self.type, "order type"))
        for name in ("amount", "total", "price", "stop_price"):
            object.__setattr__(self, name, _request_decimal(getattr(self, name), name))


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, (int, Decimal)) or (isinstance(value, str) and value.isdigit()):
        return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def _payload_decimal(payload: Dict[str, Any], *keys: str) -> Optional[Decimal]:
    for key in keys:
        if payload.get(key) not in (None, ""):
            try:
                return to_decimal(payload[key], key)
            except (TypeError, ValueError) as exc:
                raise MalformedOrderError(str(exc)) from exc
    return None


@dataclass(frozen=True)
class Order:
    """Read-only projection of an exchange-owned order."""

    id: str
    symbol: str
    side: OrderSide
    type: OrderType
    status: OrderStatus
    original_amount: Optional[Decimal] = None
    amount: Optional[Decimal] = None
    executed_amount: Optional[Decimal] = None
    price: Optional[Decimal] = None
    stop_price_gte: Optional[Decimal] = None
    stop_price_lte: Optional[Decimal] = None
    fee: Optional[Decimal] = None
    vwap: Optional[Decimal] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Order":
        if not isinstance(payload, dict):
            raise MalformedOrderError(f"Order payload is not an object: {payload!r}")
        order_id = payload.get("id") or payload.get("order_id")
        if order_id in (None, ""):
            raise MalformedOrderError("Order payload has no id")

        try:
            side = OrderSide(str(payload.get("side")).lower())
            order_type = OrderType(str(payload.get("type") or payload.get("order_type")).lower())
            status = OrderStatus(str(payload.get("status")).lower())
        except ValueError as exc:
            raise MalformedOrderError(f"Order {order_id}: {exc}") from exc

        gte = _payload_decimal(payload, "stop_price_gte")
        lte = _payload_decimal(payload, "stop_price_lte")
        if gte is not None and lte is not None:
            raise MalformedOrderError(f"Order {order_id} carries both stop_price_gte and stop_price_lte")
        if gte is not None and side is OrderSide.SELL:
            raise MalformedOrderError(f"Order {order_id}: stop_price_gte only applies to buy orders")
        if lte is not None and side is OrderSide.BUY:
            raise MalformedOrderError(f"Order {order_id}: stop_price_lte only applies to sell orders")

        return cls(
            id=str(order_id),
            symbol=str(payload.get("symbol") or ""),
            side=side,
            type=order_type,
            status=status,
            original_amount=_payload_decimal(payload, "original_amount", "orig_amount"),
            amount=_payload_decimal(payload, "amount"),
            executed_amount=_payload_decimal(payload, "executed_amount"),
            price=_payload_decimal(payload, "price"),
            stop_price_gte=gte,
            stop_price_lte=lte,
            fee=_payload_decimal(payload, "fee"),
            vwap=_payload_decimal(payload, "vwap", "avg_price"),
            created_at=_parse_timestamp(payload.get("created_at")),
            updated_at=_parse_timestamp(payload.get("updated_at")),
            raw=dict(payload),
        )

    @property
    def stop_price(self) -> Optional[Decimal]:
        return self.stop_price_gte if self.stop_price_gte is not None else self.stop_price_lte

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def apply(self, update: "Order") -> "Order":
        """
        Returns ``update`` after checking it is a legal successor of this
        projection; raises :class:`OrderStateError` otherwise.
        """
        if update.id != self.id:
            raise MalformedOrderError(f"Update for order {update.id} applied to order {self.id}")
        if not self.status.can_transition_to(update.status):
            raise OrderStateError(self.id, self.status.value, update.status.value)
        return update

    def with_status(self, status: OrderStatus) -> "Order":
        if not self.status.can_transition_to(status):
            raise OrderStateError(self.id, self.status.value, status.value)
        return replace(self, status=status)


@dataclass(frozen=True)
class Balance:
    coin: str
    available: Decimal
    in_orders: Decimal
    total: Decimal
    asset_type: str = "SPOT"

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Balance":
        coin = payload.get("coin") or payload.get("currency")
        if not coin:
            raise MalformedOrderError(f"Balance entry has no coin: {payload!r}")
        available = _payload_decimal(payload, "available") or Decimal(0)
        in_orders = _payload_decimal(payload, "in_orders") or Decimal(0)
        total = _payload_decimal(payload, "total")
        if total is None:
            total = available + in_orders
        elif total != available + in_orders:
            raise MalformedOrderError(
                f"Balance for {coin}: total {total} != available {available} + in_orders {in_orders}"
            )
        return cls(
            coin=str(coin),
            available=available,
            in_orders=in_orders,
            total=total,
            asset_type=str(payload.get("asset_type") or "SPOT"),
        )
