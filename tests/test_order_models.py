# tests/test_order_models.py

from decimal import Decimal

import pytest

from citronus_client.execution.exceptions import MalformedOrderError, OrderStateError
from citronus_client.execution.models import Balance, Order, OrderStatus


def _order(status="placed", **extra):
    payload = {
        "id": "42",
        "symbol": "BTC/USDT",
        "side": "buy",
        "type": "limit",
        "status": status,
        "amount": "0.5",
        "price": "65000.00",
    }
    payload.update(extra)
    return Order.from_payload(payload)


@pytest.mark.parametrize(
    "current, new",
    [
        (OrderStatus.CREATED, OrderStatus.PLACED),
        (OrderStatus.PLACED, OrderStatus.IN_ORDER_BOOK),
        (OrderStatus.IN_ORDER_BOOK, OrderStatus.PARTIALLY_FULFILLED),
        (OrderStatus.PARTIALLY_FULFILLED, OrderStatus.FULFILLED),
        (OrderStatus.CREATED, OrderStatus.IN_ORDER_BOOK),
        (OrderStatus.IN_ORDER_BOOK, OrderStatus.MARKED_FOR_CANCEL),
        (OrderStatus.MARKED_FOR_CANCEL, OrderStatus.CANCELED),
        (OrderStatus.MARKED_FOR_CANCEL, OrderStatus.FULFILLED),
        (OrderStatus.PLACED, OrderStatus.PLACED),
    ],
)
def test_allowed_transitions(current, new):
    assert current.can_transition_to(new)


@pytest.mark.parametrize(
    "current, new",
    [
        (OrderStatus.FULFILLED, OrderStatus.CANCELED),
        (OrderStatus.CANCELED, OrderStatus.IN_ORDER_BOOK),
        (OrderStatus.COMPLETED, OrderStatus.MARKED_FOR_CANCEL),
        (OrderStatus.IN_ORDER_BOOK, OrderStatus.PLACED),
        (OrderStatus.MARKED_FOR_CANCEL, OrderStatus.IN_ORDER_BOOK),
    ],
)
def test_forbidden_transitions(current, new):
    assert not current.can_transition_to(new)


def test_terminal_statuses():
    assert {s for s in OrderStatus if s.is_terminal} == {
        OrderStatus.FULFILLED,
        OrderStatus.COMPLETED,
        OrderStatus.CANCELED,
    }


def test_apply_rejects_illegal_update():
    order = _order("fulfilled")
    with pytest.raises(OrderStateError):
        order.apply(_order("in_order_book"))


def test_order_parses_decimals_and_stop_price():
    order = _order("placed", type="stop_limit", stop_price_gte="66000.00")

    assert order.amount == Decimal("0.5")
    assert order.stop_price == Decimal("66000.00")


def test_stop_price_direction_must_match_side():
    with pytest.raises(MalformedOrderError):
        _order(stop_price_lte="60000")
    with pytest.raises(MalformedOrderError):
        _order(side="sell", stop_price_gte="70000")
    with pytest.raises(MalformedOrderError):
        _order(stop_price_gte="70000", stop_price_lte="60000")


def test_balance_total_invariant():
    balance = Balance.from_payload({"coin": "USDT", "available": "90.5", "in_orders": "9.5"})
    assert balance.total == Decimal("100.0")

    with pytest.raises(MalformedOrderError):
        Balance.from_payload({"coin": "USDT", "available": "90", "in_orders": "9", "total": "100"})
