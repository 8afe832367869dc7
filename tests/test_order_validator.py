# tests/test_order_validator.py

from decimal import Decimal

import pytest

from citronus_client.connection.exceptions import ErrorKind, InvalidRequestError
from citronus_client.execution.models import OrderRequest
from citronus_client.execution.validator import OrderValidator, derive_amount


@pytest.fixture
def validator(metadata_cache):
    return OrderValidator(metadata_cache)


def _limit(**kwargs):
    fields = {"symbol": "BTC/USDT", "side": "buy", "type": "limit", "price": "65000.00"}
    fields.update(kwargs)
    return OrderRequest(**fields)


def _kind(validator, request, reference_price=None):
    with pytest.raises(InvalidRequestError) as exc_info:
        validator.validate(request, reference_price)
    return exc_info.value.kind


def test_both_or_neither_amount_and_total_rejected(validator):
    assert _kind(validator, _limit(amount="0.01", total="650")) is ErrorKind.INVALID_PARAMS
    assert _kind(validator, _limit()) is ErrorKind.INVALID_PARAMS


def test_price_must_be_on_tick(validator):
    assert _kind(validator, _limit(price="100.005", amount="0.1")) is ErrorKind.INVALID_ORDER_VALUE

    validated = validator.validate(_limit(price="100.00", amount="0.1"))
    assert validated.params["price"] == "100.00"


def test_coarser_tick_than_precision(validator):
    request = OrderRequest(symbol="ETH/USDT", side="sell", type="limit", price="2000.03", amount="1")
    assert _kind(validator, request) is ErrorKind.INVALID_ORDER_VALUE

    request = OrderRequest(symbol="ETH/USDT", side="sell", type="limit", price="2000.05", amount="1")
    assert validator.validate(request).params["price"] == "2000.05"


def test_limit_order_needs_positive_price(validator):
    assert _kind(validator, _limit(price=None, amount="0.1")) is ErrorKind.INVALID_PARAMS
    assert _kind(validator, _limit(price="0", amount="0.1")) is ErrorKind.INVALID_PARAMS


def test_amount_precision(validator):
    assert _kind(validator, _limit(amount="0.0000001")) is ErrorKind.INVALID_ORDER_VALUE
    assert validator.validate(_limit(amount="0.000100")).params["amount"] == "0.000100"


def test_total_derives_floored_amount(validator):
    validated = validator.validate(_limit(total="500"))

    assert validated.amount == Decimal("0.007692")
    assert validated.params["amount"] == "0.007692"
    assert "total" not in validated.params
    assert validated.notional == Decimal("500")


def test_derive_amount_never_rounds_up():
    assert derive_amount(Decimal("500"), Decimal("65000"), 6) == Decimal("0.007692")
    assert derive_amount(Decimal("1"), Decimal("3"), 2) == Decimal("0.33")


def test_quantity_and_notional_bounds(validator):
    assert _kind(validator, _limit(amount="0.00005")) is ErrorKind.INVALID_ORDER_VALUE
    assert _kind(validator, _limit(amount="101")) is ErrorKind.INVALID_ORDER_VALUE
    # 0.0001 * 10000 = 1 USDT, under the 5 USDT minimum notional.
    assert _kind(validator, _limit(price="10000.00", amount="0.0001")) is ErrorKind.INVALID_ORDER_VALUE


def test_total_too_small_to_buy_anything(validator):
    assert _kind(validator, _limit(price="65000.00", total="0.01")) is ErrorKind.INVALID_ORDER_VALUE


def test_market_order_rejects_price(validator):
    request = OrderRequest(symbol="BTC/USDT", side="buy", type="market", price="65000", amount="0.1")
    assert _kind(validator, request) is ErrorKind.INVALID_PARAMS


def test_market_order_by_total_sends_total(validator):
    request = OrderRequest(symbol="BTC/USDT", side="buy", type="market", total="100")

    validated = validator.validate(request, reference_price="65000")

    assert validated.params == {"symbol": "BTC/USDT", "side": "buy", "type": "market", "total": "100"}


def test_market_order_uses_reference_price_for_notional(validator):
    request = OrderRequest(symbol="BTC/USDT", side="sell", type="market", amount="0.0001")

    # Without a reference price the notional check cannot run.
    assert validator.validate(request).notional is None
    assert _kind(validator, request, reference_price="10000") is ErrorKind.INVALID_ORDER_VALUE


def test_stop_limit_rules(validator):
    request = _limit(type="stop_limit", amount="0.1")
    assert _kind(validator, request) is ErrorKind.INVALID_PARAMS

    request = _limit(type="stop_limit", amount="0.1", stop_price="64000.001")
    assert _kind(validator, request) is ErrorKind.INVALID_ORDER_VALUE

    validated = validator.validate(_limit(type="stop_limit", amount="0.1", stop_price="64000.00"))
    assert validated.params["stop_price"] == "64000.00"

    assert _kind(validator, _limit(amount="0.1", stop_price="64000.00")) is ErrorKind.INVALID_PARAMS


def test_unknown_symbol_is_invalid_pair(validator):
    request = OrderRequest(symbol="DOGE/USDT", side="buy", type="limit", price="1", amount="10")
    assert _kind(validator, request) is ErrorKind.INVALID_PAIR


def test_float_inputs_are_refused():
    with pytest.raises(InvalidRequestError):
        OrderRequest(symbol="BTC/USDT", side="buy", type="limit", price=65000.0, amount="1")
    with pytest.raises(InvalidRequestError):
        OrderRequest(symbol="BTC/USDT", side="hold", type="limit", price="1", amount="1")
