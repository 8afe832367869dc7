# tests/test_decimals.py

import json
from decimal import Decimal

import pytest

from citronus_client.decimals import (
    floor_to_precision,
    format_decimal,
    fractional_digits,
    is_multiple_of,
    json_default,
    optional_decimal,
    to_decimal,
)


def test_to_decimal_accepts_strings_ints_and_decimals():
    assert to_decimal("0.1") + to_decimal("0.2") == Decimal("0.3")
    assert to_decimal(5) == Decimal(5)
    assert to_decimal(Decimal("1.50")) == Decimal("1.50")


def test_to_decimal_rejects_floats_and_bools():
    with pytest.raises(TypeError):
        to_decimal(0.1)
    with pytest.raises(TypeError):
        to_decimal(True)


@pytest.mark.parametrize("value", ["abc", "NaN", "Infinity", ""])
def test_to_decimal_rejects_unparsable_or_non_finite(value):
    with pytest.raises(ValueError):
        to_decimal(value)


def test_optional_decimal_maps_blank_to_none():
    assert optional_decimal(None) is None
    assert optional_decimal("  ") is None
    assert optional_decimal("2") == Decimal(2)


def test_fractional_digits_ignores_trailing_zeros():
    assert fractional_digits(Decimal("100.00")) == 0
    assert fractional_digits(Decimal("100.005")) == 3
    assert fractional_digits(Decimal("1E+2")) == 0
    assert fractional_digits(Decimal("0")) == 0


def test_floor_to_precision_never_rounds_up():
    assert floor_to_precision(Decimal("0.0076923076"), 6) == Decimal("0.007692")
    assert floor_to_precision(Decimal("1.9999999"), 2) == Decimal("1.99")
    assert floor_to_precision(Decimal("5"), 0) == Decimal("5")


def test_is_multiple_of_tick():
    assert is_multiple_of(Decimal("100.00"), Decimal("0.01"))
    assert not is_multiple_of(Decimal("100.005"), Decimal("0.01"))
    assert is_multiple_of(Decimal("2.15"), Decimal("0.05"))
    with pytest.raises(ValueError):
        is_multiple_of(Decimal("1"), Decimal("0"))


def test_decimals_serialize_as_plain_strings():
    assert format_decimal(Decimal("1E-7")) == "0.0000001"
    encoded = json.dumps({"price": Decimal("65000.10")}, default=json_default)
    assert encoded == '{"price": "65000.10"}'
