"""Exact base-10 helpers for prices and quantities.

Every monetary value crossing the library boundary is a :class:`decimal.Decimal`.
The wire format transmits numbers as decimal strings, so binary floats are
refused outright rather than silently converted.
"""

from __future__ import annotations

from decimal import ROUND_DOWN, Decimal, InvalidOperation, localcontext
from typing import Any, Optional

_WORK_PRECISION = 48


def to_decimal(value: Any, field: str = "value") -> Decimal:
    """Convert ``value`` (``Decimal``, ``int`` or ``str``) into a finite Decimal.

    Raises:
        TypeError: for floats, booleans and other non-decimal types.
        ValueError: for unparsable strings and non-finite values.
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise TypeError(f"{field} must be a decimal string, int or Decimal, not {type(value).__name__}")

    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation as exc:
            raise ValueError(f"{field} is not a valid decimal: {value!r}") from exc
    else:
        raise TypeError(f"{field} must be a decimal string, int or Decimal, not {type(value).__name__}")

    if not result.is_finite():
        raise ValueError(f"{field} must be finite: {value!r}")
    return result


def optional_decimal(value: Any, field: str = "value") -> Optional[Decimal]:
    """Like :func:`to_decimal` but maps ``None`` and empty strings to ``None``."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return to_decimal(value, field)


def format_decimal(value: Decimal) -> str:
    """Render a Decimal in plain notation (never scientific)."""
    return format(value, "f")


def fractional_digits(value: Decimal) -> int:
    """Number of significant digits after the decimal point (trailing zeros ignored)."""
    if value == 0:
        return 0
    exponent = value.normalize().as_tuple().exponent
    return max(0, -int(exponent))


def floor_to_precision(value: Decimal, places: int) -> Decimal:
    """Truncate ``value`` toward zero to ``places`` fractional digits."""
    quantum = Decimal(1).scaleb(-places)
    with localcontext() as ctx:
        ctx.prec = _WORK_PRECISION
        return value.quantize(quantum, rounding=ROUND_DOWN)


def divide(numerator: Decimal, denominator: Decimal) -> Decimal:
    with localcontext() as ctx:
        ctx.prec = _WORK_PRECISION
        return numerator / denominator


def multiply(left: Decimal, right: Decimal) -> Decimal:
    with localcontext() as ctx:
        ctx.prec = _WORK_PRECISION
        return left * right


def is_multiple_of(value: Decimal, step: Decimal) -> bool:
    """Return True when ``value`` is an exact integer multiple of ``step``."""
    if step <= 0:
        raise ValueError("step must be positive")
    with localcontext() as ctx:
        ctx.prec = _WORK_PRECISION
        return value % step == 0


def json_default(obj: Any) -> Any:
    """``json.dumps`` hook that serializes Decimals as plain strings."""
    if isinstance(obj, Decimal):
        return format_decimal(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


__all__ = [
    "divide",
    "floor_to_precision",
    "format_decimal",
    "fractional_digits",
    "is_multiple_of",
    "json_default",
    "multiply",
    "optional_decimal",
    "to_decimal",
]
