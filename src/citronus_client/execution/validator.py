# src/citronus_client/execution/validator.py

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional, Union

from citronus_client.connection.exceptions import ErrorKind, InvalidRequestError
from citronus_client.decimals import (
    divide,
    floor_to_precision,
    format_decimal,
    fractional_digits,
    is_multiple_of,
    multiply,
    to_decimal,
)
from citronus_client.logging_config import structured_log_extra
from citronus_client.market_data.metadata_cache import MarketMetadataCache
from citronus_client.market_data.models import MarketMetadata

from .models import OrderRequest, OrderType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ValidatedOrder:
    """An order that passed local checks, with the params to send as ``create_order``."""

    request: OrderRequest
    market: MarketMetadata
    amount: Optional[Decimal]
    notional: Optional[Decimal]
    params: Dict[str, Any]


def _invalid(kind: ErrorKind, message: str) -> InvalidRequestError:
    return InvalidRequestError(message, kind=kind)


def derive_amount(total: Decimal, price: Decimal, base_precision: int) -> Decimal:
    """``floor(total / price, base_precision)``: never rounds up, so the order cannot overspend."""
    return floor_to_precision(divide(total, price), base_precision)


class OrderValidator:
    """
    Checks an :class:`OrderRequest` against the symbol's trading rules before
    submission. Checks run in a fixed order and failures use the same error
    kinds the server would report.
    """

    def __init__(self, cache: MarketMetadataCache, max_metadata_age: Optional[float] = None):
        self.cache = cache
        self.max_metadata_age = max_metadata_age

    def validate(
        self,
        request: OrderRequest,
        reference_price: Union[Decimal, str, None] = None,
    ) -> ValidatedOrder:
        """
        Validate ``request``. ``reference_price`` is only used for market
        orders, as a best-effort estimate of the execution price (last trade,
        mid-book, ... at the caller's discretion).
        """
        market = self.cache.get_fresh(request.symbol, self.max_metadata_age)

        try:
            return self._validate(request, market, reference_price)
        except InvalidRequestError as exc:
            logger.info(
                "Order rejected by local validation",
                extra=structured_log_extra(
                    event="order_validation_failed",
                    symbol=request.symbol,
                    error_kind=exc.kind.value,
                    reason=exc.message,
                ),
            )
            raise

    def _validate(
        self,
        request: OrderRequest,
        market: MarketMetadata,
        reference_price: Union[Decimal, str, None],
    ) -> ValidatedOrder:
        if (request.amount is None) == (request.total is None):
            raise _invalid(ErrorKind.INVALID_PARAMS, "Exactly one of amount or total must be set.")

        priced = request.type in (OrderType.LIMIT, OrderType.STOP_LIMIT)
        if priced:
            if request.price is None or request.price <= 0:
                raise _invalid(
                    ErrorKind.INVALID_PARAMS, f"{request.type.value} orders need a positive price."
                )
        elif request.price is not None:
            raise _invalid(ErrorKind.INVALID_PARAMS, "Market orders do not take a price.")

        if request.type is OrderType.STOP_LIMIT:
            if request.stop_price is None or request.stop_price <= 0:
                raise _invalid(ErrorKind.INVALID_PARAMS, "stop_limit orders need a positive stop_price.")
        elif request.stop_price is not None:
            raise _invalid(
                ErrorKind.INVALID_PARAMS, f"{request.type.value} orders do not take a stop_price."
            )

        for name in ("price", "stop_price"):
            value = getattr(request, name)
            if value is not None:
                self._check_price(name, value, market)

        if request.amount is not None and request.amount <= 0:
            raise _invalid(ErrorKind.INVALID_PARAMS, "amount must be positive.")
        if request.total is not None and request.total <= 0:
            raise _invalid(ErrorKind.INVALID_PARAMS, "total must be positive.")

        price = request.price
        if price is None and reference_price is not None:
            price = to_decimal(reference_price, "reference_price")
            if price <= 0:
                raise _invalid(ErrorKind.INVALID_PARAMS, "reference_price must be positive.")

        amount: Optional[Decimal]
        notional: Optional[Decimal]
        if request.amount is not None:
            if fractional_digits(request.amount) > market.trade_base_precision:
                raise _invalid(
                    ErrorKind.INVALID_ORDER_VALUE,
                    f"amount {format_decimal(request.amount)} has more than "
                    f"{market.trade_base_precision} decimal places.",
                )
            amount = request.amount
            notional = multiply(amount, price) if price is not None else None
        else:
            total = request.total
            if fractional_digits(total) > market.trade_quote_precision:
                raise _invalid(
                    ErrorKind.INVALID_ORDER_VALUE,
                    f"total {format_decimal(total)} has more than "
                    f"{market.trade_quote_precision} decimal places.",
                )
            amount = derive_amount(total, price, market.trade_base_precision) if price is not None else None
            notional = total

        self._check_bounds(amount, notional, market)

        params = self._build_params(request, amount)
        return ValidatedOrder(
            request=request, market=market, amount=amount, notional=notional, params=params
        )

    @staticmethod
    def _check_price(name: str, value: Decimal, market: MarketMetadata) -> None:
        if not is_multiple_of(value, market.quote_tick_size):
            raise _invalid(
                ErrorKind.INVALID_ORDER_VALUE,
                f"{name} {format_decimal(value)} is not a multiple of tick size "
                f"{format_decimal(market.quote_tick_size)}.",
            )
        if fractional_digits(value) > market.trade_quote_precision:
            raise _invalid(
                ErrorKind.INVALID_ORDER_VALUE,
                f"{name} {format_decimal(value)} has more than "
                f"{market.trade_quote_precision} decimal places.",
            )

    @staticmethod
    def _check_bounds(
        amount: Optional[Decimal], notional: Optional[Decimal], market: MarketMetadata
    ) -> None:
        if amount is not None:
            if amount <= 0:
                raise _invalid(
                    ErrorKind.INVALID_ORDER_VALUE,
                    f"Quantity rounds down to zero at {market.trade_base_precision} decimal places.",
                )
            if market.min_order_qty is not None and amount < market.min_order_qty:
                raise _invalid(
                    ErrorKind.INVALID_ORDER_VALUE,
                    f"Quantity {format_decimal(amount)} is below the minimum "
                    f"{format_decimal(market.min_order_qty)}.",
                )
            if market.max_order_qty is not None and amount > market.max_order_qty:
                raise _invalid(
                    ErrorKind.INVALID_ORDER_VALUE,
                    f"Quantity {format_decimal(amount)} is above the maximum "
                    f"{format_decimal(market.max_order_qty)}.",
                )
        if notional is not None:
            if market.min_order_amt is not None and notional < market.min_order_amt:
                raise _invalid(
                    ErrorKind.INVALID_ORDER_VALUE,
                    f"Notional {format_decimal(notional)} is below the minimum "
                    f"{format_decimal(market.min_order_amt)}.",
                )
            if market.max_order_amt is not None and notional > market.max_order_amt:
                raise _invalid(
                    ErrorKind.INVALID_ORDER_VALUE,
                    f"Notional {format_decimal(notional)} is above the maximum "
                    f"{format_decimal(market.max_order_amt)}.",
                )

    @staticmethod
    def _build_params(request: OrderRequest, amount: Optional[Decimal]) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "symbol": request.symbol,
            "side": request.side.value,
            "type": request.type.value,
        }
        # Limit orders funded by total are sent with the rounded-down amount.
        if request.amount is not None or (request.type is not OrderType.MARKET and amount is not None):
            params["amount"] = format_decimal(amount)
        else:
            params["total"] = format_decimal(request.total)
        if request.price is not None:
            params["price"] = format_decimal(request.price)
        if request.stop_price is not None:
            params["stop_price"] = format_decimal(request.stop_price)
        return params
