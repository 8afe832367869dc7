# src/citronus_client/execution/adapter.py

import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Type, TypeVar, Union

from citronus_client.config import ExecutionConfig
from citronus_client.connection.exceptions import (
    CitronusAPIError,
    ConnectionFailedError,
    ErrorKind,
    RateLimitError,
    RequestTimeoutError,
    ResourceStateError,
    ServiceUnavailableError,
)
from citronus_client.connection.jsonrpc import MAX_BATCH_SIZE, RpcRequest
from citronus_client.connection.rest_client import CitronusRESTClient
from citronus_client.logging_config import structured_log_extra

from .exceptions import MalformedOrderError
from .models import Order, OrderStatus, OrderType, OrderRequest
from .validator import OrderValidator, ValidatedOrder

logger = logging.getLogger(__name__)

T = TypeVar("T")

_RETRY_ON: Tuple[Type[CitronusAPIError], ...] = (
    RateLimitError,
    ServiceUnavailableError,
    ConnectionFailedError,
    RequestTimeoutError,
)
# A 429 is answered before the request is processed; other failures may come after an order was placed.
_SUBMIT_RETRY_ON: Tuple[Type[CitronusAPIError], ...] = (RateLimitError,)


@dataclass(frozen=True)
class BatchOrderResult:
    """Outcome of one entry of a batch submission; batches are not atomic."""

    request: OrderRequest
    order: Optional[Order] = None
    error: Optional[CitronusAPIError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _is_marked_for_cancel(exc: CitronusAPIError) -> bool:
    return "marked_for_cancel" in exc.message.lower().replace(" ", "_")


class CitronusExecutionAdapter:
    """
    Validates orders locally, submits them, and keeps read-only projections
    of the orders it has seen. Transient failures are retried with bounded
    exponential backoff; every attempt is signed with a fresh timestamp.
    """

    def __init__(
        self,
        client: CitronusRESTClient,
        validator: OrderValidator,
        config: Optional[ExecutionConfig] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.client = client
        self.validator = validator
        self.config = config or ExecutionConfig()
        self._sleep = sleep or time.sleep
        self.orders: Dict[str, Order] = {}

    def _with_retries(
        self,
        operation: Callable[[], T],
        event: str,
        retry_on: Tuple[Type[CitronusAPIError], ...],
        **log_fields: Any,
    ) -> T:
        attempts = 0
        while True:
            try:
                return operation()
            except retry_on as exc:
                attempts += 1
                if attempts > self.config.max_retries:
                    logger.error(
                        "Retries exhausted",
                        extra=structured_log_extra(
                            event=f"{event}_retry_exhausted",
                            retries=attempts - 1,
                            error=str(exc),
                            **log_fields,
                        ),
                    )
                    raise

                sleep_seconds = self.config.retry_backoff_seconds * (
                    self.config.retry_backoff_factor ** (attempts - 1)
                )
                logger.warning(
                    "Transient error; retrying",
                    extra=structured_log_extra(
                        event=f"{event}_retry",
                        attempt=attempts,
                        sleep_seconds=sleep_seconds,
                        error=str(exc),
                        **log_fields,
                    ),
                )
                self._sleep(sleep_seconds)

    def _submit_retry_on(self) -> Tuple[Type[CitronusAPIError], ...]:
        if self.config.retry_ambiguous_submits:
            return _RETRY_ON
        return _SUBMIT_RETRY_ON

    def track(self, order: Order) -> Order:
        """Records ``order``, enforcing the status state machine against the previous projection."""
        previous = self.orders.get(order.id)
        if previous is not None:
            order = previous.apply(order)
        self.orders[order.id] = order
        return order

    @staticmethod
    def _order_from_result(result: Any, fallback: Dict[str, Any]) -> Order:
        payload = dict(fallback)
        if isinstance(result, dict):
            payload.update(result)
        elif result not in (None, ""):
            payload["id"] = result
        return Order.from_payload(payload)

    def submit_order(
        self, request: OrderRequest, reference_price: Union[Decimal, str, None] = None
    ) -> Order:
        """Validate ``request`` locally and place it."""
        validated: ValidatedOrder = self.validator.validate(request, reference_price)

        result = self._with_retries(
            lambda: self.client.create_order(validated.params, id=request.client_id),
            "order_submit",
            self._submit_retry_on(),
            symbol=request.symbol,
        )
        order = self.track(
            self._order_from_result(result, {**validated.params, "status": OrderStatus.CREATED.value})
        )
        logger.info(
            "Order submitted",
            extra=structured_log_extra(
                event="order_submitted",
                symbol=order.symbol,
                order_id=order.id,
                status=order.status.value,
            ),
        )
        return order

    def submit_orders(
        self,
        requests: Sequence[OrderRequest],
        reference_prices: Optional[Dict[str, Union[Decimal, str]]] = None,
    ) -> List[BatchOrderResult]:
        """
        Submit up to ten orders as one JSON-RPC batch. Entries failing local
        validation are reported without being sent; the server may accept
        some of the remaining entries and reject others.
        """
        if len(requests) > MAX_BATCH_SIZE:
            raise ValueError(f"At most {MAX_BATCH_SIZE} orders per batch")
        reference_prices = reference_prices or {}

        results: List[Optional[BatchOrderResult]] = [None] * len(requests)
        pending: List[Tuple[int, ValidatedOrder, RpcRequest]] = []
        used_ids = {r.client_id for r in requests if r.client_id}
        for index, request in enumerate(requests):
            try:
                validated = self.validator.validate(request, reference_prices.get(request.symbol))
            except CitronusAPIError as exc:
                results[index] = BatchOrderResult(request=request, error=exc)
                continue
            request_id = request.client_id
            if not request_id:
                request_id = f"order-{index + 1}"
                while request_id in used_ids:
                    request_id = f"{request_id}-{index + 1}"
                used_ids.add(request_id)
            pending.append(
                (index, validated, RpcRequest("create_order", validated.params, id=request_id))
            )

        if pending:
            responses = self._with_retries(
                lambda: self.client.call_batch([rpc for _, _, rpc in pending]),
                "order_batch",
                self._submit_retry_on(),
                size=len(pending),
            )
            for (index, validated, _), response in zip(pending, responses):
                request = requests[index]
                if not response.ok:
                    results[index] = BatchOrderResult(request=request, error=response.error.to_exception())
                    continue
                try:
                    order = self.track(
                        self._order_from_result(
                            response.result,
                            {**validated.params, "status": OrderStatus.CREATED.value},
                        )
                    )
                except MalformedOrderError as exc:
                    results[index] = BatchOrderResult(request=request, error=exc)
                else:
                    results[index] = BatchOrderResult(request=request, order=order)

        failed = sum(1 for r in results if r is not None and not r.ok)
        logger.info(
            "Order batch processed",
            extra=structured_log_extra(
                event="order_batch_submitted", size=len(requests), failed=failed
            ),
        )
        return [r for r in results if r is not None]

    @staticmethod
    def _check_cancellable(order: Order) -> bool:
        """Returns True when the order is already being canceled."""
        if order.status is OrderStatus.MARKED_FOR_CANCEL:
            return True
        if order.type is OrderType.MARKET:
            raise ResourceStateError(
                f"Order {order.id} is a market order and cannot be canceled.",
                kind=ErrorKind.ORDER_IS_MARKET,
            )
        if order.status in (OrderStatus.FULFILLED, OrderStatus.COMPLETED):
            raise ResourceStateError(
                f"Order {order.id} is already fulfilled.", kind=ErrorKind.ORDER_ALREADY_FULFILLED
            )
        if order.status is OrderStatus.CANCELED:
            raise ResourceStateError(
                f"Order {order.id} is already canceled.", kind=ErrorKind.ORDER_ALREADY_CANCELED
            )
        return False

    def cancel_order(self, order: Union[Order, str]) -> Optional[Order]:
        """
        Request cancellation. Canceling an order that is already
        ``marked_for_cancel`` succeeds without side effects. Returns the
        updated projection when one can be built.
        """
        if isinstance(order, Order):
            order_id = order.id
            known: Optional[Order] = self.orders.get(order_id, order)
        else:
            order_id = str(order)
            known = self.orders.get(order_id)

        if known is not None and self._check_cancellable(known):
            logger.info(
                "Order already marked for cancel",
                extra=structured_log_extra(event="order_cancel_repeat", order_id=order_id),
            )
            return known

        try:
            result = self._with_retries(
                lambda: self.client.cancel_order(order_id),
                "order_cancel",
                _RETRY_ON,
                order_id=order_id,
            )
        except CitronusAPIError as exc:
            if not _is_marked_for_cancel(exc):
                raise
            logger.info(
                "Order already marked for cancel",
                extra=structured_log_extra(event="order_cancel_repeat", order_id=order_id),
            )
            if known is None:
                return None
            return self.track(known.with_status(OrderStatus.MARKED_FOR_CANCEL))

        logger.info(
            "Order cancel requested",
            extra=structured_log_extra(event="order_cancel_requested", order_id=order_id),
        )
        if isinstance(result, dict):
            fallback = dict(known.raw) if known is not None else {"id": order_id}
            fallback["status"] = OrderStatus.MARKED_FOR_CANCEL.value
            try:
                return self.track(self._order_from_result(result, fallback))
            except MalformedOrderError:
                pass
        if known is not None:
            return self.track(known.with_status(OrderStatus.MARKED_FOR_CANCEL))
        return None

    def refresh_order(self, order_id: str) -> Order:
        result = self._with_retries(
            lambda: self.client.get_order(order_id),
            "order_refresh",
            _RETRY_ON,
            order_id=order_id,
        )
        return self.track(Order.from_payload(result))

    def open_orders(self, symbol: Optional[str] = None) -> List[Order]:
        result = self._with_retries(
            lambda: self.client.open_orders(symbol),
            "open_orders",
            _RETRY_ON,
            symbol=symbol,
        )
        entries = result.get("orders", []) if isinstance(result, dict) else result or []
        return [self.track(Order.from_payload(entry)) for entry in entries]
