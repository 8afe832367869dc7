# src/citronus_client/execution/__init__.py

from .adapter import BatchOrderResult, CitronusExecutionAdapter
from .exceptions import ExecutionError, MalformedOrderError, OrderStateError
from .models import Balance, Order, OrderRequest, OrderSide, OrderStatus, OrderType
from .validator import OrderValidator, ValidatedOrder, derive_amount

__all__ = [
    "Balance",
    "BatchOrderResult",
    "CitronusExecutionAdapter",
    "ExecutionError",
    "MalformedOrderError",
    "Order",
    "OrderRequest",
    "OrderSide",
    "OrderStateError",
    "OrderStatus",
    "OrderType",
    "OrderValidator",
    "ValidatedOrder",
    "derive_amount",
]
