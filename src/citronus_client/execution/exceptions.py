# src/citronus_client/execution/exceptions.py

from citronus_client.connection.exceptions import ErrorKind, InvalidRequestError


class ExecutionError(Exception):
    """Base exception for order submission and tracking errors."""


class OrderStateError(ExecutionError):
    """Raised when a server update would move an order through an illegal transition."""
    def __init__(self, order_id: str, current: str, new: str):
        self.order_id = order_id
        self.current = current
        self.new = new
        super().__init__(f"Order {order_id}: illegal status transition {current} -> {new}")


class MalformedOrderError(InvalidRequestError, ExecutionError):
    """Raised when an order or balance payload breaks a structural invariant."""
    def __init__(self, message: str):
        super().__init__(message, kind=ErrorKind.VALIDATION_ERROR)
