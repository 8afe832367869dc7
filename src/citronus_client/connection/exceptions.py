# src/citronus_client/connection/exceptions.py

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional, Type, Union


class ErrorCategory(Enum):
    AUTHENTICATION = "authentication"
    VALIDATION = "validation"
    RESOURCE_STATE = "resource_state"
    CAPACITY = "capacity"
    TRANSIENT = "transient"
    TRANSPORT = "transport"
    UNKNOWN = "unknown"


class ErrorKind(str, Enum):
    """Error vocabulary shared by server responses and local validation."""

    AUTH_REQUIRED = "auth_required"
    INVALID_SIGNATURE = "invalid_signature"
    RECV_WINDOW_EXPIRED = "recv_window_expired"

    INVALID_PARAMS = "invalid_params"
    INVALID_PAIR = "invalid_pair"
    INVALID_ORDER_VALUE = "invalid_order_value"
    VALIDATION_ERROR = "validation_error"
    PAGE_OUT_OF_RANGE = "page_out_of_range"
    PAGE_SIZE_OUT_OF_RANGE = "page_size_out_of_range"

    ORDER_NOT_FOUND = "order_not_found"
    ORDER_ALREADY_FULFILLED = "order_already_fulfilled"
    ORDER_ALREADY_CANCELED = "order_already_canceled"
    ORDER_IS_MARKET = "order_is_market"
    PERMISSION_DENIED = "permission_denied"

    NOT_ENOUGH_AMOUNT = "not_enough_amount"
    NOT_FOUND_COINS_FOR_HOLD = "not_found_coins_for_hold"
    NO_MARKET_OFFERS = "no_market_offers"

    INTERNAL_SERVER_ERROR = "internal_server_error"
    RATE_LIMITED = "rate_limited"

    TIMEOUT = "timeout"
    CONNECTION_FAILED = "connection_failed"

    UNKNOWN = "unknown"

    @property
    def category(self) -> ErrorCategory:
        return _KIND_CATEGORIES.get(self, ErrorCategory.UNKNOWN)


_KIND_CATEGORIES: Dict[ErrorKind, ErrorCategory] = {
    ErrorKind.AUTH_REQUIRED: ErrorCategory.AUTHENTICATION,
    ErrorKind.INVALID_SIGNATURE: ErrorCategory.AUTHENTICATION,
    ErrorKind.RECV_WINDOW_EXPIRED: ErrorCategory.AUTHENTICATION,
    ErrorKind.INVALID_PARAMS: ErrorCategory.VALIDATION,
    ErrorKind.INVALID_PAIR: ErrorCategory.VALIDATION,
    ErrorKind.INVALID_ORDER_VALUE: ErrorCategory.VALIDATION,
    ErrorKind.VALIDATION_ERROR: ErrorCategory.VALIDATION,
    ErrorKind.PAGE_OUT_OF_RANGE: ErrorCategory.VALIDATION,
    ErrorKind.PAGE_SIZE_OUT_OF_RANGE: ErrorCategory.VALIDATION,
    ErrorKind.ORDER_NOT_FOUND: ErrorCategory.RESOURCE_STATE,
    ErrorKind.ORDER_ALREADY_FULFILLED: ErrorCategory.RESOURCE_STATE,
    ErrorKind.ORDER_ALREADY_CANCELED: ErrorCategory.RESOURCE_STATE,
    ErrorKind.ORDER_IS_MARKET: ErrorCategory.RESOURCE_STATE,
    ErrorKind.PERMISSION_DENIED: ErrorCategory.RESOURCE_STATE,
    ErrorKind.NOT_ENOUGH_AMOUNT: ErrorCategory.CAPACITY,
    ErrorKind.NOT_FOUND_COINS_FOR_HOLD: ErrorCategory.CAPACITY,
    ErrorKind.NO_MARKET_OFFERS: ErrorCategory.CAPACITY,
    ErrorKind.INTERNAL_SERVER_ERROR: ErrorCategory.TRANSIENT,
    ErrorKind.RATE_LIMITED: ErrorCategory.TRANSIENT,
    ErrorKind.TIMEOUT: ErrorCategory.TRANSPORT,
    ErrorKind.CONNECTION_FAILED: ErrorCategory.TRANSPORT,
}

# Standard JSON-RPC 2.0 codes, used when the server does not send a named code.
_JSONRPC_CODE_KINDS: Dict[int, ErrorKind] = {
    -32700: ErrorKind.INVALID_PARAMS,
    -32600: ErrorKind.INVALID_PARAMS,
    -32601: ErrorKind.INVALID_PARAMS,
    -32602: ErrorKind.INVALID_PARAMS,
    -32603: ErrorKind.INTERNAL_SERVER_ERROR,
}


class CitronusAPIError(Exception):
    """Base exception for all Citronus API related errors."""

    retryable = False

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.UNKNOWN,
        code: Union[int, str, None] = None,
    ):
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.code = code

    @property
    def category(self) -> ErrorCategory:
        return self.kind.category


class AuthError(CitronusAPIError):
    """Raised when authentication fails (missing key, bad signature, expired recv_window)."""


class InvalidRequestError(CitronusAPIError):
    """Raised when request parameters are rejected, locally or by the server."""


class ResourceStateError(CitronusAPIError):
    """Raised when the targeted order cannot undergo the requested operation."""


class CapacityError(CitronusAPIError):
    """Raised when the exchange rejects an order for balance or liquidity reasons."""


class TransientError(CitronusAPIError):
    """Raised for server-side conditions that may clear on retry."""

    retryable = True


class RateLimitError(TransientError):
    """Raised when API rate limits are exceeded."""


class ServiceUnavailableError(TransientError):
    """Raised when the Citronus API is down or answers with an internal error."""


class TransportError(CitronusAPIError):
    """Raised when the request never produced an HTTP response."""

    retryable = True


class RequestTimeoutError(TransportError):
    """Raised when the HTTP call timed out."""


class ConnectionFailedError(TransportError):
    """Raised when the HTTP connection could not be established."""


_CATEGORY_CLASSES: Dict[ErrorCategory, Type[CitronusAPIError]] = {
    ErrorCategory.AUTHENTICATION: AuthError,
    ErrorCategory.VALIDATION: InvalidRequestError,
    ErrorCategory.RESOURCE_STATE: ResourceStateError,
    ErrorCategory.CAPACITY: CapacityError,
    ErrorCategory.TRANSIENT: ServiceUnavailableError,
    ErrorCategory.TRANSPORT: TransportError,
    ErrorCategory.UNKNOWN: CitronusAPIError,
}


def classify_error(code: Any, message: Optional[str] = None) -> ErrorKind:
    """Map a server ``{code, message}`` pair onto an :class:`ErrorKind`."""
    if isinstance(code, str):
        try:
            return ErrorKind(code.strip().lower())
        except ValueError:
            pass

    if message:
        lowered = message.lower().replace(" ", "_")
        # Longest names first so the most specific code wins.
        for kind in sorted(ErrorKind, key=lambda k: len(k.value), reverse=True):
            if kind.category in (ErrorCategory.UNKNOWN, ErrorCategory.TRANSPORT):
                continue
            if kind.value in lowered:
                return kind

    if isinstance(code, int) and not isinstance(code, bool):
        if code == 429:
            return ErrorKind.RATE_LIMITED
        return _JSONRPC_CODE_KINDS.get(code, ErrorKind.UNKNOWN)

    return ErrorKind.UNKNOWN


def error_for_kind(
    kind: ErrorKind, message: str, code: Union[int, str, None] = None
) -> CitronusAPIError:
    """Build the exception class matching ``kind``."""
    if kind is ErrorKind.RATE_LIMITED:
        return RateLimitError(message, kind=kind, code=code)
    if kind is ErrorKind.TIMEOUT:
        return RequestTimeoutError(message, kind=kind, code=code)
    if kind is ErrorKind.CONNECTION_FAILED:
        return ConnectionFailedError(message, kind=kind, code=code)
    return _CATEGORY_CLASSES[kind.category](message, kind=kind, code=code)
