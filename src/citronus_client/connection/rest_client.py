# src/citronus_client/connection/rest_client.py

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

import requests

from citronus_client.logging_config import structured_log_extra

from .exceptions import (
    AuthError,
    ConnectionFailedError,
    ErrorKind,
    RateLimitError,
    RequestTimeoutError,
    ServiceUnavailableError,
    TransportError,
)
from .jsonrpc import RpcRequest, RpcResponse, check_batch, correlate_batch
from .rate_limiter import RateLimiter
from .signing import DEFAULT_RECV_WINDOW_MS, RequestSigner, encode_json

CITRONUS_API_URL = "https://api.citronus.com"
JSONRPC_PATH = "/public/v1/jsonrpc"

PRIVATE_METHODS = frozenset(
    {
        "balances",
        "create_order",
        "cancel_order",
        "get_order",
        "open_orders",
        "order_history",
        "trade_history",
    }
)

logger = logging.getLogger(__name__)


class CitronusRESTClient:
    def __init__(
        self,
        api_url: str = CITRONUS_API_URL,
        calls_per_second: float = 5.0,
        burst: int = 5,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        recv_window: int = DEFAULT_RECV_WINDOW_MS,
        request_timeout: float = 10.0,
        rate_limit_backoff: float = 1.0,
        rate_limiter: Optional[RateLimiter] = None,
        signer: Optional[RequestSigner] = None,
    ):
        self.api_url = api_url.rstrip("/")
        # One bucket for public and private calls; it is shared by reference with anything
        # else that talks to the same endpoint.
        self.rate_limiter = rate_limiter or RateLimiter(calls_per_second, burst)
        self.rate_limit_backoff = rate_limit_backoff
        self.request_timeout = request_timeout

        self.signer = signer or RequestSigner(api_key, api_secret, recv_window=recv_window)

        self.session = requests.Session()
        self.session.headers.update(
            {"User-Agent": "citronus-client/0.1.0", "Content-Type": "application/json"}
        )

    @classmethod
    def from_config(
        cls,
        config: Any,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ) -> "CitronusRESTClient":
        """Builds a client from an :class:`~citronus_client.config.AppConfig`."""
        return cls(
            api_url=config.api.base_url,
            calls_per_second=config.rate_limit.calls_per_second,
            burst=config.rate_limit.burst,
            api_key=api_key,
            api_secret=api_secret,
            recv_window=config.api.recv_window_ms,
            request_timeout=config.api.request_timeout_seconds,
            rate_limit_backoff=config.rate_limit.backoff_on_429_seconds,
            rate_limiter=rate_limiter,
        )

    @property
    def endpoint(self) -> str:
        return f"{self.api_url}{JSONRPC_PATH}"

    @staticmethod
    def is_private(method: str) -> bool:
        return method in PRIVATE_METHODS

    def _post(self, body: bytes, private: bool) -> Any:
        """
        Sends one raw JSON-RPC body. Manages rate limiting, signing and
        HTTP-level error mapping; JSON-RPC errors are left to the caller.
        """
        # Missing credentials fail before a token is spent; the timestamp is taken after any wait.
        if private:
            self.signer.require_credentials()
        self.rate_limiter.acquire()
        headers = self.signer.http_headers(body) if private else {}

        try:
            response = self.session.post(
                self.endpoint, data=body, headers=headers, timeout=self.request_timeout
            )
        except requests.exceptions.Timeout as e:
            raise RequestTimeoutError(f"Request timed out: {e}", kind=ErrorKind.TIMEOUT) from e
        except requests.exceptions.ConnectionError as e:
            raise ConnectionFailedError(
                f"Connection failed: {e}", kind=ErrorKind.CONNECTION_FAILED
            ) from e
        except requests.exceptions.RequestException as e:
            raise TransportError(f"Network Error: {e}", kind=ErrorKind.CONNECTION_FAILED) from e

        if response.status_code == 429:
            self.rate_limiter.penalize(self._retry_after(response))
            raise RateLimitError("Rate limit exceeded", kind=ErrorKind.RATE_LIMITED, code=429)

        try:
            return response.json(parse_float=Decimal)
        except ValueError:
            pass

        if response.status_code in (401, 403):
            raise AuthError(
                f"Citronus API rejected credentials: HTTP {response.status_code}",
                kind=ErrorKind.AUTH_REQUIRED,
                code=response.status_code,
            )
        raise ServiceUnavailableError(
            f"Citronus API Service Error: HTTP {response.status_code}",
            kind=ErrorKind.INTERNAL_SERVER_ERROR,
            code=response.status_code,
        )

    def _retry_after(self, response: Any) -> float:
        value = response.headers.get("Retry-After") if response.headers else None
        try:
            return max(float(value), self.rate_limit_backoff)
        except (TypeError, ValueError):
            return self.rate_limit_backoff

    def call(
        self,
        method: str,
        params: Optional[Dict[str, Any]] = None,
        id: Optional[Any] = None,
        private: Optional[bool] = None,
    ) -> RpcResponse:
        """
        Sends a single JSON-RPC request. Server errors come back on the
        returned :class:`RpcResponse`; only HTTP and network failures raise.
        """
        request = RpcRequest(method=method, params=params or {}, id=id)
        is_private = self.is_private(method) if private is None else private
        body = encode_json(request.to_payload())

        logger.debug(
            "Sending JSON-RPC call",
            extra=structured_log_extra(
                event="rpc_call", method=method, request_id=id, private=is_private
            ),
        )
        payload = self._post(body, is_private)

        if isinstance(payload, list):
            payload = payload[0] if payload else None
        response = RpcResponse.from_payload(payload)
        if response.error is not None:
            logger.info(
                "JSON-RPC call returned an error",
                extra=structured_log_extra(
                    event="rpc_error",
                    method=method,
                    request_id=id,
                    error_kind=response.error.kind.value,
                    error_code=response.error.code,
                ),
            )
        return response

    def call_batch(
        self, requests_: Sequence[RpcRequest], private: Optional[bool] = None
    ) -> List[RpcResponse]:
        """
        Sends up to ten requests as one HTTP call. The batch is signed once,
        consumes one rate-limit token and is not atomic: each returned entry
        must be inspected on its own. Results follow the order of ``requests_``.
        """
        check_batch(requests_)
        is_private = (
            any(self.is_private(r.method) for r in requests_) if private is None else private
        )
        body = encode_json([r.to_payload() for r in requests_])

        logger.debug(
            "Sending JSON-RPC batch",
            extra=structured_log_extra(
                event="rpc_batch", size=len(requests_), private=is_private
            ),
        )
        payload = self._post(body, is_private)
        responses = correlate_batch(requests_, payload)

        failed = sum(1 for r in responses if not r.ok)
        if failed:
            logger.info(
                "JSON-RPC batch completed with failures",
                extra=structured_log_extra(
                    event="rpc_batch_partial", size=len(requests_), failed=failed
                ),
            )
        return responses

    def markets(self, category: str = "spot", symbol: Optional[str] = None) -> Any:
        params: Dict[str, Any] = {"category": category}
        if symbol:
            params["symbol"] = symbol
        return self.call("markets", params).unwrap()

    def ticker(self, symbol: str) -> Any:
        return self.call("ticker", {"symbol": symbol}).unwrap()

    def orderbook(self, symbol: str, depth: Optional[int] = None) -> Any:
        params: Dict[str, Any] = {"symbol": symbol}
        if depth is not None:
            params["depth"] = depth
        return self.call("orderbook", params).unwrap()

    def balances(self) -> Any:
        return self.call("balances", {"asset_type": "SPOT"}).unwrap()

    def create_order(self, params: Dict[str, Any], id: Optional[Any] = None) -> Any:
        return self.call("create_order", params, id=id).unwrap()

    def cancel_order(self, order_id: str) -> Any:
        return self.call("cancel_order", {"order_id": order_id}).unwrap()

    def get_order(self, order_id: str) -> Any:
        return self.call("get_order", {"order_id": order_id}).unwrap()

    def open_orders(
        self, symbol: Optional[str] = None, page: int = 1, page_size: int = 50
    ) -> Any:
        params: Dict[str, Any] = {"page": page, "page_size": page_size}
        if symbol:
            params["symbol"] = symbol
        return self.call("open_orders", params).unwrap()

    def order_history(
        self, symbol: Optional[str] = None, page: int = 1, page_size: int = 50
    ) -> Any:
        params: Dict[str, Any] = {"page": page, "page_size": page_size}
        if symbol:
            params["symbol"] = symbol
        return self.call("order_history", params).unwrap()
