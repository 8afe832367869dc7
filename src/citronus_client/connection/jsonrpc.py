"""JSON-RPC 2.0 envelopes for the Citronus HTTP endpoint.

Requests are turned into payload dicts here; responses are parsed into
:class:`RpcResponse` objects whose errors are already classified. Batch
responses are correlated back to their requests by ``id`` because the
server may answer entries in any order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

from .exceptions import (
    CitronusAPIError,
    ErrorKind,
    InvalidRequestError,
    classify_error,
    error_for_kind,
)

JSONRPC_VERSION = "2.0"
MAX_BATCH_SIZE = 10

RequestId = Union[int, str]


@dataclass(frozen=True)
class RpcRequest:
    method: str
    params: Dict[str, Any] = field(default_factory=dict)
    id: Optional[RequestId] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "jsonrpc": JSONRPC_VERSION,
            "method": self.method,
            "params": self.params,
        }
        if self.id is not None and self.id != "":
            payload["id"] = self.id
        return payload


@dataclass(frozen=True)
class RpcError:
    code: Union[int, str, None]
    message: str
    kind: ErrorKind

    @classmethod
    def from_payload(cls, payload: Any) -> "RpcError":
        if isinstance(payload, dict):
            code = payload.get("code")
            message = str(payload.get("message") or code or "unknown error")
        else:
            code = None
            message = str(payload)
        return cls(code=code, message=message, kind=classify_error(code, message))

    def to_exception(self) -> CitronusAPIError:
        return error_for_kind(self.kind, self.message, self.code)


@dataclass(frozen=True)
class RpcResponse:
    id: Optional[RequestId]
    result: Any = None
    error: Optional[RpcError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> Any:
        """Return ``result`` or raise the classified exception for ``error``."""
        if self.error is not None:
            raise self.error.to_exception()
        return self.result

    @classmethod
    def from_payload(cls, payload: Any) -> "RpcResponse":
        if not isinstance(payload, dict):
            return cls(
                id=None,
                error=RpcError(None, f"Malformed JSON-RPC response: {payload!r}", ErrorKind.UNKNOWN),
            )
        error = payload.get("error")
        return cls(
            id=payload.get("id"),
            result=payload.get("result"),
            error=RpcError.from_payload(error) if error is not None else None,
        )


def check_batch(requests: Sequence[RpcRequest]) -> None:
    """Reject batches the server would not be able to correlate."""
    if not requests:
        raise InvalidRequestError("A batch needs at least one request.", kind=ErrorKind.INVALID_PARAMS)
    if len(requests) > MAX_BATCH_SIZE:
        raise InvalidRequestError(
            f"A batch holds at most {MAX_BATCH_SIZE} requests, got {len(requests)}.",
            kind=ErrorKind.INVALID_PARAMS,
        )
    seen = set()
    for request in requests:
        if request.id is None or request.id == "":
            raise InvalidRequestError(
                f"Batch entry for '{request.method}' needs an id for correlation.",
                kind=ErrorKind.INVALID_PARAMS,
            )
        # Responses are correlated on the string form of the id.
        key = str(request.id)
        if key in seen:
            raise InvalidRequestError(
                f"Duplicate request id in batch: {request.id!r}", kind=ErrorKind.INVALID_PARAMS
            )
        seen.add(key)


def correlate_batch(requests: Sequence[RpcRequest], payload: Any) -> List[RpcResponse]:
    """
    Match a batch response to its requests by id, returning responses in
    request order. Entries the server never answered become synthetic
    ``internal_server_error`` responses; a single error object answering the
    whole batch is applied to every entry.
    """
    if isinstance(payload, dict):
        whole = RpcResponse.from_payload(payload)
        if whole.error is not None and whole.id is None:
            return [RpcResponse(id=r.id, error=whole.error) for r in requests]
        payload = [payload]

    if not isinstance(payload, list):
        error = RpcError(None, f"Malformed batch response: {payload!r}", ErrorKind.UNKNOWN)
        return [RpcResponse(id=r.id, error=error) for r in requests]

    by_id: Dict[Any, RpcResponse] = {}
    for entry in payload:
        response = RpcResponse.from_payload(entry)
        if response.id is not None:
            by_id[str(response.id)] = response

    results: List[RpcResponse] = []
    for request in requests:
        response = by_id.get(str(request.id))
        if response is None:
            response = RpcResponse(
                id=request.id,
                error=RpcError(
                    None,
                    f"No response received for request id {request.id!r}",
                    ErrorKind.INTERNAL_SERVER_ERROR,
                ),
            )
        results.append(response)
    return results
