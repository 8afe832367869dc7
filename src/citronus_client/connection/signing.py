# src/citronus_client/connection/signing.py

import hashlib
import hmac
import json
from typing import Any, Dict, Optional, Union

from citronus_client.decimals import json_default

from .exceptions import AuthError, ErrorKind
from .timestamps import TimestampGenerator

HEADER_API_KEY = "X-CITRO-API-KEY"
HEADER_TIMESTAMP = "X-CITRO-TIMESTAMP"
HEADER_RECV_WINDOW = "X-CITRO-RECV-WINDOW"
HEADER_SIGNATURE = "X-CITRO-SIGNATURE"

DEFAULT_RECV_WINDOW_MS = 5000


def sign(
    secret: str,
    timestamp: Union[int, str],
    api_key: str,
    recv_window: Union[int, str],
    payload: Union[str, bytes],
) -> str:
    """
    HMAC-SHA256 over ``timestamp + api_key + recv_window + payload``, hex encoded.

    ``payload`` must be the exact bytes that go on the wire; it is never
    re-serialized here.
    """
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    prefix = f"{timestamp}{api_key}{recv_window}".encode("utf-8")
    mac = hmac.new(secret.encode("utf-8"), prefix + payload, hashlib.sha256)
    return mac.hexdigest()


def encode_json(obj: Any) -> bytes:
    """Compact, order-preserving JSON encoding used for every signed payload."""
    return json.dumps(obj, separators=(",", ":"), default=json_default).encode("utf-8")


def ws_signing_payload(command: str, params: Dict[str, Any]) -> bytes:
    return encode_json({"params": params, "command": command})


class RequestSigner:
    """Binds credentials and a timestamp source to the signing function."""

    def __init__(
        self,
        api_key: Optional[str],
        api_secret: Optional[str],
        recv_window: int = DEFAULT_RECV_WINDOW_MS,
        timestamps: Optional[TimestampGenerator] = None,
    ):
        if recv_window <= 0:
            raise ValueError("recv_window must be positive")
        self.api_key = api_key
        self._api_secret = api_secret
        self.recv_window = recv_window
        self.timestamps = timestamps or TimestampGenerator()

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key and self._api_secret)

    def require_credentials(self) -> None:
        if not self.has_credentials:
            raise AuthError(
                "API key and secret are required for private methods.",
                kind=ErrorKind.AUTH_REQUIRED,
            )

    def http_headers(self, body: bytes) -> Dict[str, str]:
        """Auth headers for an HTTP request whose raw body is ``body``."""
        self.require_credentials()
        timestamp = self.timestamps.generate()
        signature = sign(self._api_secret, timestamp, self.api_key, self.recv_window, body)
        return {
            HEADER_API_KEY: self.api_key,
            HEADER_TIMESTAMP: str(timestamp),
            HEADER_RECV_WINDOW: str(self.recv_window),
            HEADER_SIGNATURE: signature,
        }

    def ws_frame(self, command: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """A signed WebSocket command frame with a freshly generated timestamp."""
        self.require_credentials()
        params = params or {}
        timestamp = self.timestamps.generate()
        payload = ws_signing_payload(command, params)
        return {
            "command": command,
            "params": params,
            "api_key": self.api_key,
            "timestamp": timestamp,
            "recv_window": self.recv_window,
            "sign": sign(self._api_secret, timestamp, self.api_key, self.recv_window, payload),
        }

    def __repr__(self) -> str:
        return f"RequestSigner(api_key={'set' if self.api_key else None!r}, recv_window={self.recv_window})"
