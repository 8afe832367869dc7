# tests/test_signing.py

import hashlib
import hmac

import pytest

from citronus_client.connection.exceptions import AuthError, ErrorKind
from citronus_client.connection.signing import (
    HEADER_API_KEY,
    HEADER_RECV_WINDOW,
    HEADER_SIGNATURE,
    HEADER_TIMESTAMP,
    RequestSigner,
    encode_json,
    sign,
    ws_signing_payload,
)
from citronus_client.connection.timestamps import TimestampGenerator


def _fixed_timestamps(*values_ms):
    values = iter(v * 1_000_000 for v in values_ms)
    return TimestampGenerator(clock=lambda: next(values))


def test_sign_matches_reference_hmac():
    body = b'{"jsonrpc":"2.0","method":"balances","params":{"asset_type":"SPOT"},"id":1}'
    expected = hmac.new(
        b"secret", b"1700000000000key5000" + body, hashlib.sha256
    ).hexdigest()

    assert sign("secret", 1700000000000, "key", 5000, body) == expected


def test_sign_is_deterministic():
    args = ("secret", 1700000000000, "key", 5000, b'{"a":1}')
    assert sign(*args) == sign(*args)


def test_single_byte_change_changes_signature():
    base = sign("secret", 1700000000000, "key", 5000, b'{"amount":"1.0"}')
    assert sign("secret", 1700000000000, "key", 5000, b'{"amount":"1.1"}') != base
    assert sign("secret", 1700000000001, "key", 5000, b'{"amount":"1.0"}') != base
    assert sign("secret", 1700000000000, "key", 5001, b'{"amount":"1.0"}') != base
    assert sign("secreT", 1700000000000, "key", 5000, b'{"amount":"1.0"}') != base


def test_encode_json_is_compact_and_keeps_key_order():
    assert encode_json({"b": 1, "a": [1, 2]}) == b'{"b":1,"a":[1,2]}'


def test_http_headers_sign_exact_body():
    signer = RequestSigner("key", "secret", timestamps=_fixed_timestamps(1700000000000))
    body = b'{"method":"balances"}'

    headers = signer.http_headers(body)

    assert headers[HEADER_API_KEY] == "key"
    assert headers[HEADER_TIMESTAMP] == "1700000000000"
    assert headers[HEADER_RECV_WINDOW] == "5000"
    assert headers[HEADER_SIGNATURE] == sign("secret", 1700000000000, "key", 5000, body)


def test_ws_frame_signs_params_and_command():
    signer = RequestSigner("key", "secret", timestamps=_fixed_timestamps(1700000000000))

    frame = signer.ws_frame("subscribe.wallets", {})

    assert frame["command"] == "subscribe.wallets"
    assert frame["timestamp"] == 1700000000000
    assert frame["recv_window"] == 5000
    payload = ws_signing_payload("subscribe.wallets", {})
    assert payload == b'{"params":{},"command":"subscribe.wallets"}'
    assert frame["sign"] == sign("secret", 1700000000000, "key", 5000, payload)


def test_each_frame_gets_a_fresh_timestamp():
    # Both calls land in the same millisecond.
    signer = RequestSigner("key", "secret", timestamps=_fixed_timestamps(1000, 1000))

    first = signer.ws_frame("ping")
    second = signer.ws_frame("ping")

    assert second["timestamp"] == first["timestamp"] + 1
    assert second["sign"] != first["sign"]


def test_missing_credentials_raise_auth_required():
    signer = RequestSigner(None, None)
    with pytest.raises(AuthError) as exc_info:
        signer.http_headers(b"{}")
    assert exc_info.value.kind is ErrorKind.AUTH_REQUIRED


def test_repr_hides_secret():
    signer = RequestSigner("key", "topsecret")
    assert "topsecret" not in repr(signer)


def test_recv_window_must_be_positive():
    with pytest.raises(ValueError):
        RequestSigner("key", "secret", recv_window=0)
