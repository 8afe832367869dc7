# tests/test_cli.py

from __future__ import annotations

import json
from typing import Any

import pytest

from citronus_client import cli
from citronus_client.connection.exceptions import AuthError, ErrorKind
from citronus_client.connection.jsonrpc import RpcError, RpcResponse
from citronus_client.credentials import CredentialResult, CredentialStatus
from conftest import BTC_USDT


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    monkeypatch.setattr("citronus_client.config_loader.get_config_dir", lambda: tmp_path)
    monkeypatch.delenv("CITRONUS_ENV", raising=False)
    monkeypatch.setattr(cli, "configure_logging", lambda **kwargs: None)


class _DummyClient:
    instances: list = []

    def __init__(self, **kwargs: Any) -> None:
        self.kwargs = kwargs
        self.calls: list = []
        _DummyClient.instances.append(self)

    @classmethod
    def from_config(cls, config, **kwargs):
        return cls(config=config, **kwargs)

    endpoint = "https://api.citronus.com/public/v1/jsonrpc"

    @staticmethod
    def is_private(method: str) -> bool:
        return method == "balances"

    def markets(self, category, symbol=None):
        self.calls.append(("markets", category, symbol))
        return [BTC_USDT]

    def balances(self):
        self.calls.append("balances")
        return []

    def call(self, method, params, id=None, private=None):
        self.calls.append((method, params, id, private))
        if method == "get_order":
            return RpcResponse(id=id, error=RpcError("order_not_found", "missing", ErrorKind.ORDER_NOT_FOUND))
        return RpcResponse(id=id, result={"echo": params})


@pytest.fixture
def dummy_client(monkeypatch):
    _DummyClient.instances = []
    monkeypatch.setattr(cli, "CitronusRESTClient", _DummyClient)
    return _DummyClient


def _loaded(*_: Any, **__: Any) -> CredentialResult:
    return CredentialResult("key", "secret", CredentialStatus.LOADED)


def test_setup_saves_validated_keys(monkeypatch, tmp_path):
    validation = CredentialResult("k", "s", CredentialStatus.LOADED, validated=True)
    validated_against = []
    monkeypatch.setattr("citronus_client.secrets.get_config_dir", lambda: tmp_path)
    monkeypatch.setattr("builtins.input", lambda prompt="": "k")
    answers = iter(["s", "pw", "pw"])
    monkeypatch.setattr(cli.getpass, "getpass", lambda prompt="": next(answers))
    monkeypatch.setattr(
        cli,
        "validate_credentials",
        lambda key, secret, api_url: validated_against.append(api_url) or validation,
    )

    assert cli.main(["setup"]) == 0
    assert validated_against == ["https://api.citronus.com"]
    assert (tmp_path / "secrets.enc").exists()


def test_setup_does_not_save_rejected_keys(monkeypatch, tmp_path):
    validation = CredentialResult(
        "k", "s", CredentialStatus.AUTH_ERROR, validation_error="invalid_signature"
    )
    monkeypatch.setattr("citronus_client.secrets.get_config_dir", lambda: tmp_path)
    monkeypatch.setattr("builtins.input", lambda prompt="": "k")
    monkeypatch.setattr(cli.getpass, "getpass", lambda prompt="": "s")
    monkeypatch.setattr(cli, "validate_credentials", lambda *args, **kwargs: validation)

    assert cli.main(["setup"]) == 1
    assert not (tmp_path / "secrets.enc").exists()


def test_smoke_test_passes_endpoint_to_credential_loader(monkeypatch, dummy_client):
    seen = []

    def _load(interactive=False, **kwargs):
        seen.append((interactive, kwargs.get("api_url")))
        return _loaded()

    monkeypatch.setattr(cli.secrets, "load_api_keys", _load)

    assert cli.main(["smoke-test"]) == 0
    assert seen == [(False, "https://api.citronus.com")]


def test_smoke_test_interactive_runs_setup_when_nothing_stored(monkeypatch, dummy_client):
    monkeypatch.setattr(
        cli.secrets,
        "load_api_keys",
        lambda interactive=False, **kwargs: CredentialResult(None, None, CredentialStatus.NOT_FOUND),
    )
    setups = []
    monkeypatch.setattr(cli, "_run_setup", lambda config: setups.append(config) or _loaded())

    assert cli.main(["smoke-test", "--allow-interactive-setup"]) == 0
    assert len(setups) == 1
    assert dummy_client.instances[0].calls == ["balances"]


def test_smoke_test_uses_credentials_and_client(monkeypatch, dummy_client):
    monkeypatch.setattr(cli.secrets, "load_api_keys", _loaded)

    assert cli.main(["smoke-test"]) == 0
    client = dummy_client.instances[0]
    assert client.kwargs["api_key"] == "key"
    assert client.calls == ["balances"]


def test_smoke_test_reports_auth_failure(monkeypatch, dummy_client, capsys):
    monkeypatch.setattr(cli.secrets, "load_api_keys", _loaded)

    def _fail(self):
        raise AuthError("bad", kind=ErrorKind.INVALID_SIGNATURE)

    monkeypatch.setattr(_DummyClient, "balances", _fail)

    assert cli.main(["smoke-test"]) == 1
    assert "invalid_signature" in capsys.readouterr().out


def test_smoke_test_without_credentials(monkeypatch, dummy_client, capsys):
    monkeypatch.setattr(
        cli.secrets,
        "load_api_keys",
        lambda interactive=False, **kwargs: CredentialResult(None, None, CredentialStatus.NOT_FOUND),
    )

    assert cli.main(["smoke-test"]) == 1
    assert "citronus setup" in capsys.readouterr().out
    assert dummy_client.instances == []


def test_call_prints_request_and_response(dummy_client, capsys):
    exit_code = cli.main(["call", "ticker", "--params", '{"symbol": "BTC/USDT"}', "--id", "7"])

    assert exit_code == 0
    out = capsys.readouterr().out
    assert "POST https://api.citronus.com/public/v1/jsonrpc" in out
    assert '"method": "ticker"' in out
    assert '"echo"' in out
    assert dummy_client.instances[0].calls == [("ticker", {"symbol": "BTC/USDT"}, "7", False)]


def test_call_reports_server_error(monkeypatch, dummy_client, capsys):
    monkeypatch.setattr(cli.secrets, "load_api_keys", _loaded)

    assert cli.main(["call", "get_order", "--private"]) == 1
    assert dummy_client.instances[0].kwargs["api_key"] == "key"
    assert "order_not_found" in capsys.readouterr().out


def test_call_rejects_bad_params(dummy_client, capsys):
    assert cli.main(["call", "ticker", "--params", "[1, 2]"]) == 1
    assert cli.main(["call", "ticker", "--params", "{oops"]) == 1
    assert dummy_client.instances == []


def test_markets_prints_trading_rules(dummy_client, capsys):
    assert cli.main(["markets", "--symbol", "BTC/USDT"]) == 0

    printed = json.loads(capsys.readouterr().out)
    assert printed[0]["symbol"] == "BTC/USDT"
    assert printed[0]["quote_tick_size"] == "0.01"
    assert dummy_client.instances[0].calls == [("markets", "spot", "BTC/USDT")]


def test_markets_save_writes_metadata_store(dummy_client, tmp_path, capsys):
    store_path = tmp_path / "markets.json"
    (tmp_path / "config.yaml").write_text(f"market_data:\n  metadata_path: {store_path}\n")

    assert cli.main(["markets", "--save"]) == 0

    saved = json.loads(store_path.read_text())
    assert [entry["symbol"] for entry in saved] == ["BTC/USDT"]
    assert dummy_client.instances[0].calls == [("markets", "spot", None)]
