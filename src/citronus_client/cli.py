"""Command line interface for citronus_client utilities."""

from __future__ import annotations

import argparse
import getpass
import json
import logging
import sys
from pathlib import Path
from typing import Any, Callable

from citronus_client import secrets
from citronus_client.config import AppConfig, load_config
from citronus_client.connection.exceptions import CitronusAPIError
from citronus_client.connection.jsonrpc import RpcRequest
from citronus_client.connection.rest_client import CitronusRESTClient
from citronus_client.connection.validation import validate_credentials
from citronus_client.credentials import CredentialResult, CredentialStatus
from citronus_client.decimals import json_default
from citronus_client.logging_config import configure_logging
from citronus_client.market_data.metadata_cache import MarketMetadataCache
from citronus_client.market_data.metadata_store import MarketMetadataStore

logger = logging.getLogger(__name__)


def _print_error(message: str) -> int:
    print(message)
    return 1


def _dumps(obj: Any) -> str:
    return json.dumps(obj, indent=2, default=json_default)


def _load_config(args: argparse.Namespace) -> AppConfig:
    return load_config(Path(args.config) if args.config else None, env=args.env)


def _credentials_or_none(config: AppConfig, interactive: bool = False) -> CredentialResult:
    return secrets.load_api_keys(interactive=interactive, api_url=config.api.base_url)


def _prompt_new_password() -> str | None:
    password = getpass.getpass("Choose a master password to encrypt the keys: ")
    if not password:
        print("A master password is required.")
        return None
    if getpass.getpass("Repeat the master password: ") != password:
        print("Passwords do not match.")
        return None
    return password


def _run_setup(config: AppConfig) -> CredentialResult:
    """Ask for an API key pair, check it against Citronus and store it encrypted."""
    api_url = config.api.base_url
    api_key = input("Citronus API key: ").strip()
    api_secret = getpass.getpass("Citronus API secret: ").strip()
    if not api_key or not api_secret:
        print("Both the API key and the API secret are required.")
        return CredentialResult(None, None, CredentialStatus.NOT_FOUND, source="setup")

    result = validate_credentials(api_key, api_secret, api_url=api_url)
    if result.status is CredentialStatus.AUTH_ERROR:
        print(f"Citronus rejected the keys: {result.validation_error}")
        return result
    force = False
    if result.status is CredentialStatus.SERVICE_ERROR:
        print(f"Could not validate the keys: {result.validation_error}")
        if input("Save them anyway? [y/N] ").strip().lower() != "y":
            return result
        force = True

    password = _prompt_new_password()
    if password is None:
        return CredentialResult(None, None, CredentialStatus.MISSING_PASSWORD, source="setup")
    secrets.persist_api_keys(
        api_key,
        api_secret,
        password,
        api_url=api_url,
        validated=result.validated,
        validation_error=result.validation_error,
        force_save_unvalidated=force,
    )
    print("Credentials saved.")
    return CredentialResult(
        api_key,
        api_secret,
        CredentialStatus.LOADED,
        source="setup",
        validated=result.validated,
        validation_error=result.validation_error,
    )


def _setup_command(args: argparse.Namespace) -> int:
    """Run the interactive setup flow for API secrets."""
    result = _run_setup(_load_config(args))
    return 0 if result.status == CredentialStatus.LOADED else 1


def _smoke_test_command(args: argparse.Namespace) -> int:
    """Perform a low-risk authenticated request (``balances``)."""
    config = _load_config(args)
    interactive = args.allow_interactive_setup
    credential_result = _credentials_or_none(config, interactive=interactive)
    if interactive and credential_result.status == CredentialStatus.NOT_FOUND:
        credential_result = _run_setup(config)

    if credential_result.status == CredentialStatus.MISSING_PASSWORD:
        return _print_error(
            credential_result.validation_error
            or "Encrypted credentials are locked; set CITRONUS_SECRET_PW to the master password."
        )
    if credential_result.status != CredentialStatus.LOADED:
        return _print_error("Credentials not available; run `citronus setup` first.")

    client = CitronusRESTClient.from_config(
        config,
        api_key=credential_result.api_key,
        api_secret=credential_result.api_secret,
    )
    try:
        client.balances()
    except CitronusAPIError as exc:
        return _print_error(f"Smoke test failed: [{exc.kind.value}] {exc}")
    print("Smoke test succeeded: authenticated request completed.")
    return 0


def _call_command(args: argparse.Namespace) -> int:
    """Send a raw JSON-RPC request and print what went out and what came back."""
    try:
        params = json.loads(args.params) if args.params else {}
    except ValueError as exc:
        return _print_error(f"--params is not valid JSON: {exc}")
    if not isinstance(params, dict):
        return _print_error("--params must be a JSON object.")

    config = _load_config(args)
    api_key = api_secret = None
    private = CitronusRESTClient.is_private(args.method) or args.private
    if private:
        credential_result = _credentials_or_none(config)
        if credential_result.status != CredentialStatus.LOADED:
            return _print_error("Private call needs credentials; run `citronus setup` first.")
        api_key, api_secret = credential_result.api_key, credential_result.api_secret

    client = CitronusRESTClient.from_config(config, api_key=api_key, api_secret=api_secret)
    print(f"POST {client.endpoint}")
    print(_dumps(RpcRequest(args.method, params, id=args.id).to_payload()))

    try:
        response = client.call(args.method, params, id=args.id, private=private)
    except CitronusAPIError as exc:
        return _print_error(f"Request failed: [{exc.kind.value}] {exc}")

    if response.ok:
        print(_dumps({"id": response.id, "result": response.result}))
        return 0
    error = response.error
    print(
        _dumps(
            {
                "id": response.id,
                "error": {"code": error.code, "message": error.message, "kind": error.kind.value},
            }
        )
    )
    return 1


def _markets_command(args: argparse.Namespace) -> int:
    """Fetch trading rules and print them as JSON."""
    config = _load_config(args)
    client = CitronusRESTClient.from_config(config)
    cache = MarketMetadataCache.from_client(client, config)
    try:
        markets = cache.refresh(symbol=args.symbol)
    except CitronusAPIError as exc:
        return _print_error(f"Failed to load markets: [{exc.kind.value}] {exc}")
    if args.save:
        path = config.market_data.metadata_path
        store = MarketMetadataStore(Path(path) if path else None)
        cache.save(store)
        logger.info("Saved market metadata to %s", store.path)
    print(_dumps([m.to_payload() for m in markets]))
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="citronus", description="Citronus exchange client utilities")
    parser.add_argument("--config", help="Path to config.yaml (defaults to the user config dir)")
    parser.add_argument("--env", help="Config environment overlay (dev, test or live)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    setup_parser = subparsers.add_parser("setup", help="Run interactive API key setup")
    setup_parser.set_defaults(func=_setup_command)

    smoke_parser = subparsers.add_parser(
        "smoke-test", help="Validate credentials by calling the private balances method"
    )
    smoke_parser.add_argument(
        "--allow-interactive-setup",
        action="store_true",
        help="Prompt for credentials if they are not already configured",
    )
    smoke_parser.set_defaults(func=_smoke_test_command)

    call_parser = subparsers.add_parser("call", help="Send a raw JSON-RPC request")
    call_parser.add_argument("method", help="JSON-RPC method name, e.g. markets or create_order")
    call_parser.add_argument("--params", help="Method params as a JSON object")
    call_parser.add_argument("--id", help="JSON-RPC request id")
    call_parser.add_argument(
        "--private", action="store_true", help="Sign the request even if the method is public"
    )
    call_parser.set_defaults(func=_call_command)

    markets_parser = subparsers.add_parser("markets", help="Show market trading rules")
    markets_parser.add_argument("--symbol", help="Only fetch this symbol")
    markets_parser.add_argument(
        "--save", action="store_true", help="Persist the fetched metadata for warm starts"
    )
    markets_parser.set_defaults(func=_markets_command)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Entry point for the `citronus` console script."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    configure_logging(level=logging.DEBUG if args.verbose else logging.WARNING)
    command: Callable[[argparse.Namespace], int] = getattr(args, "func")
    return command(args)


if __name__ == "__main__":
    sys.exit(main())
