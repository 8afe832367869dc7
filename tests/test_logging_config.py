# tests/test_logging_config.py

import io
import json
import logging

from citronus_client.logging_config import DEFAULT_ENV, JsonFormatter, structured_log_extra


def _build_logger(stream: io.StringIO) -> logging.Logger:
    logger = logging.getLogger("citronus_client.test.logging")
    logger.setLevel(logging.INFO)
    logger.propagate = False

    handler = logging.StreamHandler(stream)
    handler.setFormatter(JsonFormatter())
    logger.handlers = [handler]
    return logger


def test_structured_log_extra_adds_common_identifiers():
    extra = structured_log_extra(
        event="order_submitted",
        symbol="BTC/USDT",
        order_id="A1",
        request_id="req-1",
        channel="orderbook:BTC/USDT",
        attempt=2,
    )

    assert extra["event"] == "order_submitted"
    assert extra["env"] == DEFAULT_ENV
    assert extra["symbol"] == "BTC/USDT"
    assert extra["order_id"] == "A1"
    assert extra["request_id"] == "req-1"
    assert extra["channel"] == "orderbook:BTC/USDT"
    assert extra["attempt"] == 2

    minimal_extra = structured_log_extra()
    assert "symbol" not in minimal_extra
    assert "order_id" not in minimal_extra
    assert "channel" not in minimal_extra


def test_json_formatter_preserves_extra_fields():
    stream = io.StringIO()
    logger = _build_logger(stream)

    logger.info("Order submitted", extra=structured_log_extra(event="order_submitted", symbol="BTC/USDT"))

    payload = json.loads(stream.getvalue())
    assert payload["message"] == "Order submitted"
    assert payload["level"] == "INFO"
    assert payload["event"] == "order_submitted"
    assert payload["symbol"] == "BTC/USDT"
    assert payload["env"] == DEFAULT_ENV


def test_json_formatter_renders_exceptions_and_decimals():
    from decimal import Decimal

    stream = io.StringIO()
    logger = _build_logger(stream)

    try:
        raise ValueError("boom")
    except ValueError:
        logger.exception("Failed", extra={"price": Decimal("1.50")})

    payload = json.loads(stream.getvalue())
    assert "ValueError: boom" in payload["exception"]
    assert payload["price"] == "1.50"
