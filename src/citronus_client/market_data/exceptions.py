# src/citronus_client/market_data/exceptions.py

from citronus_client.connection.exceptions import ErrorKind, InvalidRequestError


class MarketDataError(Exception):
    """Base exception for the market_data module."""
    pass


class MarketNotFoundError(InvalidRequestError, MarketDataError):
    """Raised when metadata is requested for a symbol the exchange does not list."""
    def __init__(self, symbol: str):
        self.symbol = symbol
        super().__init__(f"Market '{symbol}' not found.", kind=ErrorKind.INVALID_PAIR)


class MalformedMarketError(MarketDataError):
    """Raised when a ``markets`` entry cannot be turned into trading rules."""
    pass


class SubscriptionAuthError(MarketDataError):
    """Raised when the WebSocket keeps rejecting signed commands after reconnecting."""
    def __init__(self, failures: int, last_message: str):
        self.failures = failures
        self.last_message = last_message
        super().__init__(
            f"WebSocket authentication failed {failures} times in a row: {last_message}"
        )


class ReconnectExhaustedError(MarketDataError):
    """Raised when the WebSocket could not reconnect within the configured attempts."""
    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"WebSocket reconnect gave up after {attempts} attempts.")
