from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class ApiConfig:
    base_url: str = "https://api.citronus.com"
    ws_url: str = "wss://api.citronus.com/public/ws/v1/"
    recv_window_ms: int = 5000
    request_timeout_seconds: float = 10.0


@dataclass
class RateLimitConfig:
    calls_per_second: float = 5.0
    burst: int = 5
    backoff_on_429_seconds: float = 1.0


@dataclass
class WebSocketConfig:
    ping_interval_seconds: float = 20.0
    ping_timeout_seconds: float = 10.0
    reconnect_initial_seconds: float = 1.0
    reconnect_max_seconds: float = 60.0
    max_auth_failures: int = 3
    max_reconnect_attempts: Optional[int] = None


@dataclass
class MarketDataConfig:
    category: str = "spot"
    metadata_max_age_seconds: float = 300.0
    metadata_path: Optional[str] = None


@dataclass
class ExecutionConfig:
    max_retries: int = 3
    retry_backoff_seconds: float = 0.5
    retry_backoff_factor: float = 2.0
    retry_ambiguous_submits: bool = False


@dataclass
class AppConfig:
    env: str = "dev"
    api: ApiConfig = field(default_factory=ApiConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    websocket: WebSocketConfig = field(default_factory=WebSocketConfig)
    market_data: MarketDataConfig = field(default_factory=MarketDataConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
