from __future__ import annotations

from .config_loader import ALLOWED_ENVS, dump_config, get_config_dir, load_config
from .config_models import (
    ApiConfig,
    AppConfig,
    ExecutionConfig,
    MarketDataConfig,
    RateLimitConfig,
    WebSocketConfig,
)

__all__ = [
    # models
    "ApiConfig",
    "AppConfig",
    "ExecutionConfig",
    "MarketDataConfig",
    "RateLimitConfig",
    "WebSocketConfig",
    # loader
    "ALLOWED_ENVS",
    "dump_config",
    "get_config_dir",
    "load_config",
]
