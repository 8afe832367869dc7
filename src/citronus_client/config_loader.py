from __future__ import annotations

import logging
import os
from dataclasses import asdict, fields
from pathlib import Path
from typing import Any, Dict, Optional, Type, TypeVar

import appdirs  # type: ignore[import-untyped]
import yaml  # type: ignore[import-untyped]

from citronus_client.config_models import (
    ApiConfig,
    AppConfig,
    ExecutionConfig,
    MarketDataConfig,
    RateLimitConfig,
    WebSocketConfig,
)

APP_NAME = "citronus_client"
ALLOWED_ENVS = {"dev", "test", "live"}

# Fields that must be strictly positive; every other number only needs to be >= 0.
_POSITIVE_FIELDS = {
    "recv_window_ms",
    "request_timeout_seconds",
    "calls_per_second",
    "ping_interval_seconds",
    "ping_timeout_seconds",
    "reconnect_initial_seconds",
    "reconnect_max_seconds",
    "max_auth_failures",
    "max_reconnect_attempts",
    "metadata_max_age_seconds",
}

_SECTIONS: Dict[str, Type[Any]] = {
    "api": ApiConfig,
    "rate_limit": RateLimitConfig,
    "websocket": WebSocketConfig,
    "market_data": MarketDataConfig,
    "execution": ExecutionConfig,
}

T = TypeVar("T")

logger = logging.getLogger(__name__)


def get_config_dir() -> Path:
    """
    Returns the OS-specific configuration directory for the client using appdirs.
    """
    return Path(appdirs.user_config_dir(APP_NAME))


def _valid_number(name: str, value: Any, integral: bool) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    if integral and not isinstance(value, int):
        return False
    return value > 0 if name in _POSITIVE_FIELDS else value >= 0


def _valid_value(name: str, value: Any, default: Any, annotation: str) -> bool:
    if isinstance(default, bool):
        return isinstance(value, bool)
    if isinstance(default, str):
        return isinstance(value, str) and bool(value.strip())
    if isinstance(default, (int, float)):
        return _valid_number(name, value, integral=isinstance(default, int))
    # Optional fields: the annotation tells which concrete type is allowed.
    if value is None:
        return True
    if "str" in annotation:
        return isinstance(value, str) and bool(value.strip())
    if "int" in annotation:
        return _valid_number(name, value, integral=True)
    return True


def _build_section(cls: Type[T], data: Any, section: str, config_path: Path) -> T:
    if not isinstance(data, dict):
        if data is not None:
            logger.warning(
                "%s config is not a mapping; using defaults",
                section,
                extra={"event": f"config_invalid_{section}", "config_path": str(config_path)},
            )
        return cls()

    defaults = cls()
    kwargs: Dict[str, Any] = {}
    known = set()
    for f in fields(cls):  # type: ignore[arg-type]
        known.add(f.name)
        if f.name not in data:
            continue
        value = data[f.name]
        if _valid_value(f.name, value, getattr(defaults, f.name), str(f.type)):
            kwargs[f.name] = value
        else:
            logger.warning(
                "%s.%s is invalid; using default",
                section,
                f.name,
                extra={"event": "config_invalid_value", "config_path": str(config_path)},
            )

    for key in sorted(set(data) - known):
        logger.debug(
            "Ignoring unknown config key %s.%s",
            section,
            key,
            extra={"event": "config_unknown_key", "config_path": str(config_path)},
        )
    return cls(**kwargs)


def _deep_merge_dicts(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    merged = base.copy()
    for key, value in overlay.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge_dicts(merged[key], value)
        else:
            merged[key] = value
    return merged


def _read_yaml_mapping(path: Path, event: str) -> Dict[str, Any]:
    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        logger.warning(
            "Configuration file is not a mapping; ignoring it",
            extra={"event": event, "config_path": str(path)},
        )
        return {}
    return data


def load_config(config_path: Optional[Path] = None, env: Optional[str] = None) -> AppConfig:
    """
    Loads the client configuration from the default location or a specified path,
    overlaying ``config.<env>.yaml`` when present.
    """
    if config_path is None:
        config_path = get_config_dir() / "config.yaml"
    config_path = Path(config_path).expanduser()

    initial_env = env if env is not None else os.environ.get("CITRONUS_ENV")
    if initial_env not in ALLOWED_ENVS:
        if initial_env is not None:
            logger.warning(
                "Invalid environment '%s'; defaulting to 'dev'",
                initial_env,
                extra={"event": "config_invalid_env", "config_path": str(config_path)},
            )
        effective_env = "dev"
    else:
        effective_env = initial_env

    if config_path.exists():
        raw_config = _read_yaml_mapping(config_path, "config_invalid_format")
    else:
        logger.info(
            "Configuration file not found; using defaults",
            extra={"event": "config_missing_file", "config_path": str(config_path)},
        )
        raw_config = {}

    env_config_path = config_path.parent / f"config.{effective_env}.yaml"
    if env_config_path.exists():
        raw_config = _deep_merge_dicts(
            raw_config, _read_yaml_mapping(env_config_path, "config_invalid_env_file")
        )

    sections = {
        name: _build_section(cls, raw_config.get(name), name, config_path)
        for name, cls in _SECTIONS.items()
    }
    return AppConfig(env=effective_env, **sections)


def dump_config(config: AppConfig, config_path: Optional[Path] = None) -> Path:
    """Writes ``config`` as YAML, creating the config directory when needed."""
    path = Path(config_path) if config_path else get_config_dir() / "config.yaml"
    path.parent.mkdir(parents=True, exist_ok=True)
    data = asdict(config)
    data.pop("env", None)
    with open(path, "w") as f:
        yaml.safe_dump(data, f, sort_keys=False)
    return path
