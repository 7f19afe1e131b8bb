import copy
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable

import yaml


DEFAULT_CONFIG: dict[str, Any] = {
    "server": {
        "host": "0.0.0.0",
        "port": 9100,
    },
    "mysql": {
        "host": "localhost",
        "port": 3306,
        "user": "orders",
        "password": "orders",
        "database": "orders",
        "charset": "utf8mb4",
        "connect_timeout": 10,
    },
    "sync": {
        "page_size": 20,
        "ttl_seconds": 300,
        "default_sort": "date",
    },
    "logging": {
        "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        "sync_log": "order_sync.log",
    },
}


def _deep_merge(base: dict[str, Any], incoming: dict[str, Any]) -> dict[str, Any]:
    for key, value in incoming.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            base[key] = _deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def _config_path() -> Path:
    value = os.environ.get("ORDER_SYNC_CONFIG_FILE")
    if value:
        return Path(value)
    return Path(__file__).resolve().parents[2] / "config.yaml"


# env var -> (section, key, parser); unset or empty variables are ignored
ENV_OVERRIDES: dict[str, tuple[str, str, Callable[[str], Any]]] = {
    "ORDER_SYNC_HOST": ("server", "host", str),
    "ORDER_SYNC_PORT": ("server", "port", int),
    "ORDER_SYNC_MYSQL_HOST": ("mysql", "host", str),
    "ORDER_SYNC_MYSQL_PORT": ("mysql", "port", int),
    "ORDER_SYNC_MYSQL_USER": ("mysql", "user", str),
    "ORDER_SYNC_MYSQL_PASSWORD": ("mysql", "password", str),
    "ORDER_SYNC_MYSQL_DATABASE": ("mysql", "database", str),
    "ORDER_SYNC_PAGE_SIZE": ("sync", "page_size", int),
    "ORDER_SYNC_TTL_SECONDS": ("sync", "ttl_seconds", float),
    "ORDER_SYNC_DEFAULT_SORT": ("sync", "default_sort", str),
}

SORT_KEYS = ("date", "amount")


def _apply_env_overrides(config: dict[str, Any]) -> None:
    for name, (section, key, parse) in ENV_OVERRIDES.items():
        value = os.environ.get(name)
        if value:
            config[section][key] = parse(value)

    # An empty ORDER_SYNC_LOG disables the file handler.
    if "ORDER_SYNC_LOG" in os.environ:
        config["logging"]["sync_log"] = os.environ["ORDER_SYNC_LOG"]


def _validate_sync(sync: dict[str, Any]) -> None:
    if int(sync["page_size"]) <= 0:
        raise ValueError(f"sync.page_size must be positive, got {sync['page_size']}")
    if float(sync["ttl_seconds"]) < 0:
        raise ValueError(f"sync.ttl_seconds must not be negative, got {sync['ttl_seconds']}")
    if sync["default_sort"] not in SORT_KEYS:
        raise ValueError(f"sync.default_sort must be one of {', '.join(SORT_KEYS)}, got {sync['default_sort']!r}")


@lru_cache(maxsize=1)
def load_config() -> dict[str, Any]:
    config = copy.deepcopy(DEFAULT_CONFIG)
    path = _config_path()

    if path.exists():
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Invalid YAML root in {path}: expected mapping")
        _deep_merge(config, data)

    _apply_env_overrides(config)
    _validate_sync(config["sync"])
    return config


def reload_config() -> dict[str, Any]:
    load_config.cache_clear()
    return load_config()
