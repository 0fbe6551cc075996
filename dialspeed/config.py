"""
User configuration file support.

Reads/writes ``~/.dialspeed/config.json``.  Values from the file are laid
over ``DEFAULTS``; a value whose type does not fit the default (a string
where a number belongs, say) is dropped with a warning.

Supported keys::

    server = "12345"          # preferred server ID
    unit = "Mbit/s"           # Mbit/s, MB/s or KB/s
    dial_scale = 1000         # 1000, 500 or 100
    ping_count, ping_timeout, ping_interval, connect_delay
    download_duration, download_concurrency
    upload_duration, upload_failure_limit, upload_timeout
    decay_duration, decay_steps, history_length
    catalog_limit
    log_level = "WARNING"
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Union

from .constants import (
    CONNECT_DELAY,
    DECAY_DURATION,
    DECAY_STEPS,
    DEFAULT_CATALOG_LIMIT,
    DEFAULT_CONCURRENCY,
    DEFAULT_DURATION,
    DEFAULT_PING_COUNT,
    DEFAULT_UPLOAD_FAILURE_LIMIT,
    HISTORY_LENGTH,
    PING_INTERVAL,
    PING_TIMEOUT,
    UPLOAD_TIMEOUT,
)

logger = logging.getLogger(__name__)

_CONFIG_DIR = Path.home() / ".dialspeed"


def _config_path() -> Union[str, Path]:
    return _CONFIG_DIR / "config.json"


DEFAULTS: Dict[str, Any] = {
    "server": None,
    "unit": "Mbit/s",
    "dial_scale": 1000,
    "ping_count": DEFAULT_PING_COUNT,
    "ping_timeout": PING_TIMEOUT,
    "ping_interval": PING_INTERVAL,
    "connect_delay": CONNECT_DELAY,
    "download_duration": DEFAULT_DURATION,
    "download_concurrency": DEFAULT_CONCURRENCY,
    "upload_duration": DEFAULT_DURATION,
    "upload_failure_limit": DEFAULT_UPLOAD_FAILURE_LIMIT,
    "upload_timeout": UPLOAD_TIMEOUT,
    "decay_duration": DECAY_DURATION,
    "decay_steps": DECAY_STEPS,
    "history_length": HISTORY_LENGTH,
    "catalog_limit": DEFAULT_CATALOG_LIMIT,
    "log_level": "WARNING",
}


def _coerce(key: str, value: Any) -> Any:
    """Fit *value* to the type of ``DEFAULTS[key]``; raise ``ValueError`` if it cannot."""
    default = DEFAULTS.get(key)
    if default is None or value is None:
        return value
    if isinstance(value, bool) or isinstance(default, bool):
        raise ValueError(f"{key}: unexpected boolean")
    if isinstance(default, int) and isinstance(value, (int, float)) and float(value).is_integer():
        return int(value)
    if isinstance(default, float) and isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, type(default)):
        return value
    raise ValueError(f"{key}: expected {type(default).__name__}, got {type(value).__name__}")


# -- Read / Write -----------------------------------------------------------

def load_config() -> Dict[str, Any]:
    """Defaults overlaid with whatever valid keys the file provides."""
    config = dict(DEFAULTS)
    path = Path(_config_path())
    if not path.is_file():
        return config

    try:
        user = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError) as exc:
        logger.warning("Ignoring unreadable config %s: %s", path, exc)
        return config
    if not isinstance(user, dict):
        logger.warning("Ignoring config %s: top level is not an object", path)
        return config

    for key, value in user.items():
        try:
            config[key] = _coerce(key, value)
        except ValueError as exc:
            logger.warning("Ignoring config value %s", exc)
    return config


def save_config(config: Dict[str, Any]) -> str:
    """Write *config* to disk.  Returns the file path."""
    path = Path(_config_path())
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(config, indent=2, ensure_ascii=False), encoding="utf-8")
    return str(path)


def get_config_value(key: str) -> Any:
    return load_config().get(key, DEFAULTS.get(key))


def set_config_value(key: str, value: Any) -> str:
    """Validate, set and persist one key.  Returns the file path."""
    config = load_config()
    config[key] = _coerce(key, value)
    return save_config(config)


def config_path() -> str:
    return str(_config_path())
