import json
import logging
import os
from pathlib import Path
from typing import Optional

from feedlens.constants import DEFAULT_DB_PATH

logger = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".config" / "feedlens"
CONFIG_FILE = CONFIG_DIR / "config.json"

# Config-file key -> environment variable that overrides it
SETTINGS = {
    "news_api_key": "NEWS_API_KEY",
    "openrouter_api_key": "OPENROUTER_API_KEY",
    "db_path": "FEEDLENS_DB_PATH",
    "log_level": "FEEDLENS_LOG_LEVEL",
    "log_format": "FEEDLENS_LOG_FORMAT",
}


def load_config() -> dict:
    if not CONFIG_FILE.exists():
        return {}
    try:
        with open(CONFIG_FILE, "r") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Ignoring unreadable config file %s: %s", CONFIG_FILE, e)
        return {}
    return data if isinstance(data, dict) else {}


def save_config(key: str, value: str):
    if key not in SETTINGS:
        raise KeyError(f"Unknown setting {key!r}; expected one of {', '.join(SETTINGS)}")
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    config = load_config()
    config[key] = value
    with open(CONFIG_FILE, "w") as f:
        json.dump(config, f, indent=2)


def get_setting(key: str, default: Optional[str] = None) -> Optional[str]:
    """Environment first, then config file, then default."""
    value = os.environ.get(SETTINGS[key])
    if value:
        return value
    value = load_config().get(key)
    if isinstance(value, str) and value:
        return value
    return default


def get_news_api_key() -> Optional[str]:
    return get_setting("news_api_key")


def get_llm_api_key() -> Optional[str]:
    return get_setting("openrouter_api_key")


def get_db_path() -> str:
    return get_setting("db_path") or DEFAULT_DB_PATH


def get_log_level() -> str:
    return get_setting("log_level") or "INFO"


def get_log_format() -> Optional[str]:
    """``json`` or ``console``; None lets the logger pick by TTY."""
    value = get_setting("log_format")
    return value.lower() if value else None
