# offline_sync/config.py
# Description: Configuration management for the offline sync core.
#
# Imports
import copy
import os
import tomllib
from pathlib import Path
from typing import Any, Dict, Optional
#
# Third-Party Imports
from loguru import logger
#
#######################################################################################################################
#
# Functions:

# --- Path to the user's configuration file ---
DEFAULT_CONFIG_PATH = Path.home() / ".config" / "offline_sync" / "config.toml"
CONFIG_PATH_ENV_VAR = "OFFLINE_SYNC_CONFIG"
API_KEY_ENV_VAR = "OFFLINE_SYNC_API_KEY"

BASE_DATA_DIR = Path.home() / ".local" / "share" / "offline_sync"

CONFIG_TOML_CONTENT = """
# Configuration for offline_sync
# This file is created with defaults on first run; edit values as needed.

[general]
log_level = "INFO"

[logging]
log_filename = "offline_sync.log"
file_log_level = "INFO"
log_max_bytes = 10485760 # 10 MB
log_backup_count = 5

[database]
kv_store_path = "~/.local/share/offline_sync/offline_sync_store.db"

[backend]
base_url = "http://127.0.0.1:54321"
rest_prefix = "/rest/v1"
api_key = "" # Falls back to the OFFLINE_SYNC_API_KEY environment variable
timeout = 30.0

[sync]
id_field = "id"
offline_queue_key = "offline_queue"
cache_key_prefix = "cache_"
refetch_after_sync = true
probe_host = "1.1.1.1"
probe_port = 53
probe_interval_seconds = 15.0
probe_timeout_seconds = 3.0
"""

try:
    DEFAULT_CONFIG_FROM_TOML: Dict[str, Any] = tomllib.loads(CONFIG_TOML_CONTENT)
except tomllib.TOMLDecodeError as e:
    logger.critical(f"FATAL: Could not parse internal CONFIG_TOML_CONTENT: {e}.")
    DEFAULT_CONFIG_FROM_TOML = {}


# --- Helper for deep merging dictionaries ---
def deep_merge_dicts(base: Dict, update: Dict) -> Dict:
    """Recursively merges update_dict into base_dict."""
    merged = copy.deepcopy(base)
    for key, value in update.items():
        if isinstance(value, dict) and key in merged and isinstance(merged[key], dict):
            merged[key] = deep_merge_dicts(merged[key], value)
        else:
            merged[key] = value
    return merged


def get_config_path() -> Path:
    override = os.environ.get(CONFIG_PATH_ENV_VAR)
    return Path(override).expanduser() if override else DEFAULT_CONFIG_PATH


# --- Primary Configuration Loading Logic ---
_CONFIG_CACHE: Optional[Dict[str, Any]] = None


def load_settings(force_reload: bool = False, config_path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Loads settings from the user's config.toml merged over the internal defaults.
    If the file doesn't exist, it's created with default values.
    """
    global _CONFIG_CACHE
    if _CONFIG_CACHE is not None and not force_reload and config_path is None:
        return _CONFIG_CACHE

    path = Path(config_path) if config_path is not None else get_config_path()
    loaded_config = copy.deepcopy(DEFAULT_CONFIG_FROM_TOML)

    if not path.exists():
        logger.info(f"Config file not found at {path}. Creating with default values.")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "w", encoding="utf-8") as f:
                f.write(CONFIG_TOML_CONTENT)
        except OSError as e:
            logger.error(f"Could not create default config file {path}: {e}. Using internal defaults.")
    else:
        try:
            with open(path, "rb") as f:
                user_config_from_file = tomllib.load(f)
            loaded_config = deep_merge_dicts(loaded_config, user_config_from_file)
            logger.info(f"Loaded and merged config from {path}")
        except tomllib.TOMLDecodeError as e:
            logger.error(f"Error decoding TOML config file {path}: {e}. Using internal defaults.")
        except OSError as e:
            logger.error(f"Could not read config file {path}: {e}. Using internal defaults.")

    api_key = loaded_config.get("backend", {}).get("api_key")
    if not api_key:
        env_key = os.environ.get(API_KEY_ENV_VAR)
        if env_key:
            loaded_config.setdefault("backend", {})["api_key"] = env_key
            logger.debug(f"Using API key from {API_KEY_ENV_VAR}.")

    _CONFIG_CACHE = loaded_config
    return loaded_config


def get_cli_setting(section: str, key: str, default: Any = None) -> Any:
    """Helper to get a specific setting from the loaded configuration."""
    config = load_settings()
    section_data = config.get(section)
    if isinstance(section_data, dict):
        return section_data.get(key, default)
    return default


# --- Path Getters ---
def get_kv_store_path(settings: Optional[Dict[str, Any]] = None) -> Path:
    settings = settings if settings is not None else load_settings()
    default_path = str(BASE_DATA_DIR / "offline_sync_store.db")
    path_str = settings.get("database", {}).get("kv_store_path") or default_path
    return Path(path_str).expanduser().resolve()


def get_log_file_path(settings: Optional[Dict[str, Any]] = None) -> Path:
    settings = settings if settings is not None else load_settings()
    log_filename = settings.get("logging", {}).get("log_filename", "offline_sync.log")
    return get_kv_store_path(settings).parent / log_filename

#
# End of offline_sync/config.py
#######################################################################################################################
