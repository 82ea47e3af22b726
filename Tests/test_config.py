# test_config.py
#
# Tests for TOML configuration layering and the logging bootstrap.
#
# Imports
import logging
import logging.handlers
#
# Third-Party Imports
import pytest
#
# Local Imports
from offline_sync import config
from offline_sync.Logging_Config import configure_logging
#
########################################################################################################################
#
# Functions:

@pytest.fixture(autouse=True)
def reset_config_cache(monkeypatch):
    monkeypatch.setattr(config, "_CONFIG_CACHE", None)
    monkeypatch.delenv(config.API_KEY_ENV_VAR, raising=False)
    monkeypatch.delenv(config.CONFIG_PATH_ENV_VAR, raising=False)


def test_deep_merge_keeps_unrelated_keys():
    base = {"backend": {"base_url": "a", "timeout": 30.0}, "general": {"log_level": "INFO"}}
    merged = config.deep_merge_dicts(base, {"backend": {"base_url": "b"}})
    assert merged == {"backend": {"base_url": "b", "timeout": 30.0}, "general": {"log_level": "INFO"}}
    assert base["backend"]["base_url"] == "a"


def test_missing_file_is_created_with_defaults(tmp_path):
    path = tmp_path / "cfg" / "config.toml"
    settings = config.load_settings(config_path=path)
    assert path.exists()
    assert settings["sync"]["offline_queue_key"] == "offline_queue"
    assert settings["sync"]["cache_key_prefix"] == "cache_"


def test_user_file_overrides_defaults(tmp_path):
    path = tmp_path / "config.toml"
    path.write_text('[backend]\nbase_url = "https://api.example.test"\n\n[sync]\nid_field = "uuid"\n',
                    encoding="utf-8")
    settings = config.load_settings(config_path=path)
    assert settings["backend"]["base_url"] == "https://api.example.test"
    assert settings["backend"]["rest_prefix"] == "/rest/v1"
    assert settings["sync"]["id_field"] == "uuid"


def test_invalid_toml_falls_back_to_defaults(tmp_path):
    path = tmp_path / "config.toml"
    path.write_text("[backend\nbase_url = ", encoding="utf-8")
    settings = config.load_settings(config_path=path)
    assert settings["backend"]["base_url"] == config.DEFAULT_CONFIG_FROM_TOML["backend"]["base_url"]


def test_env_var_supplies_api_key(tmp_path, monkeypatch):
    monkeypatch.setenv(config.API_KEY_ENV_VAR, "env-key")
    settings = config.load_settings(config_path=tmp_path / "config.toml")
    assert settings["backend"]["api_key"] == "env-key"


def test_config_path_env_override(tmp_path, monkeypatch):
    path = tmp_path / "custom.toml"
    path.write_text('[general]\nlog_level = "DEBUG"\n', encoding="utf-8")
    monkeypatch.setenv(config.CONFIG_PATH_ENV_VAR, str(path))

    assert config.get_config_path() == path
    assert config.get_cli_setting("general", "log_level") == "DEBUG"
    assert config.get_cli_setting("general", "missing", "fallback") == "fallback"
    assert config.get_cli_setting("nope", "x", 3) == 3


def test_settings_are_cached_until_forced(tmp_path, monkeypatch):
    path = tmp_path / "config.toml"
    monkeypatch.setenv(config.CONFIG_PATH_ENV_VAR, str(path))
    first = config.load_settings()
    path.write_text('[general]\nlog_level = "ERROR"\n', encoding="utf-8")

    assert config.load_settings() is first
    assert config.load_settings(force_reload=True)["general"]["log_level"] == "ERROR"


def test_path_helpers(tmp_path):
    settings = {"database": {"kv_store_path": str(tmp_path / "data" / "store.db")},
                "logging": {"log_filename": "sync.log"}}
    assert config.get_kv_store_path(settings) == (tmp_path / "data" / "store.db").resolve()
    assert config.get_log_file_path(settings) == (tmp_path / "data" / "sync.log").resolve()


def test_configure_logging_installs_console_and_file_handlers(tmp_path):
    settings = config.deep_merge_dicts(config.DEFAULT_CONFIG_FROM_TOML, {
        "general": {"log_level": "WARNING"},
        "database": {"kv_store_path": str(tmp_path / "store.db")},
        "logging": {"file_log_level": "DEBUG"},
    })
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    try:
        configure_logging(settings)
        kinds = {type(h) for h in root.handlers}
        assert logging.handlers.RotatingFileHandler in kinds
        assert logging.StreamHandler in kinds
        assert root.level == logging.DEBUG
        assert logging.getLogger("httpx").level == logging.WARNING
        assert (tmp_path / "offline_sync.log").exists()
    finally:
        for handler in root.handlers[:]:
            root.removeHandler(handler)
            handler.close()
        for handler in saved_handlers:
            root.addHandler(handler)
        root.setLevel(saved_level)

#
# End of test_config.py
########################################################################################################################
