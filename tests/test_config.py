import logging

import pytest

from feedlens import config
from feedlens.constants import DEFAULT_DB_PATH
from feedlens.logging_config import _use_json, configure_logging


@pytest.fixture
def config_home(tmp_path, monkeypatch):
    config_dir = tmp_path / ".config" / "feedlens"
    monkeypatch.setattr(config, "CONFIG_DIR", config_dir)
    monkeypatch.setattr(config, "CONFIG_FILE", config_dir / "config.json")
    for var in config.SETTINGS.values():
        monkeypatch.delenv(var, raising=False)
    return config_dir


def test_config_workflow(config_home):
    # 1. Load non-existent config
    assert config.load_config() == {}
    assert config.get_news_api_key() is None

    # 2. Save config
    config.save_config("news_api_key", "from-file")
    assert (config_home / "config.json").exists()

    # 3. Load config
    assert config.load_config()["news_api_key"] == "from-file"
    assert config.get_news_api_key() == "from-file"

    # 4. Save another key
    config.save_config("openrouter_api_key", "or-key")
    assert config.get_llm_api_key() == "or-key"
    assert config.load_config()["news_api_key"] == "from-file"


def test_unknown_key_rejected(config_home):
    with pytest.raises(KeyError):
        config.save_config("username", "someone")
    assert not (config_home / "config.json").exists()


def test_environment_overrides_file(config_home, monkeypatch):
    config.save_config("news_api_key", "from-file")
    monkeypatch.setenv("NEWS_API_KEY", "from-env")
    assert config.get_news_api_key() == "from-env"


def test_empty_environment_value_ignored(config_home, monkeypatch):
    config.save_config("openrouter_api_key", "from-file")
    monkeypatch.setenv("OPENROUTER_API_KEY", "")
    assert config.get_llm_api_key() == "from-file"


def test_defaults(config_home):
    assert config.get_db_path() == DEFAULT_DB_PATH
    assert config.get_log_level() == "INFO"
    assert config.get_log_format() is None


def test_db_path_and_log_format_from_env(config_home, monkeypatch):
    monkeypatch.setenv("FEEDLENS_DB_PATH", "/tmp/feeds.db")
    monkeypatch.setenv("FEEDLENS_LOG_FORMAT", "JSON")
    assert config.get_db_path() == "/tmp/feeds.db"
    assert config.get_log_format() == "json"


def test_load_corrupt_config(config_home, caplog):
    config_home.mkdir(parents=True)
    (config_home / "config.json").write_text("invalid json{")

    with caplog.at_level(logging.WARNING, logger="feedlens.config"):
        assert config.load_config() == {}
    assert config.get_news_api_key() is None
    assert "Ignoring unreadable config file" in caplog.text


def test_non_object_config_ignored(config_home):
    config_home.mkdir(parents=True)
    (config_home / "config.json").write_text('["news_api_key"]')
    assert config.load_config() == {}


def test_log_format_selection():
    assert _use_json("json") is True
    assert _use_json("console") is False


def test_configure_logging_quiets_http_client_loggers():
    configure_logging("DEBUG", "console")
    # Request URLs carry the NewsData key.
    assert logging.getLogger("httpx").level == logging.WARNING
    assert logging.getLogger("httpcore").level == logging.WARNING
