# tests/test_config.py
"""
Tests for configuration loading.
"""
import pytest
from unittest.mock import patch

from planflow.config import AppConfig, ConfigManager


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.delenv("PLANFLOW_DEBUG", raising=False)
    with patch("planflow.config.load_dotenv"):
        yield


def test_defaults_when_file_is_missing(tmp_path):
    manager = ConfigManager(tmp_path / "missing.toml")

    config = manager.config

    assert config == AppConfig()
    assert config.execution.backoff_base == 2.0
    assert config.execution.history_limit == 10
    assert config.safety.bulk_target_limit == 10
    assert config.safety.bulk_message_limit == 100


def test_loads_toml(tmp_path):
    config_file = tmp_path / "config.toml"
    config_file.write_text(
        "debug = true\n"
        "[execution]\nbackoff_base = 0.5\nmax_execution_time_ms = 2000\n"
        "[safety]\nprivileged_targets = [\"owner\"]\n"
    )

    config = ConfigManager(config_file).load_config()

    assert config.debug is True
    assert config.execution.backoff_base == 0.5
    assert config.execution.max_execution_time_ms == 2000
    assert config.safety.privileged_targets == ["owner"]


@pytest.mark.parametrize("content", [
    "this is = = not toml",
    "[execution]\nbackoff_base = -1\n",
])
def test_invalid_files_fall_back_to_defaults(tmp_path, content):
    config_file = tmp_path / "config.toml"
    config_file.write_text(content)

    config = ConfigManager(config_file).load_config()

    assert config.execution.backoff_base == 2.0


def test_environment_overrides(tmp_path, monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "secret")
    monkeypatch.setenv("PLANFLOW_DEBUG", "true")

    config = ConfigManager(tmp_path / "missing.toml").config

    assert config.api.gemini_api_key == "secret"
    assert config.debug is True


def test_save_never_writes_the_api_key(tmp_path, monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "secret")
    config_file = tmp_path / "nested" / "config.toml"
    manager = ConfigManager(config_file)
    manager.config.safety.bulk_target_limit = 3

    manager.save_config()

    written = config_file.read_text()
    assert "secret" not in written
    assert "bulk_target_limit = 3" in written
    assert ConfigManager(config_file).load_config().safety.bulk_target_limit == 3
