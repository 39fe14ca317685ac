"""
tests/test_config.py
Config load/save with defaults fallback.
"""

from otpshield.config import (
    CONFIG_FILENAME,
    DEFAULT_CONFIG,
    DEFAULT_TRUSTED_SENDERS,
    load_config,
    save_config,
)


def test_defaults_when_missing(tmp_path):
    config = load_config(tmp_path)
    assert config == DEFAULT_CONFIG
    assert config is not DEFAULT_CONFIG


def test_saved_values_override_defaults(tmp_path):
    save_config({"rating_cooldown_days": 7, "api_port": 9000}, tmp_path)
    config = load_config(tmp_path)
    assert config["rating_cooldown_days"] == 7
    assert config["api_port"] == 9000
    assert config["trusted_senders"] == DEFAULT_TRUSTED_SENDERS


def test_malformed_file_falls_back(tmp_path, caplog):
    (tmp_path / CONFIG_FILENAME).write_text("{ broken", encoding="utf-8")
    assert load_config(tmp_path) == DEFAULT_CONFIG
    assert "Config load failed" in caplog.text


def test_non_object_root_falls_back(tmp_path):
    (tmp_path / CONFIG_FILENAME).write_text("[1, 2]", encoding="utf-8")
    assert load_config(tmp_path) == DEFAULT_CONFIG
