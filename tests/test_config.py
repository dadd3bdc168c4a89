import json

import pytest
from pydantic import ValidationError

from dansbot.backoff import BackoffPolicy
from dansbot.config import Settings, config_path, load_settings, save_settings, update_setting


def test_missing_file_gives_defaults(tmp_path):
    settings = load_settings(tmp_path / "nope.json")
    assert settings == Settings()
    assert settings.backoff.policy() == BackoffPolicy()


def test_invalid_file_gives_defaults(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"qr_refresh_seconds": "soon"}))
    assert load_settings(path) == Settings()


def test_save_and_load(tmp_path):
    path = tmp_path / "nested" / "config.json"
    save_settings(Settings(command_prefix="!", gateway_token="t"), path)
    loaded = load_settings(path)
    assert loaded.command_prefix == "!"
    assert loaded.gateway_token == "t"


def test_config_path_env_override(tmp_path, monkeypatch):
    monkeypatch.setenv("DANSBOT_CONFIG", str(tmp_path / "c.json"))
    assert config_path() == tmp_path / "c.json"


def test_update_setting():
    updated = update_setting(Settings(), "backoff.max_attempts", 3)
    assert updated.backoff.max_attempts == 3
    assert updated.backoff.policy().max_attempts == 3

    with pytest.raises(KeyError):
        update_setting(Settings(), "backoff.nope", 1)
    with pytest.raises(KeyError):
        update_setting(Settings(), "command_prefix.x", 1)


def test_inconsistent_backoff_falls_back_to_defaults(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"backoff": {"max_delay": 60, "cooldown": 10}}))
    settings = load_settings(path)
    assert settings == Settings()
    assert settings.backoff.policy() == BackoffPolicy()


def test_update_setting_validates_backoff_policy():
    with pytest.raises(ValidationError):
        update_setting(Settings(), "backoff.base_delay", 0)
