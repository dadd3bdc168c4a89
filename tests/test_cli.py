import json

import pytest
from click.testing import CliRunner

from dansbot.cli.main import main
from dansbot.config import load_settings


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    config_file = tmp_path / "config.json"
    config_file.write_text(json.dumps({
        "data_dir": str(tmp_path / "auth"),
        "public_dir": str(tmp_path / "public"),
        "blocklist_file": str(tmp_path / "blocklist.json"),
        "features_file": str(tmp_path / "features.json"),
    }))
    monkeypatch.setenv("DANSBOT_CONFIG", str(config_file))
    return tmp_path


def test_version():
    result = CliRunner().invoke(main, ["--version"])
    assert result.exit_code == 0
    assert "0.2.0" in result.output


def test_config_show(cli_env):
    result = CliRunner().invoke(main, ["config", "show"])
    assert result.exit_code == 0
    assert '"command_prefix": "."' in result.output


def test_config_set_nested_value(cli_env):
    result = CliRunner().invoke(main, ["config", "set", "backoff.max_delay", "30"])
    assert result.exit_code == 0
    settings = load_settings(cli_env / "config.json")
    assert settings.backoff.max_delay == 30
    assert settings.blocklist_file == cli_env / "blocklist.json"


def test_config_set_unknown_key(cli_env):
    result = CliRunner().invoke(main, ["config", "set", "nope", "1"])
    assert result.exit_code == 2


def test_blocklist_commands(cli_env):
    runner = CliRunner()
    assert runner.invoke(main, ["blocklist", "add", "15551234567"]).exit_code == 0
    assert runner.invoke(main, ["blocklist", "add", "15551234567"]).exit_code == 0
    assert json.loads((cli_env / "blocklist.json").read_text()) == ["15551234567"]

    result = runner.invoke(main, ["blocklist", "list"])
    assert "15551234567" in result.output

    assert runner.invoke(main, ["blocklist", "remove", "15551234567"]).exit_code == 0
    assert json.loads((cli_env / "blocklist.json").read_text()) == []


def test_features_commands(cli_env):
    runner = CliRunner()
    assert runner.invoke(main, ["features", "set", "auto_read", "on"]).exit_code == 0
    assert runner.invoke(main, ["features", "set", "auto_typing", "off"]).exit_code == 0
    assert json.loads((cli_env / "features.json").read_text()) == {"auto_read": True, "auto_typing": False}
    assert runner.invoke(main, ["features", "set", "auto_read", "maybe"]).exit_code == 2


def test_logout_removes_credentials(cli_env):
    creds = cli_env / "auth" / "main" / "creds.json"
    creds.parent.mkdir(parents=True)
    creds.write_text("{}")
    result = CliRunner().invoke(main, ["logout"])
    assert result.exit_code == 0
    assert not creds.exists()
