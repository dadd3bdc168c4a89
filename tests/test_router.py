"""Unit tests for the command router and its reloadable config."""

import json

import pytest

from dansbot.models.actions import ActionKind
from dansbot.router import COMMANDS, CommandRouter, ConfigSource, Feature, build_config, normalize_sender

SENDER = "15551234567@s.whatsapp.net"


def make_router(blocklist=(), features=None, **kwargs) -> CommandRouter:
    return CommandRouter(ConfigSource.static(blocklist, features), **kwargs)


class TestCommands:
    def test_ping(self):
        actions = make_router().route(SENDER, ".ping", False)
        assert len(actions) == 1
        assert actions[0].kind == ActionKind.REPLY
        assert actions[0].target == SENDER
        assert actions[0].text == COMMANDS["ping"]

    def test_tokens_are_case_insensitive_and_ignore_arguments(self):
        actions = make_router().route(SENDER, "  .ALIVE now please ", False)
        assert [a.text for a in actions] == [COMMANDS["alive"]]

    def test_menu_and_help_alias(self):
        router = make_router()
        menu = router.route(SENDER, ".menu", False)
        help_ = router.route(SENDER, ".help", False)
        assert menu[0].text == help_[0].text == router.menu()
        assert ".ping" in router.menu()

    def test_unknown_command_gets_exactly_one_reply(self):
        actions = make_router(features={Feature.AUTO_READ: True, Feature.AUTO_TYPING: True}).route(
            SENDER, ".frobnicate", False, message_id="M1"
        )
        assert len(actions) == 1
        assert actions[0].kind == ActionKind.UNKNOWN_COMMAND
        assert actions[0].is_reply
        assert ".frobnicate" in actions[0].text

    def test_bare_prefix_is_unknown(self):
        actions = make_router().route(SENDER, ".", False)
        assert [a.kind for a in actions] == [ActionKind.UNKNOWN_COMMAND]

    def test_custom_prefix(self):
        router = make_router(prefix="!")
        assert router.route(SENDER, "!ping", False)[0].text == COMMANDS["ping"]
        assert router.route(SENDER, ".ping", False) == []

    def test_empty_prefix_rejected(self):
        with pytest.raises(ValueError):
            make_router(prefix="")


class TestFiltering:
    def test_messages_from_self_are_ignored(self):
        assert make_router().route(SENDER, ".ping", True) == []

    def test_blocked_sender_gets_nothing(self):
        router = make_router(blocklist=["15551234567"], features={Feature.AUTO_READ: True})
        assert router.route(SENDER, ".ping", False) == []
        assert router.route("15551234567:4@s.whatsapp.net", "hello", False, message_id="M1") == []

    def test_blocklist_by_full_id(self):
        router = make_router(blocklist=["15551234567@S.WHATSAPP.NET"])
        assert router.route(SENDER, ".ping", False) == []
        assert router.route("15551234567@g.us", ".ping", False) != []

    def test_empty_text_is_ignored(self):
        assert make_router().route(SENDER, "   ", False) == []
        assert make_router().route(SENDER, None, False) == []


class TestPlainText:
    def test_no_features_no_actions(self):
        assert make_router().route(SENDER, "hello there", False, message_id="M1") == []

    def test_feature_side_effects(self):
        router = make_router(features={Feature.AUTO_READ: True, Feature.AUTO_TYPING: True}, typing_delay=2)
        actions = router.route(SENDER, "hello there", False, message_id="M1")
        assert [a.kind for a in actions] == [ActionKind.READ, ActionKind.TYPING]
        assert actions[0].message_id == "M1"
        assert actions[1].delay == 2
        assert not any(a.is_reply for a in actions)

    def test_read_needs_message_id(self):
        router = make_router(features={Feature.AUTO_READ: True})
        assert router.route(SENDER, "hello", False) == []

    def test_typing_delay_is_capped(self):
        router = make_router(features={Feature.AUTO_TYPING: True}, typing_delay=60)
        assert router.route(SENDER, "hi", False)[0].delay == 5.0


class TestConfigSource:
    def test_normalize_sender(self):
        assert normalize_sender(" 15551234567:3@S.WhatsApp.net ") == ("15551234567:3@s.whatsapp.net", "15551234567")

    def test_build_config_skips_junk_entries(self):
        config = build_config(["", "  ", 42, "15551234567:2"], {"auto_read": 1})
        assert config.blocklist == frozenset({"15551234567"})
        assert config.enabled(Feature.AUTO_READ)
        assert not config.enabled(Feature.AUTO_TYPING)

    def test_reload_swaps_whole_config(self, tmp_path):
        blocklist_file = tmp_path / "blocklist.json"
        features_file = tmp_path / "features.json"
        blocklist_file.write_text(json.dumps(["15551234567"]))
        features_file.write_text(json.dumps({"auto_read": True}))

        source = ConfigSource(blocklist_file, features_file)
        before = source.current
        assert before.is_blocked(SENDER)

        blocklist_file.write_text(json.dumps([]))
        features_file.write_text(json.dumps({"auto_typing": True}))
        after = source.reload()

        assert source.current is after
        assert not after.is_blocked(SENDER)
        assert after.enabled(Feature.AUTO_TYPING)
        # the old snapshot is untouched
        assert before.is_blocked(SENDER)
        assert before.enabled(Feature.AUTO_READ)

    def test_missing_or_malformed_files_mean_empty_config(self, tmp_path):
        bad = tmp_path / "features.json"
        bad.write_text("{not json")
        source = ConfigSource(tmp_path / "missing.json", bad)
        assert source.current.blocklist == frozenset()
        assert dict(source.current.features) == {}

    def test_wrong_json_shape_is_ignored(self, tmp_path):
        blocklist_file = tmp_path / "blocklist.json"
        blocklist_file.write_text(json.dumps({"not": "a list"}))
        source = ConfigSource(blocklist_file, None)
        assert source.current.blocklist == frozenset()

    def test_router_sees_reloaded_config(self, tmp_path):
        blocklist_file = tmp_path / "blocklist.json"
        blocklist_file.write_text("[]")
        source = ConfigSource(blocklist_file, None)
        router = CommandRouter(source)
        assert router.route(SENDER, ".ping", False)
        blocklist_file.write_text(json.dumps(["15551234567"]))
        source.reload()
        assert router.route(SENDER, ".ping", False) == []
