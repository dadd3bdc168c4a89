"""
Command Router — classifies inbound messages and produces outbound actions.

Routing rules, in order:
- messages sent by the bot's own account are ignored
- blocklisted senders are dropped silently
- `<prefix><token>` replies with the command's fixed text, or with exactly
  one "unknown command" reply
- plain text gets no reply, only the side effects enabled in feature flags
"""

import json
import logging
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional

from pydantic import BaseModel, ConfigDict

from dansbot.models.actions import ActionKind, OutboundAction

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "."
DEFAULT_TYPING_DELAY = 1.0
MAX_TYPING_DELAY = 5.0


class Feature:
    AUTO_READ = "auto_read"
    AUTO_TYPING = "auto_typing"


COMMANDS: dict[str, str] = {
    "ping": "Pong! ✅ Bot is active.",
    "alive": "🤖 DansBot is online and listening.",
}
COMMAND_ALIASES = {"help": "menu"}


def normalize_sender(sender: str) -> tuple[str, str]:
    """Return (full id, bare user) for a sender id like '15551234567:3@s.whatsapp.net'."""
    full = sender.strip().lower()
    user = full.split("@", 1)[0].split(":", 1)[0]
    return full, user


class RouterConfig(BaseModel):
    """Read-only configuration snapshot consulted during dispatch."""
    model_config = ConfigDict(frozen=True)

    blocklist: frozenset[str] = frozenset()
    features: Mapping[str, bool] = {}

    def is_blocked(self, sender: str) -> bool:
        full, user = normalize_sender(sender)
        return full in self.blocklist or user in self.blocklist

    def enabled(self, feature: str) -> bool:
        return bool(self.features.get(feature, False))


def build_config(blocklist: Iterable[str] = (), features: Optional[Mapping[str, Any]] = None) -> RouterConfig:
    entries = set()
    for entry in blocklist:
        if not isinstance(entry, str) or not entry.strip():
            continue
        full, user = normalize_sender(entry)
        entries.add(full if "@" in full else user)
    flags = {str(k): bool(v) for k, v in (features or {}).items()}
    return RouterConfig(blocklist=frozenset(entries), features=flags)


def _read_json(path: Optional[Path], default: Any) -> Any:
    if path is None:
        return default
    try:
        return json.loads(Path(path).read_text(encoding="utf-8"))
    except FileNotFoundError:
        return default
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Ignoring unreadable config file {path}: {e}")
        return default


class ConfigSource:
    """Holds the current RouterConfig and replaces it wholesale on reload()."""

    def __init__(self, blocklist_file: Optional[Path] = None, features_file: Optional[Path] = None):
        self._blocklist_file = blocklist_file
        self._features_file = features_file
        self._current = RouterConfig()
        if blocklist_file or features_file:
            self.reload()

    @classmethod
    def static(cls, blocklist: Iterable[str] = (), features: Optional[Mapping[str, Any]] = None) -> "ConfigSource":
        source = cls()
        source._current = build_config(blocklist, features)
        return source

    @property
    def current(self) -> RouterConfig:
        return self._current

    def reload(self) -> RouterConfig:
        blocklist = _read_json(self._blocklist_file, [])
        features = _read_json(self._features_file, {})
        if not isinstance(blocklist, list):
            logger.warning(f"Blocklist file {self._blocklist_file} is not a JSON list")
            blocklist = []
        if not isinstance(features, dict):
            logger.warning(f"Features file {self._features_file} is not a JSON object")
            features = {}
        config = build_config(blocklist, features)
        self._current = config
        logger.info(f"Router config loaded: {len(config.blocklist)} blocked, features={dict(config.features)}")
        return config

    def replace(self, config: RouterConfig) -> None:
        self._current = config


class CommandRouter:
    def __init__(
        self,
        config: Optional[ConfigSource] = None,
        prefix: str = DEFAULT_PREFIX,
        typing_delay: float = DEFAULT_TYPING_DELAY,
    ):
        if not prefix:
            raise ValueError("Command prefix must not be empty")
        self._config = config or ConfigSource()
        self._prefix = prefix
        self._typing_delay = max(0.0, min(typing_delay, MAX_TYPING_DELAY))

    @property
    def config(self) -> ConfigSource:
        return self._config

    @property
    def prefix(self) -> str:
        return self._prefix

    def menu(self) -> str:
        names = sorted(set(COMMANDS) | {"menu"} | set(COMMAND_ALIASES))
        lines = ["📜 Commands:"] + [f"{self._prefix}{name}" for name in names]
        return "\n".join(lines)

    def reply_for(self, token: str) -> Optional[str]:
        token = COMMAND_ALIASES.get(token, token)
        if token == "menu":
            return self.menu()
        return COMMANDS.get(token)

    def route(
        self,
        sender: str,
        text: Optional[str],
        is_from_self: bool,
        message_id: Optional[str] = None,
    ) -> list[OutboundAction]:
        if is_from_self:
            return []
        config = self._config.current
        if config.is_blocked(sender):
            logger.debug(f"Dropping message from blocklisted sender {sender}")
            return []
        body = (text or "").strip()
        if not body:
            return []

        if body.startswith(self._prefix):
            words = body[len(self._prefix):].split(maxsplit=1)
            token = words[0].lower() if words else ""
            reply = self.reply_for(token) if token else None
            if reply is not None:
                return [OutboundAction(kind=ActionKind.REPLY, target=sender, text=reply, message_id=message_id)]
            shown = f"{self._prefix}{token}" if token else self._prefix
            return [OutboundAction(
                kind=ActionKind.UNKNOWN_COMMAND,
                target=sender,
                text=f"❓ Unknown command: {shown}\nSend {self._prefix}menu for the list of commands.",
                message_id=message_id,
            )]

        actions: list[OutboundAction] = []
        if config.enabled(Feature.AUTO_READ) and message_id:
            actions.append(OutboundAction(kind=ActionKind.READ, target=sender, message_id=message_id))
        if config.enabled(Feature.AUTO_TYPING):
            actions.append(OutboundAction(kind=ActionKind.TYPING, target=sender, delay=self._typing_delay))
        return actions
