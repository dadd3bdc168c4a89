"""
Settings — persisted as JSON at ~/.dansbot/config.json (or $DANSBOT_CONFIG).
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ValidationError, model_validator

from dansbot.backoff import BackoffPolicy
from dansbot.transport.http import DEFAULT_GATEWAY_URL

logger = logging.getLogger(__name__)

DEFAULT_HOME = Path.home() / ".dansbot"
CONFIG_ENV = "DANSBOT_CONFIG"


def config_path() -> Path:
    override = os.environ.get(CONFIG_ENV)
    return Path(override) if override else DEFAULT_HOME / "config.json"


class BackoffSettings(BaseModel):
    base_delay: float = 2.0
    max_delay: float = 60.0
    jitter_factor: float = 0.3
    max_attempts: int = 10
    cooldown: float = 300.0
    conflict_cooldown: float = 600.0
    stable_after: float = 60.0

    def policy(self) -> BackoffPolicy:
        return BackoffPolicy(**self.model_dump())

    @model_validator(mode="after")
    def _check_policy(self) -> "BackoffSettings":
        self.policy()
        return self


class Settings(BaseModel):
    gateway_url: str = DEFAULT_GATEWAY_URL
    gateway_token: Optional[str] = None
    data_dir: Path = DEFAULT_HOME / "auth"
    public_dir: Path = DEFAULT_HOME / "public"
    blocklist_file: Path = DEFAULT_HOME / "blocklist.json"
    features_file: Path = DEFAULT_HOME / "features.json"
    command_prefix: str = "."
    qr_refresh_seconds: float = 45.0
    heartbeat_seconds: float = 30.0
    first_event_timeout: float = 20.0
    typing_delay: float = 1.0
    backoff: BackoffSettings = BackoffSettings()


def load_settings(path: Optional[Path] = None) -> Settings:
    path = path or config_path()
    try:
        raw = json.loads(path.read_text())
    except (FileNotFoundError, json.JSONDecodeError):
        return Settings()
    try:
        return Settings.model_validate(raw)
    except ValidationError as e:
        logger.warning(f"Invalid settings in {path}, using defaults: {e}")
        return Settings()


def save_settings(settings: Settings, path: Optional[Path] = None) -> Path:
    path = path or config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(settings.model_dump_json(indent=2))
    return path


def update_setting(settings: Settings, key: str, value: Any) -> Settings:
    """Return a copy with a dotted key (e.g. "backoff.max_delay") set; values are validated."""
    data = settings.model_dump(mode="json")
    target = data
    parts = key.split(".")
    for part in parts[:-1]:
        if not isinstance(target.get(part), dict):
            raise KeyError(key)
        target = target[part]
    if parts[-1] not in target:
        raise KeyError(key)
    target[parts[-1]] = value
    return Settings.model_validate(data)
