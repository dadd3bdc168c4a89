"""
Outbound actions produced by the command router.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class ActionKind(str, Enum):
    REPLY = "reply"
    UNKNOWN_COMMAND = "unknown_command"
    TYPING = "typing"    # composing -> (delay) -> paused
    READ = "read"        # read receipt


REPLY_KINDS = frozenset({ActionKind.REPLY, ActionKind.UNKNOWN_COMMAND})


class OutboundAction(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: ActionKind
    target: str
    text: Optional[str] = None
    message_id: Optional[str] = None
    delay: float = 0.0

    @property
    def is_reply(self) -> bool:
        return self.kind in REPLY_KINDS
