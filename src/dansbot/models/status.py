"""
Session state machine values and the immutable status snapshot.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class SessionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    AWAITING_QR = "awaiting_qr"
    AWAITING_PAIRING = "awaiting_pairing"
    OPEN = "open"
    RECONNECTING = "reconnecting"
    LOGGED_OUT = "logged_out"
    DISCONNECTED = "disconnected"


# Event-driven transitions. `stop` (any -> IDLE) and `start` (any -> CONNECTING)
# are explicit control calls and bypass this table.
TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.IDLE: frozenset({SessionState.CONNECTING}),
    SessionState.CONNECTING: frozenset({
        SessionState.AWAITING_QR,
        SessionState.AWAITING_PAIRING,
        SessionState.OPEN,
        SessionState.DISCONNECTED,
    }),
    SessionState.AWAITING_QR: frozenset({
        SessionState.OPEN,
        SessionState.CONNECTING,
        SessionState.DISCONNECTED,
    }),
    SessionState.AWAITING_PAIRING: frozenset({SessionState.OPEN, SessionState.DISCONNECTED}),
    SessionState.OPEN: frozenset({SessionState.DISCONNECTED}),
    SessionState.DISCONNECTED: frozenset({SessionState.RECONNECTING, SessionState.LOGGED_OUT}),
    SessionState.RECONNECTING: frozenset({SessionState.CONNECTING}),
    SessionState.LOGGED_OUT: frozenset(),
}


def can_transition(current: SessionState, new: SessionState) -> bool:
    return new in TRANSITIONS[current]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StatusSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    state: SessionState = SessionState.IDLE
    updated_at: datetime = Field(default_factory=_utcnow)
    phone_number: Optional[str] = None
    last_error: Optional[str] = None
