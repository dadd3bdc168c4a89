"""
Protocol Client event names and payload models.

Payloads mirror what the multi-device protocol library emits:
`connection.update`, `creds.update` and `messages.upsert`.
"""

from enum import Enum, IntEnum
from typing import Optional

from pydantic import BaseModel


class ProtocolEvent:
    CONNECTION_UPDATE = "connection.update"
    CREDS_UPDATE = "creds.update"
    MESSAGES_UPSERT = "messages.upsert"


class ConnectionPhase:
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSE = "close"


class DisconnectCode(IntEnum):
    """Close status codes used by the protocol library."""
    CONNECTION_CLOSED = 428
    CONNECTION_LOST = 408
    CONNECTION_REPLACED = 440
    LOGGED_OUT = 401
    BAD_SESSION = 500
    RESTART_REQUIRED = 515
    MULTIDEVICE_MISMATCH = 411
    FORBIDDEN = 403
    UNAVAILABLE_SERVICE = 503


class CloseKind(str, Enum):
    LOGGED_OUT = "logged_out"
    CONFLICT = "conflict"
    TRANSIENT = "transient"


LOGGED_OUT_REASONS = {"logged-out", "logged_out", "loggedout"}
CONFLICT_REASONS = {"connection-replaced", "connection_replaced", "conflict", "replaced"}


class ConnectionUpdate(BaseModel):
    """connection.update payload"""
    qr: Optional[str] = None
    connection: Optional[str] = None  # "connecting" | "open" | "close"
    status_code: Optional[int] = None
    reason: Optional[str] = None


class InboundMessage(BaseModel):
    id: Optional[str] = None
    sender: str
    text: Optional[str] = None
    from_self: bool = False


class MessagesUpsert(BaseModel):
    """messages.upsert payload"""
    messages: list[InboundMessage] = []


def classify_close(update: ConnectionUpdate) -> CloseKind:
    reason = (update.reason or "").strip().lower()
    if reason in LOGGED_OUT_REASONS or update.status_code == DisconnectCode.LOGGED_OUT:
        return CloseKind.LOGGED_OUT
    if reason in CONFLICT_REASONS or update.status_code == DisconnectCode.CONNECTION_REPLACED:
        return CloseKind.CONFLICT
    return CloseKind.TRANSIENT


def describe_close(update: ConnectionUpdate) -> str:
    if update.reason and update.status_code is not None:
        return f"{update.reason} ({update.status_code})"
    if update.reason:
        return update.reason
    if update.status_code is not None:
        return f"status {update.status_code}"
    return "connection closed"
