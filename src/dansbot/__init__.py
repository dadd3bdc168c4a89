"""
dansbot — session lifecycle core for a multi-device messaging bot.

QR / pairing-code login, credential persistence, generation-fenced
reconnects with backoff, and command routing for inbound messages.
"""

from dansbot.backoff import Backoff, BackoffPolicy
from dansbot.errors import (
    ConflictError,
    ConnectionError,
    DansBotError,
    GatewayError,
    HandshakeError,
    LoggedOutError,
    MessageHandlingError,
    PersistenceError,
    SessionError,
    TransientDisconnectError,
)
from dansbot.manager import SessionHandle, SessionManager
from dansbot.models.events import ProtocolEvent
from dansbot.models.status import SessionState, StatusSnapshot
from dansbot.router import CommandRouter, ConfigSource

__version__ = "0.2.0"
__all__ = [
    "Backoff",
    "BackoffPolicy",
    "CommandRouter",
    "ConfigSource",
    "ConflictError",
    "ConnectionError",
    "DansBotError",
    "GatewayError",
    "HandshakeError",
    "LoggedOutError",
    "MessageHandlingError",
    "PersistenceError",
    "ProtocolEvent",
    "SessionError",
    "SessionHandle",
    "SessionManager",
    "SessionState",
    "StatusSnapshot",
    "TransientDisconnectError",
]
