"""
dansbot error types — one class per error kind the session core reports.
"""

from typing import Any, Optional


class DansBotError(Exception):
    def __init__(self, code: str, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.details = details

    def describe(self) -> str:
        """Render as the `last_error` string published in status snapshots."""
        return f"{self.code}: {self}"


class SessionError(DansBotError):
    def __init__(self, message: str, code: str = "session_error", details: Optional[dict[str, Any]] = None):
        super().__init__(code, message, details)


class TransientDisconnectError(DansBotError):
    """Socket closed for a recoverable reason; handled by backoff."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__("transient_disconnect", message, details)


class ConflictError(DansBotError):
    """Another device replaced this session's stream."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__("conflict", message, details)


class LoggedOutError(DansBotError):
    def __init__(self, message: str = "session logged out", details: Optional[dict[str, Any]] = None):
        super().__init__("logged_out", message, details)


class HandshakeError(DansBotError):
    """Pairing-code request or QR rendering failed. Not retried automatically."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__("handshake_failure", message, details)


class PersistenceError(DansBotError):
    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__("persistence_failure", message, details)


class MessageHandlingError(DansBotError):
    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__("message_handling_failure", message, details)


class GatewayError(DansBotError):
    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__("gateway_error", message, details)


class ConnectionError(DansBotError):
    def __init__(self, message: str):
        super().__init__("connection_error", message)
