"""
Socket.IO Protocol Client — talks to a gateway process that speaks the
messaging wire protocol and relays its events.

Connection: {gateway_url}/socket.io/ with auth={session_id, credentials, version}.
Waits for the `ready` event before resolving connect().
"""

import asyncio
import logging
import uuid
from typing import Any, Callable, Optional

import socketio
from socketio.exceptions import ConnectionError as SocketIOConnectionError

from dansbot.credentials import Bundle
from dansbot.errors import ConnectionError, GatewayError
from dansbot.models.events import ConnectionPhase, DisconnectCode, ProtocolEvent
from dansbot.protocol import EventHandler
from dansbot.transport.envelope import build_envelope, parse_envelope

logger = logging.getLogger(__name__)

SOCKETIO_PATH = "/socket.io/"
DEFAULT_BROWSER = ("DansBot", "Chrome", "4.0")

RELAYED_EVENTS = {
    ProtocolEvent.CONNECTION_UPDATE,
    ProtocolEvent.CREDS_UPDATE,
    ProtocolEvent.MESSAGES_UPSERT,
}


class GatewayCommand:
    SEND_MESSAGE = "message.send"
    SEND_PRESENCE = "presence.send"
    READ_MESSAGES = "messages.read"
    REQUEST_PAIRING_CODE = "pairing.request"
    LOGOUT = "session.logout"


class SocketIOProtocolClient:
    def __init__(
        self,
        base_url: str,
        session_id: str,
        credentials: Optional[Bundle] = None,
        protocol_version: Optional[str] = None,
        token: Optional[str] = None,
        browser: tuple[str, str, str] = DEFAULT_BROWSER,
        transports: Optional[list[str]] = None,
        ready_timeout: float = 15.0,
        request_timeout: float = 30.0,
    ):
        self._base_url = base_url
        self._session_id = session_id
        self._credentials = credentials
        self._protocol_version = protocol_version
        self._token = token
        self._browser = "/".join(browser)
        self._transports = transports or ["websocket"]
        self._ready_timeout = ready_timeout
        self._request_timeout = request_timeout
        self._sio: Optional[socketio.AsyncClient] = None
        self._connected = False
        self._closing = False
        self._registered = bool(credentials and credentials.get("registered"))
        self._event_handlers: list[EventHandler] = []
        self._pending: dict[str, asyncio.Future] = {}

    @property
    def connected(self) -> bool:
        return self._connected and self._sio is not None and self._sio.connected

    @property
    def registered(self) -> bool:
        return self._registered

    def add_event_handler(self, handler: EventHandler) -> Callable[[], None]:
        """Add an event handler. Returns a cleanup function."""
        self._event_handlers.append(handler)

        def remove() -> None:
            try:
                self._event_handlers.remove(handler)
            except ValueError:
                pass
        return remove

    def _emit_local(self, event: str, data: Any) -> None:
        for handler in list(self._event_handlers):
            try:
                handler(event, data)
            except Exception:
                logger.exception(f"Event handler failed for {event}")

    async def connect(self) -> None:
        """Connect to the gateway and wait for `ready`."""
        if self._sio and self._sio.connected:
            return

        self._closing = False
        self._sio = socketio.AsyncClient(reconnection=False)
        ready_event = asyncio.Event()

        @self._sio.on("ready")
        async def on_ready(*_args: Any) -> None:
            self._connected = True
            ready_event.set()

        @self._sio.on("response")
        async def on_response(raw: Any) -> None:
            envelope = parse_envelope(raw)
            if envelope is None:
                return
            future = self._pending.pop(envelope.metadata.request_id or "", None)
            if future and not future.done():
                future.set_result(envelope.payload.data)

        @self._sio.on("*")
        async def on_any(event: str, raw: Any) -> None:
            if event not in RELAYED_EVENTS:
                return
            envelope = parse_envelope(raw)
            if envelope is None:
                logger.warning(f"Dropping malformed {event} frame from gateway")
                return
            data = envelope.payload.data
            if event == ProtocolEvent.CREDS_UPDATE and isinstance(data, dict):
                self._registered = bool(data.get("registered", self._registered))
            self._emit_local(event, data)

        @self._sio.event
        async def disconnect(*_args: Any) -> None:
            was_connected = self._connected
            self._connected = False
            self._fail_pending(ConnectionError("Gateway connection closed"))
            if was_connected and not self._closing:
                self._emit_local(ProtocolEvent.CONNECTION_UPDATE, {
                    "connection": ConnectionPhase.CLOSE,
                    "status_code": int(DisconnectCode.CONNECTION_LOST),
                    "reason": "connection-lost",
                })

        try:
            await self._sio.connect(
                self._base_url,
                auth={
                    "session_id": self._session_id,
                    "token": self._token,
                    "credentials": self._credentials,
                    "version": self._protocol_version,
                    "browser": self._browser,
                },
                transports=self._transports,
                socketio_path=SOCKETIO_PATH,
            )
        except SocketIOConnectionError as e:
            raise ConnectionError(f"Could not reach gateway at {self._base_url}: {e}")

        try:
            await asyncio.wait_for(ready_event.wait(), timeout=self._ready_timeout)
        except asyncio.TimeoutError:
            self._closing = True
            await self._sio.disconnect()
            raise TimeoutError(f"Timed out waiting for 'ready' event after {self._ready_timeout}s")

    def _fail_pending(self, error: Exception) -> None:
        pending, self._pending = self._pending, {}
        for future in pending.values():
            if not future.done():
                future.set_exception(error)

    async def _emit(self, command: str, data: Any) -> None:
        if not self._sio or not self._sio.connected:
            raise ConnectionError("Gateway not connected")
        envelope = build_envelope(
            command, data,
            session_id=self._session_id,
            client=self._browser,
            version=self._protocol_version,
        )
        await self._sio.emit(command, envelope)

    async def _request(self, command: str, data: Any) -> Any:
        """Emit a command and wait for the gateway's `response` with the same request_id."""
        if not self._sio or not self._sio.connected:
            raise ConnectionError("Gateway not connected")
        request_id = str(uuid.uuid4())
        envelope = build_envelope(
            command, data,
            session_id=self._session_id,
            client=self._browser,
            version=self._protocol_version,
            request_id=request_id,
        )
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await self._sio.emit(command, envelope)
            result = await asyncio.wait_for(future, timeout=self._request_timeout)
        except asyncio.TimeoutError:
            raise GatewayError(f"Timeout waiting for {command} response")
        finally:
            self._pending.pop(request_id, None)
        if isinstance(result, dict) and result.get("error"):
            raise GatewayError(str(result["error"]), details=result)
        return result

    async def send_message(self, target: str, text: str) -> None:
        await self._emit(GatewayCommand.SEND_MESSAGE, {"to": target, "text": text})

    async def send_presence(self, target: Optional[str], state: str) -> None:
        await self._emit(GatewayCommand.SEND_PRESENCE, {"to": target, "state": state})

    async def read_messages(self, ids: list[str]) -> None:
        await self._emit(GatewayCommand.READ_MESSAGES, {"ids": ids})

    async def request_pairing_code(self, phone_number: str) -> str:
        result = await self._request(GatewayCommand.REQUEST_PAIRING_CODE, {"phone_number": phone_number})
        code = result.get("code") if isinstance(result, dict) else result
        if not code:
            raise GatewayError("Gateway returned no pairing code")
        return str(code)

    async def logout(self) -> None:
        await self._request(GatewayCommand.LOGOUT, None)

    async def disconnect(self) -> None:
        self._closing = True
        self._connected = False
        if self._sio:
            await self._sio.disconnect()
            self._sio = None


class SocketIOClientFactory:
    """ClientFactory producing one SocketIOProtocolClient per generation."""

    def __init__(self, base_url: str, token: Optional[str] = None, **client_options: Any):
        self._base_url = base_url
        self._token = token
        self._client_options = client_options

    def __call__(
        self,
        session_id: str,
        credentials: Optional[Bundle],
        protocol_version: Optional[str],
    ) -> SocketIOProtocolClient:
        return SocketIOProtocolClient(
            self._base_url,
            session_id,
            credentials=credentials,
            protocol_version=protocol_version,
            token=self._token,
            **self._client_options,
        )
