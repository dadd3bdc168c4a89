"""Shared pytest fixtures: an in-process Protocol Client and a SessionManager wired to it."""

import asyncio
from typing import Any, Callable, Optional

import pytest

from dansbot.artifacts import MemoryArtifactSink
from dansbot.backoff import BackoffPolicy
from dansbot.credentials import MemoryCredentialStore
from dansbot.manager import SessionManager
from dansbot.models.events import ProtocolEvent
from dansbot.router import CommandRouter, ConfigSource
from dansbot.status import StatusBoard


class FakeProtocolClient:
    def __init__(
        self,
        session_id: str,
        credentials: Optional[dict],
        protocol_version: Optional[str],
        *,
        connect_events: tuple = (),
        connect_error: Optional[Exception] = None,
        pairing_code: Optional[str] = "ABCD-1234",
        pairing_error: Optional[Exception] = None,
    ):
        self.session_id = session_id
        self.credentials = credentials
        self.protocol_version = protocol_version
        self.connect_events = connect_events
        self.connect_error = connect_error
        self.pairing_code = pairing_code
        self.pairing_error = pairing_error
        self.handlers: list[Callable[[str, Any], None]] = []
        self.all_handlers: list[Callable[[str, Any], None]] = []
        self.sent: list[tuple[str, str]] = []
        self.presence: list[tuple[Optional[str], str]] = []
        self.read: list[list[str]] = []
        self.pairing_requests: list[str] = []
        self.connected = False
        self.disconnected = False
        self.logged_out = False

    @property
    def registered(self) -> bool:
        return bool(self.credentials and self.credentials.get("registered"))

    def add_event_handler(self, handler):
        self.handlers.append(handler)
        self.all_handlers.append(handler)

        def remove() -> None:
            if handler in self.handlers:
                self.handlers.remove(handler)
        return remove

    def emit(self, event: str, data: Any) -> None:
        for handler in list(self.handlers):
            handler(event, data)

    def emit_stale(self, event: str, data: Any) -> None:
        """Deliver to every handler ever registered, as a misbehaving client would."""
        for handler in list(self.all_handlers):
            handler(event, data)

    # convenience emitters
    def qr(self, data: str = "QR-DATA") -> None:
        self.emit(ProtocolEvent.CONNECTION_UPDATE, {"qr": data})

    def open(self) -> None:
        self.emit(ProtocolEvent.CONNECTION_UPDATE, {"connection": "open"})

    def close(self, reason: str = "connection-lost", status_code: Optional[int] = None) -> None:
        self.emit(ProtocolEvent.CONNECTION_UPDATE, {"connection": "close", "reason": reason, "status_code": status_code})

    def creds(self, bundle: dict) -> None:
        self.emit(ProtocolEvent.CREDS_UPDATE, bundle)

    def message(self, sender: str, text: str, *, from_self: bool = False, id: str = "M1") -> None:
        self.emit(ProtocolEvent.MESSAGES_UPSERT, {
            "messages": [{"id": id, "sender": sender, "text": text, "from_self": from_self}],
        })

    async def connect(self) -> None:
        if self.connect_error:
            raise self.connect_error
        self.connected = True
        for event, data in self.connect_events:
            self.emit(event, data)

    async def disconnect(self) -> None:
        self.disconnected = True
        self.connected = False

    async def send_message(self, target: str, text: str) -> None:
        self.sent.append((target, text))

    async def send_presence(self, target: Optional[str], state: str) -> None:
        self.presence.append((target, state))

    async def read_messages(self, ids: list[str]) -> None:
        self.read.append(ids)

    async def request_pairing_code(self, phone_number: str) -> str:
        self.pairing_requests.append(phone_number)
        if self.pairing_error:
            raise self.pairing_error
        return self.pairing_code

    async def logout(self) -> None:
        self.logged_out = True


class FakeFactory:
    def __init__(self, client_class: type = FakeProtocolClient, **client_kwargs: Any):
        self.client_class = client_class
        self.client_kwargs = client_kwargs
        self.clients: list[FakeProtocolClient] = []

    def __call__(self, session_id, credentials, protocol_version) -> FakeProtocolClient:
        client = self.client_class(session_id, credentials, protocol_version, **self.client_kwargs)
        self.clients.append(client)
        return client

    @property
    def last(self) -> FakeProtocolClient:
        return self.clients[-1]


QR_EVENT = (ProtocolEvent.CONNECTION_UPDATE, {"qr": "QR-DATA"})
CONNECTING_EVENT = (ProtocolEvent.CONNECTION_UPDATE, {"connection": "connecting"})
OPEN_EVENT = (ProtocolEvent.CONNECTION_UPDATE, {"connection": "open"})


class StateRecorder:
    def __init__(self, board: StatusBoard):
        self.states: list[tuple[str, str]] = []
        board.add_listener(self._record)

    def _record(self, session_id, snapshot) -> None:
        if not self.states or self.states[-1] != (session_id, snapshot.state.value):
            self.states.append((session_id, snapshot.state.value))

    def of(self, session_id: str = "main") -> list[str]:
        return [state for sid, state in self.states if sid == session_id]


def fast_policy(**overrides) -> BackoffPolicy:
    values = dict(
        base_delay=0.01,
        max_delay=0.04,
        jitter_factor=0.0,
        max_attempts=3,
        cooldown=0.05,
        conflict_cooldown=0.05,
        stable_after=0.05,
    )
    values.update(overrides)
    return BackoffPolicy(**values)


async def settle(seconds: float = 0.0) -> None:
    """Let pending callbacks and tasks run."""
    await asyncio.sleep(seconds)
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.fixture
def factory():
    return FakeFactory(connect_events=(QR_EVENT,))


@pytest.fixture
def credentials():
    return MemoryCredentialStore()


@pytest.fixture
def artifacts():
    return MemoryArtifactSink()


@pytest.fixture
def board():
    return StatusBoard()


@pytest.fixture
def recorder(board):
    return StateRecorder(board)


@pytest.fixture
def config_source():
    return ConfigSource.static(blocklist=["15550000000"], features={})


@pytest.fixture
def make_manager(factory, credentials, artifacts, board, config_source):
    def _make(**overrides: Any) -> SessionManager:
        options: dict[str, Any] = dict(
            artifacts=artifacts,
            status=board,
            router=CommandRouter(config_source, typing_delay=0.01),
            backoff=fast_policy(),
            qr_refresh_interval=10.0,
            heartbeat_interval=10.0,
            first_event_timeout=0.05,
            qr_renderer=lambda data: f"PNG:{data}".encode(),
            rng=lambda: 0.0,
        )
        options.update(overrides)
        client_factory = options.pop("client_factory", factory)
        store = options.pop("credentials", credentials)
        return SessionManager(client_factory, store, **options)

    return _make
