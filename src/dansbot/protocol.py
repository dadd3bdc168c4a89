"""
Protocol Client contract — the surface the session core needs from the
library that speaks the messaging wire protocol.

Event handlers receive `(event, data)` where `event` is one of
`ProtocolEvent.*` and `data` the raw payload dict.
"""

from typing import Any, Callable, Optional, Protocol

from dansbot.credentials import Bundle

EventHandler = Callable[[str, Any], None]


class ProtocolClient(Protocol):
    @property
    def registered(self) -> bool:
        """True when the loaded credentials already completed a login handshake."""
        ...

    def add_event_handler(self, handler: EventHandler) -> Callable[[], None]: ...

    async def connect(self) -> None: ...

    async def disconnect(self) -> None: ...

    async def send_message(self, target: str, text: str) -> None: ...

    async def send_presence(self, target: Optional[str], state: str) -> None: ...

    async def read_messages(self, ids: list[str]) -> None: ...

    async def request_pairing_code(self, phone_number: str) -> str: ...

    async def logout(self) -> None: ...


class ClientFactory(Protocol):
    def __call__(
        self,
        session_id: str,
        credentials: Optional[Bundle],
        protocol_version: Optional[str],
    ) -> ProtocolClient: ...
