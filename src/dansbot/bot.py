"""
AsyncDansBot — wires the session core to the file-backed stores and the
Socket.IO gateway from Settings.
"""

from typing import Optional

from dansbot.artifacts import FileArtifactSink
from dansbot.config import Settings, load_settings
from dansbot.credentials import FileCredentialStore
from dansbot.manager import SessionHandle, SessionManager
from dansbot.models.status import StatusSnapshot
from dansbot.router import CommandRouter, ConfigSource, RouterConfig
from dansbot.status import StatusBoard
from dansbot.transport.http import HttpClient
from dansbot.transport.socketio import SocketIOClientFactory


class AsyncDansBot:
    """Control surface: start, stop, status, plus config reload."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or load_settings()
        s = self.settings
        self.http = HttpClient(base_url=s.gateway_url, token=s.gateway_token)
        self.credentials = FileCredentialStore(s.data_dir)
        self.artifacts = FileArtifactSink(s.public_dir)
        self.status_board = StatusBoard()
        self.config_source = ConfigSource(s.blocklist_file, s.features_file)
        self.router = CommandRouter(self.config_source, prefix=s.command_prefix, typing_delay=s.typing_delay)
        self.manager = SessionManager(
            SocketIOClientFactory(s.gateway_url, token=s.gateway_token),
            self.credentials,
            artifacts=self.artifacts,
            status=self.status_board,
            router=self.router,
            backoff=s.backoff.policy(),
            qr_refresh_interval=s.qr_refresh_seconds,
            heartbeat_interval=s.heartbeat_seconds,
            first_event_timeout=s.first_event_timeout,
            version_resolver=self.http.fetch_protocol_version,
        )

    async def start(self, session_id: str = "main", phone_number: Optional[str] = None) -> SessionHandle:
        return await self.manager.start(session_id, phone_number)

    async def stop(self, session_id: str = "main") -> None:
        await self.manager.stop(session_id)

    def status(self, session_id: str = "main") -> StatusSnapshot:
        return self.manager.status(session_id)

    def reload_config(self) -> RouterConfig:
        return self.config_source.reload()

    async def close(self) -> None:
        await self.manager.close()
        await self.http.close()
