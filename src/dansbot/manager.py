"""
Session Manager — owns one state machine per session id.

Every Protocol Client instance belongs to a numbered generation. Event
handlers and timer callbacks capture the generation they were created for
and do nothing once that generation is no longer the live one, so a socket
that has been replaced can never drive state, schedule timers or send
messages again.

State changes are synchronous and therefore atomic on the event loop.
Operations that await (start, stop, QR refresh, reconnect) hold the
session's lock.
"""

import asyncio
import functools
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Coroutine, Optional

from pydantic import ValidationError

from dansbot.artifacts import ArtifactSink, MemoryArtifactSink, render_qr_png
from dansbot.backoff import Backoff, BackoffPolicy
from dansbot.credentials import Bundle, CredentialStore, validate_session_id
from dansbot.errors import (
    ConflictError,
    DansBotError,
    HandshakeError,
    LoggedOutError,
    MessageHandlingError,
    PersistenceError,
    SessionError,
    TransientDisconnectError,
)
from dansbot.models.actions import ActionKind
from dansbot.models.events import (
    CloseKind,
    ConnectionPhase,
    ConnectionUpdate,
    InboundMessage,
    MessagesUpsert,
    ProtocolEvent,
    classify_close,
    describe_close,
)
from dansbot.models.status import SessionState, StatusSnapshot, can_transition
from dansbot.pairing import PairingCoordinator
from dansbot.protocol import ClientFactory, ProtocolClient
from dansbot.router import CommandRouter
from dansbot.status import StatusBoard
from dansbot.timers import TimerSet

logger = logging.getLogger(__name__)

QR_REFRESH_TIMER = "qr_refresh"
HEARTBEAT_TIMER = "heartbeat"
STABLE_TIMER = "stable"

DEFAULT_QR_REFRESH_S = 45.0
DEFAULT_HEARTBEAT_S = 30.0
DEFAULT_FIRST_EVENT_TIMEOUT_S = 20.0

PRESENCE_AVAILABLE = "available"
PRESENCE_COMPOSING = "composing"
PRESENCE_PAUSED = "paused"

VersionResolver = Callable[[], Awaitable[Optional[str]]]
QRRenderer = Callable[[str], bytes]

_KEEP = object()


@dataclass(frozen=True)
class SessionHandle:
    session_id: str
    generation: int


@dataclass
class _Generation:
    number: int
    pairing: bool
    timers: TimerSet
    first_event: asyncio.Event = field(default_factory=asyncio.Event)
    client: Optional[ProtocolClient] = None
    remove_handler: Optional[Callable[[], None]] = None
    sender_locks: dict[str, asyncio.Lock] = field(default_factory=dict)


@dataclass
class _Session:
    session_id: str
    backoff: Backoff
    phone_number: Optional[str] = None
    counter: int = 0
    live: Optional[_Generation] = None
    snapshot: StatusSnapshot = field(default_factory=StatusSnapshot)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    reconnect_task: Optional[asyncio.Task] = None
    purge_task: Optional[asyncio.Task] = None
    saver_task: Optional[asyncio.Task] = None
    pending_credentials: Optional[Bundle] = None
    pending_generation: int = 0

    @property
    def state(self) -> SessionState:
        return self.snapshot.state


class SessionManager:
    def __init__(
        self,
        client_factory: ClientFactory,
        credentials: CredentialStore,
        *,
        artifacts: Optional[ArtifactSink] = None,
        status: Optional[StatusBoard] = None,
        router: Optional[CommandRouter] = None,
        backoff: Optional[BackoffPolicy] = None,
        qr_refresh_interval: float = DEFAULT_QR_REFRESH_S,
        heartbeat_interval: float = DEFAULT_HEARTBEAT_S,
        first_event_timeout: float = DEFAULT_FIRST_EVENT_TIMEOUT_S,
        version_resolver: Optional[VersionResolver] = None,
        qr_renderer: QRRenderer = render_qr_png,
        rng: Optional[Callable[[], float]] = None,
    ):
        self._client_factory = client_factory
        self._credentials = credentials
        self._artifacts = artifacts or MemoryArtifactSink()
        self._status = status or StatusBoard()
        self._router = router or CommandRouter()
        self._backoff_policy = backoff or BackoffPolicy()
        self._qr_refresh_interval = qr_refresh_interval
        self._heartbeat_interval = heartbeat_interval
        self._first_event_timeout = first_event_timeout
        self._version_resolver = version_resolver
        self._qr_renderer = qr_renderer
        self._rng = rng
        self._pairing = PairingCoordinator(self._artifacts)
        self._sessions: dict[str, _Session] = {}
        self._tasks: set[asyncio.Task] = set()

    @property
    def status_board(self) -> StatusBoard:
        return self._status

    @property
    def router(self) -> CommandRouter:
        return self._router

    # -- control surface ---------------------------------------------------

    def status(self, session_id: str) -> StatusSnapshot:
        return self._status.get_snapshot(session_id)

    def generation(self, session_id: str) -> Optional[int]:
        """Number of the live generation, or None when no client is live."""
        session = self._sessions.get(session_id)
        if session is None or session.live is None:
            return None
        return session.live.number

    def sessions(self) -> list[str]:
        return sorted(self._sessions)

    async def start(self, session_id: str, phone_number: Optional[str] = None) -> SessionHandle:
        """Start (or restart) a session, superseding any live generation.

        Raises HandshakeError when a pairing code was requested and could not
        be obtained; the session then stays in `connecting`.
        """
        validate_session_id(session_id)
        session = self._session(session_id)
        await self._cancel_reconnect(session)
        await self._await_purge(session)
        async with session.lock:
            if session.live is not None:
                self._retire(session, "superseded by start")
            session.phone_number = phone_number or None
            session.backoff.reset()
            generation = await self._spawn(session, pairing=bool(phone_number), fresh=True)
        return SessionHandle(session_id, generation.number)

    async def stop(self, session_id: str) -> None:
        """Retire the session's generation and return it to `idle`. Credentials are kept."""
        session = self._sessions.get(session_id)
        if session is None:
            return
        await self._cancel_reconnect(session)
        async with session.lock:
            generation = self._retire(session, "stopped", disconnect=False)
            self._transition(session, SessionState.IDLE, force=True, last_error=None)
        if generation is not None and generation.client is not None:
            await self._disconnect_client(generation.client)
        await self._flush_credentials_now(session)
        await self._await_purge(session)

    async def logout(self, session_id: str) -> None:
        session, generation = self._require_live(session_id)
        try:
            await generation.client.logout()  # type: ignore[union-attr]
        except Exception as e:
            raise SessionError(f"Logout failed for {session_id}: {e}")
        # Normally the client reports the logged-out close itself; this is a no-op then.
        self._drop(session, generation.number, CloseKind.LOGGED_OUT, LoggedOutError("logged out by request"))

    async def send_message(self, session_id: str, target: str, text: str) -> None:
        session, generation = self._require_live(session_id)
        if session.state != SessionState.OPEN:
            raise SessionError(f"Session {session_id} is not open ({session.state.value})")
        await self._send_reply(generation, target, text)

    async def close(self) -> None:
        for session_id in list(self._sessions):
            await self.stop(session_id)
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    # -- generations -------------------------------------------------------

    def _session(self, session_id: str) -> _Session:
        session = self._sessions.get(session_id)
        if session is None:
            backoff = Backoff(self._backoff_policy, self._rng) if self._rng else Backoff(self._backoff_policy)
            session = _Session(session_id=session_id, backoff=backoff)
            self._sessions[session_id] = session
        return session

    def _require_live(self, session_id: str) -> tuple[_Session, _Generation]:
        session = self._sessions.get(session_id)
        if session is None or session.live is None or session.live.client is None:
            raise SessionError(f"Session {session_id} has no live connection")
        return session, session.live

    @staticmethod
    def _is_live(session: _Session, number: int) -> bool:
        return session.live is not None and session.live.number == number

    async def _spawn(self, session: _Session, *, pairing: bool, fresh: bool) -> _Generation:
        """Create the next generation and connect its client. Caller holds session.lock."""
        session.counter += 1
        generation = _Generation(number=session.counter, pairing=pairing, timers=TimerSet())
        session.live = generation
        if fresh:
            self._transition(session, SessionState.CONNECTING, force=True, last_error=None)
        else:
            self._transition(session, SessionState.CONNECTING)
        logger.info(f"Session {session.session_id}: generation {generation.number} connecting")

        try:
            await self._flush_credentials_now(session)
            try:
                bundle = await self._credentials.load(session.session_id)
            except Exception as e:
                error = e if isinstance(e, PersistenceError) else PersistenceError(f"Failed to load credentials: {e}")
                self._drop(session, generation.number, CloseKind.TRANSIENT, error)
                return generation

            version = await self._resolve_version()
            if not self._is_live(session, generation.number):
                return generation
            try:
                client = self._client_factory(session.session_id, bundle, version)
            except Exception as e:
                self._drop(session, generation.number, CloseKind.TRANSIENT,
                           TransientDisconnectError(f"Failed to create protocol client: {e}"))
                return generation
            generation.client = client
            generation.remove_handler = client.add_event_handler(
                functools.partial(self._dispatch, session, generation.number)
            )

            try:
                await client.connect()
            except Exception as e:
                self._drop(session, generation.number, CloseKind.TRANSIENT,
                           TransientDisconnectError(f"Connect failed: {e}"))
                return generation

            try:
                await asyncio.wait_for(generation.first_event.wait(), timeout=self._first_event_timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    f"Session {session.session_id}: no event from generation {generation.number} "
                    f"after {self._first_event_timeout}s"
                )

            if generation.pairing and self._is_live(session, generation.number) and not client.registered:
                await self._request_pairing(session, generation)
        except asyncio.CancelledError:
            if session.live is generation:
                self._retire(session, "cancelled while connecting")
            raise
        return generation

    async def _resolve_version(self) -> Optional[str]:
        if self._version_resolver is None:
            return None
        try:
            return await self._version_resolver()
        except Exception as e:
            logger.warning(f"Could not resolve protocol version, using client default: {e}")
            return None

    async def _request_pairing(self, session: _Session, generation: _Generation) -> None:
        try:
            code = await self._pairing.request(generation.client, session.session_id, session.phone_number or "")  # type: ignore[arg-type]
        except HandshakeError as e:
            if not self._is_live(session, generation.number):
                logger.info(f"Session {session.session_id}: pairing abandoned, generation retired ({e})")
                return
            logger.error(f"Session {session.session_id}: {e}")
            self._record_error(session, e)
            raise
        if not self._is_live(session, generation.number):
            return
        logger.info(f"Session {session.session_id}: pairing code {code} issued")
        if session.state == SessionState.CONNECTING:
            self._transition(session, SessionState.AWAITING_PAIRING)

    def _retire(self, session: _Session, reason: str, disconnect: bool = True) -> Optional[_Generation]:
        """Make the live generation inert: timers first, then the event handler, then the socket."""
        generation = session.live
        if generation is None:
            return None
        session.live = None
        generation.timers.cancel_all()
        if generation.remove_handler is not None:
            generation.remove_handler()
        logger.debug(f"Session {session.session_id}: generation {generation.number} retired ({reason})")
        if disconnect and generation.client is not None:
            self._spawn_task(self._disconnect_client(generation.client))
        return generation

    async def _disconnect_client(self, client: ProtocolClient) -> None:
        try:
            await client.disconnect()
        except Exception as e:
            logger.warning(f"Error disconnecting protocol client: {e}")

    def _drop(self, session: _Session, number: int, kind: CloseKind, error: DansBotError) -> None:
        """Handle the loss of a live generation: purge on logout, otherwise back off and reconnect."""
        if not self._is_live(session, number):
            return
        self._retire(session, error.describe())
        self._transition(session, SessionState.DISCONNECTED, last_error=error.describe())

        if kind == CloseKind.LOGGED_OUT:
            self._transition(session, SessionState.LOGGED_OUT)
            self._clear_artifacts(session)
            session.purge_task = self._spawn_task(self._purge_credentials(session))
            logger.warning(f"Session {session.session_id} logged out; credentials cleared")
            return

        self._transition(session, SessionState.RECONNECTING)
        if kind == CloseKind.CONFLICT:
            delay = session.backoff.next_conflict_delay()
        else:
            delay = session.backoff.next_delay()
        if session.backoff.exhausted:
            logger.warning(
                f"Session {session.session_id}: {session.backoff.failures} consecutive failures, "
                f"cooling down for {delay:.1f}s"
            )
        else:
            logger.info(
                f"Session {session.session_id}: reconnecting in {delay:.1f}s "
                f"(attempt {session.backoff.failures}, {error.describe()})"
            )
        session.reconnect_task = self._spawn_task(self._reconnect_after(session, delay))

    async def _reconnect_after(self, session: _Session, delay: float) -> None:
        await asyncio.sleep(delay)
        async with session.lock:
            if session.state != SessionState.RECONNECTING or session.live is not None:
                return
            await self._spawn(session, pairing=False, fresh=False)

    async def _cancel_reconnect(self, session: _Session) -> None:
        task = session.reconnect_task
        session.reconnect_task = None
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    # -- state -------------------------------------------------------------

    def _transition(
        self,
        session: _Session,
        new: SessionState,
        *,
        force: bool = False,
        last_error: Any = _KEEP,
    ) -> None:
        current = session.state
        if not force and not can_transition(current, new):
            raise SessionError(
                f"Invalid transition {current.value} -> {new.value} for {session.session_id}",
                details={"from": current.value, "to": new.value},
            )
        if last_error is _KEEP:
            last_error = None if new in (SessionState.OPEN, SessionState.IDLE) else session.snapshot.last_error
        snapshot = StatusSnapshot(state=new, phone_number=session.phone_number, last_error=last_error)
        session.snapshot = snapshot
        logger.info(f"Session {session.session_id}: {current.value} -> {new.value}")
        self._status.publish(session.session_id, snapshot)

    def _record_error(self, session: _Session, error: DansBotError) -> None:
        session.snapshot = StatusSnapshot(
            state=session.state,
            phone_number=session.phone_number,
            last_error=error.describe(),
        )
        self._status.publish(session.session_id, session.snapshot)

    # -- protocol events ---------------------------------------------------

    def _dispatch(self, session: _Session, number: int, event: str, data: Any) -> None:
        if not self._is_live(session, number):
            logger.debug(f"Session {session.session_id}: ignoring {event} from retired generation {number}")
            return
        generation = session.live
        generation.first_event.set()  # type: ignore[union-attr]
        try:
            if event == ProtocolEvent.CONNECTION_UPDATE:
                self._on_connection_update(session, generation, ConnectionUpdate.model_validate(data or {}))  # type: ignore[arg-type]
            elif event == ProtocolEvent.CREDS_UPDATE:
                self._queue_credentials(session, generation, data)  # type: ignore[arg-type]
            elif event == ProtocolEvent.MESSAGES_UPSERT:
                for message in MessagesUpsert.model_validate(data or {}).messages:
                    self._spawn_task(self._handle_message(session, generation, message))  # type: ignore[arg-type]
        except ValidationError as e:
            logger.warning(f"Session {session.session_id}: malformed {event} payload: {e}")

    def _fenced(self, session: _Session, number: int, callback: Callable[[_Session, _Generation], None]) -> Callable[[], None]:
        def run() -> None:
            if not self._is_live(session, number):
                logger.debug(f"Session {session.session_id}: stale timer for generation {number} ignored")
                return
            callback(session, session.live)  # type: ignore[arg-type]
        return run

    def _on_connection_update(self, session: _Session, generation: _Generation, update: ConnectionUpdate) -> None:
        if update.qr and not generation.pairing:
            if session.state == SessionState.CONNECTING:
                if self._publish_qr(session, update.qr):
                    self._transition(session, SessionState.AWAITING_QR)
                    generation.timers.arm(
                        QR_REFRESH_TIMER,
                        self._qr_refresh_interval,
                        self._fenced(session, generation.number, self._on_qr_refresh),
                    )
            elif session.state == SessionState.AWAITING_QR:
                self._publish_qr(session, update.qr)

        if update.connection == ConnectionPhase.OPEN:
            if session.state in (SessionState.CONNECTING, SessionState.AWAITING_QR, SessionState.AWAITING_PAIRING):
                self._on_open(session, generation)
        elif update.connection == ConnectionPhase.CLOSE:
            kind = classify_close(update)
            self._drop(session, generation.number, kind, self._close_error(kind, update))

    @staticmethod
    def _close_error(kind: CloseKind, update: ConnectionUpdate) -> DansBotError:
        details = {"status_code": update.status_code, "reason": update.reason}
        if kind == CloseKind.LOGGED_OUT:
            return LoggedOutError(describe_close(update), details=details)
        if kind == CloseKind.CONFLICT:
            return ConflictError(describe_close(update), details=details)
        return TransientDisconnectError(describe_close(update), details=details)

    def _publish_qr(self, session: _Session, qr: str) -> bool:
        try:
            png = self._qr_renderer(qr)
            self._artifacts.write_qr(session.session_id, png)
        except Exception as e:
            error = HandshakeError(f"QR render failed: {e}")
            logger.error(f"Session {session.session_id}: {error}")
            self._record_error(session, error)
            return False
        return True

    def _clear_artifacts(self, session: _Session) -> None:
        try:
            self._artifacts.clear_qr(session.session_id)
            self._artifacts.clear_pairing_code(session.session_id)
        except OSError as e:
            logger.warning(f"Session {session.session_id}: could not clear login artifacts: {e}")

    def _on_open(self, session: _Session, generation: _Generation) -> None:
        generation.timers.cancel(QR_REFRESH_TIMER)
        self._clear_artifacts(session)
        self._transition(session, SessionState.OPEN)
        generation.timers.arm(
            HEARTBEAT_TIMER,
            self._heartbeat_interval,
            self._fenced(session, generation.number, self._on_heartbeat),
        )
        generation.timers.arm(
            STABLE_TIMER,
            self._backoff_policy.stable_after,
            self._fenced(session, generation.number, self._on_stable),
        )

    # -- timers ------------------------------------------------------------

    def _on_qr_refresh(self, session: _Session, generation: _Generation) -> None:
        if session.state != SessionState.AWAITING_QR:
            return
        logger.info(f"Session {session.session_id}: QR not scanned in {self._qr_refresh_interval}s, refreshing")
        self._spawn_task(self._refresh_generation(session, generation.number))

    async def _refresh_generation(self, session: _Session, number: int) -> None:
        async with session.lock:
            if not self._is_live(session, number) or session.state != SessionState.AWAITING_QR:
                return
            self._retire(session, "QR expired")
            await self._spawn(session, pairing=False, fresh=False)

    def _on_heartbeat(self, session: _Session, generation: _Generation) -> None:
        if session.state != SessionState.OPEN:
            return
        self._spawn_task(generation.client.send_presence(None, PRESENCE_AVAILABLE))  # type: ignore[union-attr]
        generation.timers.arm(
            HEARTBEAT_TIMER,
            self._heartbeat_interval,
            self._fenced(session, generation.number, self._on_heartbeat),
        )

    def _on_stable(self, session: _Session, generation: _Generation) -> None:
        if session.state == SessionState.OPEN:
            session.backoff.reset()

    # -- credentials -------------------------------------------------------

    def _queue_credentials(self, session: _Session, generation: _Generation, bundle: Any) -> None:
        if not isinstance(bundle, dict):
            logger.warning(f"Session {session.session_id}: ignoring non-object credential update")
            return
        session.pending_credentials = bundle
        session.pending_generation = generation.number
        if session.saver_task is None or session.saver_task.done():
            session.saver_task = self._spawn_task(self._save_pending(session))

    async def _save_pending(self, session: _Session) -> None:
        """Persist pending bundles one at a time; later updates replace unsaved earlier ones."""
        while session.pending_credentials is not None:
            bundle, number = session.pending_credentials, session.pending_generation
            session.pending_credentials = None
            try:
                await self._credentials.save(session.session_id, bundle)
            except Exception as e:
                error = e if isinstance(e, PersistenceError) else PersistenceError(f"Failed to save credentials: {e}")
                logger.error(f"Session {session.session_id}: {error}")
                session.pending_credentials = None
                self._drop(session, number, CloseKind.TRANSIENT, error)
                return

    async def _flush_credentials_now(self, session: _Session) -> None:
        saver = session.saver_task
        if saver is not None and not saver.done():
            # a cancelled waiter must not cancel the save itself
            await asyncio.shield(saver)

    async def _purge_credentials(self, session: _Session) -> None:
        session.pending_credentials = None
        await self._flush_credentials_now(session)
        try:
            await self._credentials.delete(session.session_id)
        except Exception as e:
            error = e if isinstance(e, PersistenceError) else PersistenceError(f"Failed to delete credentials: {e}")
            logger.error(f"Session {session.session_id}: {error}")
            self._record_error(session, error)

    async def _await_purge(self, session: _Session) -> None:
        purge = session.purge_task
        if purge is not None and not purge.done():
            await purge

    # -- messages ----------------------------------------------------------

    async def _handle_message(self, session: _Session, generation: _Generation, message: InboundMessage) -> None:
        try:
            actions = self._router.route(message.sender, message.text, message.from_self, message_id=message.id)
            for action in actions:
                if not self._is_live(session, generation.number):
                    return
                if action.is_reply:
                    await self._send_reply(generation, action.target, action.text or "")
                elif action.kind == ActionKind.READ and action.message_id:
                    self._spawn_task(generation.client.read_messages([action.message_id]))  # type: ignore[union-attr]
                elif action.kind == ActionKind.TYPING:
                    self._spawn_task(self._simulate_typing(session, generation, action.target, action.delay))
        except Exception as e:
            error = MessageHandlingError(str(e), details={"message_id": message.id, "sender": message.sender})
            logger.exception(f"Session {session.session_id}: {error.describe()}")

    async def _send_reply(self, generation: _Generation, target: str, text: str) -> None:
        lock = generation.sender_locks.setdefault(target, asyncio.Lock())
        async with lock:
            await generation.client.send_message(target, text)  # type: ignore[union-attr]

    async def _simulate_typing(self, session: _Session, generation: _Generation, target: str, delay: float) -> None:
        client = generation.client
        await client.send_presence(target, PRESENCE_COMPOSING)  # type: ignore[union-attr]
        await asyncio.sleep(delay)
        if self._is_live(session, generation.number):
            await client.send_presence(target, PRESENCE_PAUSED)  # type: ignore[union-attr]

    # -- tasks -------------------------------------------------------------

    def _spawn_task(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Background task failed: {exc!r}")
