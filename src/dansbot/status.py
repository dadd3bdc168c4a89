"""
Status Sink — latest StatusSnapshot per session, for dashboards and the CLI.
"""

import logging
from typing import Callable

from dansbot.models.status import StatusSnapshot

logger = logging.getLogger(__name__)

StatusListener = Callable[[str, StatusSnapshot], None]


class StatusBoard:
    def __init__(self) -> None:
        self._snapshots: dict[str, StatusSnapshot] = {}
        self._listeners: list[StatusListener] = []

    def add_listener(self, listener: StatusListener) -> Callable[[], None]:
        """Register a listener called on every publish. Returns a cleanup function."""
        self._listeners.append(listener)

        def remove() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass
        return remove

    def publish(self, session_id: str, snapshot: StatusSnapshot) -> None:
        self._snapshots[session_id] = snapshot
        for listener in list(self._listeners):
            try:
                listener(session_id, snapshot)
            except Exception as e:
                logger.warning(f"Status listener failed for {session_id}: {e}")

    def get_snapshot(self, session_id: str) -> StatusSnapshot:
        snapshot = self._snapshots.get(session_id)
        if snapshot is None:
            return StatusSnapshot()
        return snapshot

    def sessions(self) -> list[str]:
        return sorted(self._snapshots)
