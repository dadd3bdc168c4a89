"""
Credential Store — persists the opaque per-session credential bundle.

The bundle outlives the SessionManager: it is what lets a restarted process
resume a session without repeating the QR or pairing handshake.
"""

import asyncio
import copy
import json
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any, Optional, Protocol

from dansbot.errors import PersistenceError

logger = logging.getLogger(__name__)

CREDS_FILENAME = "creds.json"

Bundle = dict[str, Any]


class CredentialStore(Protocol):
    async def load(self, session_id: str) -> Optional[Bundle]: ...

    async def save(self, session_id: str, bundle: Bundle) -> None: ...

    async def delete(self, session_id: str) -> None: ...


def validate_session_id(session_id: str) -> str:
    if not session_id or session_id in (".", "..") or "/" in session_id or "\\" in session_id:
        raise ValueError(f"Invalid session id: {session_id!r}")
    return session_id


class FileCredentialStore:
    """One directory per session under `root`, holding creds.json."""

    def __init__(self, root: Path):
        self._root = Path(root)

    def session_dir(self, session_id: str) -> Path:
        return self._root / validate_session_id(session_id)

    def _load_sync(self, session_id: str) -> Optional[Bundle]:
        path = self.session_dir(session_id) / CREDS_FILENAME
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceError(f"Failed to read credentials for {session_id}: {e}")

    def _save_sync(self, session_id: str, bundle: Bundle) -> None:
        directory = self.session_dir(session_id)
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=".creds-", suffix=".tmp", dir=directory)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(bundle, fh)
                    fh.flush()
                    os.fsync(fh.fileno())
                os.replace(tmp_name, directory / CREDS_FILENAME)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(f"Failed to save credentials for {session_id}: {e}")

    def _delete_sync(self, session_id: str) -> None:
        try:
            shutil.rmtree(self.session_dir(session_id))
        except FileNotFoundError:
            pass
        except OSError as e:
            raise PersistenceError(f"Failed to delete credentials for {session_id}: {e}")

    async def load(self, session_id: str) -> Optional[Bundle]:
        return await asyncio.to_thread(self._load_sync, session_id)

    async def save(self, session_id: str, bundle: Bundle) -> None:
        await asyncio.to_thread(self._save_sync, session_id, bundle)

    async def delete(self, session_id: str) -> None:
        await asyncio.to_thread(self._delete_sync, session_id)
        logger.info(f"Credentials for session {session_id} deleted")


class MemoryCredentialStore:
    """In-process store, for tests and ephemeral sessions."""

    def __init__(self, initial: Optional[dict[str, Bundle]] = None):
        self.bundles: dict[str, Bundle] = dict(initial or {})

    async def load(self, session_id: str) -> Optional[Bundle]:
        bundle = self.bundles.get(session_id)
        return copy.deepcopy(bundle) if bundle is not None else None

    async def save(self, session_id: str, bundle: Bundle) -> None:
        self.bundles[session_id] = copy.deepcopy(bundle)

    async def delete(self, session_id: str) -> None:
        self.bundles.pop(session_id, None)
