"""
Artifact Sink — where QR images and pairing codes are published for the
person completing the login handshake.
"""

import io
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional, Protocol

import qrcode

from dansbot.credentials import validate_session_id

logger = logging.getLogger(__name__)

QR_FILENAME = "qr.png"
PAIRING_FILENAME = "pairing.txt"


class ArtifactSink(Protocol):
    def write_qr(self, session_id: str, png: bytes) -> None: ...

    def clear_qr(self, session_id: str) -> None: ...

    def write_pairing_code(self, session_id: str, code: str) -> None: ...

    def clear_pairing_code(self, session_id: str) -> None: ...


def render_qr_png(data: str) -> bytes:
    """Render a QR challenge string to PNG bytes."""
    qr = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=10,
        border=4,
    )
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def _atomic_write(path: Path, content: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}-", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(content)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class FileArtifactSink:
    """Writes <directory>/<session_id>/qr.png and pairing.txt, replacing old ones."""

    def __init__(self, directory: Path):
        self._directory = Path(directory)

    def qr_path(self, session_id: str) -> Path:
        return self._directory / validate_session_id(session_id) / QR_FILENAME

    def pairing_path(self, session_id: str) -> Path:
        return self._directory / validate_session_id(session_id) / PAIRING_FILENAME

    def write_qr(self, session_id: str, png: bytes) -> None:
        _atomic_write(self.qr_path(session_id), png)
        logger.info(f"QR code updated for session {session_id}")

    def clear_qr(self, session_id: str) -> None:
        self.qr_path(session_id).unlink(missing_ok=True)

    def write_pairing_code(self, session_id: str, code: str) -> None:
        _atomic_write(self.pairing_path(session_id), code.encode("utf-8"))
        logger.info(f"Pairing code written for session {session_id}")

    def clear_pairing_code(self, session_id: str) -> None:
        self.pairing_path(session_id).unlink(missing_ok=True)

    def read_pairing_code(self, session_id: str) -> Optional[str]:
        try:
            return self.pairing_path(session_id).read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None


class MemoryArtifactSink:
    """Keeps the current artifacts in memory and records every write."""

    def __init__(self) -> None:
        self.qr: dict[str, bytes] = {}
        self.pairing_codes: dict[str, str] = {}
        self.qr_writes: list[tuple[str, bytes]] = []
        self.pairing_writes: list[tuple[str, str]] = []

    def write_qr(self, session_id: str, png: bytes) -> None:
        self.qr[session_id] = png
        self.qr_writes.append((session_id, png))

    def clear_qr(self, session_id: str) -> None:
        self.qr.pop(session_id, None)

    def write_pairing_code(self, session_id: str, code: str) -> None:
        self.pairing_codes[session_id] = code
        self.pairing_writes.append((session_id, code))

    def clear_pairing_code(self, session_id: str) -> None:
        self.pairing_codes.pop(session_id, None)
