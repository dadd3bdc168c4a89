"""
Pairing Coordinator — phone-number login as an alternative to the QR flow.
"""

import logging
import re

from dansbot.artifacts import ArtifactSink
from dansbot.errors import HandshakeError
from dansbot.protocol import ProtocolClient

logger = logging.getLogger(__name__)

_NON_DIGITS = re.compile(r"\D+")


def normalize_phone_number(phone_number: str) -> str:
    """Strip everything but digits: '+1 (555) 123-4567' -> '15551234567'."""
    return _NON_DIGITS.sub("", phone_number or "")


class PairingCoordinator:
    """Requests one pairing code per call and publishes it, replacing any older code."""

    def __init__(self, artifacts: ArtifactSink):
        self._artifacts = artifacts

    async def request(self, client: ProtocolClient, session_id: str, phone_number: str) -> str:
        digits = normalize_phone_number(phone_number)
        if not digits:
            raise HandshakeError(f"Invalid phone number: {phone_number!r}")

        try:
            self._artifacts.clear_pairing_code(session_id)
        except Exception as e:
            raise HandshakeError(f"Could not clear previous pairing code: {e}")
        logger.info(f"Requesting pairing code for session {session_id}")
        try:
            code = await client.request_pairing_code(digits)
        except Exception as e:
            raise HandshakeError(f"Pairing code request failed: {e}")
        if not code:
            raise HandshakeError("Pairing code request returned no code")

        try:
            self._artifacts.write_pairing_code(session_id, code)
        except Exception as e:
            raise HandshakeError(f"Could not publish pairing code: {e}")
        return code
