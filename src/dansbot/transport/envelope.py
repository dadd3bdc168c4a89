"""
Envelope construction and parsing for gateway frames.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from dansbot.models.envelope import EnvelopeMetadata, EnvelopePayload, EnvelopeSource, GatewayEnvelope


def build_envelope(
    event_type: str,
    data: Any,
    session_id: str,
    client: Optional[str] = None,
    version: Optional[str] = None,
    request_id: Optional[str] = None,
) -> dict[str, Any]:
    """Build a bot -> gateway envelope as a dict ready for Socket.IO emit."""
    envelope = GatewayEnvelope(
        metadata=EnvelopeMetadata(
            event_id=str(uuid.uuid4()),
            request_id=request_id or str(uuid.uuid4()),
            timestamp=datetime.now(timezone.utc).isoformat(),
            source=EnvelopeSource(role="bot", session_id=session_id, client=client, version=version),
        ),
        type=event_type,
        payload=EnvelopePayload(session_id=session_id, type=event_type, data=data),
    )
    return envelope.model_dump()


def parse_envelope(raw: Any) -> Optional[GatewayEnvelope]:
    """Parse a gateway -> bot envelope. Returns None if invalid."""
    try:
        return GatewayEnvelope.model_validate(raw)
    except Exception:
        return None
