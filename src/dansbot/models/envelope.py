"""
Gateway envelope — every Socket.IO frame to and from the protocol gateway.
"""

from typing import Any, Optional
from pydantic import BaseModel


class EnvelopeSource(BaseModel):
    role: str  # "bot" | "gateway"
    session_id: Optional[str] = None
    client: Optional[str] = None     # Browser tuple sent at login, joined with "/"
    version: Optional[str] = None    # Protocol version the client was built for


class EnvelopeMetadata(BaseModel):
    event_id: str
    request_id: Optional[str] = None
    timestamp: str
    source: EnvelopeSource


class EnvelopePayload(BaseModel):
    session_id: Optional[str] = None
    type: Optional[str] = None
    data: Optional[Any] = None


class GatewayEnvelope(BaseModel):
    metadata: EnvelopeMetadata
    type: str
    payload: EnvelopePayload
