"""
Gateway envelope — wraps every Socket.IO event in both directions.
"""

from typing import Any, Optional
from pydantic import BaseModel


class DeviceSource(BaseModel):
    role: str  # "user" | "server"
    user_id: Optional[str] = None
    device_id: Optional[str] = None


class EnvelopeMetadata(BaseModel):
    event_id: str
    request_id: Optional[str] = None
    timestamp: str
    source: DeviceSource


class ObservePayload(BaseModel):
    observer_id: str
    path: str
    key: Optional[str] = None
    limit_to_last: Optional[int] = None
    data: Optional[Any] = None


class GatewayEnvelope(BaseModel):
    metadata: EnvelopeMetadata
    type: str
    payload: ObservePayload
