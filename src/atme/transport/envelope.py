"""
Envelope construction and parsing for gateway events.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import ValidationError

from atme.models.envelope import DeviceSource, EnvelopeMetadata, GatewayEnvelope, ObservePayload


def build_envelope(
    event_type: str,
    observer_id: str,
    path: str,
    user_id: str,
    device_id: str,
    limit_to_last: Optional[int] = None,
    request_id: Optional[str] = None,
) -> dict[str, Any]:
    """Build a C2S envelope as a dict ready for Socket.IO emit."""
    envelope = GatewayEnvelope(
        metadata=EnvelopeMetadata(
            event_id=str(uuid.uuid4()),
            request_id=request_id or str(uuid.uuid4()),
            timestamp=datetime.now(timezone.utc).isoformat(),
            source=DeviceSource(role="user", user_id=user_id, device_id=device_id),
        ),
        type=event_type,
        payload=ObservePayload(observer_id=observer_id, path=path, limit_to_last=limit_to_last),
    )
    return envelope.model_dump(exclude_none=True)


def parse_envelope(raw: dict[str, Any]) -> Optional[GatewayEnvelope]:
    """Parse an S2C envelope. Returns None if invalid."""
    try:
        return GatewayEnvelope.model_validate(raw)
    except ValidationError:
        return None
