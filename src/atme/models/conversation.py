"""
Conversation roster model.
"""

from typing import Any, Optional
from pydantic import BaseModel


class RosterEntry(BaseModel):
    """One participant in a conversation roster.

    ``active`` is False when the participant left; consumers should drop the
    participant from their cached roster.
    """
    participant_id: str
    token: Optional[str] = None
    active: bool = True

    @classmethod
    def from_record(cls, participant_id: str, raw: Any) -> "RosterEntry":
        # Legacy rosters stored the bare notification token as the value
        if isinstance(raw, str):
            return cls(participant_id=participant_id, token=raw or None)
        if isinstance(raw, dict):
            return cls(participant_id=participant_id, token=raw.get("token") or None)
        return cls(participant_id=participant_id, token=None)
