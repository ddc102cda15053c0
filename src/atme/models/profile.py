"""
User profile models.
"""

from typing import Optional
from pydantic import BaseModel


class Identity(BaseModel):
    """The local user. Passed explicitly to sessions, never held globally."""
    uid: str
    username: str
    display_name: str = ""
    email: Optional[str] = None
    notification_token: Optional[str] = None
    display_picture: Optional[str] = None


class UserProfile(BaseModel):
    """A search result resolved to a display name."""
    uid: str
    username: str
    name: str = ""
