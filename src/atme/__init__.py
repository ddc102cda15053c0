"""
atme — conversation sync SDK for the @Me chat service.

Message logs, live conversation sessions, last-seen tracking and push
notification fan-out over a realtime database.
"""

from atme.client import AsyncAtMe
from atme.directory import ProfileDirectory
from atme.errors import (
    AtMeError,
    BackendError,
    ConnectionError,
    InvalidMessage,
    PermissionDenied,
    ProfileError,
    SessionClosed,
    SessionError,
    SessionStateError,
    StorageError,
    StoreUnavailable,
    Unauthenticated,
    WriteFailure,
)
from atme.fanout import NotificationFanout
from atme.log import MessageLog, MessageSubscription
from atme.models.conversation import RosterEntry
from atme.models.message import Message
from atme.models.profile import Identity, UserProfile
from atme.session import ConversationSession, SessionState
from atme.store import ConversationStore, RosterStream

__version__ = "0.1.0"
__all__ = [
    "AsyncAtMe",
    "ConversationSession",
    "SessionState",
    "MessageLog",
    "MessageSubscription",
    "ConversationStore",
    "RosterStream",
    "NotificationFanout",
    "ProfileDirectory",
    "Message",
    "RosterEntry",
    "Identity",
    "UserProfile",
    "AtMeError",
    "InvalidMessage",
    "WriteFailure",
    "StoreUnavailable",
    "SessionError",
    "SessionClosed",
    "SessionStateError",
    "Unauthenticated",
    "ProfileError",
    "StorageError",
    "BackendError",
    "PermissionDenied",
    "ConnectionError",
]
