"""Basic unit tests for the atme package."""

from atme import (
    AsyncAtMe,
    AtMeError,
    BackendError,
    ConnectionError,
    ConversationSession,
    InvalidMessage,
    PermissionDenied,
    SessionClosed,
    SessionError,
    SessionStateError,
    StoreUnavailable,
    Unauthenticated,
    WriteFailure,
    __version__,
)
from atme.constants import last_seen_path, members_path, messages_path
from atme.models.events import CHILD_EVENT_KINDS, C2SEvent, S2CEvent


def test_version():
    assert __version__ == "0.1.0"


def test_public_exports():
    assert AsyncAtMe is not None
    assert ConversationSession is not None


def test_error_hierarchy():
    for cls in (InvalidMessage, WriteFailure, StoreUnavailable, SessionError, Unauthenticated, BackendError, ConnectionError):
        assert issubclass(cls, AtMeError)
    assert issubclass(SessionClosed, SessionError)
    assert issubclass(SessionStateError, SessionError)
    assert issubclass(PermissionDenied, BackendError)


def test_error_attributes():
    err = AtMeError(code="test_code", message="something broke")
    assert err.code == "test_code"
    assert str(err) == "something broke"
    assert err.details is None

    closed = SessionClosed()
    assert closed.code == "session_closed"

    failure = WriteFailure("nope", details={"conversation_id": "c1"})
    assert failure.code == "write_failure"
    assert failure.details == {"conversation_id": "c1"}


def test_paths():
    assert messages_path("c1") == "conversations/c1/messages"
    assert members_path("c1") == "conversations/c1/activeMembers"
    assert last_seen_path("c1") == "conversations/c1/lastSeen"


def test_event_constants():
    assert C2SEvent.OBSERVE == "db:observe"
    assert CHILD_EVENT_KINDS[S2CEvent.CHILD_ADDED] == "added"
    assert CHILD_EVENT_KINDS[S2CEvent.CHILD_REMOVED] == "removed"


def test_observe_envelope():
    from atme.transport.envelope import build_envelope, parse_envelope

    env = build_envelope(C2SEvent.OBSERVE, "obs-1", "conversations/c1/messages", user_id="A", device_id="dev", limit_to_last=25)
    assert env["type"] == "db:observe"
    assert env["metadata"]["source"] == {"role": "user", "user_id": "A", "device_id": "dev"}
    assert env["payload"] == {"observer_id": "obs-1", "path": "conversations/c1/messages", "limit_to_last": 25}
    assert parse_envelope(env).payload.observer_id == "obs-1"
    assert parse_envelope({"type": "db:child_added"}) is None
