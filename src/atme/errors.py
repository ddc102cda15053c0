"""
atme error types.

Every error carries a short machine-readable ``code`` so the presentation
layer can choose user-visible messaging without matching on classes.
"""

from typing import Any, Optional


class AtMeError(Exception):
    def __init__(self, code: str, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.details = details


class InvalidMessage(AtMeError):
    """Message violates the text XOR attachment rule. Raised before any I/O."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__("invalid_message", message, details)


class WriteFailure(AtMeError):
    """Append rejected by the store or the store was unreachable."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__("write_failure", message, details)


class StoreUnavailable(AtMeError):
    """Roster or last-seen read/write failed. Callers keep their cached state."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__("store_unavailable", message, details)


class SessionError(AtMeError):
    def __init__(self, message: str, code: str = "session_error", details: Optional[dict[str, Any]] = None):
        super().__init__(code, message, details)


class SessionClosed(SessionError):
    def __init__(self, message: str = "Conversation session is closed"):
        super().__init__(message, code="session_closed")


class SessionStateError(SessionError):
    def __init__(self, message: str):
        super().__init__(message, code="session_state")


class Unauthenticated(AtMeError):
    def __init__(self, message: str = "No identity established"):
        super().__init__("unauthenticated", message)


class ProfileError(AtMeError):
    def __init__(self, message: str, code: str = "profile_error"):
        super().__init__(code, message)


class StorageError(AtMeError):
    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__("storage_error", message, details)


class BackendError(AtMeError):
    """Transport-level failure talking to the realtime database."""

    def __init__(self, message: str, code: str = "backend_error", details: Optional[dict[str, Any]] = None):
        super().__init__(code, message, details)


class PermissionDenied(BackendError):
    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message, code="permission_denied", details=details)


class ConnectionError(AtMeError):
    def __init__(self, message: str):
        super().__init__("connection_error", message)
