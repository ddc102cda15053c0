"""
Realtime database contract shared by every backend.

Paths are slash-separated keys (``conversations/c1/messages``). Values are
JSON-compatible; writing ``None`` deletes. ``SERVER_TIMESTAMP`` anywhere in
a written value is replaced by the backend's clock in epoch milliseconds.

Observers receive ``(kind, key, value)`` for direct children of the observed
path where ``kind`` is ``"added"``, ``"changed"`` or ``"removed"``. Existing
children are replayed as ``"added"`` in key order (the last ``limit_to_last``
of them when given) before any live change.
"""

from typing import Any, Callable, Optional, Protocol

SERVER_TIMESTAMP: dict[str, str] = {".sv": "timestamp"}

ChildCallback = Callable[[str, str, Any], None]


class Backend(Protocol):
    async def get(self, path: str) -> Any: ...

    async def set(self, path: str, value: Any) -> None: ...

    async def update(self, path: str, values: dict[str, Any]) -> None: ...

    async def push(self, path: str, value: Any) -> str:
        """Add a child under a new chronologically ordered key and return the key."""
        ...

    async def delete(self, path: str) -> None: ...

    async def transaction(self, path: str, update: Callable[[Any], Any]) -> Any:
        """Atomically replace the value at ``path`` with ``update(current)``.

        Returns the committed value.
        """
        ...

    async def query_prefix(self, path: str, prefix: str, limit: int) -> dict[str, Any]:
        """Children of ``path`` whose key starts with ``prefix``, first ``limit`` by key."""
        ...

    def observe(
        self, path: str, callback: ChildCallback, limit_to_last: Optional[int] = None,
    ) -> Callable[[], None]:
        """Start observing children of ``path``. Returns a function that stops it."""
        ...

    async def close(self) -> None: ...


def split_path(path: str) -> list[str]:
    return [part for part in path.strip("/").split("/") if part]


def resolve_server_values(value: Any, now_ms: int) -> Any:
    if value == SERVER_TIMESTAMP:
        return now_ms
    if isinstance(value, dict):
        return {k: resolve_server_values(v, now_ms) for k, v in value.items()}
    return value
