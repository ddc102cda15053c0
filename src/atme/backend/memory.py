"""
In-process realtime database.

Same observable semantics as RealtimeBackend: child events are delivered
asynchronously on the running event loop, never from inside the write call.
Used by the test suite and for offline development.
"""

import asyncio
import copy
import itertools
import logging
import time
from typing import Any, Callable, Optional

from atme.backend.base import ChildCallback, resolve_server_values, split_path
from atme.errors import BackendError, PermissionDenied

logger = logging.getLogger(__name__)


class _Observer:
    __slots__ = ("parts", "callback", "active")

    def __init__(self, parts: list[str], callback: ChildCallback):
        self.parts = parts
        self.callback = callback
        self.active = True


def _now_ms() -> int:
    return int(time.time() * 1000)


class MemoryBackend:
    def __init__(self, clock: Optional[Callable[[], int]] = None):
        self._root: dict[str, Any] = {}
        self._observers: list[_Observer] = []
        self._clock = clock or _now_ms
        self._last_ts = 0
        self._push_seq = itertools.count(1)
        self._denied: set[str] = set()
        self.offline = False

    # -- failure injection -------------------------------------------------

    def deny_writes(self, path: str) -> None:
        """Reject writes at or below ``path`` with PermissionDenied."""
        self._denied.add("/".join(split_path(path)))

    def allow_writes(self, path: str) -> None:
        self._denied.discard("/".join(split_path(path)))

    # -- reads -------------------------------------------------------------

    async def get(self, path: str) -> Any:
        self._check_online()
        return copy.deepcopy(self._lookup(split_path(path)))

    async def query_prefix(self, path: str, prefix: str, limit: int) -> dict[str, Any]:
        self._check_online()
        children = self._children(split_path(path))
        keys = [k for k in sorted(children) if k.startswith(prefix)][:max(limit, 0)]
        return {k: copy.deepcopy(children[k]) for k in keys}

    # -- writes ------------------------------------------------------------

    async def set(self, path: str, value: Any) -> None:
        self._write(split_path(path), value)

    async def update(self, path: str, values: dict[str, Any]) -> None:
        parts = split_path(path)
        for key, value in values.items():
            self._write(parts + split_path(key), value)

    async def push(self, path: str, value: Any) -> str:
        key = f"m{next(self._push_seq):012d}"
        self._write(split_path(path) + [key], value)
        return key

    async def delete(self, path: str) -> None:
        self._write(split_path(path), None)

    async def transaction(self, path: str, update: Callable[[Any], Any]) -> Any:
        parts = split_path(path)
        self._check_online()
        current = copy.deepcopy(self._lookup(parts))
        new_value = update(current)
        if new_value != current:
            self._write(parts, new_value)
        return copy.deepcopy(self._lookup(parts))

    # -- observation -------------------------------------------------------

    def observe(
        self, path: str, callback: ChildCallback, limit_to_last: Optional[int] = None,
    ) -> Callable[[], None]:
        self._check_online()
        loop = asyncio.get_running_loop()
        observer = _Observer(split_path(path), callback)
        children = self._children(observer.parts)
        keys = sorted(children)
        if limit_to_last is not None:
            keys = keys[-limit_to_last:] if limit_to_last > 0 else []
        for key in keys:
            loop.call_soon(self._deliver, observer, "added", key, copy.deepcopy(children[key]))
        self._observers.append(observer)
        logger.debug("observe %s (replaying %d children)", path, len(keys))

        def remove() -> None:
            observer.active = False
            try:
                self._observers.remove(observer)
            except ValueError:
                pass
        return remove

    async def close(self) -> None:
        for observer in self._observers:
            observer.active = False
        self._observers.clear()

    # -- internals ---------------------------------------------------------

    def _check_online(self) -> None:
        if self.offline:
            raise BackendError("Realtime database unreachable", code="unavailable")

    def _check_writable(self, parts: list[str]) -> None:
        joined = "/".join(parts)
        for denied in self._denied:
            if joined == denied or joined.startswith(denied + "/"):
                raise PermissionDenied(f"Write denied at {joined}", details={"path": joined})

    def _server_now(self) -> int:
        self._last_ts = max(self._clock(), self._last_ts)
        return self._last_ts

    def _lookup(self, parts: list[str]) -> Any:
        node: Any = self._root
        for part in parts:
            if not isinstance(node, dict) or part not in node:
                return None
            node = node[part]
        return node

    def _children(self, parts: list[str]) -> dict[str, Any]:
        node = self._lookup(parts)
        return node if isinstance(node, dict) else {}

    def _write(self, parts: list[str], value: Any) -> None:
        self._check_online()
        self._check_writable(parts)
        if not parts:
            raise BackendError("Refusing to overwrite the database root")
        value = resolve_server_values(copy.deepcopy(value), self._server_now())

        related = [o for o in self._observers if self._related(o.parts, parts)]
        before = {id(o): copy.deepcopy(self._children(o.parts)) for o in related}

        self._assign(parts, value)

        if not related:
            return
        loop = asyncio.get_running_loop()
        for observer in related:
            old = before[id(observer)]
            new = self._children(observer.parts)
            for key in sorted(set(old) | set(new)):
                if key not in old:
                    loop.call_soon(self._deliver, observer, "added", key, copy.deepcopy(new[key]))
                elif key not in new:
                    loop.call_soon(self._deliver, observer, "removed", key, old[key])
                elif old[key] != new[key]:
                    loop.call_soon(self._deliver, observer, "changed", key, copy.deepcopy(new[key]))

    def _assign(self, parts: list[str], value: Any) -> None:
        if value is None:
            trail: list[tuple[dict[str, Any], str]] = []
            node: Any = self._root
            for part in parts[:-1]:
                if not isinstance(node, dict) or part not in node:
                    return
                trail.append((node, part))
                node = node[part]
            if isinstance(node, dict):
                node.pop(parts[-1], None)
            # prune empty parents
            for parent, key in reversed(trail):
                if parent[key] == {}:
                    del parent[key]
                else:
                    break
            return
        node = self._root
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        node[parts[-1]] = value

    @staticmethod
    def _related(observed: list[str], written: list[str]) -> bool:
        n = min(len(observed), len(written))
        return observed[:n] == written[:n]

    @staticmethod
    def _deliver(observer: _Observer, kind: str, key: str, value: Any) -> None:
        if not observer.active:
            return
        try:
            observer.callback(kind, key, value)
        except Exception:
            logger.exception("Observer callback failed for key %s", key)
