"""
Conversation store — membership roster, notification tokens and per-participant
last-seen markers.

Every backend failure surfaces as StoreUnavailable; callers are expected to keep
working from whatever they cached last.
"""

import asyncio
import logging
from typing import Any, Callable, Optional

from atme.backend.base import SERVER_TIMESTAMP, Backend
from atme.constants import last_seen_path, members_path
from atme.errors import AtMeError, StoreUnavailable
from atme.models.conversation import RosterEntry

logger = logging.getLogger(__name__)


class RosterStream:
    """Live roster updates. Callers dedupe by participant id, keeping the latest."""

    def __init__(self, conversation_id: str):
        self.conversation_id = conversation_id
        self._queue: asyncio.Queue[Optional[RosterEntry]] = asyncio.Queue()
        self._cancelled = False
        self._stop: Optional[Callable[[], None]] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def _attach(self, stop: Callable[[], None]) -> None:
        self._stop = stop

    def _on_child(self, kind: str, key: str, value: Any) -> None:
        if self._cancelled:
            return
        if kind == "removed":
            entry = RosterEntry(participant_id=key, token=None, active=False)
        else:
            entry = RosterEntry.from_record(key, value)
        self._queue.put_nowait(entry)

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if self._stop is not None:
            self._stop()
            self._stop = None
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(None)

    def __aiter__(self) -> "RosterStream":
        return self

    async def __anext__(self) -> RosterEntry:
        if self._cancelled and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is None or self._cancelled:
            raise StopAsyncIteration
        return item


class ConversationStore:
    def __init__(self, backend: Backend):
        self._backend = backend

    async def mark_seen(self, conversation_id: str, participant_id: str, timestamp: int) -> int:
        """Record that ``participant_id`` has seen the conversation up to ``timestamp``.

        Monotonic: a timestamp older than the stored marker is a no-op. Returns
        the stored marker.
        """
        def advance(current: Any) -> int:
            if isinstance(current, (int, float)) and current >= timestamp:
                return int(current)
            return timestamp

        try:
            stored = await self._backend.transaction(
                f"{last_seen_path(conversation_id)}/{participant_id}", advance,
            )
        except AtMeError as e:
            raise StoreUnavailable(
                f"Could not update last-seen for {participant_id} in {conversation_id}: {e}",
                details={"conversation_id": conversation_id, "participant_id": participant_id},
            )
        return int(stored) if stored is not None else timestamp

    async def last_seen(self, conversation_id: str) -> dict[str, int]:
        try:
            raw = await self._backend.get(last_seen_path(conversation_id))
        except AtMeError as e:
            raise StoreUnavailable(f"Could not read last-seen markers for {conversation_id}: {e}")
        if not isinstance(raw, dict):
            return {}
        return {pid: int(ts) for pid, ts in raw.items() if isinstance(ts, (int, float))}

    async def members(self, conversation_id: str) -> dict[str, Optional[str]]:
        """One-shot read of the roster: participant id to notification token."""
        try:
            raw = await self._backend.get(members_path(conversation_id))
        except AtMeError as e:
            raise StoreUnavailable(f"Could not read roster of {conversation_id}: {e}")
        if not isinstance(raw, dict):
            return {}
        return {pid: RosterEntry.from_record(pid, value).token for pid, value in raw.items()}

    def roster(self, conversation_id: str) -> RosterStream:
        """Stream the active participants and their notification tokens."""
        stream = RosterStream(conversation_id)
        try:
            stop = self._backend.observe(members_path(conversation_id), stream._on_child)
        except AtMeError as e:
            raise StoreUnavailable(f"Could not observe roster of {conversation_id}: {e}")
        stream._attach(stop)
        return stream

    async def join(self, conversation_id: str, participant_id: str, token: Optional[str] = None) -> None:
        record: dict[str, Any] = {"joinedAt": SERVER_TIMESTAMP}
        if token:
            record["token"] = token
        await self._write(f"{members_path(conversation_id)}/{participant_id}", record)

    async def leave(self, conversation_id: str, participant_id: str) -> None:
        await self._write(f"{members_path(conversation_id)}/{participant_id}", None)

    async def set_token(self, conversation_id: str, participant_id: str, token: Optional[str]) -> None:
        """Refresh or clear (``token=None``) a participant's notification token."""
        path = f"{members_path(conversation_id)}/{participant_id}"

        def replace(current: Any) -> Any:
            if current is None:
                # Not a member; token changes never create membership.
                return None
            record = dict(current) if isinstance(current, dict) else {}
            if token:
                record["token"] = token
            else:
                record.pop("token", None)
            return record

        try:
            await self._backend.transaction(path, replace)
        except AtMeError as e:
            raise StoreUnavailable(f"Could not update token for {participant_id} in {conversation_id}: {e}")

    async def _write(self, path: str, value: Any) -> None:
        try:
            await self._backend.set(path, value)
        except AtMeError as e:
            raise StoreUnavailable(f"Write to {path} failed: {e}")
