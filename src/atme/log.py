"""
Message log — append-only, ordered messages per conversation with a live
tailing subscription.

A subscription first replays up to ``window_size`` of the most recent stored
messages in ascending order, then yields every newly appended message exactly
once, in append order, until cancelled.
"""

import asyncio
import logging
from typing import Any, Callable, Optional

from atme.backend.base import SERVER_TIMESTAMP, Backend
from atme.constants import DEFAULT_WINDOW_SIZE, messages_path
from atme.errors import AtMeError, StoreUnavailable, WriteFailure
from atme.models.message import Message

logger = logging.getLogger(__name__)


class MessageSubscription:
    """Lazy, infinite, non-restartable feed of messages for one conversation.

    Iterate with ``async for``. ``cancel()`` stops delivery immediately:
    anything queued but not yet yielded is discarded and iteration ends.
    """

    def __init__(self, conversation_id: str, window_size: int):
        self.conversation_id = conversation_id
        self.window_size = window_size
        self._queue: asyncio.Queue[Optional[Message]] = asyncio.Queue()
        self._delivered_ids: set[str] = set()
        self._cancelled = False
        self._stop: Optional[Callable[[], None]] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def _attach(self, stop: Callable[[], None]) -> None:
        self._stop = stop

    def _on_child(self, kind: str, key: str, value: Any) -> None:
        # Messages are immutable; only additions matter.
        if self._cancelled or kind != "added" or key in self._delivered_ids:
            return
        message = Message.from_record(key, value)
        if message is None:
            logger.warning(
                "Integrity: dropping malformed message %s in conversation %s",
                key, self.conversation_id,
            )
            return
        self._delivered_ids.add(key)
        self._queue.put_nowait(message)

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
        logger.debug("subscription to %s cancelled", self.conversation_id)

    def __aiter__(self) -> "MessageSubscription":
        return self

    async def __anext__(self) -> Message:
        if self._cancelled and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is None or self._cancelled:
            raise StopAsyncIteration
        return item


class MessageLog:
    def __init__(self, backend: Backend):
        self._backend = backend

    async def append(self, conversation_id: str, message: Message) -> Message:
        """Persist ``message`` and return it with its id and server timestamp.

        Raises WriteFailure if the store rejects the write or is unreachable.
        """
        path = messages_path(conversation_id)
        record = message.to_record()
        record["timestamp"] = SERVER_TIMESTAMP
        try:
            key = await self._backend.push(path, record)
        except AtMeError as e:
            raise WriteFailure(
                f"Could not append message to {conversation_id}: {e}",
                details={"conversation_id": conversation_id, "cause": e.code},
            )

        try:
            stored = await self._backend.get(f"{path}/{key}")
        except AtMeError as e:
            # The write landed; only the read-back of the server timestamp failed.
            logger.warning("Appended %s but could not read it back: %s", key, e)
            return message.model_copy(update={"id": key})
        appended = Message.from_record(key, stored)
        if appended is None:
            logger.warning("Integrity: appended message %s read back malformed", key)
            return message.model_copy(update={"id": key})
        return appended

    def subscribe(self, conversation_id: str, window_size: int = DEFAULT_WINDOW_SIZE) -> MessageSubscription:
        """Start a live subscription. Must be called with a running event loop."""
        if window_size < 0:
            raise ValueError("window_size must be non-negative")
        subscription = MessageSubscription(conversation_id, window_size)
        try:
            stop = self._backend.observe(
                messages_path(conversation_id), subscription._on_child, limit_to_last=window_size,
            )
        except AtMeError as e:
            raise StoreUnavailable(
                f"Could not subscribe to {conversation_id}: {e}",
                details={"conversation_id": conversation_id, "cause": e.code},
            )
        subscription._attach(stop)
        return subscription

    async def history(self, conversation_id: str, limit: int = DEFAULT_WINDOW_SIZE) -> list[Message]:
        """One-shot read of the last ``limit`` messages, oldest first."""
        try:
            records = await self._backend.get(messages_path(conversation_id))
        except AtMeError as e:
            raise StoreUnavailable(f"Could not read history of {conversation_id}: {e}")
        if not isinstance(records, dict):
            return []
        messages: list[Message] = []
        for key in sorted(records)[-limit:] if limit > 0 else []:
            message = Message.from_record(key, records[key])
            if message is None:
                logger.warning(
                    "Integrity: dropping malformed message %s in conversation %s", key, conversation_id,
                )
                continue
            messages.append(message)
        return messages
