"""
Conversation session — binds one open conversation to its message log,
roster and notification fan-out.

State machine::

    UNOPENED --open()--> OPEN --close()--> CLOSED (close() again is a no-op)

All deliveries are consumed by tasks on the event loop that called ``open()``,
so local state (message list, roster cache, last-seen) is only ever mutated
from that one loop.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Callable, Optional

from atme.constants import DEFAULT_WINDOW_SIZE, PICTURE_MESSAGE_BODY
from atme.errors import SessionClosed, SessionError, SessionStateError, StoreUnavailable, Unauthenticated
from atme.fanout import NotificationFanout
from atme.log import MessageLog, MessageSubscription
from atme.models.message import Message
from atme.models.profile import Identity
from atme.storage import AttachmentStorage, attachment_path
from atme.store import ConversationStore, RosterStream

logger = logging.getLogger(__name__)

MessageListener = Callable[[Message], None]


class SessionState(str, Enum):
    UNOPENED = "unopened"
    OPEN = "open"
    CLOSED = "closed"


def _now_ms() -> int:
    return int(time.time() * 1000)


class ConversationSession:
    def __init__(
        self,
        log: MessageLog,
        store: ConversationStore,
        fanout: NotificationFanout,
        identity: Identity,
        *,
        window_size: int = DEFAULT_WINDOW_SIZE,
        clock: Optional[Callable[[], int]] = None,
    ):
        if identity is None or not identity.uid:
            raise Unauthenticated()
        self._log = log
        self._store = store
        self._fanout = fanout
        self._identity = identity
        self._window_size = window_size
        self._clock = clock or _now_ms

        self._state = SessionState.UNOPENED
        self._conversation_id: Optional[str] = None
        self._subscription: Optional[MessageSubscription] = None
        self._roster_stream: Optional[RosterStream] = None
        self._tasks: list[asyncio.Task[None]] = []

        self._messages: list[Message] = []
        self._roster: dict[str, Optional[str]] = {}
        self._last_seen: Optional[int] = None
        self._listeners: list[MessageListener] = []

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def conversation_id(self) -> Optional[str]:
        return self._conversation_id

    @property
    def identity(self) -> Identity:
        return self._identity

    @property
    def messages(self) -> tuple[Message, ...]:
        """Messages delivered so far, in delivery order."""
        return tuple(self._messages)

    @property
    def roster(self) -> dict[str, Optional[str]]:
        return dict(self._roster)

    @property
    def last_seen(self) -> Optional[int]:
        return self._last_seen

    def add_listener(self, listener: MessageListener) -> Callable[[], None]:
        """Call ``listener`` for every delivered message. Returns a cleanup function."""
        self._listeners.append(listener)
        def remove() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass
        return remove

    async def open(self, conversation_id: str) -> None:
        """Start the live message feed and roster stream. Valid once, from UNOPENED."""
        if self._state is not SessionState.UNOPENED:
            raise SessionStateError(f"Cannot open a session that is {self._state.value}")
        if not conversation_id:
            raise SessionError("conversation_id is required")
        self._conversation_id = conversation_id

        try:
            self._subscription = self._log.subscribe(conversation_id, self._window_size)
        except StoreUnavailable:
            self._state = SessionState.CLOSED
            raise
        try:
            self._roster_stream = self._store.roster(conversation_id)
        except StoreUnavailable as e:
            logger.warning("Roster for %s unavailable, notifications disabled: %s", conversation_id, e)
        else:
            # Later stream entries replace these.
            try:
                self._roster.update(await self._store.members(conversation_id))
            except StoreUnavailable as e:
                logger.warning("Roster snapshot for %s unavailable, waiting for the stream: %s", conversation_id, e)

        self._state = SessionState.OPEN
        loop = asyncio.get_running_loop()
        self._tasks.append(loop.create_task(self._consume_messages(self._subscription)))
        if self._roster_stream is not None:
            self._tasks.append(loop.create_task(self._consume_roster(self._roster_stream)))
        logger.debug("session for %s opened by %s", conversation_id, self._identity.uid)

    async def send(self, text: Optional[str] = None, attachment_ref: Optional[str] = None) -> Message:
        """Append a message, mark it seen and notify every other roster member.

        The message is not added to ``messages`` here; it arrives through the
        live feed like any other message.
        """
        self._ensure_open()
        draft = Message.compose(self._identity.uid, text=text, attachment_ref=attachment_ref)
        conversation_id = self._conversation_id or ""
        message = await self._log.append(conversation_id, draft)

        await self._mark_seen(message.timestamp or self._clock())

        body = message.text if message.text is not None else PICTURE_MESSAGE_BODY
        self._fanout.fan_out(
            self._roster,
            self._identity.uid,
            self._identity.display_name or self._identity.username,
            body,
            exclude_token=self._identity.notification_token,
            data={"conversationId": conversation_id, "messageId": message.id or ""},
        )
        return message

    async def send_attachment(
        self,
        data: bytes,
        storage: AttachmentStorage,
        extension: str = "jpg",
        content_type: str = "image/jpeg",
    ) -> Message:
        """Upload ``data`` and send it as a picture message."""
        self._ensure_open()
        path = attachment_path(self._conversation_id or "", self._clock(), extension)
        ref = await storage.upload(path, data, content_type)
        return await self.send(attachment_ref=ref)

    async def close(self) -> None:
        """Release the live feed and roster stream. Safe to call repeatedly."""
        if self._state is SessionState.UNOPENED:
            raise SessionStateError("Cannot close a session that was never opened")
        if self._state is SessionState.CLOSED:
            return
        self._state = SessionState.CLOSED
        if self._subscription is not None:
            self._subscription.cancel()
        if self._roster_stream is not None:
            self._roster_stream.cancel()

        current = asyncio.current_task()
        tasks = [t for t in self._tasks if t is not current]
        self._tasks = []
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.debug("session for %s closed", self._conversation_id)

    def _ensure_open(self) -> None:
        if self._state is SessionState.CLOSED:
            raise SessionClosed()
        if self._state is SessionState.UNOPENED:
            raise SessionStateError("Session is not open. Call open() first.")

    async def _consume_messages(self, subscription: MessageSubscription) -> None:
        async for message in subscription:
            if self._state is not SessionState.OPEN:
                break
            self._messages.append(message)
            for listener in list(self._listeners):
                try:
                    listener(message)
                except Exception:
                    logger.exception("Message listener failed")
            observed = max(message.timestamp or 0, self._clock())
            await self._mark_seen(observed)

    async def _consume_roster(self, stream: RosterStream) -> None:
        async for entry in stream:
            if entry.active:
                self._roster[entry.participant_id] = entry.token
            else:
                self._roster.pop(entry.participant_id, None)

    async def _mark_seen(self, timestamp: int) -> None:
        self._last_seen = max(self._last_seen or 0, timestamp)
        try:
            stored = await self._store.mark_seen(
                self._conversation_id or "", self._identity.uid, timestamp,
            )
        except StoreUnavailable as e:
            logger.warning("Keeping cached last-seen for %s: %s", self._conversation_id, e)
            return
        self._last_seen = max(self._last_seen, stored)
