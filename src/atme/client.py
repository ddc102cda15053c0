"""
AsyncAtMe — main SDK client.
"""

import logging
import uuid
from pathlib import Path
from typing import Iterable, Optional

from atme.backend.base import Backend
from atme.backend.realtime import RealtimeBackend
from atme.constants import DEFAULT_WINDOW_SIZE
from atme.directory import ProfileDirectory
from atme.errors import ConnectionError, StoreUnavailable, Unauthenticated
from atme.fanout import NotificationFanout, Notifier, notifier_from_env
from atme.log import MessageLog
from atme.models.profile import Identity
from atme.session import ConversationSession, SessionState
from atme.storage import AttachmentStorage, HttpStorage
from atme.store import ConversationStore
from atme.transport.http import DEFAULT_BASE_URL, HttpClient
from atme.transport.socketio import SocketIOManager

DEFAULT_STORAGE_URL = "https://firebasestorage.googleapis.com/v0/b/atme-chat.appspot.com"
DEVICE_ID_FILE = Path.home() / ".atme" / "device_id"

logger = logging.getLogger(__name__)


def _get_or_create_device_id(provided: Optional[str] = None) -> str:
    if provided:
        return provided
    try:
        return DEVICE_ID_FILE.read_text().strip()
    except FileNotFoundError:
        device_id = str(uuid.uuid4())
        try:
            DEVICE_ID_FILE.parent.mkdir(parents=True, exist_ok=True)
            DEVICE_ID_FILE.write_text(device_id)
        except OSError:
            pass
        return device_id


class AsyncAtMe:
    """Async client. Pass ``backend`` (and ``storage``) to run without a server."""

    def __init__(
        self,
        access_token: Optional[str] = None,
        user_id: Optional[str] = None,
        base_url: str = DEFAULT_BASE_URL,
        storage_url: str = DEFAULT_STORAGE_URL,
        gateway_url: Optional[str] = None,
        device_id: Optional[str] = None,
        transports: Optional[list[str]] = None,
        ready_timeout: float = 15.0,
        backend: Optional[Backend] = None,
        storage: Optional[AttachmentStorage] = None,
        notifier: Optional[Notifier] = None,
        fcm_server_key: Optional[str] = None,
    ):
        self._base_url = base_url
        self._storage_url = storage_url
        self._gateway_url = gateway_url or base_url
        self._access_token = access_token
        self._user_id = user_id
        self._device_id = _get_or_create_device_id(device_id)
        self._transports = transports
        self._ready_timeout = ready_timeout

        self._sio: Optional[SocketIOManager] = None
        if backend is None:
            self.http: Optional[HttpClient] = HttpClient(base_url=base_url, token=access_token)
            self._backend: Backend = RealtimeBackend(self.http)
            self._owns_transport = True
        else:
            self.http = None
            self._backend = backend
            self._owns_transport = False
        self._storage_http: Optional[HttpClient] = None
        if storage is None:
            self._storage_http = HttpClient(base_url=storage_url, token=access_token)
            storage = HttpStorage(self._storage_http)
        self.storage = storage

        self._wire(self._backend)
        self._notifier = notifier
        self._fcm_server_key = fcm_server_key
        self.fanout = NotificationFanout(notifier or notifier_from_env(fcm_server_key))
        self._fanout_closed = False
        self._sessions: list[ConversationSession] = []
        self._connected = not self._owns_transport

    @property
    def connected(self) -> bool:
        if not self._owns_transport:
            return self._connected
        return self._sio is not None and self._sio.connected

    @property
    def device_id(self) -> str:
        return self._device_id

    async def connect(self, access_token: Optional[str] = None, user_id: Optional[str] = None) -> None:
        self._reopen()
        if not self._owns_transport:
            self._connected = True
            return
        token = access_token or self._access_token
        uid = user_id or self._user_id
        if not token or not uid:
            raise ConnectionError("access_token and user_id required. Run `atme auth login` first.")
        self._access_token, self._user_id = token, uid
        assert self.http is not None
        self.http.set_token(token)
        if self._storage_http is not None:
            self._storage_http.set_token(token)

        self._sio = SocketIOManager(
            base_url=self._gateway_url,
            token=token,
            user_id=uid,
            device_id=self._device_id,
            transports=self._transports,
            ready_timeout=self._ready_timeout,
        )
        self._wire(RealtimeBackend(self.http, self._sio))
        await self._sio.connect()

    async def disconnect(self) -> None:
        """Close open sessions, flush notifications and release transports."""
        for session in list(self._sessions):
            await session.close()
        self._sessions.clear()
        if self._notifier is None:
            await self.fanout.close()
            self._fanout_closed = True
        else:
            await self.fanout.drain()
        if self._owns_transport:
            await self._backend.close()
            self._sio = None
        if self._storage_http is not None:
            await self._storage_http.close()
        self._connected = False

    def _wire(self, backend: Backend) -> None:
        self._backend = backend
        self.directory = ProfileDirectory(backend)
        self.store = ConversationStore(backend)
        self.log = MessageLog(backend)

    def _reopen(self) -> None:
        """Replace clients released by a previous disconnect()."""
        if self._fanout_closed:
            self.fanout = NotificationFanout(notifier_from_env(self._fcm_server_key))
            self._fanout_closed = False
        if self.http is not None and self.http.closed:
            self.http = HttpClient(base_url=self._base_url, token=self._access_token)
            self._wire(RealtimeBackend(self.http))
        if self._storage_http is not None and self._storage_http.closed:
            self._storage_http = HttpClient(base_url=self._storage_url, token=self._access_token)
            self.storage = HttpStorage(self._storage_http)

    async def establish_identity(
        self, user_id: Optional[str] = None, email: Optional[str] = None,
        notification_token: Optional[str] = None,
    ) -> Identity:
        uid = user_id or self._user_id
        if not uid:
            raise Unauthenticated()
        return await self.directory.establish_identity(uid, email=email, notification_token=notification_token)

    async def open_conversation(
        self, conversation_id: str, identity: Identity, window_size: int = DEFAULT_WINDOW_SIZE,
    ) -> ConversationSession:
        """Create and open a session. Close it with ``session.close()``."""
        self._ensure_connected()
        session = ConversationSession(self.log, self.store, self.fanout, identity, window_size=window_size)
        await session.open(conversation_id)
        self._sessions = [s for s in self._sessions if s.state is not SessionState.CLOSED]
        self._sessions.append(session)
        return session

    async def sign_out(self, identity: Identity, conversation_ids: Iterable[str] = ()) -> None:
        """Stop notifications for ``identity`` and close every open session."""
        for session in list(self._sessions):
            await session.close()
        self._sessions.clear()
        await self.directory.clear_notification_token(identity.uid)
        for conversation_id in conversation_ids:
            try:
                await self.store.set_token(conversation_id, identity.uid, None)
            except StoreUnavailable as e:
                logger.warning("Could not clear token in %s: %s", conversation_id, e)

    def _ensure_connected(self) -> None:
        if not self.connected:
            raise ConnectionError("Not connected. Call connect() first.")
