"""
Socket.IO connection to the realtime database gateway.

Connection: {gateway_url}/socket.io/ with auth={token}. connect() resolves
once the gateway sends `ready`. Every observation is remembered by observer
id and sent again after the gateway signals `ready` on a reconnect; the
gateway then replays the observed children, which subscribers dedupe.
"""

import asyncio
import logging
import uuid
from typing import Any, Callable, Optional

import socketio

from atme.models.events import C2SEvent
from atme.transport.envelope import build_envelope

SOCKETIO_PATH = "/socket.io/"
LIFECYCLE_EVENTS = frozenset({"connect", "disconnect", "connect_error", "ready"})

EventHandler = Callable[[str, dict[str, Any]], None]

logger = logging.getLogger(__name__)


class SocketIOManager:
    def __init__(
        self,
        base_url: str,
        token: str,
        user_id: str,
        device_id: Optional[str] = None,
        transports: Optional[list[str]] = None,
        ready_timeout: float = 15.0,
    ):
        self._base_url = base_url
        self._token = token
        self._user_id = user_id
        self._device_id = device_id or str(uuid.uuid4())
        self._transports = transports or ["websocket"]
        self._ready_timeout = ready_timeout
        self._sio: Optional[socketio.AsyncClient] = None
        self._ready: Optional[asyncio.Event] = None
        self._connected = False
        self._handlers: list[EventHandler] = []
        # observer_id -> (path, limit_to_last)
        self._observations: dict[str, tuple[str, Optional[int]]] = {}

    @property
    def connected(self) -> bool:
        return self._connected and self._sio is not None and self._sio.connected

    @property
    def device_id(self) -> str:
        return self._device_id

    @property
    def observations(self) -> dict[str, tuple[str, Optional[int]]]:
        return dict(self._observations)

    def add_event_handler(self, handler: EventHandler) -> Callable[[], None]:
        """Register a handler for server events. Returns a cleanup function."""
        self._handlers.append(handler)
        def remove() -> None:
            try:
                self._handlers.remove(handler)
            except ValueError:
                pass
        return remove

    def dispatch(self, event: str, data: Any) -> None:
        """Hand one server event to every registered handler."""
        if event in LIFECYCLE_EVENTS or not isinstance(data, dict):
            return
        for handler in list(self._handlers):
            try:
                handler(event, data)
            except Exception:
                logger.exception("Event handler failed for %s", event)

    def observe(self, observer_id: str, path: str, limit_to_last: Optional[int] = None) -> None:
        self._observations[observer_id] = (path, limit_to_last)
        self.emit(C2SEvent.OBSERVE, observer_id, path, limit_to_last=limit_to_last)

    def unobserve(self, observer_id: str) -> None:
        entry = self._observations.pop(observer_id, None)
        if entry is not None and self.connected:
            self.emit(C2SEvent.UNOBSERVE, observer_id, entry[0])

    async def connect(self) -> None:
        """Open the connection and wait for the gateway's `ready`."""
        if self._sio and self._sio.connected:
            return

        self._sio = socketio.AsyncClient()
        self._ready = asyncio.Event()
        self._sio.on("ready", self._on_ready)
        self._sio.on("disconnect", self._on_disconnect)
        self._sio.on("*", self._on_any)

        await self._sio.connect(
            self._base_url,
            auth={"token": self._token},
            transports=self._transports,
            socketio_path=SOCKETIO_PATH,
        )
        try:
            await asyncio.wait_for(self._ready.wait(), timeout=self._ready_timeout)
        except asyncio.TimeoutError:
            await self._sio.disconnect()
            raise TimeoutError(f"Timed out waiting for 'ready' event after {self._ready_timeout}s")

    async def _on_ready(self, *_args: Any) -> None:
        resumed = self._ready is not None and self._ready.is_set()
        self._connected = True
        if self._ready is not None:
            self._ready.set()
        if resumed and self._observations:
            logger.info("Gateway ready again, resuming %d observations", len(self._observations))
            for observer_id, (path, limit) in list(self._observations.items()):
                self.emit(C2SEvent.OBSERVE, observer_id, path, limit_to_last=limit)

    async def _on_disconnect(self, *_args: Any) -> None:
        self._connected = False
        logger.debug("gateway connection lost")

    async def _on_any(self, event: str, data: Any) -> None:
        self.dispatch(event, data)

    def emit(
        self,
        event_type: str,
        observer_id: str,
        path: str,
        limit_to_last: Optional[int] = None,
    ) -> None:
        """Send an enveloped gateway event without waiting for it.

        The send runs as a task on the current loop; a failed send is logged.
        """
        if not self._sio or not self._sio.connected:
            raise RuntimeError("Socket.IO not connected")
        envelope = build_envelope(
            event_type,
            observer_id,
            path,
            user_id=self._user_id,
            device_id=self._device_id,
            limit_to_last=limit_to_last,
        )
        sio = self._sio

        async def _send() -> None:
            try:
                await sio.emit(event_type, envelope)
            except Exception as e:
                logger.error(f"Emit failed for {event_type}: {e}")

        asyncio.get_running_loop().create_task(_send())

    async def disconnect(self) -> None:
        self._connected = False
        self._observations.clear()
        if self._sio:
            await self._sio.disconnect()
            self._sio = None
