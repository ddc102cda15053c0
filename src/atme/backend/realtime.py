"""
Realtime database backend: REST for reads and writes, Socket.IO for live
child events.
"""

import copy
import json
import logging
import uuid
from typing import Any, Callable, Optional

from atme.backend.base import ChildCallback
from atme.constants import MAX_TRANSACTION_ATTEMPTS
from atme.errors import BackendError
from atme.models.events import CHILD_EVENT_KINDS, S2CEvent
from atme.transport.envelope import parse_envelope
from atme.transport.http import HttpClient
from atme.transport.socketio import SocketIOManager

logger = logging.getLogger(__name__)


class RealtimeBackend:
    def __init__(
        self,
        http: HttpClient,
        sio: Optional[SocketIOManager] = None,
        max_transaction_attempts: int = MAX_TRANSACTION_ATTEMPTS,
    ):
        self._http = http
        self._sio = sio
        self._max_transaction_attempts = max_transaction_attempts

    async def get(self, path: str) -> Any:
        return await self._http.get(path)

    async def set(self, path: str, value: Any) -> None:
        if value is None:
            await self._http.delete(path)
            return
        await self._http.put(path, value)

    async def update(self, path: str, values: dict[str, Any]) -> None:
        await self._http.patch(path, values)

    async def push(self, path: str, value: Any) -> str:
        result = await self._http.post(path, value)
        if not isinstance(result, dict) or "name" not in result:
            raise BackendError(f"Unexpected push response for {path}: {result!r}")
        return result["name"]

    async def delete(self, path: str) -> None:
        await self._http.delete(path)

    async def transaction(self, path: str, update: Callable[[Any], Any]) -> Any:
        """Optimistic compare-and-set using ETag conditional writes."""
        for attempt in range(1, self._max_transaction_attempts + 1):
            current, etag = await self._http.get_with_etag(path)
            new_value = update(copy.deepcopy(current))
            if new_value == current:
                return current
            try:
                return await self._http.put_if_match(path, new_value, etag)
            except BackendError as e:
                if e.code != "precondition_failed":
                    raise
                logger.debug("transaction on %s lost race (attempt %d)", path, attempt)
        raise BackendError(
            f"Transaction on {path} aborted after {self._max_transaction_attempts} attempts",
            code="aborted",
        )

    async def query_prefix(self, path: str, prefix: str, limit: int) -> dict[str, Any]:
        params = {
            "orderBy": json.dumps("$key"),
            "startAt": json.dumps(prefix),
            "endAt": json.dumps(prefix + "\uf8ff"),
            "limitToFirst": limit,
        }
        result = await self._http.get(path, params=params)
        if not isinstance(result, dict):
            return {}
        return {k: result[k] for k in sorted(result)}

    def observe(
        self, path: str, callback: ChildCallback, limit_to_last: Optional[int] = None,
    ) -> Callable[[], None]:
        sio = self._sio
        if sio is None or not sio.connected:
            raise BackendError("Live updates unavailable: Socket.IO not connected", code="unavailable")
        observer_id = str(uuid.uuid4())

        def handler(event: str, raw: dict[str, Any]) -> None:
            envelope = parse_envelope(raw)
            if envelope is None or envelope.payload.observer_id != observer_id:
                return
            if event == S2CEvent.OBSERVE_ERROR:
                logger.warning("Gateway rejected observation of %s: %s", path, envelope.payload.data)
                return
            kind = CHILD_EVENT_KINDS.get(event)
            if kind is None or envelope.payload.key is None:
                return
            callback(kind, envelope.payload.key, envelope.payload.data)

        remove_handler = sio.add_event_handler(handler)
        sio.observe(observer_id, path, limit_to_last)
        logger.debug("observe %s as %s", path, observer_id)

        def stop() -> None:
            remove_handler()
            sio.unobserve(observer_id)
        return stop

    async def close(self) -> None:
        if self._sio:
            await self._sio.disconnect()
        await self._http.close()
