"""
Push-notification fan-out.

Delivery is best effort: ``notify`` schedules the send and returns at once.
A failed notification is logged and dropped. It never reaches the message
send path.
"""

import asyncio
import logging
import os
from typing import Any, Mapping, Optional, Protocol

import httpx

from atme.errors import AtMeError

FCM_SEND_URL = "https://fcm.googleapis.com/fcm/send"
FCM_SERVER_KEY_ENV = "ATME_FCM_SERVER_KEY"

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    enabled: bool

    async def send(self, token: str, title: str, body: str, data: Optional[dict[str, Any]] = None) -> None: ...

    async def close(self) -> None: ...


class NoopNotifier:
    enabled = False

    async def send(self, token: str, title: str, body: str, data: Optional[dict[str, Any]] = None) -> None:
        return

    async def close(self) -> None:
        return


class FcmNotifier:
    """Sends through the FCM HTTP endpoint with a server key."""

    enabled = True

    def __init__(
        self,
        server_key: str,
        url: str = FCM_SEND_URL,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._url = url
        self._client = httpx.AsyncClient(
            headers={"Authorization": f"key={server_key}", "Content-Type": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    async def send(self, token: str, title: str, body: str, data: Optional[dict[str, Any]] = None) -> None:
        payload = {
            "to": token,
            "priority": "high",
            "notification": {"title": title, "body": body, "sound": "default"},
            "data": data or {},
        }
        try:
            resp = await self._client.post(self._url, json=payload)
        except httpx.TransportError as e:
            raise AtMeError("notification_failed", f"FCM unreachable: {e}")
        if resp.status_code >= 400:
            raise AtMeError("notification_failed", f"FCM HTTP {resp.status_code}: {resp.text[:200]}")
        result = resp.json()
        if isinstance(result, dict) and result.get("failure"):
            raise AtMeError("notification_failed", f"FCM rejected token: {result.get('results')}")

    async def close(self) -> None:
        await self._client.aclose()


def notifier_from_env(server_key: Optional[str] = None) -> Notifier:
    """FcmNotifier when a server key is configured, otherwise NoopNotifier."""
    key = server_key or os.getenv(FCM_SERVER_KEY_ENV)
    if not key:
        return NoopNotifier()
    return FcmNotifier(key)


def recipients(
    roster: Mapping[str, Optional[str]], sender_id: str, exclude_token: Optional[str] = None,
) -> list[str]:
    """Tokens to notify: everyone but the sender with a token, each token once."""
    tokens: list[str] = []
    for participant_id, token in roster.items():
        if participant_id == sender_id or not token or token == exclude_token:
            continue
        if token not in tokens:
            tokens.append(token)
    return tokens


class NotificationFanout:
    def __init__(self, notifier: Optional[Notifier] = None):
        self._notifier = notifier or NoopNotifier()
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    def notify(self, token: str, title: str, body: str, data: Optional[dict[str, Any]] = None) -> None:
        """Fire-and-forget delivery to one token."""

        async def _do_notify() -> None:
            try:
                await self._notifier.send(token, title, body, data)
            except Exception as e:
                logger.error(f"Notification to {token[:8]}... failed: {e}")

        task = asyncio.get_running_loop().create_task(_do_notify())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def fan_out(
        self,
        roster: Mapping[str, Optional[str]],
        sender_id: str,
        title: str,
        body: str,
        exclude_token: Optional[str] = None,
        data: Optional[dict[str, Any]] = None,
    ) -> list[str]:
        tokens = recipients(roster, sender_id, exclude_token)
        for token in tokens:
            self.notify(token, title, body, data)
        return tokens

    async def drain(self) -> None:
        """Wait for in-flight notifications to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def close(self) -> None:
        await self.drain()
        await self._notifier.close()
