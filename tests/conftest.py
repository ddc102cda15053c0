"""Shared fixtures: in-memory backend, deterministic clock, recording notifier."""

import asyncio
from typing import Any, Optional

import pytest

from atme.backend.memory import MemoryBackend
from atme.fanout import NotificationFanout
from atme.log import MessageLog
from atme.models.profile import Identity
from atme.store import ConversationStore


class StepClock:
    """Epoch-ms clock that advances one millisecond per read."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        self.now += 1
        return self.now


class RecordingNotifier:
    enabled = True

    def __init__(self, fail_tokens: tuple[str, ...] = ()):
        self.sent: list[tuple[str, str, str]] = []
        self.fail_tokens = set(fail_tokens)

    async def send(self, token: str, title: str, body: str, data: Optional[dict[str, Any]] = None) -> None:
        if token in self.fail_tokens:
            raise RuntimeError("push rejected")
        self.sent.append((token, title, body))

    async def close(self) -> None:
        return


async def settle(rounds: int = 20) -> None:
    """Let scheduled callbacks and consumer tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


async def take(stream, n: int, timeout: float = 1.0) -> list:
    items = []
    for _ in range(n):
        items.append(await asyncio.wait_for(stream.__anext__(), timeout))
    return items


def make_identity(uid: str, name: str = "", token: Optional[str] = None) -> Identity:
    return Identity(
        uid=uid,
        username=uid.lower(),
        display_name=name or uid,
        email=f"{uid.lower()}@example.com",
        notification_token=token,
    )


@pytest.fixture
def clock() -> StepClock:
    return StepClock()


@pytest.fixture
def backend(clock) -> MemoryBackend:
    return MemoryBackend(clock=clock)


@pytest.fixture
def log(backend) -> MessageLog:
    return MessageLog(backend)


@pytest.fixture
def store(backend) -> ConversationStore:
    return ConversationStore(backend)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def fanout(notifier) -> NotificationFanout:
    return NotificationFanout(notifier)
