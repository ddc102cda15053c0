"""Realtime database backends."""

from atme.backend.base import SERVER_TIMESTAMP, Backend
from atme.backend.memory import MemoryBackend
from atme.backend.realtime import RealtimeBackend

__all__ = ["SERVER_TIMESTAMP", "Backend", "MemoryBackend", "RealtimeBackend"]
