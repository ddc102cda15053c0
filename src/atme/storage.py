"""
Attachment object storage — opaque bytes in, referenceable path out.
"""

from typing import Optional, Protocol
from urllib.parse import quote

from atme.errors import AtMeError, StorageError
from atme.transport.http import HttpClient


def attachment_path(conversation_id: str, now_ms: int, extension: str = "jpg") -> str:
    """Storage path for a picture message sent at ``now_ms``."""
    return f"conversations/{conversation_id}/images/{now_ms}.{extension}"


class AttachmentStorage(Protocol):
    async def upload(self, path: str, data: bytes, content_type: str = "image/jpeg") -> str: ...

    async def download(self, path: str) -> bytes: ...


class HttpStorage:
    """Object storage over REST: ``POST /o?name=<path>``, ``GET /o/<path>?alt=media``."""

    def __init__(self, http: HttpClient):
        self._http = http

    async def upload(self, path: str, data: bytes, content_type: str = "image/jpeg") -> str:
        try:
            await self._http.upload("/o", data, content_type, params={"uploadType": "media", "name": path})
        except AtMeError as e:
            raise StorageError(f"Upload to {path} failed: {e}", details={"path": path})
        return path

    async def download(self, path: str) -> bytes:
        try:
            return await self._http.download(f"/o/{quote(path, safe='')}", params={"alt": "media"})
        except AtMeError as e:
            raise StorageError(f"Download of {path} failed: {e}", details={"path": path})


class MemoryStorage:
    def __init__(self) -> None:
        self._objects: dict[str, bytes] = {}
        self.fail_uploads: Optional[str] = None

    async def upload(self, path: str, data: bytes, content_type: str = "image/jpeg") -> str:
        if self.fail_uploads:
            raise StorageError(self.fail_uploads, details={"path": path})
        self._objects[path] = bytes(data)
        return path

    async def download(self, path: str) -> bytes:
        try:
            return self._objects[path]
        except KeyError:
            raise StorageError(f"No object at {path}", details={"path": path})
