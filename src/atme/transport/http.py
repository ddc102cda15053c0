"""
REST HTTP client for the realtime database and object storage.

Database paths map to ``{base_url}/{path}.json``.
"""

from typing import Any, Optional

import httpx

from atme.errors import BackendError, PermissionDenied

DEFAULT_BASE_URL = "https://atme-chat.firebaseio.com"
USER_AGENT = "atme-sdk/0.1.0"


class HttpClient:
    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        token: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    def set_token(self, token: str) -> None:
        self._token = token

    def _auth_headers(self, authenticated: bool) -> dict[str, str]:
        headers: dict[str, str] = {}
        if authenticated and self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    @property
    def closed(self) -> bool:
        return self._client.is_closed

    @staticmethod
    def db_path(path: str) -> str:
        return f"/{path.strip('/')}.json"

    async def _request(
        self,
        method: str,
        url: str,
        *,
        authenticated: bool = True,
        headers: Optional[dict[str, str]] = None,
        **kwargs: Any,
    ) -> httpx.Response:
        all_headers = self._auth_headers(authenticated)
        if headers:
            all_headers.update(headers)
        try:
            resp = await self._client.request(method, url, headers=all_headers, **kwargs)
        except httpx.TransportError as e:
            raise BackendError(f"{method} {url} failed: {e}", code="unavailable")
        if resp.status_code in (401, 403):
            raise PermissionDenied(f"HTTP {resp.status_code}: {resp.text[:200]}", details={"url": url})
        if resp.status_code == 412:
            raise BackendError("ETag mismatch", code="precondition_failed", details={"etag": resp.headers.get("ETag")})
        if resp.status_code >= 400:
            raise BackendError(
                f"HTTP {resp.status_code}: {resp.text[:200]}",
                code="http_error",
                details={"status": resp.status_code, "url": url},
            )
        return resp

    @staticmethod
    def _json(resp: httpx.Response) -> Any:
        try:
            return resp.json()
        except ValueError as e:
            raise BackendError(
                f"Malformed response body (HTTP {resp.status_code}): {e}",
                code="bad_response",
                details={"status": resp.status_code, "body": resp.text[:200]},
            )

    async def get(self, path: str, params: Optional[dict[str, Any]] = None, authenticated: bool = True) -> Any:
        resp = await self._request("GET", self.db_path(path), params=params, authenticated=authenticated)
        return self._json(resp)

    async def put(self, path: str, body: Any, authenticated: bool = True) -> Any:
        resp = await self._request("PUT", self.db_path(path), json=body, authenticated=authenticated)
        return self._json(resp)

    async def patch(self, path: str, body: dict[str, Any], authenticated: bool = True) -> Any:
        resp = await self._request("PATCH", self.db_path(path), json=body, authenticated=authenticated)
        return self._json(resp)

    async def post(self, path: str, body: Any, authenticated: bool = True) -> Any:
        resp = await self._request("POST", self.db_path(path), json=body, authenticated=authenticated)
        return self._json(resp)

    async def delete(self, path: str, authenticated: bool = True) -> None:
        await self._request("DELETE", self.db_path(path), authenticated=authenticated)

    async def get_with_etag(self, path: str) -> tuple[Any, str]:
        """Read a value together with its ETag for a conditional write."""
        resp = await self._request("GET", self.db_path(path), headers={"X-Firebase-ETag": "true"})
        return self._json(resp), resp.headers.get("ETag", "")

    async def put_if_match(self, path: str, body: Any, etag: str) -> Any:
        resp = await self._request("PUT", self.db_path(path), json=body, headers={"if-match": etag})
        return self._json(resp)

    async def upload(self, url: str, data: bytes, content_type: str, params: Optional[dict[str, Any]] = None) -> Any:
        resp = await self._request(
            "POST", url, content=data, params=params, headers={"Content-Type": content_type},
        )
        return self._json(resp)

    async def download(self, url: str, params: Optional[dict[str, Any]] = None) -> bytes:
        resp = await self._request("GET", url, params=params)
        return resp.content

    async def close(self) -> None:
        await self._client.aclose()
