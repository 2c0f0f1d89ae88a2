"""Remote document store contract and its HTTP client.

The remote store keeps one JSON document per entity, keyed by a remote id
it assigns on first upload. Deletions are kept as tombstones so that other
devices learn about them on their next pull.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import httpx

from ..storage.timestamps import parse_timestamp

logger = logging.getLogger(__name__)


class RemoteError(Exception):
    """A remote store operation failed."""

    def __init__(self, message: str, offline: bool = False):
        super().__init__(message)
        self.offline = offline


@dataclass
class RemoteChange:
    """A document changed on the remote store since a watermark."""

    remote_id: str
    document: dict[str, Any]
    updated_at: datetime
    deleted: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RemoteChange":
        document = data.get("document", {})
        return cls(
            remote_id=data["remote_id"],
            document=document,
            updated_at=parse_timestamp(data.get("updated_at") or document["updated_at"]),
            deleted=bool(data.get("deleted", False)),
        )


class RemoteStore(ABC):
    """Abstract remote note store with push/pull semantics."""

    @abstractmethod
    async def push(
        self,
        kind: str,
        document: dict[str, Any],
        remote_id: str | None = None,
    ) -> str:
        """Create or overwrite a document.

        Args:
            kind: Collection name ("note", "label").
            document: Entity JSON.
            remote_id: Existing remote id, or None to create.

        Returns:
            The document's remote id.
        """
        pass

    @abstractmethod
    async def delete(self, kind: str, remote_id: str) -> None:
        """Delete (tombstone) a document."""
        pass

    @abstractmethod
    async def pull_since(self, kind: str, since: datetime | None) -> list[RemoteChange]:
        """Fetch documents changed after ``since``, oldest first.

        Args:
            kind: Collection name.
            since: Watermark, or None for everything.
        """
        pass

    @abstractmethod
    async def get(self, kind: str, remote_id: str) -> RemoteChange | None:
        """Fetch one document or its tombstone.

        Returns:
            The current state, or None if the remote id is unknown.
        """
        pass

    async def close(self) -> None:
        """Release any held resources."""
        pass


class HttpRemoteStore(RemoteStore):
    """Remote store speaking JSON over HTTP.

    Endpoints, relative to ``base_url``:
        POST   /api/<kind>              create, returns {"remote_id": ...}
        PUT    /api/<kind>/<remote_id>  overwrite
        DELETE /api/<kind>/<remote_id>  tombstone
        GET    /api/<kind>/<remote_id>  one document or tombstone
        GET    /api/<kind>?since=&limit=  changes, returns {"changes": [...]}

    Uses exponential backoff for server errors and connection failures.
    """

    def __init__(
        self,
        base_url: str,
        batch_size: int = 100,
        max_retries: int = 3,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the HTTP remote store.

        Args:
            base_url: Base URL of the remote (e.g., "http://notes.local:8080").
            batch_size: Page size for pulls.
            max_retries: Maximum attempts per request.
            timeout: Request timeout in seconds.
            transport: Optional httpx transport (used by tests).
        """
        self.base_url = base_url.rstrip("/")
        self.batch_size = batch_size
        self.max_retries = max_retries
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request_with_retry(
        self,
        method: str,
        path: str,
        json_data: Any = None,
        params: dict[str, Any] | None = None,
        allow_404: bool = False,
    ) -> httpx.Response:
        """Make HTTP request with exponential backoff retry.

        Raises:
            RemoteError: On client errors, or once retries are exhausted.
        """
        client = await self._get_client()
        backoff = 1.0
        offline = False

        for attempt in range(self.max_retries):
            try:
                response = await client.request(method, path, json=json_data, params=params)

                if response.status_code < 400 or (allow_404 and response.status_code == 404):
                    return response

                if response.status_code >= 500:
                    # Server error, retry
                    logger.warning(
                        f"Server error {response.status_code}, "
                        f"attempt {attempt + 1}/{self.max_retries}"
                    )
                    offline = False
                else:
                    # Client error, don't retry
                    raise RemoteError(f"HTTP {response.status_code}: {response.text}")

            except httpx.ConnectError:
                logger.warning(
                    f"Connection failed, attempt {attempt + 1}/{self.max_retries}"
                )
                offline = True
            except httpx.TimeoutException:
                logger.warning(
                    f"Request timeout, attempt {attempt + 1}/{self.max_retries}"
                )
                offline = True

            # Exponential backoff
            if attempt < self.max_retries - 1:
                await asyncio.sleep(backoff)
                backoff *= 2

        raise RemoteError(f"Max retries ({self.max_retries}) exceeded", offline=offline)

    async def push(
        self,
        kind: str,
        document: dict[str, Any],
        remote_id: str | None = None,
    ) -> str:
        if remote_id is None:
            response = await self._request_with_retry("POST", f"/api/{kind}", document)
            data = response.json()
            if not data.get("remote_id"):
                raise RemoteError("Remote did not return a remote_id")
            return data["remote_id"]

        await self._request_with_retry("PUT", f"/api/{kind}/{remote_id}", document)
        return remote_id

    async def delete(self, kind: str, remote_id: str) -> None:
        response = await self._request_with_retry(
            "DELETE", f"/api/{kind}/{remote_id}", allow_404=True
        )
        if response.status_code == 404:
            logger.debug(f"Remote {kind} {remote_id} already gone")

    async def get(self, kind: str, remote_id: str) -> RemoteChange | None:
        response = await self._request_with_retry(
            "GET", f"/api/{kind}/{remote_id}", allow_404=True
        )
        if response.status_code == 404:
            return None
        data = response.json()
        data.setdefault("remote_id", remote_id)
        return RemoteChange.from_dict(data)

    async def pull_since(self, kind: str, since: datetime | None) -> list[RemoteChange]:
        changes: list[RemoteChange] = []
        cursor = since

        while True:
            params: dict[str, Any] = {"limit": self.batch_size}
            if cursor is not None:
                params["since"] = cursor.isoformat()

            response = await self._request_with_retry("GET", f"/api/{kind}", params=params)
            page = [RemoteChange.from_dict(c) for c in response.json().get("changes", [])]
            changes.extend(page)

            if len(page) < self.batch_size:
                break
            cursor = max(c.updated_at for c in page)

        return changes
