"""
GitHub-contents record store.

Each record is a JSON file in a repository; the blob SHA GitHub returns for
the file is the version token. Reads are ``GET /repos/{owner}/{repo}/contents``
and conditional writes are ``PUT`` with the previous ``sha``.

Status mapping:

    GET  404            → NotFoundError
    PUT  409 / 422      → VersionConflictError (stale or missing sha)
    PUT  404 with sha   → VersionConflictError (record vanished)
    network / 5xx / 429 → TransientFetchError
"""

from __future__ import annotations

import base64
import json
import logging
from typing import Any, Dict, Optional

import httpx

from bantay.core.errors import NotFoundError, TransientFetchError, VersionConflictError
from bantay.store.base import VersionedRecord

logger = logging.getLogger(__name__)

SERVICE_NAME = "github-contents"


class GitHubContentsStore:
    """
    Versioned store over the GitHub contents API.

    Usage:
        store = GitHubContentsStore(owner="org", repo="bantay-data", token="...")
        record = await store.read("threats/latest")
        new_sha = await store.compare_and_swap(
            "threats/latest", record.version, payload, message="Update threat status",
        )
        await store.close()
    """

    def __init__(
        self,
        owner: str,
        repo: str,
        token: Optional[str] = None,
        *,
        base_url: str = "https://api.github.com",
        branch: Optional[str] = None,
        data_prefix: str = "_data",
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.owner = owner
        self.repo = repo
        self.branch = branch
        self.data_prefix = data_prefix.strip("/")
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._headers = {"Accept": "application/vnd.github+json"}
        if token:
            self._headers["Authorization"] = f"Bearer {token}"
        self._http_client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                base_url=self._base_url,
                headers=self._headers,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._http_client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    def _file_url(self, path: str) -> str:
        file_path = f"{path}.json"
        if self.data_prefix:
            file_path = f"{self.data_prefix}/{file_path}"
        return f"/repos/{self.owner}/{self.repo}/contents/{file_path}"

    async def read(self, path: str) -> VersionedRecord:
        params = {"ref": self.branch} if self.branch else None
        client = await self._get_client()
        try:
            response = await client.get(self._file_url(path), params=params)
        except httpx.HTTPError as e:
            raise TransientFetchError(SERVICE_NAME, str(e), path=path) from e

        if response.status_code == 404:
            raise NotFoundError("Record", path=path)
        if response.status_code != 200:
            raise TransientFetchError(
                SERVICE_NAME, f"HTTP {response.status_code}", path=path,
            )

        try:
            body = response.json()
            raw = base64.b64decode(body["content"]).decode("utf-8")
            data = json.loads(raw)
            version = body["sha"]
        except (KeyError, TypeError, ValueError) as e:
            raise TransientFetchError(
                SERVICE_NAME, f"unreadable document: {e}", path=path,
            ) from e

        if not isinstance(data, dict):
            raise TransientFetchError(SERVICE_NAME, "document is not an object", path=path)

        return VersionedRecord(path=path, data=data, version=version)

    async def compare_and_swap(
        self,
        path: str,
        expected_version: Optional[str],
        payload: Dict[str, Any],
        message: str = "",
    ) -> str:
        content = json.dumps(payload, indent=2, default=str).encode("utf-8")
        body: Dict[str, Any] = {
            "message": message or f"Update {path}",
            "content": base64.b64encode(content).decode("ascii"),
        }
        if expected_version is not None:
            body["sha"] = expected_version
        if self.branch:
            body["branch"] = self.branch

        client = await self._get_client()
        try:
            response = await client.put(self._file_url(path), json=body)
        except httpx.HTTPError as e:
            raise TransientFetchError(SERVICE_NAME, str(e), path=path) from e

        status = response.status_code
        if status in (409, 422) or (status == 404 and expected_version is not None):
            raise VersionConflictError(path, expected_version, http_status=status)
        if status not in (200, 201):
            raise TransientFetchError(SERVICE_NAME, f"HTTP {status}", path=path)

        try:
            version = response.json()["content"]["sha"]
        except (KeyError, TypeError, ValueError) as e:
            raise TransientFetchError(
                SERVICE_NAME, f"unreadable write response: {e}", path=path,
            ) from e

        logger.info(
            "Committed %s @ %s", path, version[:8],
            extra={"path": path, "version": version},
        )
        return version
