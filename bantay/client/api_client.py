"""
api_client.py — HTTP client for the status API, used by the client store.

Every failure (network error, non-2xx, malformed body) surfaces as
TransientFetchError so the caller has one thing to handle.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from bantay.core.errors import TransientFetchError

logger = logging.getLogger(__name__)

SERVICE_NAME = "status-api"
REQUEST_TIMEOUT = 15.0  # seconds


class StatusAPIClient:
    """
    Thin async wrapper around the ``/api/v1`` endpoints.

    Usage:
        api = StatusAPIClient("http://localhost:8000/api/v1")
        body = await api.fetch_status()
        await api.close()
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = REQUEST_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._http_client

    async def close(self) -> None:
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    async def _request(self, method: str, url: str, json: Optional[Dict[str, Any]] = None) -> Any:
        client = await self._get_client()
        try:
            response = await client.request(method, url, json=json)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise TransientFetchError(
                SERVICE_NAME, f"HTTP {e.response.status_code}", url=url,
            ) from e
        except httpx.HTTPError as e:
            raise TransientFetchError(SERVICE_NAME, str(e) or type(e).__name__, url=url) from e
        except ValueError as e:
            raise TransientFetchError(SERVICE_NAME, f"invalid JSON: {e}", url=url) from e

    async def fetch_status(self) -> Dict[str, Any]:
        """The ``threat`` object from ``GET /status``."""
        body = await self._request("GET", "/status")
        threat = body.get("threat") if isinstance(body, dict) else None
        if not isinstance(threat, dict) or "level" not in threat:
            raise TransientFetchError(SERVICE_NAME, "status response has no threat.level")
        return threat

    async def fetch_sensors(self) -> List[Dict[str, Any]]:
        body = await self._request("GET", "/sensors")
        sensors = body.get("sensors") if isinstance(body, dict) else body
        if not isinstance(sensors, list):
            raise TransientFetchError(SERVICE_NAME, "sensor response is not a list")
        return sensors

    async def mark_safe(self, user_id: str) -> Dict[str, Any]:
        return await self._request("POST", "/user/safe", json={"user_id": user_id})

    async def save_location(self, user_id: str, home_location: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request(
            "POST", "/user/location",
            json={"user_id": user_id, "home_location": home_location},
        )
