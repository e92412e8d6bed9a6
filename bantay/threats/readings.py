"""
readings.py — Pluggable readings sources for the threat classifier.

Every source exposes one coroutine::

    async def fetch(self) -> Readings

and raises TransientFetchError when the upstream cannot be reached or its
payload cannot be parsed. Callers never see partial readings: a source
either returns a complete Readings object or raises.

Sources:
    OpenMeteoSource       hourly precipitation / rain from Open-Meteo
    SensorFeedSource      water-level stations from a JSON sensor feed
    CompositeSource       merges several sources into one Readings
    StaticReadingsSource  fixed readings (development, tests)

Open-Meteo returns ``hourly.precipitation`` as mm per hourly slot with
naive GMT timestamps (``"2026-02-22T14:00"``). The current slot is the
latest timestamp that is not in the future; its value is both the
precipitation amount and the rain intensity (mm/hr). When ``hourly.rain``
is present it is used for the intensity instead. Missing values count as
0.0 (no phantom rain).
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Sequence

import httpx

from bantay.core.config import Settings
from bantay.core.errors import TransientFetchError
from bantay.core.timeutil import parse_timestamp, utc_now
from bantay.threats.models import Readings, StationReading

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MAX_RETRIES = 2
RETRY_BACKOFF_BASE = 1.0  # seconds; actual wait = base * 2^attempt
REQUEST_TIMEOUT = 15.0  # seconds

OPEN_METEO_LABEL = "Open-Meteo"
SENSOR_FEED_LABEL = "Sensor network"


class ReadingsSource(Protocol):
    async def fetch(self) -> Readings:
        ...


# ---------------------------------------------------------------------------
# HTTP layer
# ---------------------------------------------------------------------------

class _JSONFetcher:
    """
    Shared httpx plumbing: lazy client, retry on 429/5xx/network errors.

    4xx responses other than 429 fail immediately.
    """

    def __init__(
        self,
        service: str,
        url: str,
        *,
        timeout: float = REQUEST_TIMEOUT,
        max_retries: int = MAX_RETRIES,
        retry_backoff: float = RETRY_BACKOFF_BASE,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.service = service
        self.url = url
        self._timeout = timeout
        self._max_retries = max_retries
        self._retry_backoff = retry_backoff
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
                headers={"Accept": "application/json"},
            )
        return self._http_client

    async def close(self) -> None:
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    async def get_json(self) -> Any:
        last_error: Optional[str] = None

        for attempt in range(self._max_retries + 1):
            if attempt > 0:
                wait = self._retry_backoff * (2 ** (attempt - 1))
                logger.warning(
                    "Retry %d/%d for %s after %.1fs — %s",
                    attempt, self._max_retries, self.service, wait, last_error,
                )
                await asyncio.sleep(wait)

            client = await self._get_client()
            try:
                response = await client.get(self.url)
            except httpx.HTTPError as e:
                last_error = str(e) or type(e).__name__
                continue

            if response.status_code == 200:
                try:
                    return response.json()
                except ValueError as e:
                    raise TransientFetchError(self.service, f"invalid JSON: {e}") from e
            if response.status_code == 429 or response.status_code >= 500:
                last_error = f"HTTP {response.status_code}"
                continue
            raise TransientFetchError(
                self.service, f"HTTP {response.status_code}", url=self.url,
            )

        raise TransientFetchError(
            self.service,
            f"failed after {self._max_retries + 1} attempts: {last_error}",
            url=self.url,
        )


# ---------------------------------------------------------------------------
# Open-Meteo
# ---------------------------------------------------------------------------

def _find_current_index(timestamps: Sequence[str], now: datetime) -> int:
    """Latest slot whose timestamp is ≤ now; 0 if every slot is in the future."""
    best_idx = 0
    for i, ts in enumerate(timestamps):
        try:
            slot = parse_timestamp(ts)
        except (TypeError, ValueError):
            continue
        if slot is not None and slot <= now:
            best_idx = i
    return best_idx


def _value_at(values: Optional[List[Any]], index: int) -> float:
    if not values or index >= len(values) or values[index] is None:
        return 0.0
    return float(values[index])


def parse_open_meteo(payload: Dict[str, Any], now: Optional[datetime] = None) -> Readings:
    """
    Reduce an Open-Meteo forecast payload to current-hour readings.

    Raises ValueError when the payload has no hourly block.
    """
    now = now or utc_now()
    hourly = payload.get("hourly")
    if not isinstance(hourly, dict):
        raise ValueError("payload has no hourly data")

    times = hourly.get("time") or []
    idx = _find_current_index(times, now)
    precipitation = _value_at(hourly.get("precipitation"), idx)
    if hourly.get("rain") is not None:
        intensity = _value_at(hourly.get("rain"), idx)
    else:
        intensity = precipitation

    observed_at = None
    if idx < len(times):
        try:
            observed_at = parse_timestamp(times[idx])
        except (TypeError, ValueError):
            observed_at = None

    return Readings(
        precipitation_mm=round(precipitation, 2),
        rain_intensity_mm_hr=round(intensity, 2),
        sources=(OPEN_METEO_LABEL,),
        observed_at=observed_at or now,
    )


class OpenMeteoSource:
    """Current-hour precipitation from an Open-Meteo forecast URL."""

    def __init__(self, url: str, **fetch_options: Any):
        self._fetcher = _JSONFetcher(OPEN_METEO_LABEL, url, **fetch_options)

    async def fetch(self) -> Readings:
        payload = await self._fetcher.get_json()
        try:
            readings = parse_open_meteo(payload)
        except (AttributeError, TypeError, ValueError) as e:
            raise TransientFetchError(OPEN_METEO_LABEL, f"unparseable payload: {e}") from e
        logger.info(
            "Open-Meteo precipitation %.2f mm (intensity %.2f mm/hr)",
            readings.precipitation_mm, readings.rain_intensity_mm_hr,
        )
        return readings

    async def close(self) -> None:
        await self._fetcher.close()


# ---------------------------------------------------------------------------
# Water-level sensor feed
# ---------------------------------------------------------------------------

def parse_sensor_feed(payload: Any) -> List[StationReading]:
    """
    Accept either a bare list of stations or ``{"sensors": [...]}``.

    Non-water-level sensors (wind, camera) are skipped.
    """
    if isinstance(payload, dict):
        payload = payload.get("sensors")
    if not isinstance(payload, list):
        raise ValueError("sensor feed is not a list")

    stations = []
    for item in payload:
        if item.get("sensor_type", "water_level") != "water_level":
            continue
        stations.append(StationReading.from_dict(item))
    return stations


class SensorFeedSource:
    """Water-level stations from a JSON feed."""

    def __init__(self, url: str, **fetch_options: Any):
        self._fetcher = _JSONFetcher(SENSOR_FEED_LABEL, url, **fetch_options)

    async def fetch(self) -> Readings:
        payload = await self._fetcher.get_json()
        try:
            stations = parse_sensor_feed(payload)
        except (AttributeError, TypeError, ValueError) as e:
            raise TransientFetchError(SENSOR_FEED_LABEL, f"unparseable payload: {e}") from e
        return Readings(
            stations=tuple(stations),
            sources=(SENSOR_FEED_LABEL,),
            observed_at=utc_now(),
        )

    async def close(self) -> None:
        await self._fetcher.close()


# ---------------------------------------------------------------------------
# Composition
# ---------------------------------------------------------------------------

def merge_readings(parts: Sequence[Readings]) -> Readings:
    """Combine partial readings: max of scalar values, stations concatenated."""
    stations: List[StationReading] = []
    sources: List[str] = []
    observed: List[datetime] = []
    for part in parts:
        stations.extend(part.stations)
        sources.extend(part.sources)
        if part.observed_at:
            observed.append(part.observed_at)
    return Readings(
        precipitation_mm=max((p.precipitation_mm for p in parts), default=0.0),
        rain_intensity_mm_hr=max((p.rain_intensity_mm_hr for p in parts), default=0.0),
        stations=tuple(stations),
        sources=tuple(dict.fromkeys(sources)),
        observed_at=max(observed) if observed else None,
    )


class CompositeSource:
    """
    Fetch every child source concurrently and merge.

    Any child failure fails the whole fetch: the classifier never sees
    readings with a silently missing component.
    """

    def __init__(self, sources: Sequence[ReadingsSource]):
        self.sources = list(sources)

    async def fetch(self) -> Readings:
        parts = await asyncio.gather(*(s.fetch() for s in self.sources))
        return merge_readings(parts)

    async def close(self) -> None:
        for source in self.sources:
            close = getattr(source, "close", None)
            if close is not None:
                await close()


class StaticReadingsSource:
    """Returns the same readings every time; ``set`` swaps them."""

    def __init__(self, readings: Optional[Readings] = None):
        self.readings = readings or Readings()

    def set(self, readings: Readings) -> None:
        self.readings = readings

    async def fetch(self) -> Readings:
        return self.readings

    async def close(self) -> None:
        return None


# ---------------------------------------------------------------------------
# Construction from settings
# ---------------------------------------------------------------------------

def build_readings_source(settings: Settings) -> ReadingsSource:
    """Open-Meteo, plus the sensor feed when SENSOR_FEED_URL is configured."""
    sources: List[ReadingsSource] = [
        OpenMeteoSource(settings.OPEN_METEO_URL, timeout=settings.FETCH_TIMEOUT),
    ]
    if settings.SENSOR_FEED_URL:
        sources.append(
            SensorFeedSource(settings.SENSOR_FEED_URL, timeout=settings.FETCH_TIMEOUT)
        )
    if len(sources) == 1:
        return sources[0]
    return CompositeSource(sources)


_source_instance: Optional[ReadingsSource] = None


def get_readings_source() -> ReadingsSource:
    """Get or create the global readings source."""
    global _source_instance
    if _source_instance is None:
        from bantay.core.config import settings

        _source_instance = build_readings_source(settings)
    return _source_instance


async def close_readings_source() -> None:
    global _source_instance
    if _source_instance is not None:
        close = getattr(_source_instance, "close", None)
        if close is not None:
            await close()
        _source_instance = None
