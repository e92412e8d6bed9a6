"""
Shared fixtures for the Bantay test suite.

Everything runs against the in-memory record store and static readings
sources; HTTP backends are exercised with httpx.MockTransport.
"""

from __future__ import annotations

import os
from datetime import datetime, timezone

import pytest

# Keep tests independent of a developer's .env
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("STORE_BACKEND", "memory")

from bantay.store.memory import InMemoryRecordStore  # noqa: E402
from bantay.threats.models import Readings, StationReading  # noqa: E402
from bantay.threats.readings import StaticReadingsSource  # noqa: E402

FIXED_NOW = datetime(2026, 10, 19, 3, 0, tzinfo=timezone.utc)


def make_station(
    level: float,
    station_id: str = "marikina",
    name: str = "Marikina Station",
    lat: float = 14.65,
    lng: float = 121.05,
) -> StationReading:
    return StationReading(
        station_id=station_id,
        name=name,
        water_level_m=level,
        latitude=lat,
        longitude=lng,
    )


def make_readings(
    *levels: float,
    precipitation: float = 0.0,
    intensity: float = 0.0,
) -> Readings:
    stations = tuple(
        make_station(level, station_id=f"s{i}", name=f"Station {i}")
        for i, level in enumerate(levels, start=1)
    )
    return Readings(
        precipitation_mm=precipitation,
        rain_intensity_mm_hr=intensity,
        stations=stations,
        sources=("Sensor network",),
    )


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def source() -> StaticReadingsSource:
    return StaticReadingsSource()


@pytest.fixture
def fixed_now() -> datetime:
    return FIXED_NOW
