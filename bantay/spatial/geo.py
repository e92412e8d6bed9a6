"""
geo.py — Distance helpers for the nearby-sensor view.

The client shows water-level stations within NEARBY_SENSOR_RADIUS_KM
(default 10 km) of the user's live location.

All distances are in **kilometers**. Coordinates are in **decimal degrees**.

Haversine:

    a = sin²(Δφ / 2) + cos(φ₁) · cos(φ₂) · sin²(Δλ / 2)
    c = 2 · atan2(√a, √(1 − a))
    d = R · c
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

EARTH_RADIUS_KM: float = 6_371.0088  # IAU mean radius
DEFAULT_NEARBY_RADIUS_KM: float = 10.0


@dataclass(frozen=True)
class Coordinate:
    """A geographic point in decimal degrees."""
    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        if not (-90.0 <= self.latitude <= 90.0):
            raise ValueError(f"Latitude must be in [-90, 90], got {self.latitude}")
        if not (-180.0 <= self.longitude <= 180.0):
            raise ValueError(f"Longitude must be in [-180, 180], got {self.longitude}")

    @classmethod
    def from_mapping(cls, data: Optional[Dict[str, Any]]) -> Optional["Coordinate"]:
        """``{"lat": .., "lng": ..}`` → Coordinate; None when either is missing."""
        if not data:
            return None
        lat, lng = data.get("lat"), data.get("lng")
        if lat is None or lng is None:
            return None
        return cls(float(lat), float(lng))


def haversine(point1: Coordinate, point2: Coordinate) -> float:
    """
    Great-circle distance in kilometers, rounded to 4 decimal places.

    >>> haversine(Coordinate(0, 0), Coordinate(0, 0))
    0.0
    """
    lat1, lat2 = math.radians(point1.latitude), math.radians(point2.latitude)
    d_lat = lat2 - lat1
    d_lon = math.radians(point2.longitude - point1.longitude)

    a = (
        math.sin(d_lat / 2.0) ** 2
        + math.cos(lat1) * math.cos(lat2) * math.sin(d_lon / 2.0) ** 2
    )
    c = 2.0 * math.atan2(math.sqrt(a), math.sqrt(1.0 - a))
    return round(EARTH_RADIUS_KM * c, 4)


def _bounding_box(center: Coordinate, radius_km: float) -> Tuple[float, float, float, float]:
    """(min_lat, max_lat, min_lon, max_lon) enclosing the radius circle."""
    angular = math.degrees(radius_km / EARTH_RADIUS_KM)
    cos_lat = math.cos(math.radians(center.latitude))
    delta_lon = angular / cos_lat if cos_lat > 1e-10 else 180.0
    return (
        max(center.latitude - angular, -90.0),
        min(center.latitude + angular, 90.0),
        max(center.longitude - delta_lon, -180.0),
        min(center.longitude + delta_lon, 180.0),
    )


def nearby_sensors(
    center: Coordinate,
    sensors: Iterable[Dict[str, Any]],
    radius_km: float = DEFAULT_NEARBY_RADIUS_KM,
) -> List[Dict[str, Any]]:
    """
    Sensors (API dicts with ``location: {lat, lng}``) within ``radius_km``.

    Returns copies with ``distance_km`` added, nearest first. Sensors without
    a location are skipped.
    """
    if radius_km <= 0:
        raise ValueError(f"Radius must be positive, got {radius_km}")

    min_lat, max_lat, min_lon, max_lon = _bounding_box(center, radius_km)
    matched = []
    for sensor in sensors:
        try:
            point = Coordinate.from_mapping(sensor.get("location"))
        except (AttributeError, TypeError, ValueError):
            continue
        if point is None:
            continue
        if not (min_lat <= point.latitude <= max_lat and min_lon <= point.longitude <= max_lon):
            continue
        dist = haversine(center, point)
        if dist <= radius_km:
            matched.append({**sensor, "distance_km": dist})

    matched.sort(key=lambda s: s["distance_km"])
    return matched
