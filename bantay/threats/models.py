"""
models.py — Data structures for the threat-status pipeline.

Defines:
    • ThreatLevel     — safe / warning / danger, ordered by severity
    • StationReading  — one water-level station observation
    • Readings        — the bag of numbers the classifier consumes
    • ThreatStatus    — the singleton record stored at ``threats/latest``

═══════════════════════════════════════════════════════════════════════════
THREAT STATUS INVARIANTS
═══════════════════════════════════════════════════════════════════════════

    is_active  == (level != safe)
    polygon    is not None  ⇔  is_active

``is_active`` is derived from ``level`` and never stored independently on the
object; ``__post_init__`` rejects a polygon on a safe record and a missing
polygon on an active one. ``from_dict`` normalises documents written by
older or foreign writers so anything loaded from the store is consistent.

Wire format (JSON, one object per record):

    {
      "is_active": true,
      "level": "danger",
      "description": "DANGER: ...",
      "polygon": [[14.75, 120.9], ...],
      "timestamp": "2026-10-19T03:00:00Z",
      "sources": ["Open-Meteo"],
      "confidence_score": 80
    }
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from bantay.core.timeutil import format_timestamp, parse_timestamp, utc_now


class ThreatLevel(str, Enum):
    """Published threat level."""
    SAFE = "safe"
    WARNING = "warning"
    DANGER = "danger"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]

    @classmethod
    def highest(cls, levels: Sequence["ThreatLevel"]) -> "ThreatLevel":
        """Most severe level in ``levels``; SAFE when empty."""
        return max(levels, key=lambda lv: lv.severity, default=cls.SAFE)


_SEVERITY = {
    ThreatLevel.SAFE: 0,
    ThreatLevel.WARNING: 1,
    ThreatLevel.DANGER: 2,
}


def station_status(water_level_m: Optional[float]) -> str:
    """Display status of a single station (map markers, sensor list)."""
    if water_level_m is None:
        return "unknown"
    if water_level_m > 2.5:
        return "danger"
    if water_level_m > 1.5:
        return "warning"
    return "safe"


@dataclass(frozen=True)
class StationReading:
    """A water-level station observation."""
    station_id: str
    name: str
    water_level_m: Optional[float]
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    last_updated: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        location = None
        if self.latitude is not None and self.longitude is not None:
            location = {"lat": self.latitude, "lng": self.longitude}
        return {
            "sensor_id": self.station_id,
            "name": self.name,
            "sensor_type": "water_level",
            "water_level": self.water_level_m,
            "location": location,
            "status": station_status(self.water_level_m),
            "last_updated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StationReading":
        """
        Accepts the sensor-feed shape::

            {"sensor_id": "marikina", "name": "Marikina Station",
             "location": {"lat": 14.65, "lng": 121.05},
             "water_level": 2.3, "last_updated": "..."}

        ``reading_value`` is accepted as an alias of ``water_level``.
        """
        station_id = data.get("sensor_id") or data.get("id")
        if station_id is None:
            raise ValueError("station reading without sensor_id")
        level = data.get("water_level", data.get("reading_value"))
        location = data.get("location") or {}
        return cls(
            station_id=str(station_id),
            name=str(data.get("name") or station_id),
            water_level_m=float(level) if level is not None else None,
            latitude=_optional_float(location.get("lat")),
            longitude=_optional_float(location.get("lng")),
            last_updated=data.get("last_updated"),
        )


def _optional_float(value: Any) -> Optional[float]:
    return float(value) if value is not None else None


@dataclass(frozen=True)
class Readings:
    """
    Raw readings for one classification pass.

    precipitation_mm      most recent hourly precipitation
    rain_intensity_mm_hr  current rain rate
    stations              per-station water levels (metres)
    sources               provenance labels carried into ThreatStatus.sources
    """
    precipitation_mm: float = 0.0
    rain_intensity_mm_hr: float = 0.0
    stations: Tuple[StationReading, ...] = ()
    sources: Tuple[str, ...] = ()
    observed_at: Optional[datetime] = None

    @property
    def max_water_level(self) -> Optional[float]:
        levels = [s.water_level_m for s in self.stations if s.water_level_m is not None]
        return max(levels) if levels else None


# Modelled fields, plus the two the query service derives per response
_STATUS_KEYS = frozenset({
    "is_active", "level", "description", "polygon", "timestamp", "sources",
    "confidence_score", "last_updated", "hours_active",
})


@dataclass
class ThreatStatus:
    """The published threat record (``threats/latest``)."""
    level: ThreatLevel
    description: str
    timestamp: datetime = field(default_factory=utc_now)
    polygon: Optional[List[List[float]]] = None
    sources: List[str] = field(default_factory=list)
    confidence_score: Optional[int] = None
    extra: Dict[str, Any] = field(default_factory=dict)  # writer-specific keys, passed through

    def __post_init__(self) -> None:
        self.level = ThreatLevel(self.level)
        if self.is_active and self.polygon is None:
            raise ValueError(f"{self.level.value} status requires a polygon")
        if not self.is_active and self.polygon is not None:
            raise ValueError("safe status must not carry a polygon")

    @property
    def is_active(self) -> bool:
        return self.level != ThreatLevel.SAFE

    @classmethod
    def safe(
        cls,
        description: str,
        sources: Optional[List[str]] = None,
        timestamp: Optional[datetime] = None,
    ) -> "ThreatStatus":
        return cls(
            level=ThreatLevel.SAFE,
            description=description,
            timestamp=timestamp or utc_now(),
            polygon=None,
            sources=list(sources or []),
        )

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = dict(self.extra)
        d.update({
            "is_active": self.is_active,
            "level": self.level.value,
            "description": self.description,
            "polygon": [list(p) for p in self.polygon] if self.polygon is not None else None,
            "timestamp": format_timestamp(self.timestamp),
            "sources": list(self.sources),
        })
        if self.confidence_score is not None:
            d["confidence_score"] = self.confidence_score
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ThreatStatus":
        """
        Load a stored document. Raises ValueError/TypeError on bad level or
        timestamp; ``is_active`` in the document is ignored in favour of
        ``level``. Keys this model does not know (``precipitation`` from
        older writers, for one) are kept in ``extra``.
        """
        level = ThreatLevel(data.get("level", ThreatLevel.SAFE.value))
        polygon = data.get("polygon")
        if level == ThreatLevel.SAFE:
            polygon = None
        else:
            polygon = [[float(lat), float(lng)] for lat, lng in (polygon or [])]
        confidence = data.get("confidence_score")
        return cls(
            level=level,
            description=str(data.get("description", "")),
            timestamp=parse_timestamp(data.get("timestamp")) or utc_now(),
            polygon=polygon,
            sources=list(dict.fromkeys(data.get("sources") or [])),
            confidence_score=int(confidence) if confidence is not None else None,
            extra={k: v for k, v in data.items() if k not in _STATUS_KEYS},
        )
