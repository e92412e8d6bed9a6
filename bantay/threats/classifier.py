"""
classifier.py — Rule-based threat classifier.

Maps one bag of readings to a threat level, a human-readable description
and (when several rules co-fire) an informational confidence score.

═══════════════════════════════════════════════════════════════════════════
RULE TABLE
═══════════════════════════════════════════════════════════════════════════

Rules are evaluated independently (station rules once per station) and
their hits are unioned:

    Rule                   Condition                                Level
    ─────────────────────  ───────────────────────────────────────  ─────────────────────
    water_level_threshold  water level ≥ THREAT_THRESHOLD           danger if > 3.0 m,
                                                                    else warning
    heavy_rain             rain intensity > 60 mm/hr
                           AND water level > 1.5 m                  warning
    rising_trend           water level > 2.0 m                      warning
    heavy_precipitation    precipitation ≥ precipitation threshold  warning

Aggregation:

    level       = danger if any hit is danger
                  else warning if any hit
                  else safe
    description = text of the first hit (table order, then station order)
                  at the winning level
    confidence  = min(hits × 20 + 60, 95), only when ≥ 2 hits fire

Precipitation alone never produces danger: danger is reserved for a
station water level above DANGER_WATER_LEVEL_M.

The classifier is a pure function of (readings, config). The same input
always produces an identical assessment, description text included.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from bantay.threats.models import Readings, StationReading, ThreatLevel, ThreatStatus

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Constants — Tunable Parameters
# ═══════════════════════════════════════════════════════════════════════════

DANGER_WATER_LEVEL_M = 3.0
HEAVY_RAIN_INTENSITY_MM_HR = 60.0
HEAVY_RAIN_WATER_LEVEL_M = 1.5
RISING_TREND_WATER_LEVEL_M = 2.0

DEFAULT_THREAT_THRESHOLD = 2.0
DEFAULT_PRECIPITATION_THRESHOLD_MM = 2.0

CONFIDENCE_BASE = 60
CONFIDENCE_PER_HIT = 20
CONFIDENCE_CAP = 95

SAFE_DESCRIPTION = "All monitored areas show normal conditions."


# ═══════════════════════════════════════════════════════════════════════════
# Data Structures
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ClassifierConfig:
    """Thresholds the rule table is evaluated against."""
    threat_threshold: float = DEFAULT_THREAT_THRESHOLD
    precipitation_threshold_mm: float = DEFAULT_PRECIPITATION_THRESHOLD_MM

    @classmethod
    def from_settings(cls, settings: Any) -> "ClassifierConfig":
        return cls(
            threat_threshold=settings.THREAT_THRESHOLD,
            precipitation_threshold_mm=settings.PRECIPITATION_THRESHOLD_MM,
        )


@dataclass(frozen=True)
class RuleHit:
    """One rule firing, optionally tied to a station."""
    rule: str
    level: ThreatLevel
    description: str
    station_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule": self.rule,
            "level": self.level.value,
            "description": self.description,
            "station_id": self.station_id,
        }


@dataclass(frozen=True)
class ThreatAssessment:
    """Classifier output."""
    level: ThreatLevel
    description: str
    hits: Tuple[RuleHit, ...] = field(default_factory=tuple)
    confidence_score: Optional[int] = None

    @property
    def trigger_count(self) -> int:
        return len(self.hits)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level.value,
            "description": self.description,
            "trigger_count": self.trigger_count,
            "confidence_score": self.confidence_score,
            "triggers": [h.to_dict() for h in self.hits],
        }

    def to_status(
        self,
        polygon: Sequence[Sequence[float]],
        sources: Sequence[str],
        timestamp: datetime,
    ) -> ThreatStatus:
        """Build the record to publish; the polygon is attached only when active."""
        active = self.level != ThreatLevel.SAFE
        return ThreatStatus(
            level=self.level,
            description=self.description,
            timestamp=timestamp,
            polygon=[list(p) for p in polygon] if active else None,
            sources=list(dict.fromkeys(sources)),
            confidence_score=self.confidence_score,
        )


# ═══════════════════════════════════════════════════════════════════════════
# Rules
# ═══════════════════════════════════════════════════════════════════════════

def _water_level_threshold(station: StationReading, config: ClassifierConfig) -> Optional[RuleHit]:
    level_m = station.water_level_m
    if level_m < config.threat_threshold:
        return None
    if level_m > DANGER_WATER_LEVEL_M:
        return RuleHit(
            rule="water_level_threshold",
            level=ThreatLevel.DANGER,
            description=(
                f"DANGER: Water level at {station.name} is {level_m:.2f} m, above the "
                f"{DANGER_WATER_LEVEL_M:.1f} m danger mark. Risk of severe flooding."
            ),
            station_id=station.station_id,
        )
    return RuleHit(
        rule="water_level_threshold",
        level=ThreatLevel.WARNING,
        description=(
            f"WARNING: Water level at {station.name} is {level_m:.2f} m, at or above the "
            f"{config.threat_threshold:.1f} m alert threshold. Monitor conditions."
        ),
        station_id=station.station_id,
    )


def _heavy_rain(readings: Readings, station: StationReading) -> Optional[RuleHit]:
    if readings.rain_intensity_mm_hr <= HEAVY_RAIN_INTENSITY_MM_HR:
        return None
    if station.water_level_m <= HEAVY_RAIN_WATER_LEVEL_M:
        return None
    return RuleHit(
        rule="heavy_rain",
        level=ThreatLevel.WARNING,
        description=(
            f"WARNING: Heavy rain ({readings.rain_intensity_mm_hr:.1f} mm/hr) with elevated "
            f"water level at {station.name} ({station.water_level_m:.2f} m)."
        ),
        station_id=station.station_id,
    )


def _rising_trend(station: StationReading) -> Optional[RuleHit]:
    if station.water_level_m <= RISING_TREND_WATER_LEVEL_M:
        return None
    return RuleHit(
        rule="rising_trend",
        level=ThreatLevel.WARNING,
        description=(
            f"WARNING: Rising water level trend at {station.name} "
            f"({station.water_level_m:.2f} m)."
        ),
        station_id=station.station_id,
    )


def _heavy_precipitation(readings: Readings, config: ClassifierConfig) -> Optional[RuleHit]:
    if readings.precipitation_mm < config.precipitation_threshold_mm:
        return None
    return RuleHit(
        rule="heavy_precipitation",
        level=ThreatLevel.WARNING,
        description=(
            f"WARNING: Heavy precipitation detected ({readings.precipitation_mm:.1f} mm). "
            f"Risk of localized flooding."
        ),
    )


def evaluate_rules(readings: Readings, config: ClassifierConfig) -> List[RuleHit]:
    """
    Run the whole rule table and return every hit in table order.

    Station rules run once per station that reports a water level, in the
    order the stations were supplied.
    """
    hits: List[RuleHit] = []
    measured = [s for s in readings.stations if s.water_level_m is not None]

    for station in measured:
        hit = _water_level_threshold(station, config)
        if hit:
            hits.append(hit)
    for station in measured:
        hit = _heavy_rain(readings, station)
        if hit:
            hits.append(hit)
    for station in measured:
        hit = _rising_trend(station)
        if hit:
            hits.append(hit)

    hit = _heavy_precipitation(readings, config)
    if hit:
        hits.append(hit)

    return hits


def confidence_score(trigger_count: int) -> Optional[int]:
    """Informational confidence; only defined when rules co-fire."""
    if trigger_count < 2:
        return None
    return min(trigger_count * CONFIDENCE_PER_HIT + CONFIDENCE_BASE, CONFIDENCE_CAP)


def classify(readings: Readings, config: Optional[ClassifierConfig] = None) -> ThreatAssessment:
    """
    Classify readings into a ThreatAssessment.

    Examples
    --------
    >>> from bantay.threats.models import StationReading
    >>> r = Readings(stations=(StationReading("s1", "Marikina", 3.2),))
    >>> classify(r, ClassifierConfig(threat_threshold=2.0)).level
    <ThreatLevel.DANGER: 'danger'>
    >>> classify(Readings()).level
    <ThreatLevel.SAFE: 'safe'>
    """
    config = config or ClassifierConfig()
    hits = evaluate_rules(readings, config)

    level = ThreatLevel.highest([h.level for h in hits])
    if level == ThreatLevel.SAFE:
        description = SAFE_DESCRIPTION
    else:
        description = next(h.description for h in hits if h.level == level)

    assessment = ThreatAssessment(
        level=level,
        description=description,
        hits=tuple(hits),
        confidence_score=confidence_score(len(hits)),
    )
    logger.debug(
        "Classified readings → %s (%d hits)", level.value, len(hits),
        extra={"threat_level": level.value},
    )
    return assessment
