"""
Health check aggregation — deep readiness probe.

Checks:
    • Configuration (store backend settings)
    • Record store reachability (reads ``threats/latest``)
    • Readings sources configured

``GET /health`` is the cheap liveness answer; ``GET /health/ready`` runs
these checks and answers 503 when any is unhealthy.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List

from bantay.core.config import Settings
from bantay.core.errors import ConfigurationError, NotFoundError, TransientFetchError
from bantay.core.timeutil import format_timestamp, utc_now
from bantay.store.base import THREAT_STATUS_PATH, VersionedRecordStore

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"  # partial functionality
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    name: str
    status: HealthStatus = HealthStatus.HEALTHY
    latency_ms: float = 0.0
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "latency_ms": round(self.latency_ms, 2),
        }
        if self.message:
            d["message"] = self.message
        if self.details:
            d["details"] = self.details
        return d


@dataclass
class HealthReport:
    version: str
    environment: str
    status: HealthStatus = HealthStatus.HEALTHY
    timestamp: str = ""
    uptime_seconds: float = 0.0
    components: List[ComponentHealth] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "version": self.version,
            "environment": self.environment,
            "timestamp": self.timestamp or format_timestamp(utc_now()),
            "uptime_seconds": round(self.uptime_seconds, 1),
            "components": [c.to_dict() for c in self.components],
        }


_start_time = time.monotonic()


def check_configuration(settings: Settings) -> ComponentHealth:
    comp = ComponentHealth(name="configuration")
    start = time.monotonic()
    try:
        settings.validate_store()
        comp.message = f"{settings.STORE_BACKEND} store configured"
    except ConfigurationError as e:
        comp.status = HealthStatus.UNHEALTHY
        comp.message = e.message
        comp.details = e.details
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_record_store(store: VersionedRecordStore) -> ComponentHealth:
    """A missing status record is healthy: nothing has been published yet."""
    comp = ComponentHealth(name="record_store")
    start = time.monotonic()
    try:
        record = await store.read(THREAT_STATUS_PATH)
        comp.message = "Threat status readable"
        comp.details = {"version": record.version}
    except NotFoundError:
        comp.message = "No threat status published yet"
    except TransientFetchError as e:
        comp.status = HealthStatus.UNHEALTHY
        comp.message = e.message
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


def check_data_sources(settings: Settings) -> ComponentHealth:
    comp = ComponentHealth(name="data_sources")
    comp.details = {
        "open_meteo": settings.OPEN_METEO_URL,
        "sensor_feed": settings.SENSOR_FEED_URL,
    }
    if settings.SENSOR_FEED_URL:
        comp.message = "Weather and sensor feeds configured"
    else:
        comp.status = HealthStatus.DEGRADED
        comp.message = "No sensor feed configured; water-level rules inactive"
    return comp


async def run_health_check(settings: Settings, store: VersionedRecordStore) -> HealthReport:
    """Run all checks and aggregate into a report."""
    report = HealthReport(
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        timestamp=format_timestamp(utc_now()),
        uptime_seconds=time.monotonic() - _start_time,
    )
    report.components.append(check_configuration(settings))
    report.components.append(await check_record_store(store))
    report.components.append(check_data_sources(settings))

    statuses = [c.status for c in report.components]
    if HealthStatus.UNHEALTHY in statuses:
        report.status = HealthStatus.UNHEALTHY
    elif HealthStatus.DEGRADED in statuses:
        report.status = HealthStatus.DEGRADED
    else:
        report.status = HealthStatus.HEALTHY

    if report.status != HealthStatus.HEALTHY:
        logger.warning("Health check %s", report.status.value)
    return report
