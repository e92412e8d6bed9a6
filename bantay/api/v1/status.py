"""
FastAPI routes: published threat status and sensor readings.

    GET /api/v1/status    — current threat status (never fails; safe default)
    GET /api/v1/sensors   — latest water-level station readings
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends

from bantay.api.schemas import SensorListResponse
from bantay.core.config import settings
from bantay.core.errors import TransientFetchError
from bantay.store.base import VersionedRecordStore
from bantay.store.factory import get_record_store
from bantay.threats.query import StatusQueryService
from bantay.threats.readings import ReadingsSource, get_readings_source

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["status"])


def get_query_service(store: VersionedRecordStore = Depends(get_record_store)) -> StatusQueryService:
    return StatusQueryService(store, default_source=settings.DEFAULT_STATUS_SOURCE)


@router.get(
    "/status",
    summary="Current threat status",
    description=(
        "Returns the published threat status with `last_updated` and "
        "`hours_active`. Falls back to a safe status when nothing is "
        "published or the store cannot be read."
    ),
)
async def get_status(service: StatusQueryService = Depends(get_query_service)) -> Dict[str, Any]:
    return await service.get_status()


@router.get(
    "/sensors",
    response_model=SensorListResponse,
    summary="Latest water-level station readings",
)
async def get_sensors(source: ReadingsSource = Depends(get_readings_source)):
    try:
        readings = await source.fetch()
    except TransientFetchError as e:
        logger.warning("Sensor readings unavailable: %s", e.message)
        return SensorListResponse(sensors=[], count=0, error=e.message)

    sensors = [station.to_dict() for station in readings.stations]
    return SensorListResponse(
        sensors=sensors,
        count=len(sensors),
        sources=list(readings.sources),
    )
