"""
FastAPI route: reconciliation trigger.

    POST /api/v1/threats/check   — run one reconciliation pass

Meant for an external scheduler (cron, CI workflow). Safe to call
concurrently: overlapping passes are arbitrated by the store and the
loser reports ``conflict``.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends

from bantay.core.config import settings
from bantay.store.base import VersionedRecordStore
from bantay.store.factory import get_record_store
from bantay.threats.readings import ReadingsSource, get_readings_source
from bantay.threats.reconciler import StatusReconciler, build_reconciler

router = APIRouter(prefix="/api/v1/threats", tags=["threats"])


def get_reconciler(
    store: VersionedRecordStore = Depends(get_record_store),
    source: ReadingsSource = Depends(get_readings_source),
) -> StatusReconciler:
    return build_reconciler(store, source, settings)


@router.post(
    "/check",
    summary="Run one threat reconciliation pass",
    description=(
        "Fetches fresh readings, classifies them and publishes the result "
        "if it changes the stored status. A `danger` status is only "
        "replaced by an explicit clear to `safe`."
    ),
)
async def check_for_threats(reconciler: StatusReconciler = Depends(get_reconciler)) -> Dict[str, Any]:
    result = await reconciler.run_once()
    return result.to_dict()
