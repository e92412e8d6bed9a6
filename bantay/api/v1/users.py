"""
FastAPI routes: user location and safe acknowledgment.

    POST /api/v1/user/location     — save home location (creates the record)
    POST /api/v1/user/safe         — "I'm safe" acknowledgment
    GET  /api/v1/user/{user_id}    — stored user record
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends

from bantay.api.schemas import (
    MarkSafeRequest,
    MarkSafeResponse,
    SaveLocationRequest,
    SaveLocationResponse,
)
from bantay.store.base import VersionedRecordStore
from bantay.store.factory import get_record_store
from bantay.users.models import HomeLocation
from bantay.users.service import UserService

router = APIRouter(prefix="/api/v1/user", tags=["users"])


def get_user_service(store: VersionedRecordStore = Depends(get_record_store)) -> UserService:
    return UserService(store)


@router.post(
    "/location",
    response_model=SaveLocationResponse,
    summary="Save a user's home location",
)
async def save_location(
    request: SaveLocationRequest,
    service: UserService = Depends(get_user_service),
):
    home = HomeLocation(
        lat=request.home_location.lat,
        lng=request.home_location.lng,
        address=request.home_location.address,
    )
    result = await service.save_location(request.user_id, home)
    return result.to_dict()


@router.post(
    "/safe",
    response_model=MarkSafeResponse,
    summary="Acknowledge that the user is safe",
    description="Sets `is_safe` on the user's record, creating the record if needed.",
)
async def mark_safe(
    request: MarkSafeRequest,
    service: UserService = Depends(get_user_service),
):
    ack = await service.acknowledge_safe(request.user_id)
    return ack.to_dict()


@router.get("/{user_id}", summary="Get a stored user record")
async def get_user(
    user_id: str,
    service: UserService = Depends(get_user_service),
) -> Dict[str, Any]:
    record = await service.get_user(user_id)
    return record.to_dict()
