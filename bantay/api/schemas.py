"""
Pydantic schemas for the status API.

Separated from the route handlers so the client and tests can build
valid bodies without importing FastAPI routes.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from bantay.users.models import USER_ID_PATTERN

_USER_ID = Field(
    ...,
    pattern=USER_ID_PATTERN.pattern,
    description="Device user id (letters, digits, '-' or '_')",
    examples=["user-3f2a9c"],
)


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class HomeLocationInput(BaseModel):
    lat: float = Field(..., ge=-90.0, le=90.0, examples=[14.65])
    lng: float = Field(..., ge=-180.0, le=180.0, examples=[121.05])
    address: Optional[str] = Field(None, max_length=500, examples=["Marikina City"])


class SaveLocationRequest(BaseModel):
    user_id: str = _USER_ID
    home_location: HomeLocationInput


class MarkSafeRequest(BaseModel):
    user_id: str = _USER_ID


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class SaveLocationResponse(BaseModel):
    success: bool
    user_id: str
    path: str
    version: str


class MarkSafeResponse(BaseModel):
    success: bool
    user_id: str
    is_safe: bool
    timestamp: str


class SensorListResponse(BaseModel):
    sensors: List[Dict[str, Any]]
    count: int
    sources: List[str] = Field(default_factory=list)
    error: Optional[str] = None
