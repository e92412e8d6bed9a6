"""
models.py — User record stored at ``users/{user_id}``.

Wire format:

    {
      "user_id": "user-3f2a...",
      "home_location": {"lat": 14.6, "lng": 121.0, "address": "Marikina"},
      "is_safe": false,
      "created_at": "2026-10-19T03:00:00Z",
      "updated_at": "2026-10-19T03:00:00Z",
      "last_safe_report": null
    }

``is_safe`` starts false on first location save and becomes true only
through a safe acknowledgment.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from bantay.core.errors import ValidationError
from bantay.core.timeutil import format_timestamp, parse_timestamp, utc_now

USER_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]{0,127}$")


def validate_user_id(user_id: Any) -> str:
    """Reject ids that are not safe as a single store path segment."""
    if not isinstance(user_id, str) or not USER_ID_PATTERN.match(user_id):
        raise ValidationError(
            "user_id must be 1-128 letters, digits, '-' or '_'",
            field="user_id",
        )
    return user_id


@dataclass(frozen=True)
class HomeLocation:
    lat: float
    lng: float
    address: Optional[str] = None

    def __post_init__(self) -> None:
        if not (-90.0 <= self.lat <= 90.0) or not (-180.0 <= self.lng <= 180.0):
            raise ValidationError(
                f"Invalid coordinates ({self.lat}, {self.lng})", field="home_location",
            )

    def to_dict(self) -> Dict[str, Any]:
        return {"lat": self.lat, "lng": self.lng, "address": self.address}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HomeLocation":
        return cls(
            lat=float(data["lat"]),
            lng=float(data["lng"]),
            address=data.get("address"),
        )


@dataclass
class UserRecord:
    user_id: str
    home_location: Optional[HomeLocation] = None
    is_safe: bool = False
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    last_safe_report: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "home_location": self.home_location.to_dict() if self.home_location else None,
            "is_safe": self.is_safe,
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
            "last_safe_report": (
                format_timestamp(self.last_safe_report) if self.last_safe_report else None
            ),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserRecord":
        home = data.get("home_location")
        now = utc_now()
        return cls(
            user_id=str(data["user_id"]),
            home_location=HomeLocation.from_dict(home) if home else None,
            is_safe=bool(data.get("is_safe", False)),
            created_at=parse_timestamp(data.get("created_at")) or now,
            updated_at=parse_timestamp(data.get("updated_at")) or now,
            last_safe_report=parse_timestamp(data.get("last_safe_report")),
        )

    @classmethod
    def salvage(cls, user_id: str, data: Any, now: Optional[datetime] = None) -> "UserRecord":
        """
        Rebuild a record from a document ``from_dict`` rejected.

        Keeps ``created_at`` and the home location when they still parse;
        everything else starts fresh.
        """
        data = data if isinstance(data, dict) else {}
        now = now or utc_now()

        try:
            created_at = parse_timestamp(data.get("created_at")) or now
        except (TypeError, ValueError):
            created_at = now

        home = data.get("home_location")
        try:
            home_location = HomeLocation.from_dict(home) if isinstance(home, dict) else None
        except (KeyError, TypeError, ValueError, ValidationError):
            home_location = None

        return cls(
            user_id=user_id,
            home_location=home_location,
            created_at=created_at,
            updated_at=now,
        )


@dataclass(frozen=True)
class SafeAcknowledgment:
    """Result of ``UserService.acknowledge_safe``."""
    user_id: str
    is_safe: bool
    timestamp: datetime
    version: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "user_id": self.user_id,
            "is_safe": self.is_safe,
            "timestamp": format_timestamp(self.timestamp),
        }


@dataclass(frozen=True)
class LocationSaveResult:
    """Result of ``UserService.save_location``."""
    user_id: str
    path: str
    version: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "user_id": self.user_id,
            "path": self.path,
            "version": self.version,
        }
