"""
state.py — Client session state.

ClientSessionState is immutable; the store replaces it wholesale with
``dataclasses.replace`` so subscribers never observe a half-applied fetch.

    PERSISTED   user, has_completed_onboarding, home_location,
                location_permission
    EPHEMERAL   everything else (rebuilt from the first fetch)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from bantay.threats.models import ThreatLevel

PERSISTED_FIELDS: Tuple[str, ...] = (
    "user",
    "has_completed_onboarding",
    "home_location",
    "location_permission",
)


class UIMode(str, Enum):
    """Which top-level screen the client shows."""
    ONBOARDING = "onboarding"
    DANGER_ALERT = "danger_alert"
    DASHBOARD = "dashboard"


@dataclass(frozen=True)
class ClientSessionState:
    # persisted
    user: Optional[Dict[str, Any]] = None
    has_completed_onboarding: bool = False
    home_location: Optional[Dict[str, Any]] = None
    location_permission: str = "default"

    # ephemeral
    current_status: ThreatLevel = ThreatLevel.SAFE
    last_checked: Optional[str] = None
    threat_data: Optional[Dict[str, Any]] = None
    user_location: Optional[Dict[str, float]] = None
    sensors: List[Dict[str, Any]] = field(default_factory=list)
    nearby_sensors: List[Dict[str, Any]] = field(default_factory=list)
    is_polling: bool = False
    user_is_safe: bool = True
    acknowledged_threat_at: Optional[str] = None
    error: Optional[str] = None

    @property
    def user_id(self) -> Optional[str]:
        return (self.user or {}).get("id")

    @property
    def ui_mode(self) -> UIMode:
        if not self.has_completed_onboarding:
            return UIMode.ONBOARDING
        if self.current_status == ThreatLevel.DANGER and not self.user_is_safe:
            return UIMode.DANGER_ALERT
        return UIMode.DASHBOARD

    def persisted(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in PERSISTED_FIELDS}
