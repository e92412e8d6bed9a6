"""
Status query service — read-only view of the published threat status.

Clients poll this. It never raises and never reports anything but
``safe`` when it cannot read a valid record:

    record present     → stored status + last_updated + hours_active
    record absent      → synthesised safe status ("No active threats detected")
    any failure        → synthesised safe status ("Status check failed - defaulting to safe")
"""

from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Any, Dict, Optional

from bantay.core.errors import NotFoundError
from bantay.core.timeutil import format_timestamp, utc_now
from bantay.store.base import THREAT_STATUS_PATH, VersionedRecordStore
from bantay.threats.models import ThreatStatus

logger = logging.getLogger(__name__)

NO_THREAT_DESCRIPTION = "No active threats detected"
FAILURE_DESCRIPTION = "Status check failed - defaulting to safe"


def hours_active(status: ThreatStatus, now: datetime) -> int:
    """Whole hours since the status was published; 0 for safe or future timestamps."""
    if not status.is_active:
        return 0
    elapsed = (now - status.timestamp).total_seconds() / 3600.0
    return max(0, math.floor(elapsed))


def status_response(status: ThreatStatus, now: datetime) -> Dict[str, Any]:
    threat = status.to_dict()
    threat["last_updated"] = threat["timestamp"]
    threat["hours_active"] = hours_active(status, now)
    return {"threat": threat}


class StatusQueryService:
    """Serves ``GET /status`` from the record store."""

    def __init__(
        self,
        store: VersionedRecordStore,
        default_source: str = "PAGASA",
        path: str = THREAT_STATUS_PATH,
    ):
        self.store = store
        self.default_source = default_source
        self.path = path

    def _default(self, description: str, now: datetime) -> Dict[str, Any]:
        status = ThreatStatus.safe(description, [self.default_source], timestamp=now)
        body = status_response(status, now)
        body["threat"]["last_updated"] = format_timestamp(now)
        return body

    async def get_status(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or utc_now()
        try:
            record = await self.store.read(self.path)
            status = ThreatStatus.from_dict(record.data)
        except NotFoundError:
            return self._default(NO_THREAT_DESCRIPTION, now)
        except Exception:
            logger.exception("Status check failed; serving safe default")
            return self._default(FAILURE_DESCRIPTION, now)
        return status_response(status, now)
