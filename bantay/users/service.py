"""
service.py — User record writes: safe acknowledgment and home location.

Both writes follow the same discipline against the versioned store:

    1. read users/{id} (absent → create-only write, version None;
       malformed → rebuilt from the fields that still parse)
    2. apply the change to what was read
    3. compare_and_swap with the version from step 1
    4. on VersionConflictError: re-read and reapply once; a second
       conflict propagates to the caller

Reapplying on a fresh read keeps concurrent updates to other fields
(e.g. a location save racing an acknowledgment) instead of clobbering them.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional, Tuple

from bantay.core.errors import NotFoundError, ValidationError, VersionConflictError
from bantay.core.timeutil import utc_now
from bantay.store.base import VersionedRecordStore, user_record_path
from bantay.users.models import (
    HomeLocation,
    LocationSaveResult,
    SafeAcknowledgment,
    UserRecord,
    validate_user_id,
)

logger = logging.getLogger(__name__)

MAX_WRITE_ATTEMPTS = 2

Mutation = Callable[[Optional[UserRecord], datetime], UserRecord]


class UserService:
    """Reads and conditionally writes user records."""

    def __init__(self, store: VersionedRecordStore, clock: Callable[[], datetime] = utc_now):
        self.store = store
        self._clock = clock

    async def _read(self, user_id: str) -> Tuple[Optional[UserRecord], Optional[str]]:
        """Current record and version; a malformed document is salvaged, not fatal."""
        path = user_record_path(user_id)
        try:
            record = await self.store.read(path)
        except NotFoundError:
            return None, None
        try:
            return UserRecord.from_dict(record.data), record.version
        except (AttributeError, KeyError, TypeError, ValueError, ValidationError) as e:
            logger.warning(
                "Malformed record at %s (%s); rewriting from salvaged fields", path, e,
                extra={"path": path, "user_id": user_id},
            )
            return UserRecord.salvage(user_id, record.data, self._clock()), record.version

    async def _write(self, user_id: str, mutate: Mutation, message: str) -> Tuple[UserRecord, str]:
        path = user_record_path(user_id)
        for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
            current, version = await self._read(user_id)
            updated = mutate(current, self._clock())
            try:
                new_version = await self.store.compare_and_swap(
                    path, version, updated.to_dict(), message=message,
                )
                return updated, new_version
            except VersionConflictError:
                if attempt == MAX_WRITE_ATTEMPTS:
                    logger.warning(
                        "Giving up on %s after %d conflicting writes", path, attempt,
                        extra={"path": path, "user_id": user_id},
                    )
                    raise
                logger.info(
                    "Conflict writing %s; re-reading and retrying", path,
                    extra={"path": path, "user_id": user_id},
                )
        raise AssertionError("unreachable")

    async def get_user(self, user_id: str) -> UserRecord:
        """Raises NotFoundError when the user has no record."""
        validate_user_id(user_id)
        record = await self.store.read(user_record_path(user_id))
        return UserRecord.from_dict(record.data)

    async def acknowledge_safe(self, user_id: str) -> SafeAcknowledgment:
        """Mark the user safe, creating a bare record when none exists."""
        validate_user_id(user_id)

        def mutate(current: Optional[UserRecord], now: datetime) -> UserRecord:
            if current is None:
                return UserRecord(
                    user_id=user_id,
                    home_location=None,
                    is_safe=True,
                    created_at=now,
                    updated_at=now,
                    last_safe_report=now,
                )
            current.is_safe = True
            current.last_safe_report = now
            current.updated_at = now
            return current

        record, version = await self._write(user_id, mutate, f"User {user_id} marked safe")
        logger.info("User marked safe", extra={"user_id": user_id, "version": version})
        return SafeAcknowledgment(
            user_id=user_id,
            is_safe=record.is_safe,
            timestamp=record.last_safe_report or record.updated_at,
            version=version,
        )

    async def save_location(self, user_id: str, home_location: HomeLocation) -> LocationSaveResult:
        """Create or update the user's home location; ``is_safe`` is left untouched."""
        validate_user_id(user_id)

        def mutate(current: Optional[UserRecord], now: datetime) -> UserRecord:
            if current is None:
                return UserRecord(
                    user_id=user_id,
                    home_location=home_location,
                    is_safe=False,
                    created_at=now,
                    updated_at=now,
                )
            current.home_location = home_location
            current.updated_at = now
            return current

        _, version = await self._write(user_id, mutate, f"Save location for {user_id}")
        path = user_record_path(user_id)
        logger.info("Saved home location", extra={"user_id": user_id, "path": path})
        return LocationSaveResult(user_id=user_id, path=path, version=version)
