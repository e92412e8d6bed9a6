"""
In-process versioned record store.

Used for local development and tests. Each successful write produces a new
git-style token (SHA-1 over revision number, path and canonical JSON), so a
record rewritten with identical content still gets a fresh version.
"""

from __future__ import annotations

import copy
import hashlib
import json
import logging
from typing import Any, Dict, Optional, Tuple

from bantay.core.errors import NotFoundError, VersionConflictError
from bantay.store.base import VersionedRecord

logger = logging.getLogger(__name__)


class InMemoryRecordStore:
    """Dict-backed store with compare-and-swap semantics."""

    def __init__(self) -> None:
        self._records: Dict[str, Tuple[Dict[str, Any], str]] = {}
        self._revision = 0

    def _next_version(self, path: str, payload: Dict[str, Any]) -> str:
        self._revision += 1
        canonical = json.dumps(payload, sort_keys=True, default=str)
        raw = f"{self._revision}:{path}:{canonical}".encode()
        return hashlib.sha1(raw).hexdigest()

    async def read(self, path: str) -> VersionedRecord:
        entry = self._records.get(path)
        if entry is None:
            raise NotFoundError("Record", path=path)
        data, version = entry
        return VersionedRecord(path=path, data=copy.deepcopy(data), version=version)

    async def compare_and_swap(
        self,
        path: str,
        expected_version: Optional[str],
        payload: Dict[str, Any],
        message: str = "",
    ) -> str:
        # No await between check and set: atomic under the event loop
        current = self._records.get(path)
        current_version = current[1] if current else None
        if current_version != expected_version:
            raise VersionConflictError(
                path, expected_version, current_version=current_version,
            )

        stored = json.loads(json.dumps(payload, default=str))
        version = self._next_version(path, stored)
        self._records[path] = (stored, version)
        logger.debug(
            "Stored %s @ %s%s", path, version[:8], f" ({message})" if message else "",
            extra={"path": path, "version": version},
        )
        return version

    async def close(self) -> None:
        return None

    def clear(self) -> None:
        """Drop every record (tests)."""
        self._records.clear()
