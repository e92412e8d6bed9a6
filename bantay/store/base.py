"""
Versioned record store — the compare-and-swap capability every writer uses.

A record is one JSON object addressed by a stable path (``threats/latest``,
``users/{user_id}``) together with an opaque version token. Writes are
conditional on the token the writer last read:

    expected_version=None     create only; conflicts if the path exists
    expected_version="<tok>"  update only; conflicts if the stored token differs
                              or the record has disappeared

A writer holding a stale token always loses with VersionConflictError and
must re-read before trying again.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

THREAT_STATUS_PATH = "threats/latest"


def user_record_path(user_id: str) -> str:
    """Store path of a user's record."""
    return f"users/{user_id}"


@dataclass(frozen=True)
class VersionedRecord:
    """A stored JSON document and the token that identifies this revision."""
    path: str
    data: Dict[str, Any]
    version: str


class VersionedRecordStore(Protocol):
    """Narrow storage interface: read with version, conditional write."""

    async def read(self, path: str) -> VersionedRecord:
        """
        Fetch a record and its version token.

        Raises:
            NotFoundError: nothing stored at ``path``
            TransientFetchError: backend unreachable or returned garbage
        """
        ...

    async def compare_and_swap(
        self,
        path: str,
        expected_version: Optional[str],
        payload: Dict[str, Any],
        message: str = "",
    ) -> str:
        """
        Write ``payload`` if the stored version still equals ``expected_version``.

        Returns the new version token.

        Raises:
            VersionConflictError: a concurrent writer got there first
            TransientFetchError: backend unreachable
        """
        ...

    async def close(self) -> None:
        ...
