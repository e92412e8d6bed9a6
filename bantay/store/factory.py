"""Record store construction from settings."""

from __future__ import annotations

import logging
from typing import Optional

from bantay.core.config import Settings, settings as default_settings
from bantay.store.base import VersionedRecordStore
from bantay.store.github import GitHubContentsStore
from bantay.store.memory import InMemoryRecordStore

logger = logging.getLogger(__name__)


def build_record_store(settings: Settings) -> VersionedRecordStore:
    """Create the configured backend. Raises ConfigurationError if incomplete."""
    settings.validate_store()

    if settings.STORE_BACKEND.lower() == "github":
        logger.info(
            "Using GitHub record store %s/%s", settings.STORE_OWNER, settings.STORE_REPO,
        )
        return GitHubContentsStore(
            owner=settings.STORE_OWNER,
            repo=settings.STORE_REPO,
            token=settings.STORE_TOKEN,
            base_url=settings.STORE_BASE_URL,
            branch=settings.STORE_BRANCH,
            data_prefix=settings.STORE_DATA_PREFIX,
            timeout=settings.FETCH_TIMEOUT,
        )

    logger.warning("Using in-memory record store — data is lost on restart")
    return InMemoryRecordStore()


_store_instance: Optional[VersionedRecordStore] = None


def get_record_store() -> VersionedRecordStore:
    """Get or create the global record store."""
    global _store_instance
    if _store_instance is None:
        _store_instance = build_record_store(default_settings)
    return _store_instance


async def close_record_store() -> None:
    """Close and forget the global record store."""
    global _store_instance
    if _store_instance is not None:
        await _store_instance.close()
        _store_instance = None
