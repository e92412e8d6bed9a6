"""
store — Versioned record store (compare-and-swap over JSON documents).

Sub-modules:
    base     — VersionedRecordStore protocol, VersionedRecord, record paths
    memory   — in-process backend (development, tests)
    github   — GitHub contents API backend (httpx)
    factory  — backend selection from settings, global instance
"""

from bantay.store.base import (
    THREAT_STATUS_PATH,
    VersionedRecord,
    VersionedRecordStore,
    user_record_path,
)
from bantay.store.memory import InMemoryRecordStore

__all__ = [
    "THREAT_STATUS_PATH",
    "InMemoryRecordStore",
    "VersionedRecord",
    "VersionedRecordStore",
    "user_record_path",
]
