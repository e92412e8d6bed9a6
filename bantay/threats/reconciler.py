"""
reconciler.py — Server-side status reconciliation pass.

One pass reads the published ThreatStatus, classifies fresh readings and
conditionally publishes the candidate. Scheduling is external: a cron
hitting ``POST /api/v1/threats/check``, the in-process loop in
``bantay.threats.scheduler``, or ``python -m bantay.threats.scheduler --once``.

═══════════════════════════════════════════════════════════════════════════
PASS FLOW
═══════════════════════════════════════════════════════════════════════════

    1. read threats/latest (+ version token)
         NotFound           → stored = safe, version = None (create-only write)
         fetch/parse error  → STORE_UNAVAILABLE, stop
    2. fetch readings → classify → candidate
         fetch error        → candidate = safe, READINGS_UNAVAILABLE, stop
    3. anti-flicker / downgrade policy
         candidate == stored        → UNCHANGED, no write
         danger → warning           → SUPPRESSED_DOWNGRADE, no write
         anything else              → write
    4. compare_and_swap(path, version from step 1, candidate)
         VersionConflictError → CONFLICT, stop (next scheduled pass reconciles)

═══════════════════════════════════════════════════════════════════════════
DOWNGRADE POLICY
═══════════════════════════════════════════════════════════════════════════

    stored \\ candidate   safe        warning       danger
    ──────────────────   ─────────   ───────────   ─────────
    safe                 no-op       write         write
    warning              write       no-op         write
    danger               write       suppressed    no-op

Danger is only ever left through an explicit clear to safe; a lesser
threat detected while danger is published never replaces it.

Failures on either fetch leave the published record untouched: uncertain
data never overwrites a status, and never produces danger.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

from bantay.core.errors import NotFoundError, TransientFetchError, VersionConflictError
from bantay.core.timeutil import utc_now
from bantay.store.base import THREAT_STATUS_PATH, VersionedRecordStore
from bantay.threats.classifier import ClassifierConfig, ThreatAssessment, classify
from bantay.threats.models import ThreatLevel, ThreatStatus
from bantay.threats.readings import ReadingsSource

logger = logging.getLogger(__name__)


class ReconcileOutcome(str, Enum):
    """How a reconciliation pass ended."""
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    SUPPRESSED_DOWNGRADE = "suppressed_downgrade"
    CONFLICT = "conflict"
    READINGS_UNAVAILABLE = "readings_unavailable"
    STORE_UNAVAILABLE = "store_unavailable"

    @property
    def wrote(self) -> bool:
        return self is ReconcileOutcome.UPDATED


@dataclass
class ReconcileResult:
    """Summary of one pass (also the trigger endpoint's response body)."""
    outcome: ReconcileOutcome
    previous_level: ThreatLevel
    candidate_level: ThreatLevel
    published_level: ThreatLevel
    version: Optional[str] = None
    assessment: Optional[ThreatAssessment] = None
    error: Optional[str] = None

    @property
    def threat_updated(self) -> bool:
        return self.outcome.wrote

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.outcome not in (
                ReconcileOutcome.READINGS_UNAVAILABLE,
                ReconcileOutcome.STORE_UNAVAILABLE,
            ),
            "outcome": self.outcome.value,
            "threat_updated": self.threat_updated,
            "previous_level": self.previous_level.value,
            "candidate_level": self.candidate_level.value,
            "level": self.published_level.value,
            "version": self.version,
            "assessment": self.assessment.to_dict() if self.assessment else None,
            "error": self.error,
        }


def should_publish(stored: ThreatLevel, candidate: ThreatLevel) -> ReconcileOutcome:
    """
    Apply the anti-flicker and downgrade policy.

    Returns UPDATED when the candidate should be written, otherwise the
    outcome explaining why not.
    """
    if candidate == stored:
        return ReconcileOutcome.UNCHANGED
    if stored == ThreatLevel.DANGER and candidate == ThreatLevel.WARNING:
        return ReconcileOutcome.SUPPRESSED_DOWNGRADE
    return ReconcileOutcome.UPDATED


class StatusReconciler:
    """
    Reconcile the published threat status with fresh readings.

    Usage:
        reconciler = StatusReconciler(store, readings_source, config)
        result = await reconciler.run_once()
        print(result.outcome)
    """

    def __init__(
        self,
        store: VersionedRecordStore,
        readings_source: ReadingsSource,
        config: Optional[ClassifierConfig] = None,
        *,
        polygon: Sequence[Sequence[float]] = (),
        sources: Sequence[str] = (),
        path: str = THREAT_STATUS_PATH,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.readings_source = readings_source
        self.config = config or ClassifierConfig()
        self.polygon: List[List[float]] = [list(p) for p in polygon]
        self.sources = list(sources)
        self.path = path
        self._clock = clock

    async def _read_stored(self):
        """Stored (level, version); (SAFE, None) when nothing is published yet."""
        try:
            record = await self.store.read(self.path)
        except NotFoundError:
            logger.info("No threat status at %s yet; treating as safe", self.path)
            return ThreatLevel.SAFE, None
        status = ThreatStatus.from_dict(record.data)
        return status.level, record.version

    async def run_once(self) -> ReconcileResult:
        """Run one reconciliation pass. Never raises for fetch or conflict failures."""
        # 1. Current published status
        try:
            stored_level, version = await self._read_stored()
        except (TransientFetchError, KeyError, TypeError, ValueError) as e:
            logger.warning("Threat status unreadable, skipping pass: %s", e)
            return ReconcileResult(
                outcome=ReconcileOutcome.STORE_UNAVAILABLE,
                previous_level=ThreatLevel.SAFE,
                candidate_level=ThreatLevel.SAFE,
                published_level=ThreatLevel.SAFE,
                error=str(e),
            )

        # 2. Fresh readings → candidate
        try:
            readings = await self.readings_source.fetch()
        except TransientFetchError as e:
            logger.warning(
                "Readings unavailable; keeping published %s status: %s",
                stored_level.value, e.message,
                extra={"outcome": ReconcileOutcome.READINGS_UNAVAILABLE.value},
            )
            return ReconcileResult(
                outcome=ReconcileOutcome.READINGS_UNAVAILABLE,
                previous_level=stored_level,
                candidate_level=ThreatLevel.SAFE,
                published_level=stored_level,
                version=version,
                error=e.message,
            )

        assessment = classify(readings, self.config)
        candidate = assessment.level

        # 3. Anti-flicker / downgrade policy
        decision = should_publish(stored_level, candidate)
        if decision is not ReconcileOutcome.UPDATED:
            logger.info(
                "No write: stored=%s candidate=%s (%s)",
                stored_level.value, candidate.value, decision.value,
                extra={"outcome": decision.value, "threat_level": stored_level.value},
            )
            return ReconcileResult(
                outcome=decision,
                previous_level=stored_level,
                candidate_level=candidate,
                published_level=stored_level,
                version=version,
                assessment=assessment,
            )

        # 4. Conditional write against the version read in step 1
        status = assessment.to_status(
            polygon=self.polygon,
            sources=list(readings.sources) or self.sources,
            timestamp=self._clock(),
        )
        try:
            new_version = await self.store.compare_and_swap(
                self.path,
                version,
                status.to_dict(),
                message=f"Update threat status: {candidate.value.upper()}",
            )
        except VersionConflictError as e:
            logger.warning(
                "Concurrent writer updated %s; abandoning this pass", self.path,
                extra={"outcome": ReconcileOutcome.CONFLICT.value, "path": self.path},
            )
            return ReconcileResult(
                outcome=ReconcileOutcome.CONFLICT,
                previous_level=stored_level,
                candidate_level=candidate,
                published_level=stored_level,
                version=version,
                assessment=assessment,
                error=e.message,
            )
        except TransientFetchError as e:
            logger.warning("Write to %s failed: %s", self.path, e.message)
            return ReconcileResult(
                outcome=ReconcileOutcome.STORE_UNAVAILABLE,
                previous_level=stored_level,
                candidate_level=candidate,
                published_level=stored_level,
                version=version,
                assessment=assessment,
                error=e.message,
            )

        logger.info(
            "Threat status changed %s → %s", stored_level.value, candidate.value,
            extra={
                "outcome": ReconcileOutcome.UPDATED.value,
                "threat_level": candidate.value,
                "version": new_version,
            },
        )
        return ReconcileResult(
            outcome=ReconcileOutcome.UPDATED,
            previous_level=stored_level,
            candidate_level=candidate,
            published_level=candidate,
            version=new_version,
            assessment=assessment,
        )


def build_reconciler(store: VersionedRecordStore, readings_source: ReadingsSource, settings: Any) -> StatusReconciler:
    """Reconciler wired from settings (threshold, polygon, default sources)."""
    return StatusReconciler(
        store,
        readings_source,
        ClassifierConfig.from_settings(settings),
        polygon=settings.THREAT_POLYGON,
        sources=settings.THREAT_SOURCES,
    )
