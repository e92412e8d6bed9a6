"""
threats — Threat classification and status publication.

Sub-modules:
    models      — ThreatLevel, Readings, ThreatStatus
    classifier  — rule table → ThreatAssessment
    readings    — pluggable readings sources (Open-Meteo, sensor feed)
    reconciler  — one read → classify → conditional-write pass
    scheduler   — in-process loop and one-shot cron entry point
    query       — read-only status view with safe defaults
"""

from .models import Readings, StationReading, ThreatLevel, ThreatStatus
from .classifier import ClassifierConfig, ThreatAssessment, classify
from .reconciler import ReconcileOutcome, ReconcileResult, StatusReconciler
from .query import StatusQueryService

__all__ = [
    "Readings",
    "StationReading",
    "ThreatLevel",
    "ThreatStatus",
    "ClassifierConfig",
    "ThreatAssessment",
    "classify",
    "ReconcileOutcome",
    "ReconcileResult",
    "StatusReconciler",
    "StatusQueryService",
]
