"""
Scheduled reconciliation.

Two ways to drive StatusReconciler on a cadence:

1. IN-PROCESS
   ReconcileScheduler runs ``run_once`` every RECONCILE_INTERVAL_MINUTES
   inside the API process (enabled with RECONCILE_SCHEDULE_ENABLED).

2. EXTERNAL CRON
   ``python -m bantay.threats.scheduler --once`` runs a single pass and
   exits non-zero when the pass could not read its inputs. Suitable for a
   CI workflow or system cron every ~10 minutes.

Passes never overlap within one scheduler; concurrent schedulers in
different processes are serialised by the store's compare-and-swap.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from bantay.core.logging_config import log_context, setup_logging
from bantay.threats.reconciler import ReconcileOutcome, ReconcileResult, StatusReconciler

logger = logging.getLogger(__name__)

ERROR_BACKOFF_SECONDS = 60.0


class ReconcileScheduler:
    """
    Runs reconciliation passes on a fixed interval.

    Usage:
        scheduler = ReconcileScheduler(reconciler, interval_seconds=600)
        await scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(self, reconciler: StatusReconciler, interval_seconds: float = 600.0):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.reconciler = reconciler
        self.interval_seconds = interval_seconds
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self.history: List[ReconcileResult] = []

    @property
    def running(self) -> bool:
        return self._running

    @property
    def last_result(self) -> Optional[ReconcileResult]:
        return self.history[-1] if self.history else None

    async def start(self) -> None:
        """Start the loop; the first pass runs immediately."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run())
        logger.info("Reconcile scheduler started (every %.0fs)", self.interval_seconds)

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Reconcile scheduler stopped")

    async def _run(self) -> None:
        pass_number = 0
        while self._running:
            pass_number += 1
            try:
                with log_context(pass_number=pass_number):
                    result = await self.reconciler.run_once()
                self.history = (self.history + [result])[-50:]
                await asyncio.sleep(self.interval_seconds)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.exception("Reconcile pass crashed: %s", e)
                await asyncio.sleep(min(ERROR_BACKOFF_SECONDS, self.interval_seconds))


# ═══════════════════════════════════════════════════════════════════════════
# One-shot entry point (cron)
# ═══════════════════════════════════════════════════════════════════════════

async def run_single_pass() -> ReconcileResult:
    """Build the configured store and readings source, run one pass, clean up."""
    from bantay.core.config import settings
    from bantay.store.factory import build_record_store
    from bantay.threats.readings import build_readings_source
    from bantay.threats.reconciler import build_reconciler

    store = build_record_store(settings)
    source = build_readings_source(settings)
    try:
        return await build_reconciler(store, source, settings).run_once()
    finally:
        close = getattr(source, "close", None)
        if close is not None:
            await close()
        await store.close()


def main(argv: Optional[List[str]] = None) -> int:
    from bantay.core.config import settings

    parser = argparse.ArgumentParser(description="Reconcile the published threat status")
    parser.add_argument("--once", action="store_true", help="run a single pass and exit")
    args = parser.parse_args(argv)

    setup_logging()

    if args.once:
        result = asyncio.run(run_single_pass())
        print(result.outcome.value)
        failed = result.outcome in (
            ReconcileOutcome.READINGS_UNAVAILABLE,
            ReconcileOutcome.STORE_UNAVAILABLE,
        )
        return 1 if failed else 0

    async def forever() -> None:
        from bantay.store.factory import build_record_store
        from bantay.threats.readings import build_readings_source
        from bantay.threats.reconciler import build_reconciler

        reconciler = build_reconciler(
            build_record_store(settings), build_readings_source(settings), settings,
        )
        scheduler = ReconcileScheduler(reconciler, settings.RECONCILE_INTERVAL_MINUTES * 60)
        await scheduler.start()
        try:
            await asyncio.Event().wait()
        finally:
            await scheduler.stop()

    try:
        asyncio.run(forever())
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
