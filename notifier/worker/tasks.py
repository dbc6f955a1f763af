"""Background tasks for scheduled notifications."""

import asyncio
import time
from datetime import datetime
from typing import Any, Dict, Optional
from uuid import uuid4

from notifier import metrics
from notifier.config import settings
from notifier.logging_config import get_logger
from notifier.worker.run_lock import RunLockManager, run_lock_manager
from notifier.worker.scanner import ScanResult, ThresholdScanner

JOB_TYPE = "scheduled_notifications"


class NotificationTaskRunner:
    """
    Runs the four scan routines as one scheduled job.

    The routines are independent: each one's failure is logged and reported
    in the summary without affecting the others. Runs do not overlap while the
    Redis run lock is reachable; if Redis is down the run goes ahead and the
    dedup gate keeps repeated notifications out.
    """

    def __init__(
        self,
        scanner: Optional[ThresholdScanner] = None,
        lock_manager: Optional[RunLockManager] = None,
    ):
        self._scanner = scanner
        self.lock_manager = lock_manager or run_lock_manager
        self.last_summary: Optional[Dict[str, Any]] = None

    @property
    def scanner(self) -> ThresholdScanner:
        if self._scanner is None:
            self._scanner = ThresholdScanner()
        return self._scanner

    async def close(self):
        """Clean up resources."""
        await self.lock_manager.close()

    async def handle_scheduled_notifications(self, trigger: str = "scheduled") -> Dict[str, Any]:
        """
        Unified entrypoint for scheduled and manual runs.

        Args:
            trigger: Trigger type ("scheduled" | "manual")

        Returns:
            Run summary with per-routine results
        """
        run_id = uuid4().hex
        run_logger = get_logger(__name__, run_id=run_id, trigger=trigger)
        run_logger.info(f"Starting scheduled notifications (trigger: {trigger}, run_id: {run_id[:16]}...)")

        lock_token: Optional[str] = None
        if settings.run_lock_enabled:
            try:
                lock_token = await self.lock_manager.acquire(run_id)
            except Exception as e:
                metrics.record_run_lock(trigger, "unavailable")
                run_logger.warning(f"Run lock unavailable, continuing without it: {e}")
            else:
                if not lock_token:
                    metrics.record_run_lock(trigger, "held")
                    run_logger.info(f"Scheduled notifications already running; skipping {trigger} run")
                    return {
                        "run_id": run_id,
                        "trigger": trigger,
                        "status": "skipped",
                        "duration_seconds": 0.0,
                        "results": {},
                    }
                metrics.record_run_lock(trigger, "acquired")

        try:
            summary = await self._run_routines(run_id, trigger, run_logger)
        finally:
            if lock_token:
                try:
                    await self.lock_manager.release(run_id, lock_token)
                except Exception as e:
                    run_logger.error(f"Failed to release run lock: {e}")

        self.last_summary = summary
        return summary

    async def trigger_scheduled_notifications(self) -> Dict[str, Any]:
        """Manual trigger: same procedure as the hourly job."""
        return await self.handle_scheduled_notifications(trigger="manual")

    async def _run_routines(self, run_id: str, trigger: str, run_logger) -> Dict[str, Any]:
        started = time.monotonic()
        now = datetime.utcnow()
        kinds = self.scanner.kinds

        outcomes = await asyncio.gather(
            *(self.scanner.scan(kind, now=now) for kind in kinds),
            return_exceptions=True,
        )

        results: Dict[str, Any] = {}
        failed = 0
        for kind, outcome in zip(kinds, outcomes):
            if isinstance(outcome, ScanResult):
                results[kind.value] = outcome.as_dict()
                continue
            failed += 1
            results[kind.value] = {"kind": kind.value, "error": str(outcome)}
            run_logger.error(
                f"Scheduled notification routine {kind.value} failed: {outcome}",
                exc_info=outcome,
            )

        duration = time.monotonic() - started
        metrics.record_scheduler_run(JOB_TYPE, success=failed == 0)
        run_logger.info(
            f"Scheduled notifications completed in {duration:.2f}s "
            f"({len(kinds) - failed}/{len(kinds)} routines succeeded, trigger: {trigger})"
        )

        return {
            "run_id": run_id,
            "trigger": trigger,
            "status": "completed" if failed == 0 else "completed_with_errors",
            "started_at": now.isoformat(),
            "duration_seconds": duration,
            "results": results,
        }


# Global task runner instance
task_runner = NotificationTaskRunner()


async def run_scheduled_notifications():
    """Entry point for the scheduler."""
    await task_runner.handle_scheduled_notifications(trigger="scheduled")
