"""Admin endpoints for the scheduled notification run."""

import logging

from fastapi import APIRouter, Depends

from notifier.api.deps import require_admin_api_key
from notifier.worker.run_lock import run_lock_manager
from notifier.worker.tasks import task_runner

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/scheduler",
    tags=["scheduler"],
    dependencies=[Depends(require_admin_api_key)],
)


@router.post("/trigger")
async def trigger_scheduled_notifications():
    """
    Run all scan routines now and return the run summary.

    Goes through the same lock as the hourly job: if a run is in progress the
    response has ``status: skipped``.
    """
    return await task_runner.trigger_scheduled_notifications()


@router.get("/last-run")
async def last_run():
    """Summary of the most recent run in this process, if any."""
    return {"last_run": task_runner.last_summary}


@router.post("/admin/force-unlock")
async def force_unlock():
    """Force-release a run lock left behind by a crashed process."""
    lock_info = await run_lock_manager.get_lock_info()
    if not lock_info:
        return {"message": "No lock found", "lock_info": None}

    await run_lock_manager.force_unlock()
    run_id = lock_info.get("run_id")
    logger.warning(f"Admin force-unlock executed (run_id: {run_id[:16] if run_id else 'unknown'}...)")
    return {"message": "Lock force-unlocked", "lock_info": lock_info}
