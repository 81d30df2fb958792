"""
Scheduler API Routes

Slot scheduler control: status, start/stop, and running a slot or job out of schedule.
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel

from autoreply.services.scheduler import scheduler_service, slot_crons

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/scheduler", tags=["scheduler"])


class SchedulerStatus(BaseModel):
    running: bool
    slots: dict[str, str]
    jobs_count: int
    jobs: list[dict]


@router.get("/status", response_model=SchedulerStatus)
async def get_scheduler_status():
    jobs = scheduler_service.get_jobs()
    return SchedulerStatus(
        running=scheduler_service.is_running(),
        slots=slot_crons(),
        jobs_count=len(jobs),
        jobs=jobs,
    )


@router.post("/start", response_model=dict)
async def start_scheduler():
    if scheduler_service.is_running():
        return {"status": "already_running"}
    scheduler_service.start()
    if not scheduler_service.is_running():
        return {"status": "disabled"}
    return {"status": "started", "jobs": scheduler_service.get_jobs()}


@router.post("/stop", response_model=dict)
async def stop_scheduler():
    if not scheduler_service.is_running():
        return {"status": "already_stopped"}
    scheduler_service.stop()
    return {"status": "stopped"}


@router.post("/slots/{slot_id}/run", response_model=dict)
async def run_slot_now(slot_id: str):
    """Dispatch every opted-in business of a slot now, bypassing the cron trigger."""
    try:
        result = await scheduler_service.run_slot(slot_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if result is None:
        # another instance holds the slot lock
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"Slot {slot_id} is already running")
    logger.info(f"[scheduler] slot {slot_id} run via API: {result['dispatched']} dispatched")
    return result


@router.post("/jobs/{job_id}/run", response_model=dict)
async def run_job_now(job_id: str):
    """Run a registered job immediately (e.g. automation_slot_1)."""
    result = await scheduler_service.run_now(job_id)
    if "error" in result:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=result["error"])
    return result
