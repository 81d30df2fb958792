"""
Scheduler Service

Runs the review automation for every business opted into a sync slot:
- one cron job per slot (slot_1, slot_2), expressions from settings
- each tick lists the slot's businesses and dispatches one run per business
  (Celery task when CELERY_ENABLED, otherwise in-process)

Single-leader election via Postgres advisory locks:
- Only the instance that acquires the lock executes the tick
- Other instances silently skip
- Non-Postgres databases (local sqlite) run without the lock
- Controlled by SCHEDULER_ENABLED env (default: true)
"""
from __future__ import annotations

import logging
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from autoreply.db import get_session_factory
from autoreply.models import SyncSlot
from autoreply.services.automation_service import run_business_automation
from autoreply.services.sanitize import error_text
from autoreply.services.store import ReviewStore, SqlReviewStore
from autoreply.settings import get_settings

logger = logging.getLogger(__name__)

# Advisory lock keys (arbitrary int64, unique per slot)
SLOT_LOCKS = {
    SyncSlot.slot_1.value: 910_001,
    SyncSlot.slot_2.value: 910_002,
}


def _job_id(slot_id: str) -> str:
    return f"automation_{slot_id}"


def slot_crons() -> dict[str, str]:
    settings = get_settings()
    return {
        SyncSlot.slot_1.value: settings.slot_1_cron,
        SyncSlot.slot_2.value: settings.slot_2_cron,
    }


class SchedulerService:
    """Fires the automation pipeline per slot.

    Uses Postgres pg_try_advisory_lock on each tick so that only
    one backend instance (the leader) dispatches the slot while
    other instances skip silently.
    """

    _instance: "SchedulerService | None" = None

    def __init__(self):
        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self._session_factory: async_sessionmaker[AsyncSession] | None = None
        self._store: ReviewStore | None = None
        self._running = False

    @classmethod
    def get_instance(cls) -> "SchedulerService":
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def configure(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        store: ReviewStore | None = None,
    ):
        self._session_factory = session_factory or get_session_factory()
        self._store = store or SqlReviewStore(self._session_factory)

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            self.configure()
        return self._session_factory

    @property
    def store(self) -> ReviewStore:
        if self._store is None:
            self.configure()
        return self._store

    async def _try_advisory_lock(self, session: AsyncSession, lock_key: int) -> bool:
        """Non-blocking leader election for one tick. Always True off Postgres."""
        if session.bind.dialect.name != "postgresql":
            return True
        result = await session.execute(text(f"SELECT pg_try_advisory_lock({lock_key})"))
        return bool(result.scalar())

    async def _release_advisory_lock(self, session: AsyncSession, lock_key: int):
        if session.bind.dialect.name != "postgresql":
            return
        await session.execute(text(f"SELECT pg_advisory_unlock({lock_key})"))

    def start(self):
        """Start the scheduler (respects SCHEDULER_ENABLED env)."""
        settings = get_settings()
        if not settings.scheduler_enabled:
            logger.info("[scheduler] disabled by SCHEDULER_ENABLED=false, skipping start")
            return
        if self._running:
            return

        for slot_id, expr in slot_crons().items():
            self.scheduler.add_job(
                self.run_slot,
                CronTrigger.from_crontab(expr, timezone="UTC"),
                args=[slot_id],
                id=_job_id(slot_id),
                name=f"Review automation {slot_id}",
                replace_existing=True,
            )

        self.scheduler.start()
        self._running = True
        logger.info("[scheduler] started (single-leader mode via advisory locks)")

    def stop(self):
        if not self._running:
            return
        self.scheduler.shutdown(wait=False)
        self._running = False
        logger.info("[scheduler] stopped")

    def is_running(self) -> bool:
        return self._running

    async def run_slot(self, slot_id: str) -> dict[str, Any] | None:
        """Dispatch one automation run per business in the slot.

        Protected by advisory lock, only one instance executes per tick.
        """
        lock_key = SLOT_LOCKS.get(slot_id)
        if lock_key is None:
            raise ValueError(f"Unknown slot {slot_id}")

        async with self.session_factory() as session:
            if not await self._try_advisory_lock(session, lock_key):
                logger.debug(f"[scheduler][{slot_id}] advisory lock not acquired, another instance is leader")
                return None
            try:
                businesses = await self.store.list_slot_businesses(slot_id)
                logger.info(f"[scheduler][{slot_id}] LEADER, dispatching {len(businesses)} businesses")

                dispatched, failed = 0, []
                for business in businesses:
                    try:
                        await self._dispatch(business.id, business.user_id, slot_id)
                        dispatched += 1
                    except Exception as e:
                        # one business must not stop the slot
                        logger.error(f"[scheduler][{slot_id}] business={business.id} dispatch failed: {error_text(e)}")
                        failed.append({"business_id": business.id, "error": error_text(e)})

                logger.info(f"[scheduler][{slot_id}] completed: {dispatched} dispatched, {len(failed)} failed")
                return {"slot_id": slot_id, "dispatched": dispatched, "failed": failed}
            finally:
                await self._release_advisory_lock(session, lock_key)

    async def _dispatch(self, business_id: str, user_id: str, slot_id: str) -> None:
        if get_settings().celery_enabled:
            from autoreply.worker.tasks import process_business

            process_business.delay(business_id, user_id, slot_id, "scheduled")
            return
        await run_business_automation(business_id, user_id, slot_id, "scheduled", store=self.store)

    def get_jobs(self) -> list[dict]:
        jobs = []
        for job in self.scheduler.get_jobs():
            next_run = getattr(job, "next_run_time", None)
            jobs.append({
                "id": job.id,
                "name": job.name,
                "next_run": next_run.isoformat() if next_run else None,
                "trigger": str(job.trigger),
            })
        return jobs

    async def run_now(self, job_id: str) -> dict:
        """Run a job immediately."""
        job = self.scheduler.get_job(job_id)
        if not job:
            return {"error": f"Job {job_id} not found"}
        try:
            result = await job.func(*job.args)
            return {"ok": True, "result": result}
        except Exception as e:
            logger.error(f"[scheduler] failed to run job {job_id}: {error_text(e)}")
            return {"error": error_text(e)}


scheduler_service = SchedulerService.get_instance()
