"""
Celery tasks for the review automation.

automation.process_business: one orchestrator run for one business/slot.
automation.retry_failed: the on-demand recovery entry point.

Both run the async services in a fresh event loop with their own engine,
since a Celery worker process does not share the API's loop.
"""
from __future__ import annotations

import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from autoreply.services.automation_service import BusinessNotFoundError, run_business_automation
from autoreply.services.error_recovery import ErrorRecoveryService
from autoreply.services.store import SqlReviewStore
from autoreply.settings import get_settings
from autoreply.worker.celery_app import celery_app

logger = logging.getLogger(__name__)


async def _process_business_async(business_id: str, user_id: str | None, slot_id: str | None, trigger_type: str) -> dict:
    engine = create_async_engine(get_settings().async_database_url, echo=False)
    store = SqlReviewStore(async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False))
    try:
        result = await run_business_automation(business_id, user_id, slot_id, trigger_type, store=store)
        return result.model_dump(mode="json")
    except BusinessNotFoundError as e:
        logger.warning(f"[worker] {e}")
        return {"success": False, "error": str(e)}
    finally:
        await engine.dispose()


async def _retry_failed_async(business_id: str, user_id: str | None) -> dict:
    engine = create_async_engine(get_settings().async_database_url, echo=False)
    store = SqlReviewStore(async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False))
    try:
        result = await ErrorRecoveryService(store).retry_failed_automation(business_id, user_id=user_id)
        return result.model_dump(mode="json")
    finally:
        await engine.dispose()


@celery_app.task(
    bind=True,
    name="automation.process_business",
    autoretry_for=(ConnectionError, TimeoutError),
    retry_backoff=True,
    retry_kwargs={"max_retries": 3},
    queue="automation",
)
def process_business(self, business_id: str, user_id: str | None = None, slot_id: str | None = None,
                     trigger_type: str = "scheduled") -> dict:
    """Run the automation pipeline for one business.

    Per-review failures never surface here; they are part of the returned
    result. Only infrastructure errors are retried by Celery.
    """
    logger.info(
        f"[worker] business={business_id} slot={slot_id} "
        f"(celery_id={self.request.id}, attempt={self.request.retries + 1})"
    )
    result = asyncio.run(_process_business_async(business_id, user_id, slot_id, trigger_type))
    logger.info(f"[worker] business={business_id} finished success={result.get('success')}")
    return result


@celery_app.task(bind=True, name="automation.retry_failed", queue="automation")
def retry_failed(self, business_id: str, user_id: str | None = None) -> dict:
    logger.info(f"[worker] recovery business={business_id} (celery_id={self.request.id})")
    return asyncio.run(_retry_failed_async(business_id, user_id))
