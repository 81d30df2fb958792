"""
Persistent store boundary for the automation pipeline.

`ReviewStore` is the narrow query interface the pipeline talks to;
`SqlReviewStore` implements it with SQLAlchemy (one short session per call,
unconditional last-writer-wins updates scoped to a single row).
"""
from __future__ import annotations

import abc
import logging
from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from autoreply.models import Activity, Business, BusinessSettings, Review
from autoreply.schemas import (
    ActivityRecord,
    AutomationError,
    BusinessProfile,
    ReviewSnapshot,
    SettingsSnapshot,
)

logger = logging.getLogger(__name__)

# Columns the pipeline may write on a review
REVIEW_WRITABLE_FIELDS = frozenset({
    "status", "ai_reply", "final_reply", "reply_tone", "posted_at", "posted_reply",
    "automated_reply", "automation_failed", "automation_error", "auto_approved",
    "retry_count",
})

_UNSET: Any = object()


class StoreError(Exception):
    """Raised when a row the pipeline depends on is missing or unwritable."""


class ReviewStore(abc.ABC):
    """Query interface used by the orchestrator and the recovery service."""

    @abc.abstractmethod
    async def get_business(self, business_id: str) -> BusinessProfile | None:
        ...

    @abc.abstractmethod
    async def get_settings(self, business_id: str) -> SettingsSnapshot | None:
        ...

    @abc.abstractmethod
    async def get_review(self, review_id: str) -> ReviewSnapshot | None:
        ...

    @abc.abstractmethod
    async def recent_generated_replies(self, business_id: str, limit: int) -> list[str]:
        """Most recent non-null generated replies, newest first."""

    @abc.abstractmethod
    async def fetch_reviews(
        self,
        business_id: str,
        *,
        status: str | None = None,
        automated_reply: bool | None = None,
        automation_failed: bool | None = None,
        has_reply: bool | None = None,
        unpublished: bool | None = None,
        created_after: datetime | None = None,
        limit: int | None = None,
    ) -> list[ReviewSnapshot]:
        """Reviews of one business matching every given filter, oldest first."""

    @abc.abstractmethod
    async def update_review(self, review_id: str, **fields: Any) -> ReviewSnapshot:
        ...

    @abc.abstractmethod
    async def update_automation_state(
        self,
        business_id: str,
        *,
        last_automation_run: datetime | None = _UNSET,
        automation_errors: list[AutomationError] | None = _UNSET,
    ) -> None:
        ...

    @abc.abstractmethod
    async def log_activity(
        self,
        business_id: str | None,
        type: str,
        description: str,
        metadata: dict | None = None,
    ) -> None:
        ...

    @abc.abstractmethod
    async def list_activities(
        self,
        business_id: str | None,
        *,
        type: str | None = None,
        since: datetime | None = None,
        limit: int | None = None,
    ) -> list[ActivityRecord]:
        """Activities newest first."""

    @abc.abstractmethod
    async def list_slot_businesses(self, slot_id: str) -> list[BusinessProfile]:
        """Businesses opted into auto sync for the given slot."""


def _errors_to_json(errors: list[AutomationError] | None) -> list[dict]:
    return [e.model_dump(mode="json") for e in errors or []]


def _activity_record(row: Activity) -> ActivityRecord:
    return ActivityRecord(
        id=row.id,
        business_id=row.business_id,
        type=row.type,
        description=row.description,
        metadata=row.meta,
        created_at=row.created_at,
    )


class SqlReviewStore(ReviewStore):
    """ReviewStore over an async SQLAlchemy session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get_business(self, business_id: str) -> BusinessProfile | None:
        async with self._session_factory() as session:
            row = await session.get(Business, business_id)
            return BusinessProfile.model_validate(row) if row else None

    async def get_settings(self, business_id: str) -> SettingsSnapshot | None:
        async with self._session_factory() as session:
            res = await session.execute(
                select(BusinessSettings).where(BusinessSettings.business_id == business_id)
            )
            row = res.scalar_one_or_none()
            return SettingsSnapshot.from_row(row) if row else None

    async def get_review(self, review_id: str) -> ReviewSnapshot | None:
        async with self._session_factory() as session:
            row = await session.get(Review, review_id)
            return ReviewSnapshot.model_validate(row) if row else None

    async def recent_generated_replies(self, business_id: str, limit: int) -> list[str]:
        async with self._session_factory() as session:
            res = await session.execute(
                select(Review.ai_reply)
                .where(Review.business_id == business_id, Review.ai_reply.is_not(None))
                .order_by(Review.updated_at.desc(), Review.created_at.desc())
                .limit(limit)
            )
            return [r for r in res.scalars().all() if r]

    async def fetch_reviews(
        self,
        business_id: str,
        *,
        status: str | None = None,
        automated_reply: bool | None = None,
        automation_failed: bool | None = None,
        has_reply: bool | None = None,
        unpublished: bool | None = None,
        created_after: datetime | None = None,
        limit: int | None = None,
    ) -> list[ReviewSnapshot]:
        stmt = select(Review).where(Review.business_id == business_id)
        if status is not None:
            stmt = stmt.where(Review.status == str(getattr(status, "value", status)))
        if automated_reply is not None:
            stmt = stmt.where(Review.automated_reply == automated_reply)
        if automation_failed is not None:
            stmt = stmt.where(Review.automation_failed == automation_failed)
        if has_reply is True:
            stmt = stmt.where(Review.ai_reply.is_not(None))
        elif has_reply is False:
            stmt = stmt.where(Review.ai_reply.is_(None))
        if unpublished:
            stmt = stmt.where(Review.posted_at.is_(None))
        if created_after is not None:
            stmt = stmt.where(Review.created_at >= created_after)
        stmt = stmt.order_by(Review.created_at.asc())
        if limit is not None:
            stmt = stmt.limit(limit)

        async with self._session_factory() as session:
            res = await session.execute(stmt)
            return [ReviewSnapshot.model_validate(r) for r in res.scalars().all()]

    async def update_review(self, review_id: str, **fields: Any) -> ReviewSnapshot:
        unknown = set(fields) - REVIEW_WRITABLE_FIELDS
        if unknown:
            raise StoreError(f"Unsupported review fields: {sorted(unknown)}")
        values = {k: getattr(v, "value", v) for k, v in fields.items()}

        async with self._session_factory() as session:
            row = await session.get(Review, review_id)
            if row is None:
                raise StoreError(f"Review {review_id} not found")
            for key, value in values.items():
                setattr(row, key, value)
            session.add(row)
            await session.commit()
            await session.refresh(row)
            return ReviewSnapshot.model_validate(row)

    async def update_automation_state(
        self,
        business_id: str,
        *,
        last_automation_run: datetime | None = _UNSET,
        automation_errors: list[AutomationError] | None = _UNSET,
    ) -> None:
        values: dict[str, Any] = {}
        if last_automation_run is not _UNSET:
            values["last_automation_run"] = last_automation_run
        if automation_errors is not _UNSET:
            values["automation_errors"] = _errors_to_json(automation_errors)
        if not values:
            return

        async with self._session_factory() as session:
            res = await session.execute(
                update(BusinessSettings)
                .where(BusinessSettings.business_id == business_id)
                .values(**values)
            )
            if res.rowcount == 0:
                raise StoreError(f"Settings for business {business_id} not found")
            await session.commit()

    async def log_activity(
        self,
        business_id: str | None,
        type: str,
        description: str,
        metadata: dict | None = None,
    ) -> None:
        async with self._session_factory() as session:
            session.add(Activity(
                business_id=business_id,
                type=str(getattr(type, "value", type)),
                description=description,
                meta=metadata,
            ))
            await session.commit()

    async def list_activities(
        self,
        business_id: str | None,
        *,
        type: str | None = None,
        since: datetime | None = None,
        limit: int | None = None,
    ) -> list[ActivityRecord]:
        if business_id is None:
            stmt = select(Activity).where(Activity.business_id.is_(None))
        else:
            stmt = select(Activity).where(Activity.business_id == business_id)
        if type is not None:
            stmt = stmt.where(Activity.type == str(getattr(type, "value", type)))
        if since is not None:
            stmt = stmt.where(Activity.created_at >= since)
        stmt = stmt.order_by(Activity.created_at.desc(), Activity.id.desc())
        if limit is not None:
            stmt = stmt.limit(limit)

        async with self._session_factory() as session:
            res = await session.execute(stmt)
            return [_activity_record(r) for r in res.scalars().all()]

    async def list_slot_businesses(self, slot_id: str) -> list[BusinessProfile]:
        async with self._session_factory() as session:
            res = await session.execute(
                select(Business)
                .join(BusinessSettings, BusinessSettings.business_id == Business.id)
                .where(
                    BusinessSettings.auto_sync_enabled.is_(True),
                    BusinessSettings.auto_sync_slot == slot_id,
                )
                .order_by(Business.created_at.asc())
            )
            return [BusinessProfile.model_validate(b) for b in res.scalars().all()]


def get_review_store() -> ReviewStore:
    from autoreply.db import get_session_factory
    return SqlReviewStore(get_session_factory())
