from __future__ import annotations

import asyncio
import os
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

os.environ.setdefault("AUTOREPLY_SCHEDULER_ENABLED", "false")
os.environ.setdefault("AUTOREPLY_CELERY_ENABLED", "false")

from autoreply.integrations.google_business import PublishError, ReviewSourceClient  # noqa: E402
from autoreply.models import ApprovalMode, BrandVoicePreset, ReviewStatus  # noqa: E402
from autoreply.schemas import (  # noqa: E402
    ActivityRecord,
    AutomationError,
    BrandVoice,
    BusinessProfile,
    ReviewSnapshot,
    SettingsSnapshot,
)
from autoreply.services.automation_service import AutomationOrchestrator  # noqa: E402
from autoreply.services.llm_provider import LLMError, LLMProvider, set_llm_provider  # noqa: E402
from autoreply.services.notify import Notifier, RunSummary, reset_throttle, set_notifier  # noqa: E402
from autoreply.services.publisher_adapter import PublicationAdapter  # noqa: E402
from autoreply.services.reply_generator import ReplyGenerator  # noqa: E402
from autoreply.services.reply_prompts import opener_of  # noqa: E402
from autoreply.services.store import REVIEW_WRITABLE_FIELDS, ReviewStore, StoreError, _UNSET  # noqa: E402


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MemoryReviewStore(ReviewStore):
    """Dict-backed store with the same contract as SqlReviewStore."""

    def __init__(self):
        self.businesses: dict[str, BusinessProfile] = {}
        self.settings: dict[str, SettingsSnapshot] = {}
        self.reviews: dict[str, ReviewSnapshot] = {}
        self.activities: list[ActivityRecord] = []
        self._touched: dict[str, int] = {}
        self._seq = 0

    def _tick(self) -> int:
        self._seq += 1
        return self._seq

    async def get_business(self, business_id):
        return self.businesses.get(business_id)

    async def get_settings(self, business_id):
        return self.settings.get(business_id)

    async def get_review(self, review_id):
        return self.reviews.get(review_id)

    async def recent_generated_replies(self, business_id, limit):
        rows = [r for r in self.reviews.values() if r.business_id == business_id and r.ai_reply]
        rows.sort(key=lambda r: self._touched.get(r.id, 0), reverse=True)
        return [r.ai_reply for r in rows[:limit]]

    async def fetch_reviews(
        self,
        business_id,
        *,
        status=None,
        automated_reply=None,
        automation_failed=None,
        has_reply=None,
        unpublished=None,
        created_after=None,
        limit=None,
    ):
        out = []
        for r in self.reviews.values():
            if r.business_id != business_id:
                continue
            if status is not None and r.status != status:
                continue
            if automated_reply is not None and r.automated_reply != automated_reply:
                continue
            if automation_failed is not None and r.automation_failed != automation_failed:
                continue
            if has_reply is True and r.ai_reply is None:
                continue
            if has_reply is False and r.ai_reply is not None:
                continue
            if unpublished and r.posted_at is not None:
                continue
            if created_after is not None and (r.created_at is None or r.created_at < created_after):
                continue
            out.append(r)
        out.sort(key=lambda r: r.created_at or utcnow())
        return out[:limit] if limit is not None else out

    async def update_review(self, review_id, **fields):
        unknown = set(fields) - REVIEW_WRITABLE_FIELDS
        if unknown:
            raise StoreError(f"Unsupported review fields: {sorted(unknown)}")
        current = self.reviews.get(review_id)
        if current is None:
            raise StoreError(f"Review {review_id} not found")
        updated = ReviewSnapshot.model_validate({**current.model_dump(), **fields})
        self.reviews[review_id] = updated
        self._touched[review_id] = self._tick()
        return updated

    async def update_automation_state(self, business_id, *, last_automation_run=_UNSET, automation_errors=_UNSET):
        current = self.settings.get(business_id)
        if current is None:
            raise StoreError(f"Settings for business {business_id} not found")
        changes: dict[str, Any] = {}
        if last_automation_run is not _UNSET:
            changes["last_automation_run"] = last_automation_run
        if automation_errors is not _UNSET:
            changes["automation_errors"] = tuple(automation_errors or ())
        self.settings[business_id] = current.model_copy(update=changes)

    async def log_activity(self, business_id, type, description, metadata=None):
        self.activities.append(ActivityRecord(
            id=self._tick(),
            business_id=business_id,
            type=str(getattr(type, "value", type)),
            description=description,
            metadata=metadata,
            created_at=utcnow(),
        ))

    async def list_activities(self, business_id, *, type=None, since=None, limit=None):
        out = [
            a for a in reversed(self.activities)
            if a.business_id == business_id
            and (type is None or a.type == type)
            and (since is None or a.created_at >= since)
        ]
        return out[:limit] if limit is not None else out

    async def list_slot_businesses(self, slot_id):
        return [
            self.businesses[bid] for bid, s in self.settings.items()
            if s.auto_sync_enabled and s.auto_sync_slot == slot_id
        ]

    # ── test helpers ──

    def activity_types(self, business_id: str | None = "__any__") -> list[str]:
        return [a.type for a in self.activities if business_id == "__any__" or a.business_id == business_id]


class Seeder:
    def __init__(self, store: MemoryReviewStore):
        self.store = store

    def business(
        self,
        *,
        approval_mode: ApprovalMode = ApprovalMode.auto_4_plus,
        auto_reply: bool = True,
        auto_post: bool = True,
        notifications: bool = True,
        preset: BrandVoicePreset = BrandVoicePreset.friendly,
        slot: str = "slot_1",
        auto_sync: bool = True,
        errors: tuple[AutomationError, ...] = (),
        connected: bool = True,
    ) -> str:
        business_id = str(uuid.uuid4())
        self.store.businesses[business_id] = BusinessProfile(
            id=business_id,
            user_id="user-1",
            name="Luigi's Pizzeria",
            industry="restaurant",
            support_email="hello@luigis.example",
            owner_email="owner@luigis.example",
            google_account_id="accounts/123" if connected else None,
            google_location_id="locations/456" if connected else None,
        )
        self.store.settings[business_id] = SettingsSnapshot(
            business_id=business_id,
            brand_voice=BrandVoice(preset=preset),
            approval_mode=approval_mode,
            auto_sync_enabled=auto_sync,
            auto_reply_enabled=auto_reply,
            auto_post_enabled=auto_post,
            email_notifications_enabled=notifications,
            auto_sync_slot=slot,
            automation_errors=errors,
        )
        return business_id

    def review(
        self,
        business_id: str,
        *,
        rating: int = 5,
        text: str = "Great crust and the staff remembered our order from last time.",
        name: str = "Maria",
        age: timedelta = timedelta(hours=1),
        **fields: Any,
    ) -> str:
        review_id = str(uuid.uuid4())
        data = {
            "id": review_id,
            "business_id": business_id,
            "google_review_id": f"g-{review_id[:8]}",
            "customer_name": name,
            "rating": rating,
            "review_text": text,
            "review_date": utcnow() - age,
            "created_at": utcnow() - age,
            **fields,
        }
        self.store.reviews[review_id] = ReviewSnapshot.model_validate(data)
        return review_id


DEFAULT_OPENERS = (
    "Pizza night was great",
    "Loved hearing about your",
    "Your visit sounded lovely",
    "Maria, the crust story",
    "Hearing about the staff",
)


class ScriptedLLM(LLMProvider):
    """Returns the first opener not already banned by the system prompt.

    Without avoid-phrase propagation it would answer with the same opener
    every time.
    """

    def __init__(self, openers=DEFAULT_OPENERS, *, body: str = "and thanks for coming by, see you soon.",
                 error: str | None = None, delay: float = 0.0):
        self.openers = list(openers)
        self.body = body
        self.error = error
        self.delay = delay
        self.calls: list[dict] = []

    async def complete(self, *, system_prompt, user_prompt, temperature, max_tokens):
        self.calls.append({
            "system_prompt": system_prompt,
            "user_prompt": user_prompt,
            "temperature": temperature,
            "max_tokens": max_tokens,
        })
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise LLMError(self.error)
        banned = system_prompt.lower()
        for opener in self.openers:
            if opener_of(opener) not in banned:
                return f"{opener} {self.body}"
        return f"{self.openers[0]} {self.body}"


class RecordingSourceClient(ReviewSourceClient):
    def __init__(self, error: str | None = None):
        self.error = error
        self.posts: list[dict] = []

    async def post_reply(self, *, account_id, location_id, external_review_id, text):
        if self.error:
            raise PublishError(self.error)
        self.posts.append({
            "account_id": account_id,
            "location_id": location_id,
            "external_review_id": external_review_id,
            "text": text,
        })
        return {"comment": text, "updateTime": utcnow().isoformat()}


class RecordingNotifier(Notifier):
    def __init__(self, error: str | None = None, alert_error: str | None = None):
        self.error = error
        self.alert_error = alert_error
        self.summaries: list[RunSummary] = []
        self.alerts: list[tuple[str, Any]] = []

    async def send_summary(self, summary):
        if self.error:
            raise RuntimeError(self.error)
        self.summaries.append(summary)
        return f"msg-{len(self.summaries)}"

    async def alert_admin(self, title, payload=None):
        if self.alert_error:
            raise RuntimeError(self.alert_error)
        self.alerts.append((title, payload))
        return True


@pytest.fixture(autouse=True)
def _reset_singletons():
    reset_throttle()
    yield
    set_llm_provider(None)
    set_notifier(None)
    reset_throttle()


@pytest.fixture
def store() -> MemoryReviewStore:
    return MemoryReviewStore()


@pytest.fixture
def seed(store) -> Seeder:
    return Seeder(store)


@pytest.fixture
def llm() -> ScriptedLLM:
    return ScriptedLLM()


@pytest.fixture
def source() -> RecordingSourceClient:
    return RecordingSourceClient()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def generator(llm) -> ReplyGenerator:
    return ReplyGenerator(llm, timeout=5)


@pytest.fixture
def publisher(store, source) -> PublicationAdapter:
    return PublicationAdapter(store, source, timeout=5)


@pytest.fixture
def make_orchestrator(store, generator, publisher, notifier):
    def _make(**kwargs) -> AutomationOrchestrator:
        params = {
            "generator": generator,
            "publisher": publisher,
            "notifier": notifier,
            "batch_delay": 0,
            "persist_fallback": False,
            "notify_timeout": 5,
        }
        params.update(kwargs)
        return AutomationOrchestrator(store, **params)
    return _make


@pytest.fixture
def orchestrator(make_orchestrator) -> AutomationOrchestrator:
    return make_orchestrator()


@pytest.fixture
def recovery(orchestrator):
    return orchestrator.recovery

