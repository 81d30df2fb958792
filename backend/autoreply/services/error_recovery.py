"""
Error recovery for the automation pipeline.

Every failure caught anywhere in the pipeline goes through
`ErrorRecoveryService.record`, which:
- classifies it by step and message (severity + retryability)
- writes an `automation_failed` activity for the business
- escalates critical errors to the admin, once per error

`retry_failed_automation` is the on-demand recovery path: it regenerates
replies for reviews whose generation failed, re-posts approved replies
that never reached the review source, and prunes the error history.
"""
from __future__ import annotations

import asyncio
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Iterable

from autoreply.models import ActivityType, ReviewStatus, Severity
from autoreply.schemas import (
    AutomationError,
    AutomationHealth,
    HealthIssue,
    RecoveryResult,
    ReviewSnapshot,
    SettingsSnapshot,
)
from autoreply.services.auto_approval import approval_reason, should_auto_approve
from autoreply.services.avoid_phrases import extract_avoid_phrases
from autoreply.services.notify import Notifier, get_notifier
from autoreply.services.publisher_adapter import PublicationAdapter
from autoreply.services.reply_generator import ReplyGenerator
from autoreply.services.sanitize import error_text
from autoreply.services.store import ReviewStore
from autoreply.settings import get_settings

logger = logging.getLogger(__name__)

STEP_GENERATE = "generate_ai_reply"
STEP_POST = "post_reply"
STEP_NOTIFY = "send_notification"
STEP_PIPELINE = "automation_pipeline"
STEP_RECOVERY = "automation_recovery"

_STEP_ALIASES = {"generate_reply": STEP_GENERATE}

# matches "api key" as well as the scrubbed "api_key=***"
_API_KEY = re.compile(r"api[ _-]?key")

DEFAULT_RETRY_CAP = 2
RETRY_CAPS = {
    STEP_GENERATE: 2,
    STEP_POST: 3,
    STEP_NOTIFY: 1,
}

ERROR_HISTORY_LIMIT = 10
ERROR_HISTORY_WINDOW = timedelta(hours=24)

HEALTH_WINDOW = timedelta(days=7)
HEALTH_DEGRADED_ABOVE = 3
HEALTH_CRITICAL_ABOVE = 10

RETRY_GENERATION_CONCURRENCY = 3

ADMIN_ACTIONS = {
    STEP_GENERATE: "Check the language-generation API key and account quota",
    STEP_POST: "Reconnect the review source account, its credentials were rejected",
    STEP_PIPELINE: "Inspect the business settings row and store connectivity",
}


def normalize_step(step: str) -> str:
    return _STEP_ALIASES.get(step, step)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(ts: datetime) -> datetime:
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


def _has_any(text: str, *signals: str) -> bool:
    return any(s in text for s in signals)


def classify(
    step: str,
    raw_error: BaseException | str,
    *,
    review_id: str | None = None,
    timestamp: datetime | None = None,
) -> AutomationError:
    """Deterministic (severity, retryable) for a failure at a pipeline step."""
    step = normalize_step(step)
    message = error_text(raw_error)
    lower = message.lower()

    severity, retryable = Severity.medium, True
    if step == STEP_GENERATE:
        if _has_any(lower, "rate limit", "quota"):
            severity, retryable = Severity.high, True
        elif "authentication" in lower or _API_KEY.search(lower):
            severity, retryable = Severity.critical, False
    elif step == STEP_POST:
        if _has_any(lower, "authentication", "credentials"):
            severity, retryable = Severity.critical, False
        elif "rate limit" in lower:
            severity, retryable = Severity.high, True
    elif step == STEP_NOTIFY:
        severity, retryable = Severity.low, True
    elif step == STEP_PIPELINE:
        severity, retryable = Severity.critical, False

    return AutomationError(
        step=step,
        error=message,
        timestamp=timestamp or _utcnow(),
        review_id=review_id,
        severity=severity,
        retryable=retryable,
    )


def should_retry(error: AutomationError, retry_count: int = 0) -> bool:
    if not error.retryable or error.severity == Severity.critical:
        return False
    return retry_count < RETRY_CAPS.get(normalize_step(error.step), DEFAULT_RETRY_CAP)


def prune_error_history(
    errors: Iterable[AutomationError],
    *,
    now: datetime | None = None,
    limit: int = ERROR_HISTORY_LIMIT,
) -> list[AutomationError]:
    cutoff = (now or _utcnow()) - ERROR_HISTORY_WINDOW
    return [e for e in errors if _aware(e.timestamp) > cutoff][:limit]


def merge_error_history(
    existing: Iterable[AutomationError],
    new: Iterable[AutomationError],
    *,
    now: datetime | None = None,
) -> list[AutomationError]:
    """Newest first: prepend this run's errors, drop stale ones, keep at most 10."""
    fresh = sorted(new, key=lambda e: _aware(e.timestamp), reverse=True)
    return prune_error_history([*fresh, *existing], now=now)


class ErrorRecoveryService:
    # businesses with a recovery in progress (per process)
    _running: set[str] = set()

    def __init__(
        self,
        store: ReviewStore,
        notifier: Notifier | None = None,
        *,
        generator: ReplyGenerator | None = None,
        publisher: PublicationAdapter | None = None,
    ):
        self.store = store
        self._notifier = notifier
        self._generator = generator
        self._publisher = publisher
        self._escalated: set[AutomationError] = set()

    @property
    def notifier(self) -> Notifier:
        if self._notifier is None:
            self._notifier = get_notifier()
        return self._notifier

    @property
    def generator(self) -> ReplyGenerator:
        if self._generator is None:
            self._generator = ReplyGenerator()
        return self._generator

    @property
    def publisher(self) -> PublicationAdapter:
        if self._publisher is None:
            self._publisher = PublicationAdapter(self.store)
        return self._publisher

    # ── Recording ────────────────────────────────────────────

    async def record(
        self,
        step: str,
        error: BaseException | str,
        *,
        business_id: str | None,
        review_id: str | None = None,
        user_id: str | None = None,
    ) -> AutomationError:
        """Classify, log and persist one failure; escalate it if critical."""
        classified = classify(step, error, review_id=review_id)
        log = logger.error if classified.severity in (Severity.high, Severity.critical) else logger.warning
        log(
            f"[recovery] business={business_id} step={classified.step} review={review_id} "
            f"severity={classified.severity.value}: {classified.error}"
        )

        try:
            await self.store.log_activity(
                business_id,
                ActivityType.automation_failed.value,
                f"{classified.step}: {classified.error}",
                {**classified.model_dump(mode="json"), "user_id": user_id},
            )
        except Exception as e:
            logger.error(f"[recovery] failed to log automation error: {error_text(e)}")

        if classified.severity == Severity.critical:
            await self.escalate_to_admin(classified, business_id=business_id)
        return classified

    async def escalate_to_admin(self, error: AutomationError, *, business_id: str | None = None) -> bool:
        """Flag a critical error for an admin. Best-effort, never raises."""
        if error in self._escalated:
            return False
        self._escalated.add(error)

        admin_action = ADMIN_ACTIONS.get(error.step, "Investigate the automation failure")
        try:
            await self.store.log_activity(
                None,
                ActivityType.automation_failed.value,
                f"CRITICAL ERROR: {error.error}",
                {
                    "error_details": error.model_dump(mode="json"),
                    "business_id": business_id,
                    "escalated": True,
                    "requires_admin_action": True,
                    "admin_action": admin_action,
                    "escalated_at": _utcnow().isoformat(),
                },
            )
            await self.notifier.alert_admin(
                f"Critical automation error: {error.step}",
                {"business_id": business_id, "error": error.error, "action": admin_action},
            )
            return True
        except Exception as e:
            logger.error(f"[recovery] failed to escalate critical error: {error_text(e)}")
            return False

    # ── Error history ────────────────────────────────────────

    async def clear_resolved_errors(self, business_id: str) -> int:
        """Drop history entries older than 24h. Returns how many were removed."""
        settings = await self.store.get_settings(business_id)
        if settings is None:
            return 0
        kept = prune_error_history(settings.automation_errors)
        removed = len(settings.automation_errors) - len(kept)
        if removed:
            await self.store.update_automation_state(business_id, automation_errors=kept)
        return removed

    async def clear_errors(self, business_id: str) -> int:
        settings = await self.store.get_settings(business_id)
        if settings is None:
            return 0
        await self.store.update_automation_state(business_id, automation_errors=[])
        logger.info(f"[recovery] business={business_id} cleared {len(settings.automation_errors)} errors")
        return len(settings.automation_errors)

    # ── On-demand recovery ───────────────────────────────────

    async def retry_failed_automation(self, business_id: str, *, user_id: str | None = None) -> RecoveryResult:
        if business_id in self._running:
            logger.info(f"[recovery] business={business_id} recovery already running, skipping")
            return RecoveryResult(success=True, skipped="already_running")

        self._running.add(business_id)
        try:
            result = RecoveryResult()
            try:
                settings = await self.store.get_settings(business_id)
                if settings is None:
                    raise LookupError(f"Business settings not found for {business_id}")

                if settings.auto_reply_enabled:
                    await self._retry_generation(settings, result, user_id)
                if settings.auto_post_enabled:
                    await self._retry_publication(settings, result, user_id)

                await self.clear_resolved_errors(business_id)
                await self.store.log_activity(
                    business_id,
                    ActivityType.automation_recovery.value,
                    "Automation recovery completed",
                    {
                        "recovery_result": result.model_dump(),
                        "recovery_completed_at": _utcnow().isoformat(),
                    },
                )
            except Exception as e:
                result.success = False
                err = await self.record(STEP_RECOVERY, e, business_id=business_id, user_id=user_id)
                if err.severity == Severity.critical:
                    result.escalated_errors += 1

            logger.info(
                f"[recovery] business={business_id} retried={result.retried_tasks} "
                f"resolved={result.resolved_errors} remaining={result.remaining_errors} "
                f"escalated={result.escalated_errors}"
            )
            return result
        finally:
            self._running.discard(business_id)

    async def _retry_generation(self, settings: SettingsSnapshot, result: RecoveryResult, user_id: str | None):
        business_id = settings.business_id
        failed = await self.store.fetch_reviews(
            business_id,
            automation_failed=True,
            has_reply=False,
            limit=get_settings().retry_batch_size,
        )
        if not failed:
            return
        business = await self.store.get_business(business_id)
        if business is None:
            raise LookupError(f"Business {business_id} not found")

        eligible: list[ReviewSnapshot] = []
        for review in failed:
            prior = classify(STEP_GENERATE, review.automation_error or "", review_id=review.id)
            if should_retry(prior, review.retry_count):
                eligible.append(review)
            else:
                result.remaining_errors += 1

        avoid = await extract_avoid_phrases(self.store, business_id)

        async def _one(review: ReviewSnapshot) -> None:
            try:
                await _regenerate(review)
            except Exception as e:
                await self._record_unresolved(result, STEP_GENERATE, e, business_id, review.id, user_id)

        async def _regenerate(review: ReviewSnapshot) -> None:
            reply = await self.generator.generate(review, settings.brand_voice, business.info, avoid)
            result.retried_tasks += 1
            if reply.ok:
                updated = await self.store.update_review(
                    review.id,
                    ai_reply=reply.reply_text,
                    reply_tone=reply.tone_label,
                    automated_reply=True,
                    automation_failed=False,
                    automation_error=None,
                    retry_count=review.retry_count + 1,
                )
                result.resolved_errors += 1
                if should_auto_approve(updated, settings.approval_mode):
                    await self.store.update_review(review.id, status=ReviewStatus.approved, auto_approved=True)
                    await self.store.log_activity(
                        business_id,
                        ActivityType.reply_auto_approved.value,
                        approval_reason(review.rating, settings.approval_mode),
                        {"review_id": review.id, "rating": review.rating, "recovered": True},
                    )
                return

            await self.store.update_review(
                review.id,
                automation_error=reply.error,
                retry_count=review.retry_count + 1,
            )
            await self._record_unresolved(result, STEP_GENERATE, reply.error or "", business_id, review.id, user_id)

        for i in range(0, len(eligible), RETRY_GENERATION_CONCURRENCY):
            batch = eligible[i:i + RETRY_GENERATION_CONCURRENCY]
            await asyncio.gather(*(_one(r) for r in batch))

    async def _retry_publication(self, settings: SettingsSnapshot, result: RecoveryResult, user_id: str | None):
        business_id = settings.business_id
        approved = await self.store.fetch_reviews(
            business_id,
            status=ReviewStatus.approved.value,
            unpublished=True,
            limit=get_settings().retry_batch_size,
        )
        for review in approved:
            if not review.reply_text:
                continue
            if review.automation_error:
                prior = classify(STEP_POST, review.automation_error, review_id=review.id)
                if not should_retry(prior, review.retry_count):
                    result.remaining_errors += 1
                    continue

            result.retried_tasks += 1
            try:
                outcome = await self.publisher.publish(
                    review.id, review.reply_text, business_id, user_id, automated=True
                )
                if outcome.success:
                    if review.automation_error:
                        await self.store.update_review(review.id, automation_error=None)
                        result.resolved_errors += 1
                    continue

                await self.store.update_review(
                    review.id,
                    automation_error=outcome.error,
                    retry_count=review.retry_count + 1,
                )
                error: BaseException | str = outcome.error or ""
            except Exception as e:
                error = e
            await self._record_unresolved(result, STEP_POST, error, business_id, review.id, user_id)

    async def _record_unresolved(
        self,
        result: RecoveryResult,
        step: str,
        error: BaseException | str,
        business_id: str,
        review_id: str,
        user_id: str | None,
    ) -> None:
        result.remaining_errors += 1
        err = await self.record(step, error, business_id=business_id, review_id=review_id, user_id=user_id)
        if err.severity == Severity.critical:
            result.escalated_errors += 1

    # ── Health ───────────────────────────────────────────────

    async def get_automation_health(self, business_id: str) -> AutomationHealth:
        since = _utcnow() - HEALTH_WINDOW
        failures = await self.store.list_activities(
            business_id, type=ActivityType.automation_failed.value, since=since
        )
        settings = await self.store.get_settings(business_id)

        issues: dict[str, HealthIssue] = {}
        for activity in failures:
            step = (activity.metadata or {}).get("step") or "unknown"
            issue = issues.get(step)
            if issue is None:
                issues[step] = HealthIssue(type=step, count=1, last_occurrence=activity.created_at)
                continue
            issue.count += 1
            if activity.created_at and (
                issue.last_occurrence is None or _aware(activity.created_at) > _aware(issue.last_occurrence)
            ):
                issue.last_occurrence = activity.created_at

        count = len(failures)
        if count > HEALTH_CRITICAL_ABOVE:
            status = "critical"
        elif count > HEALTH_DEGRADED_ABOVE:
            status = "degraded"
        else:
            status = "healthy"

        return AutomationHealth(
            status=status,
            error_count=count,
            last_success=settings.last_automation_run if settings else None,
            issues=list(issues.values()),
        )
