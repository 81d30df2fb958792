"""
Automation orchestrator: one run = one business = one slot.

Sequence per run (each step toggle-gated, each review fault-isolated):
1. keep reviews that are pending and neither processed nor failed before
2. auto_reply_enabled   -> generate drafts in bounded concurrent batches
3. approval_mode != manual -> apply the auto-approval policy
4. auto_post_enabled    -> publish approved replies
5. email_notifications_enabled -> one summary email for the whole run
6. return the result plus the settings mutation (last run, error history)

A deadline stops new generation batches and new publications; work already
started is allowed to finish and the run returns a partial result.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from autoreply.models import ActivityType, ApprovalMode, ReviewStatus
from autoreply.schemas import (
    AutomationContext,
    AutomationError,
    AutomationResult,
    ReviewSnapshot,
    SettingsUpdate,
)
from autoreply.services.auto_approval import approval_reason, pending_reason, should_auto_approve
from autoreply.services.avoid_phrases import RunPhraseTracker, extract_avoid_phrases
from autoreply.services.error_recovery import (
    STEP_GENERATE,
    STEP_NOTIFY,
    STEP_PIPELINE,
    STEP_POST,
    ErrorRecoveryService,
    merge_error_history,
)
from autoreply.services.notify import Notifier, RunSummary, get_notifier
from autoreply.services.publisher_adapter import PublicationAdapter
from autoreply.services.reply_generator import GeneratedReply, ReplyGenerator
from autoreply.services.reply_prompts import opener_of
from autoreply.services.store import ReviewStore, get_review_store
from autoreply.settings import get_settings

logger = logging.getLogger(__name__)

STEP_APPROVE = "auto_approve"

# Regenerations per review when its opener is already taken in this run:
# max(MIN_OPENER_RETRIES, batch_size)
MIN_OPENER_RETRIES = 2


class BusinessNotFoundError(LookupError):
    pass


def is_unprocessed(review: ReviewSnapshot) -> bool:
    return (
        review.status == ReviewStatus.pending
        and not review.automated_reply
        and not review.automation_failed
    )


@dataclass
class _Run:
    context: AutomationContext
    result: AutomationResult
    deadline_at: float | None
    reviews: dict[str, ReviewSnapshot] = field(default_factory=dict)
    errors: list[AutomationError] = field(default_factory=list)
    opener_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @property
    def business_id(self) -> str:
        return self.context.business_id

    def deadline_passed(self) -> bool:
        if self.deadline_at is not None and time.monotonic() >= self.deadline_at:
            self.result.deadline_exceeded = True
            return True
        return False


class AutomationOrchestrator:
    def __init__(
        self,
        store: ReviewStore,
        *,
        generator: ReplyGenerator | None = None,
        publisher: PublicationAdapter | None = None,
        notifier: Notifier | None = None,
        recovery: ErrorRecoveryService | None = None,
        batch_size: int | None = None,
        batch_delay: float | None = None,
        persist_fallback: bool | None = None,
        notify_timeout: float | None = None,
    ):
        s = get_settings()
        self.store = store
        self.generator = generator or ReplyGenerator()
        self.publisher = publisher or PublicationAdapter(store)
        self.notifier = notifier or get_notifier()
        self.recovery = recovery or ErrorRecoveryService(
            store, self.notifier, generator=self.generator, publisher=self.publisher
        )
        self.batch_size = max(1, batch_size or s.generation_batch_size)
        self.opener_retries = max(MIN_OPENER_RETRIES, self.batch_size)
        self.batch_delay = s.generation_batch_delay_sec if batch_delay is None else batch_delay
        self.persist_fallback = s.persist_fallback_replies if persist_fallback is None else persist_fallback
        self.notify_timeout = s.notify_timeout_sec if notify_timeout is None else notify_timeout

    async def run(self, context: AutomationContext, *, deadline_sec: float | None = None) -> AutomationResult:
        started = time.monotonic()
        run = _Run(
            context=context,
            result=AutomationResult(),
            deadline_at=started + deadline_sec if deadline_sec is not None else None,
        )
        settings = context.settings
        bid = context.business_id

        try:
            run.reviews = {r.id: r for r in context.new_reviews if is_unprocessed(r)}
            run.result.processed = len(run.reviews)
            await self._log(bid, ActivityType.automation_start, f"Automation started for {len(run.reviews)} reviews", {
                "slot_id": context.slot_id,
                "trigger_type": context.trigger_type,
                "review_count": len(run.reviews),
            })
            logger.info(
                f"[automation] business={bid} slot={context.slot_id} trigger={context.trigger_type} "
                f"reviews={len(run.reviews)}"
            )

            if not run.reviews:
                await self._log(bid, ActivityType.automation_skipped, "No new reviews to process", {
                    "slot_id": context.slot_id,
                })
            else:
                if settings.auto_reply_enabled:
                    await self._generate_step(run)
                if settings.approval_mode != ApprovalMode.manual:
                    await self._approval_step(run)
                if settings.auto_post_enabled:
                    await self._publish_step(run)
                if settings.email_notifications_enabled:
                    await self._notify_step(run)

            await self._log(bid, ActivityType.automation_completed, "Automation run completed", {
                "processed": run.result.processed,
                "generated": run.result.generated,
                "approved": run.result.approved,
                "posted": run.result.posted,
                "notified": run.result.notified,
                "errors": len(run.errors),
                "deadline_exceeded": run.result.deadline_exceeded,
            })
        except Exception as e:
            run.result.success = False
            run.errors.append(await self.recovery.record(
                STEP_PIPELINE, e, business_id=bid, user_id=context.user_id
            ))

        now = datetime.now(timezone.utc)
        run.result.errors = list(run.errors)
        run.result.duration_ms = int((time.monotonic() - started) * 1000)
        run.result.settings_update = SettingsUpdate(
            last_automation_run=now,
            automation_errors=merge_error_history(settings.automation_errors, run.errors, now=now),
        )
        logger.info(
            f"[automation] business={bid} done success={run.result.success} "
            f"generated={run.result.generated} approved={run.result.approved} posted={run.result.posted} "
            f"notified={run.result.notified} errors={len(run.errors)} duration_ms={run.result.duration_ms}"
        )
        return run.result

    # ── Step 2: generation ───────────────────────────────────

    async def _generate_step(self, run: _Run) -> None:
        targets = [r for r in run.reviews.values() if not r.reply_text]
        if not targets:
            return
        persisted = await extract_avoid_phrases(self.store, run.business_id)
        tracker = RunPhraseTracker(persisted)

        for i in range(0, len(targets), self.batch_size):
            if i > 0 and self.batch_delay > 0:
                await asyncio.sleep(self.batch_delay)
            if run.deadline_passed():
                logger.warning(
                    f"[automation] business={run.business_id} deadline reached, "
                    f"{len(targets) - i} reviews left without a draft"
                )
                break
            batch = targets[i:i + self.batch_size]
            await asyncio.gather(*(self._generate_one(run, review, tracker) for review in batch))

        await self._step_completed(run, "generate", run.result.generated)

    async def _generate_distinct(self, run: _Run, review: ReviewSnapshot, tracker: RunPhraseTracker) -> GeneratedReply:
        voice = run.context.settings.brand_voice
        info = run.context.business.info
        reply = await self.generator.generate(review, voice, info, await tracker.snapshot())
        if not reply.ok or await tracker.claim(reply.reply_text):
            return reply

        # one regeneration at a time, each sees every opener claimed so far
        async with run.opener_lock:
            for _ in range(self.opener_retries):
                reply = await self.generator.generate(review, voice, info, await tracker.snapshot())
                if not reply.ok or await tracker.claim(reply.reply_text):
                    return reply

        opener = opener_of(reply.reply_text)
        logger.warning(
            f"[automation] review={review.id} opener '{opener}' still repeated after {self.opener_retries} retries"
        )
        return GeneratedReply(
            reply_text=reply.reply_text,
            tone_label=reply.tone_label,
            error=f"Reply opener '{opener}' already used in this run",
        )

    async def _generate_one(self, run: _Run, review: ReviewSnapshot, tracker: RunPhraseTracker) -> None:
        context = run.context
        try:
            reply = await self._generate_distinct(run, review, tracker)
            if reply.ok:
                run.reviews[review.id] = await self.store.update_review(
                    review.id,
                    ai_reply=reply.reply_text,
                    reply_tone=reply.tone_label,
                    automated_reply=True,
                    automation_failed=False,
                    automation_error=None,
                )
                run.result.generated += 1
                await self._log(
                    run.business_id,
                    ActivityType.ai_reply_generated,
                    f"AI reply generated for {review.rating}-star review from {review.customer_name}",
                    {"review_id": review.id, "rating": review.rating, "tone": reply.tone_label},
                )
                return

            run.errors.append(await self.recovery.record(
                STEP_GENERATE, reply.error or "Reply generation failed",
                business_id=run.business_id, review_id=review.id, user_id=context.user_id,
            ))
            if self.persist_fallback and await tracker.claim(reply.reply_text):
                run.reviews[review.id] = await self.store.update_review(
                    review.id,
                    ai_reply=reply.reply_text,
                    reply_tone=reply.tone_label,
                    automated_reply=True,
                    automation_failed=False,
                    automation_error=reply.error,
                )
                run.result.generated += 1
            else:
                run.reviews[review.id] = await self.store.update_review(
                    review.id,
                    automation_failed=True,
                    automation_error=reply.error,
                )
        except Exception as e:
            run.errors.append(await self.recovery.record(
                STEP_GENERATE, e, business_id=run.business_id, review_id=review.id, user_id=context.user_id,
            ))

    # ── Step 3: approval ─────────────────────────────────────

    async def _approval_step(self, run: _Run) -> None:
        mode = run.context.settings.approval_mode
        for review_id in list(run.reviews):
            try:
                current = await self.store.get_review(review_id)
                if current is None:
                    continue
                run.reviews[review_id] = current
                if not should_auto_approve(current, mode):
                    continue
                run.reviews[review_id] = await self.store.update_review(
                    review_id, status=ReviewStatus.approved, auto_approved=True
                )
                run.result.approved += 1
                await self._log(
                    run.business_id,
                    ActivityType.reply_auto_approved,
                    f"Auto-approved {current.rating}-star review reply from {current.customer_name}",
                    {
                        "review_id": review_id,
                        "rating": current.rating,
                        "approval_mode": mode.value,
                        "reason": approval_reason(current.rating, mode),
                    },
                )
            except Exception as e:
                run.errors.append(await self.recovery.record(
                    STEP_APPROVE, e, business_id=run.business_id, review_id=review_id,
                    user_id=run.context.user_id,
                ))

        await self._step_completed(run, "approve", run.result.approved)

    # ── Step 4: publication ──────────────────────────────────

    async def _publish_step(self, run: _Run) -> None:
        context = run.context
        for review_id in list(run.reviews):
            if run.reviews[review_id].status != ReviewStatus.approved:
                continue
            if run.deadline_passed():
                logger.warning(f"[automation] business={run.business_id} deadline reached, publication stopped")
                break
            try:
                current = await self.store.get_review(review_id)
                if current is None or current.status != ReviewStatus.approved or not current.reply_text:
                    continue
                outcome = await self.publisher.publish(
                    review_id, current.reply_text, run.business_id, context.user_id, automated=True
                )
                if outcome.success:
                    run.reviews[review_id] = await self.store.get_review(review_id) or current
                    if not outcome.already_published:
                        run.result.posted += 1
                    continue

                run.errors.append(await self.recovery.record(
                    STEP_POST, outcome.error or "Publishing failed",
                    business_id=run.business_id, review_id=review_id, user_id=context.user_id,
                ))
                run.reviews[review_id] = await self.store.update_review(review_id, automation_error=outcome.error)
            except Exception as e:
                run.errors.append(await self.recovery.record(
                    STEP_POST, e, business_id=run.business_id, review_id=review_id, user_id=context.user_id,
                ))

        await self._step_completed(run, "publish", run.result.posted)

    # ── Step 5: notification ─────────────────────────────────

    def build_summary(self, run: _Run) -> RunSummary:
        context = run.context
        mode = context.settings.approval_mode
        reviews = list(run.reviews.values())
        posted = [r for r in reviews if r.status == ReviewStatus.posted]
        pending = [
            r for r in reviews
            if r.automated_reply and r.ai_reply and r.status not in (ReviewStatus.posted, ReviewStatus.skipped)
        ]
        return RunSummary(
            business_id=context.business_id,
            user_id=context.user_id,
            business_name=context.business.name,
            recipient=context.business.owner_email,
            slot_id=context.slot_id,
            approval_mode=mode.value,
            trigger_type=context.trigger_type,
            new_reviews=len(reviews),
            posted=[
                {
                    "review_id": r.id,
                    "customer_name": r.customer_name,
                    "rating": r.rating,
                    "review_text": r.review_text,
                    "reply_text": r.posted_reply or r.reply_text or "",
                    "review_date": r.review_date.isoformat() if r.review_date else None,
                }
                for r in posted
            ],
            pending=[
                {
                    "review_id": r.id,
                    "customer_name": r.customer_name,
                    "rating": r.rating,
                    "review_text": r.review_text,
                    "ai_reply": r.ai_reply or "",
                    "review_date": r.review_date.isoformat() if r.review_date else None,
                    "pending_reason": pending_reason(r.rating, mode),
                }
                for r in pending
            ],
            metrics={
                "processed": run.result.processed,
                "generated": run.result.generated,
                "auto_approved": run.result.approved,
                "auto_posted": run.result.posted,
            },
        )

    async def _notify_step(self, run: _Run) -> None:
        summary = self.build_summary(run)
        if not summary.posted and not summary.pending:
            return
        try:
            message_id = await asyncio.wait_for(self.notifier.send_summary(summary), timeout=self.notify_timeout)
        except asyncio.TimeoutError:
            run.errors.append(await self.recovery.record(
                STEP_NOTIFY, f"Summary email timed out after {self.notify_timeout}s",
                business_id=run.business_id, user_id=run.context.user_id,
            ))
            return
        except Exception as e:
            run.errors.append(await self.recovery.record(
                STEP_NOTIFY, e, business_id=run.business_id, user_id=run.context.user_id,
            ))
            return

        run.result.notified = 1
        await self._log(run.business_id, ActivityType.email_notification_sent, "Automation summary email sent", {
            **summary.to_meta(),
            "message_id": message_id,
        })

    # ── Activity helpers ─────────────────────────────────────

    async def _log(self, business_id: str | None, kind: ActivityType, description: str, meta: dict | None = None):
        await self.store.log_activity(business_id, kind.value, description, meta)

    async def _step_completed(self, run: _Run, step: str, count: int) -> None:
        await self._log(run.business_id, ActivityType.automation_step_completed, f"Step {step} completed: {count}", {
            "step": step,
            "count": count,
            "deadline_exceeded": run.result.deadline_exceeded,
        })


async def run_business_automation(
    business_id: str,
    user_id: str | None = None,
    slot_id: str | None = None,
    trigger_type: str = "manual",
    *,
    store: ReviewStore | None = None,
    orchestrator: AutomationOrchestrator | None = None,
    deadline_sec: float | None = None,
) -> AutomationResult:
    """Resolve settings and unprocessed reviews for one business, then run the pipeline."""
    s = get_settings()
    store = store or (orchestrator.store if orchestrator else get_review_store())
    orchestrator = orchestrator or AutomationOrchestrator(store)

    try:
        settings = await store.get_settings(business_id)
        business = await store.get_business(business_id)
    except Exception as e:
        err = await orchestrator.recovery.record(STEP_PIPELINE, e, business_id=business_id, user_id=user_id)
        return AutomationResult(success=False, errors=[err])

    if settings is None or business is None:
        raise BusinessNotFoundError(f"Business {business_id} not found")

    user_id = user_id or business.user_id
    if not settings.auto_reply_enabled and not settings.auto_post_enabled:
        logger.info(f"[automation] business={business_id} auto reply and auto post disabled, nothing to do")
        return AutomationResult(success=True)

    created_after = None
    if trigger_type == "scheduled":
        created_after = datetime.now(timezone.utc) - timedelta(hours=s.scheduled_lookback_hours)

    logger.info(f"[automation] Automation API called via {trigger_type} trigger for business={business_id}")
    try:
        reviews = await store.fetch_reviews(
            business_id,
            status=ReviewStatus.pending.value,
            automated_reply=False,
            automation_failed=False,
            created_after=created_after,
            limit=s.max_reviews_per_run,
        )
    except Exception as e:
        err = await orchestrator.recovery.record(STEP_PIPELINE, e, business_id=business_id, user_id=user_id)
        return AutomationResult(success=False, errors=[err])

    context = AutomationContext(
        business_id=business_id,
        user_id=user_id,
        slot_id=slot_id or settings.auto_sync_slot,
        trigger_type=trigger_type,
        settings=settings,
        business=business,
        new_reviews=tuple(reviews),
    )
    result = await orchestrator.run(
        context, deadline_sec=deadline_sec if deadline_sec is not None else s.run_deadline_sec
    )

    try:
        if result.settings_update is not None:
            await store.update_automation_state(
                business_id,
                last_automation_run=result.settings_update.last_automation_run,
                automation_errors=result.settings_update.automation_errors,
            )
        await store.log_activity(
            business_id,
            ActivityType.automation_api_called.value,
            f"Automation run via {trigger_type} trigger",
            {
                "trigger_type": trigger_type,
                "slot_id": context.slot_id,
                "success": result.success,
                "processed": result.processed,
                "generated": result.generated,
                "approved": result.approved,
                "posted": result.posted,
                "errors": len(result.errors),
            },
        )
    except Exception as e:
        result.success = False
        result.errors.append(await orchestrator.recovery.record(
            STEP_PIPELINE, e, business_id=business_id, user_id=user_id
        ))
    return result
