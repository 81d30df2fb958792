"""
Publication adapter: posts a reply to the review source and records it.

    publish(review_id, reply_text, business_id, user_id, automated) -> PublishResult

Results (including errors) are always returned explicitly, no silent failures.
The external side effect happens first; the review row moves to `posted`
only after the review source accepted the reply. A review that already has
`posted_at` is never sent again.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from autoreply.integrations.google_business import ReviewSourceClient, get_review_source_client
from autoreply.models import ActivityType, ReviewStatus
from autoreply.services.sanitize import error_text
from autoreply.services.store import ReviewStore
from autoreply.settings import get_settings

logger = logging.getLogger(__name__)


@dataclass
class PublishResult:
    success: bool
    review_id: str
    posted_at: datetime | None = None
    reply_text: str | None = None
    already_published: bool = False
    error: str | None = None


def _failed(review_id: str, error: str) -> PublishResult:
    return PublishResult(success=False, review_id=review_id, error=error)


class PublicationAdapter:
    def __init__(
        self,
        store: ReviewStore,
        client: ReviewSourceClient | None = None,
        *,
        timeout: float | None = None,
    ):
        self.store = store
        self.client = client or get_review_source_client()
        self.timeout = timeout if timeout is not None else get_settings().publish_timeout_sec

    async def publish(
        self,
        review_id: str,
        reply_text: str | None,
        business_id: str,
        user_id: str | None = None,
        automated: bool = True,
    ) -> PublishResult:
        review = await self.store.get_review(review_id)
        if review is None:
            return _failed(review_id, "Review not found")
        if review.business_id != business_id:
            return _failed(review_id, "Review does not belong to this business")
        if review.posted_at is not None:
            logger.info(f"[publisher][review={review_id}] already published at {review.posted_at}, skipping")
            return PublishResult(
                success=True,
                review_id=review_id,
                posted_at=review.posted_at,
                reply_text=review.posted_reply or review.reply_text,
                already_published=True,
            )

        text = (reply_text or review.reply_text or "").strip()
        if not text:
            return _failed(review_id, "No reply text to publish")
        if not review.google_review_id:
            return _failed(review_id, "Review has no external review id and cannot be replied to")

        business = await self.store.get_business(business_id)
        if business is None or not business.google_account_id or not business.google_location_id:
            return _failed(review_id, "Business is not connected to a review source location")

        try:
            await asyncio.wait_for(
                self.client.post_reply(
                    account_id=business.google_account_id,
                    location_id=business.google_location_id,
                    external_review_id=review.google_review_id,
                    text=text,
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            error = f"Publishing reply timed out after {self.timeout}s"
            logger.error(f"[publisher][review={review_id}] {error}")
            return _failed(review_id, error)
        except Exception as e:
            error = error_text(e)
            logger.error(f"[publisher][review={review_id}] publish failed: {error}")
            return _failed(review_id, error)

        posted_at = datetime.now(timezone.utc)
        await self.store.update_review(
            review_id,
            status=ReviewStatus.posted,
            posted_at=posted_at,
            posted_reply=text,
        )
        activity = ActivityType.reply_auto_posted if automated else ActivityType.reply_posted
        await self.store.log_activity(
            business_id,
            activity.value,
            f"{'Auto-posted' if automated else 'Posted'} reply for {review.rating}-star review from {review.customer_name}",
            {
                "review_id": review_id,
                "rating": review.rating,
                "google_review_id": review.google_review_id,
                "user_id": user_id,
                "automated": automated,
            },
        )
        logger.info(f"[publisher][review={review_id}] posted ({len(text.split())} words)")
        return PublishResult(
            success=True,
            review_id=review_id,
            posted_at=posted_at,
            reply_text=text,
        )
