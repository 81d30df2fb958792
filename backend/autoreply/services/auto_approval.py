"""
Auto-approval policy for generated replies.

| mode            | approve when |
|-----------------|--------------|
| manual          | never        |
| auto_4_plus     | rating >= 4  |
| auto_except_low | rating >= 3  |

A review is only considered while it is `pending` and has a reply
(generated or human-edited). All functions are pure.
"""
from __future__ import annotations

from typing import Any, Iterable

from autoreply.models import ApprovalMode, ReviewStatus
from autoreply.schemas import ReviewSnapshot

PENDING_LOW_RATING = "low_rating"
PENDING_MANUAL_APPROVAL = "manual_approval"


def rating_passes(rating: int, mode: ApprovalMode | str) -> bool:
    mode = ApprovalMode(mode)
    if mode == ApprovalMode.auto_4_plus:
        return rating >= 4
    if mode == ApprovalMode.auto_except_low:
        return rating >= 3
    return False


def should_auto_approve(review: ReviewSnapshot, mode: ApprovalMode | str) -> bool:
    if not review.reply_text:
        return False
    if review.status != ReviewStatus.pending:
        return False
    return rating_passes(review.rating, mode)


def approval_reason(rating: int, mode: ApprovalMode | str) -> str:
    mode = ApprovalMode(mode)
    if mode == ApprovalMode.auto_4_plus:
        return f"Auto-approved {rating}-star review (4+ star policy)"
    if mode == ApprovalMode.auto_except_low:
        return f"Auto-approved {rating}-star review (except low ratings policy)"
    return f"Auto-approved {rating}-star review"


def pending_reason(rating: int, mode: ApprovalMode | str) -> str:
    """Why a review with a reply is still waiting for the owner."""
    mode = ApprovalMode(mode)
    if mode == ApprovalMode.auto_4_plus and rating < 4:
        return PENDING_LOW_RATING
    if mode == ApprovalMode.auto_except_low and rating <= 2:
        return PENDING_LOW_RATING
    return PENDING_MANUAL_APPROVAL


def preview_auto_approval(reviews: Iterable[ReviewSnapshot], mode: ApprovalMode | str) -> dict[str, Any]:
    """What the policy would do to the given reviews, without writing anything."""
    by_rating = {r: {"total": 0, "would_approve": 0} for r in range(1, 6)}
    would_approve = 0
    would_skip = 0
    for review in reviews:
        bucket = by_rating.setdefault(review.rating, {"total": 0, "would_approve": 0})
        bucket["total"] += 1
        if should_auto_approve(review, mode):
            bucket["would_approve"] += 1
            would_approve += 1
        else:
            would_skip += 1
    return {
        "mode": ApprovalMode(mode).value,
        "would_approve": would_approve,
        "would_skip": would_skip,
        "by_rating": by_rating,
    }


def approval_stats(reviews: Iterable[ReviewSnapshot]) -> dict[str, Any]:
    total = auto = manual = pending = 0
    for review in reviews:
        total += 1
        if review.auto_approved:
            auto += 1
        elif review.status == ReviewStatus.approved:
            manual += 1
        if review.status == ReviewStatus.pending:
            pending += 1
    return {
        "total_reviews": total,
        "auto_approved": auto,
        "manual_approved": manual,
        "pending": pending,
        "auto_approval_rate": round(auto / total * 100, 1) if total else 0.0,
    }
