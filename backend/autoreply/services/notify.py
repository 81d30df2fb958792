"""
Notification service: run summaries for business owners, alerts for admins.

Summary emails are sent once per automation run. Admin alerts are throttled:
the same title is not sent more than once per 15 minutes.
"""
from __future__ import annotations

import abc
import html
import logging
import time
from dataclasses import dataclass, field
from typing import Any

from autoreply.integrations.brevo import BrevoMailer, NotificationError, get_mailer
from autoreply.settings import get_settings

logger = logging.getLogger(__name__)

_throttle: dict[str, float] = {}
THROTTLE_SEC = 15 * 60  # 15 minutes


def _should_send(key: str) -> bool:
    now = time.monotonic()
    last = _throttle.get(key)
    if last is not None and now - last < THROTTLE_SEC:
        return False
    _throttle[key] = now
    return True


def reset_throttle() -> None:
    _throttle.clear()


@dataclass
class RunSummary:
    """Everything the owner-facing summary needs about one automation run."""

    business_id: str
    user_id: str
    business_name: str
    recipient: str | None
    slot_id: str | None
    approval_mode: str
    trigger_type: str = "scheduled"
    new_reviews: int = 0
    posted: list[dict] = field(default_factory=list)
    pending: list[dict] = field(default_factory=list)
    metrics: dict[str, Any] = field(default_factory=dict)

    def to_meta(self) -> dict[str, Any]:
        return {
            "slot_id": self.slot_id,
            "trigger_type": self.trigger_type,
            "new_reviews": self.new_reviews,
            "posted_replies": len(self.posted),
            "pending_reviews": len(self.pending),
            "pending_reasons": sorted({p.get("pending_reason") for p in self.pending}),
            "metrics": self.metrics,
        }


class Notifier(abc.ABC):
    @abc.abstractmethod
    async def send_summary(self, summary: RunSummary) -> str | None:
        """Deliver the run summary. Raises NotificationError on failure."""

    @abc.abstractmethod
    async def alert_admin(self, title: str, payload: Any = None) -> bool:
        """Best-effort admin alert; never raises."""


def _subject(summary: RunSummary) -> str:
    if summary.posted:
        return f"{summary.business_name}: {len(summary.posted)} review replies posted"
    return f"{summary.business_name}: {len(summary.pending)} review replies waiting for you"


def render_summary(summary: RunSummary) -> tuple[str, str]:
    """(html, text) bodies for the summary email."""
    esc = html.escape
    lines = [f"Automation summary for {summary.business_name}", ""]
    parts = [f"<h2>Automation summary for {esc(summary.business_name)}</h2>"]

    if summary.posted:
        lines.append(f"Posted replies ({len(summary.posted)}):")
        parts.append(f"<h3>Posted replies ({len(summary.posted)})</h3><ul>")
        for item in summary.posted:
            lines.append(f"- {item['customer_name']} ({item['rating']}★): {item['reply_text']}")
            parts.append(
                f"<li><b>{esc(item['customer_name'])}</b> ({item['rating']}★)<br>"
                f"<i>{esc(item.get('review_text') or '')}</i><br>{esc(item['reply_text'])}</li>"
            )
        parts.append("</ul>")

    if summary.pending:
        lines.append(f"Waiting for your approval ({len(summary.pending)}):")
        parts.append(f"<h3>Waiting for your approval ({len(summary.pending)})</h3><ul>")
        for item in summary.pending:
            reason = "low rating" if item["pending_reason"] == "low_rating" else "manual approval"
            lines.append(f"- {item['customer_name']} ({item['rating']}★), {reason}: {item['ai_reply']}")
            parts.append(
                f"<li><b>{esc(item['customer_name'])}</b> ({item['rating']}★), {reason}<br>"
                f"<i>{esc(item.get('review_text') or '')}</i><br>{esc(item['ai_reply'])}</li>"
            )
        parts.append("</ul>")

    return "".join(parts), "\n".join(lines)


class EmailNotifier(Notifier):
    def __init__(self, mailer: BrevoMailer | None = None, *, admin_email: str | None = None):
        self.mailer = mailer or get_mailer()
        self.admin_email = admin_email if admin_email is not None else get_settings().admin_email

    async def send_summary(self, summary: RunSummary) -> str | None:
        if not summary.recipient:
            raise NotificationError(f"No recipient email for business {summary.business_id}")
        body_html, body_text = render_summary(summary)
        message_id = await self.mailer.send(
            to=summary.recipient,
            subject=_subject(summary),
            html=body_html,
            text=body_text,
        )
        logger.info(
            f"[notify] summary sent business={summary.business_id} "
            f"posted={len(summary.posted)} pending={len(summary.pending)} id={message_id}"
        )
        return message_id

    async def alert_admin(self, title: str, payload: Any = None) -> bool:
        if not _should_send(f"admin:{title}"):
            logger.debug(f"[notify] throttled admin alert: {title}")
            return False
        if not self.admin_email or not self.mailer.configured:
            logger.debug("[notify] admin email not configured, skipping")
            return False
        body = f"<b>{html.escape(title)}</b>"
        if payload:
            body += f"<pre>{html.escape(str(payload)[:2000])}</pre>"
        try:
            await self.mailer.send(to=self.admin_email, subject=f"[autoreply] {title}", html=body)
            return True
        except NotificationError as e:
            logger.warning(f"[notify] admin alert failed: {e}")
        return False


_notifier: Notifier | None = None


def get_notifier() -> Notifier:
    global _notifier
    if _notifier is None:
        _notifier = EmailNotifier()
    return _notifier


def set_notifier(notifier: Notifier | None) -> None:
    global _notifier
    _notifier = notifier
