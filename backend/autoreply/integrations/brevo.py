from __future__ import annotations

import httpx

from autoreply.services.sanitize import sanitize
from autoreply.settings import get_settings

BREVO_SMTP_URL = "https://api.brevo.com/v3/smtp/email"


class NotificationError(Exception):
    """Email delivery failed."""


class BrevoMailer:
    """Transactional email via the Brevo HTTP API."""

    def __init__(
        self,
        api_key: str | None,
        *,
        sender: str,
        sender_name: str,
        timeout: float = 10.0,
    ):
        self.api_key = api_key
        self.sender = sender
        self.sender_name = sender_name
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def send(self, *, to: str, subject: str, html: str, text: str | None = None) -> str | None:
        """Send one email and return the provider message id."""
        if not self.api_key:
            raise NotificationError("Brevo API key not configured")

        payload = {
            "sender": {"email": self.sender, "name": self.sender_name},
            "to": [{"email": to}],
            "subject": subject,
            "htmlContent": html,
        }
        if text:
            payload["textContent"] = text

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                r = await client.post(
                    BREVO_SMTP_URL,
                    json=payload,
                    headers={"api-key": self.api_key, "accept": "application/json"},
                )
        except httpx.TimeoutException as e:
            raise NotificationError(f"Email delivery timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise NotificationError(f"Email delivery failed: {sanitize(str(e))}") from e

        if r.status_code >= 400:
            raise NotificationError(f"Brevo API {r.status_code}: {sanitize(r.text[:200])}")
        try:
            return r.json().get("messageId")
        except ValueError:
            return None


def get_mailer() -> BrevoMailer:
    s = get_settings()
    return BrevoMailer(
        s.brevo_api_key,
        sender=s.email_sender,
        sender_name=s.email_sender_name,
        timeout=s.notify_timeout_sec,
    )
