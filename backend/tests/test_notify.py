import pytest

from autoreply.integrations.brevo import BrevoMailer, NotificationError
from autoreply.integrations.google_business import GoogleBusinessClient, PublishError
from autoreply.services.notify import EmailNotifier, RunSummary, render_summary
from autoreply.services.sanitize import error_text, sanitize


class FakeMailer(BrevoMailer):
    def __init__(self, api_key="key"):
        super().__init__(api_key, sender="hello@replyfast.app", sender_name="ReplyFast")
        self.sent = []

    async def send(self, *, to, subject, html, text=None):
        self.sent.append({"to": to, "subject": subject, "html": html, "text": text})
        return f"<msg-{len(self.sent)}>"


def _summary(**overrides) -> RunSummary:
    data = dict(
        business_id="b1",
        user_id="u1",
        business_name="Luigi's <Pizzeria>",
        recipient="owner@luigis.example",
        slot_id="slot_1",
        approval_mode="auto_4_plus",
        new_reviews=2,
        posted=[{"customer_name": "Maria", "rating": 5, "review_text": "Great crust", "reply_text": "Thanks Maria!"}],
        pending=[{
            "customer_name": "Tom",
            "rating": 2,
            "review_text": "Cold pizza",
            "ai_reply": "Sorry Tom, call us.",
            "pending_reason": "low_rating",
        }],
    )
    data.update(overrides)
    return RunSummary(**data)


def test_render_summary_lists_both_sections():
    html, text = render_summary(_summary())

    assert "Luigi&#x27;s &lt;Pizzeria&gt;" in html
    assert "Posted replies (1)" in text
    assert "Waiting for your approval (1)" in text
    assert "Tom (2★), low rating: Sorry Tom, call us." in text


async def test_summary_is_sent_to_the_owner():
    mailer = FakeMailer()
    notifier = EmailNotifier(mailer, admin_email="admin@replyfast.app")

    message_id = await notifier.send_summary(_summary())

    assert message_id == "<msg-1>"
    assert mailer.sent[0]["to"] == "owner@luigis.example"
    assert "1 review replies posted" in mailer.sent[0]["subject"]


async def test_summary_without_recipient_fails():
    notifier = EmailNotifier(FakeMailer(), admin_email=None)
    with pytest.raises(NotificationError):
        await notifier.send_summary(_summary(recipient=None))


async def test_admin_alerts_are_throttled():
    mailer = FakeMailer()
    notifier = EmailNotifier(mailer, admin_email="admin@replyfast.app")

    assert await notifier.alert_admin("Critical automation error: post_reply", {"business_id": "b1"})
    assert not await notifier.alert_admin("Critical automation error: post_reply", {"business_id": "b2"})
    assert await notifier.alert_admin("Critical automation error: generate_ai_reply")
    assert len(mailer.sent) == 2


async def test_admin_alert_needs_configuration():
    assert not await EmailNotifier(FakeMailer(), admin_email="").alert_admin("x")
    assert not await EmailNotifier(FakeMailer(api_key=None), admin_email="admin@replyfast.app").alert_admin("y")


def test_summary_meta():
    meta = _summary().to_meta()
    assert meta["new_reviews"] == 2
    assert meta["posted_replies"] == 1
    assert meta["pending_reasons"] == ["low_rating"]


async def test_unconfigured_clients_fail_fast():
    with pytest.raises(NotificationError, match="not configured"):
        await BrevoMailer(None, sender="a@b.c", sender_name="A").send(to="x@y.z", subject="s", html="h")
    with pytest.raises(PublishError, match="Google credentials not configured"):
        await GoogleBusinessClient(None, base_url="https://example.test").post_reply(
            account_id="accounts/1", location_id="locations/2", external_review_id="r", text="hi"
        )


def test_reply_url_normalises_resource_names():
    client = GoogleBusinessClient("token", base_url="https://mybusiness.googleapis.com/v4/")
    url = client._reply_url("accounts/123", "accounts/123/locations/456", "abc")
    assert url == "https://mybusiness.googleapis.com/v4/accounts/123/locations/456/reviews/abc/reply"


def test_sanitize():
    assert sanitize("call failed with sk-abcdefghijklmnop") == "call failed with sk-***"
    assert "secret" not in sanitize("url?access_token=secret&x=1")
    assert error_text(ValueError()) == "ValueError"
    assert len(error_text("slow " * 400)) == 500
