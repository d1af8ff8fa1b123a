"""
Test email delivery (Resend) and account lookups (Supabase) over a mocked
HTTP transport.
"""
import json

import httpx

from jobsheet.core.metrics import notifications_total
from jobsheet.features.billing.activation import SubscriptionNotifier
from jobsheet.features.notifications.directory import SupabaseAccountDirectory
from jobsheet.features.notifications.sender import LoggingNotificationSender, ResendNotificationSender
from jobsheet.features.notifications.templates import NotificationTemplate, PLAN_NAME, PLAN_PRICE, render
from jobsheet.tests.fakes import FakeAccountDirectory, FakeNotificationSender


def _client(handler):
    return httpx.Client(transport=httpx.MockTransport(handler))


def test_started_template_mentions_plan():
    subject, html = render(NotificationTemplate.SUBSCRIPTION_STARTED, {"app_url": "https://app.test"})
    assert "Welcome to JobSheet Pro" in subject
    assert PLAN_NAME in html
    assert PLAN_PRICE in html
    assert "Hi there" in html
    assert "https://app.test" in html


def test_canceled_template_says_access_has_ended():
    subject, html = render(NotificationTemplate.SUBSCRIPTION_CANCELED, {"name": "alice"})
    assert subject == "Your JobSheet Pro subscription has been canceled"
    assert "Hi alice" in html
    assert "no longer available" in html
    assert "until the end" not in html


def test_resend_sender_posts_email():
    captured = []

    def handler(request):
        captured.append(request)
        return httpx.Response(200, json={"id": "email_1"})

    sender = ResendNotificationSender("re_test", "JobSheet <billing@jobsheet.test>", client=_client(handler))

    assert sender.notify("alice@example.com", NotificationTemplate.SUBSCRIPTION_STARTED, {}) is True
    request = captured[0]
    assert str(request.url) == "https://api.resend.com/emails"
    assert request.headers["Authorization"] == "Bearer re_test"
    body = json.loads(request.content)
    assert body["to"] == ["alice@example.com"]
    assert body["from"] == "JobSheet <billing@jobsheet.test>"
    assert body["subject"] == "🎉 Welcome to JobSheet Pro!"
    assert notifications_total.value({"template": "subscription_started", "outcome": "sent"}) == 1


def test_resend_failure_returns_false():
    sender = ResendNotificationSender(
        "re_test", "billing@jobsheet.test", client=_client(lambda request: httpx.Response(422, json={"message": "bad"}))
    )
    assert sender.notify("alice@example.com", NotificationTemplate.SUBSCRIPTION_CANCELED, {}) is False
    assert notifications_total.value({"template": "subscription_canceled", "outcome": "failed"}) == 1


def test_resend_network_error_returns_false():
    def handler(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    sender = ResendNotificationSender("re_test", "billing@jobsheet.test", client=_client(handler))
    assert sender.notify("alice@example.com", NotificationTemplate.SUBSCRIPTION_STARTED, {}) is False


def test_logging_sender_only_records():
    assert LoggingNotificationSender().notify("a@example.com", NotificationTemplate.SUBSCRIPTION_STARTED, {}) is False
    assert notifications_total.value({"template": "subscription_started", "outcome": "skipped"}) == 1


def test_supabase_lookup():
    captured = []

    def handler(request):
        captured.append(request)
        return httpx.Response(200, json={"id": "acct_alice", "email": "alice@example.com"})

    directory = SupabaseAccountDirectory("https://proj.supabase.test/", "service_key", client=_client(handler))

    assert directory.email_for("acct_alice") == "alice@example.com"
    assert str(captured[0].url) == "https://proj.supabase.test/auth/v1/admin/users/acct_alice"
    assert captured[0].headers["apikey"] == "service_key"
    assert captured[0].headers["Authorization"] == "Bearer service_key"


def test_supabase_wrapped_user_payload():
    directory = SupabaseAccountDirectory(
        "https://proj.supabase.test",
        "service_key",
        client=_client(lambda request: httpx.Response(200, json={"user": {"email": "bob@example.com"}})),
    )
    assert directory.email_for("acct_bob") == "bob@example.com"


def test_supabase_missing_user_is_none():
    directory = SupabaseAccountDirectory(
        "https://proj.supabase.test",
        "service_key",
        client=_client(lambda request: httpx.Response(404, json={"msg": "User not found"})),
    )
    assert directory.email_for("acct_ghost") is None


def test_notifier_prefers_explicit_email():
    sender = FakeNotificationSender()
    directory = FakeAccountDirectory({"acct_alice": "alice@example.com"})
    notifier = SubscriptionNotifier(sender, directory, app_url="https://app.test")

    notifier.send("acct_alice", NotificationTemplate.SUBSCRIPTION_STARTED, email="alice@work.example")

    assert directory.lookups == []
    email, template, variables = sender.sent[0]
    assert email == "alice@work.example"
    assert variables["app_url"] == "https://app.test"
    assert variables["account_id"] == "acct_alice"
    assert variables["name"] == "alice"


def test_notifier_skips_without_recipient():
    sender = FakeNotificationSender()
    notifier = SubscriptionNotifier(sender, FakeAccountDirectory())

    assert notifier.send("acct_ghost", NotificationTemplate.SUBSCRIPTION_CANCELED) is False
    assert sender.sent == []


def test_notifier_greets_by_email_local_part():
    sender = FakeNotificationSender()
    notifier = SubscriptionNotifier(sender, FakeAccountDirectory({"acct_bob": "bob.smith@example.com"}))

    notifier.send("acct_bob", NotificationTemplate.SUBSCRIPTION_CANCELED)

    _, _, variables = sender.sent[0]
    assert variables["name"] == "bob.smith"
    _, html = render(NotificationTemplate.SUBSCRIPTION_CANCELED, variables)
    assert "Hi bob.smith" in html
