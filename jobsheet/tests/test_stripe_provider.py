"""
Test the Stripe provider against a mocked StripeClient.

Webhook verification runs the real stripe signature check on locally
signed payloads.
"""
import json
import time
from datetime import datetime, timezone
from unittest.mock import Mock

import pytest
import stripe

from jobsheet.features.billing.provider import (
    BillingProviderError,
    BillingProviderUnavailable,
    BillingWebhookError,
    EventKind,
    MalformedEventError,
)
from jobsheet.features.billing.stripe_provider import StripeProvider
from jobsheet.tests.fakes import (
    CLIENT_URL,
    PRICE_ID,
    WEBHOOK_SECRET,
    checkout_completed_event,
    sign,
    signed,
    subscription_event,
)


@pytest.fixture
def stripe_client():
    return Mock()


@pytest.fixture
def stripe_provider(stripe_client):
    return StripeProvider("sk_test_fake", WEBHOOK_SECRET, PRICE_ID, CLIENT_URL + "/", client=stripe_client)


def test_requires_secret_key():
    with pytest.raises(BillingProviderError):
        StripeProvider("", WEBHOOK_SECRET, PRICE_ID, CLIENT_URL)


def test_checkout_session_params(stripe_provider, stripe_client):
    stripe_client.checkout.sessions.create.return_value = Mock(id="cs_live_1", url="https://checkout.stripe.com/c/cs_live_1")

    session = stripe_provider.create_checkout_session("acct_alice", "alice@example.com")

    assert session.session_id == "cs_live_1"
    assert session.redirect_url == "https://checkout.stripe.com/c/cs_live_1"
    params = stripe_client.checkout.sessions.create.call_args.kwargs["params"]
    assert params["mode"] == "subscription"
    assert params["line_items"] == [{"price": PRICE_ID, "quantity": 1}]
    assert params["client_reference_id"] == "acct_alice"
    assert params["metadata"] == {"account_id": "acct_alice"}
    assert params["subscription_data"] == {"metadata": {"account_id": "acct_alice"}}
    assert params["success_url"] == f"{CLIENT_URL}?success=true&session_id={{CHECKOUT_SESSION_ID}}"
    assert params["cancel_url"] == f"{CLIENT_URL}?canceled=true"
    assert params["customer_email"] == "alice@example.com"


def test_checkout_session_without_email(stripe_provider, stripe_client):
    stripe_client.checkout.sessions.create.return_value = Mock(id="cs_live_2", url="https://checkout.stripe.com/c/2")
    stripe_provider.create_checkout_session("acct_alice", None)
    assert "customer_email" not in stripe_client.checkout.sessions.create.call_args.kwargs["params"]


def test_checkout_requires_price(stripe_client):
    provider = StripeProvider("sk_test_fake", WEBHOOK_SECRET, None, CLIENT_URL, client=stripe_client)
    with pytest.raises(BillingProviderError):
        provider.create_checkout_session("acct_alice", None)
    stripe_client.checkout.sessions.create.assert_not_called()


def test_checkout_connection_error_is_unavailable(stripe_provider, stripe_client):
    stripe_client.checkout.sessions.create.side_effect = stripe.APIConnectionError("connection reset")
    with pytest.raises(BillingProviderUnavailable):
        stripe_provider.create_checkout_session("acct_alice", None)


def test_checkout_rejection_is_provider_error(stripe_provider, stripe_client):
    stripe_client.checkout.sessions.create.side_effect = stripe.InvalidRequestError("No such price", "line_items")
    with pytest.raises(BillingProviderError) as exc_info:
        stripe_provider.create_checkout_session("acct_alice", None)
    assert not isinstance(exc_info.value, BillingProviderUnavailable)
    assert "No such price" in str(exc_info.value)


def test_portal_session_returns_to_client(stripe_provider, stripe_client):
    stripe_client.billing_portal.sessions.create.return_value = Mock(url="https://billing.stripe.com/p/1")

    session = stripe_provider.create_portal_session("cus_alice")

    assert session.redirect_url == "https://billing.stripe.com/p/1"
    stripe_client.billing_portal.sessions.create.assert_called_once_with(
        params={"customer": "cus_alice", "return_url": CLIENT_URL}
    )


def test_portal_connection_error_is_unavailable(stripe_provider, stripe_client):
    stripe_client.billing_portal.sessions.create.side_effect = stripe.APIConnectionError("timeout")
    with pytest.raises(BillingProviderUnavailable):
        stripe_provider.create_portal_session("cus_alice")


def test_retrieve_checkout_session(stripe_provider, stripe_client):
    stripe_client.checkout.sessions.retrieve.return_value = {
        "id": "cs_live_1",
        "status": "complete",
        "client_reference_id": "acct_alice",
        "metadata": {},
        "customer": {"id": "cus_alice", "object": "customer"},
        "subscription": "sub_alice",
        "customer_details": {"email": "alice@example.com"},
    }

    details = stripe_provider.retrieve_checkout_session("cs_live_1")

    assert details.account_id == "acct_alice"
    assert details.customer_ref == "cus_alice"
    assert details.subscription_ref == "sub_alice"
    assert details.customer_email == "alice@example.com"
    assert details.status == "complete"


def test_retrieve_unknown_session(stripe_provider, stripe_client):
    stripe_client.checkout.sessions.retrieve.side_effect = stripe.InvalidRequestError("No such checkout.session", "id")
    with pytest.raises(BillingProviderError):
        stripe_provider.retrieve_checkout_session("cs_missing")


def test_verify_checkout_completed(stripe_provider):
    created = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)
    event = stripe_provider.verify_event(*signed(checkout_completed_event(
        "evt_1", account_id="acct_alice", created=created, email="alice@example.com",
    )))

    assert event.kind is EventKind.CHECKOUT_COMPLETED
    assert event.event_id == "evt_1"
    assert event.created_at == created
    assert event.account_id == "acct_alice"
    assert event.customer_ref == "cus_test_1"
    assert event.subscription_ref == "sub_test_1"
    assert event.customer_email == "alice@example.com"


def test_verify_subscription_updated(stripe_provider):
    period_end = datetime(2025, 3, 15, 12, 0, tzinfo=timezone.utc)
    event = stripe_provider.verify_event(*signed(subscription_event(
        "evt_2", "customer.subscription.updated", status="past_due", current_period_end=period_end,
    )))

    assert event.kind is EventKind.SUBSCRIPTION_UPDATED
    assert event.subscription_ref == "sub_test_1"
    assert event.provider_status == "past_due"
    assert event.current_period_end == period_end


def test_period_end_read_from_subscription_items(stripe_provider):
    """Newer API versions report the period on each item."""
    raw = subscription_event("evt_3", "customer.subscription.updated")
    raw["data"]["object"]["items"] = {
        "object": "list",
        "data": [
            {"id": "si_1", "current_period_end": 1739620800},
            {"id": "si_2", "current_period_end": 1742040000},
        ],
    }
    event = stripe_provider.verify_event(*signed(raw))
    assert event.current_period_end == datetime.fromtimestamp(1742040000, tz=timezone.utc)


def test_unrecognized_event_type(stripe_provider):
    raw = {"id": "evt_4", "type": "invoice.paid", "created": int(time.time()), "data": {"object": {"id": "in_1"}}}
    event = stripe_provider.verify_event(*signed(raw))
    assert event.kind is EventKind.UNRECOGNIZED
    assert event.provider_type == "invoice.paid"


def test_signature_checked_before_parsing(stripe_provider):
    payload = b"not json at all"
    with pytest.raises(BillingWebhookError):
        stripe_provider.verify_event(payload, sign(payload, secret="whsec_wrong"))


def test_authentic_garbage_is_malformed(stripe_provider):
    payload = b"not json at all"
    with pytest.raises(MalformedEventError):
        stripe_provider.verify_event(payload, sign(payload))


def test_missing_fields_are_malformed(stripe_provider):
    payload = json.dumps({"type": "checkout.session.completed", "data": {"object": {}}}).encode()
    with pytest.raises(MalformedEventError):
        stripe_provider.verify_event(payload, sign(payload))


def test_bad_timestamp_is_malformed(stripe_provider):
    raw = subscription_event("evt_5", "customer.subscription.updated")
    raw["created"] = "yesterday"
    with pytest.raises(MalformedEventError) as exc_info:
        stripe_provider.verify_event(*signed(raw))
    assert exc_info.value.event_id == "evt_5"


def test_expired_signature_rejected(stripe_provider):
    payload = json.dumps(subscription_event("evt_6", "customer.subscription.updated")).encode()
    header = sign(payload, timestamp=int(time.time()) - 3600)
    with pytest.raises(BillingWebhookError):
        stripe_provider.verify_event(payload, header)


def test_missing_webhook_secret(stripe_client):
    provider = StripeProvider("sk_test_fake", None, PRICE_ID, CLIENT_URL, client=stripe_client)
    with pytest.raises(BillingWebhookError):
        provider.verify_event(*signed(subscription_event("evt_7", "customer.subscription.updated")))
