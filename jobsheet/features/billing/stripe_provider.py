"""
Stripe billing provider implementation.

Implements BillingProvider using an injected StripeClient with bounded
network timeouts. Webhook signatures are checked against the raw body
before the JSON is parsed.
"""
import json
import logging
from typing import Any, Dict, Optional

import stripe

from jobsheet.core.clock import from_unix
from jobsheet.features.billing.provider import (
    BillingEvent,
    BillingProviderError,
    BillingProviderUnavailable,
    BillingWebhookError,
    CheckoutSession,
    CheckoutSessionDetails,
    EventKind,
    MalformedEventError,
    PortalSession,
)


logger = logging.getLogger(__name__)

EVENT_KINDS = {
    "checkout.session.completed": EventKind.CHECKOUT_COMPLETED,
    "customer.subscription.updated": EventKind.SUBSCRIPTION_UPDATED,
    "customer.subscription.deleted": EventKind.SUBSCRIPTION_DELETED,
}

DEFAULT_WEBHOOK_TOLERANCE = 300


def _field(obj: Any, name: str) -> Any:
    """Read a key from a webhook dict or an SDK object alike."""
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def _ref(value: Any) -> Optional[str]:
    """Customer/subscription may arrive as an ID or as an expanded object."""
    if value is None or isinstance(value, str):
        return value
    return _field(value, "id")


def _timestamp(value: Any, event_id: Optional[str]):
    try:
        return from_unix(value)
    except (TypeError, ValueError, OverflowError) as e:
        raise MalformedEventError(f"Invalid timestamp {value!r}", event_id=event_id) from e


def _current_period_end(subscription: Any) -> Optional[int]:
    period_end = _field(subscription, "current_period_end")
    if period_end is not None:
        return period_end
    # Newer API versions moved the period onto subscription items
    items = _field(_field(subscription, "items"), "data") or []
    ends = [_field(item, "current_period_end") for item in items]
    ends = [end for end in ends if end is not None]
    return max(ends) if ends else None


class StripeProvider:
    """Stripe implementation of BillingProvider protocol."""

    def __init__(
        self,
        secret_key: str,
        webhook_secret: Optional[str],
        price_id: Optional[str],
        client_url: str,
        *,
        timeout: float = 10.0,
        webhook_tolerance: int = DEFAULT_WEBHOOK_TOLERANCE,
        client: Optional[stripe.StripeClient] = None,
    ):
        """
        Initialize Stripe provider.

        Args:
            secret_key: Stripe secret key
            webhook_secret: Stripe webhook signing secret
            price_id: Price of the monthly subscription
            client_url: Front-end base URL for success/cancel/return redirects
            timeout: Per-request network timeout in seconds
            webhook_tolerance: Maximum signature age in seconds
            client: Pre-built StripeClient (tests inject a mock)
        """
        if not secret_key:
            raise BillingProviderError("STRIPE_SECRET_KEY not configured")

        self.webhook_secret = webhook_secret
        self.price_id = price_id
        self.client_url = client_url.rstrip("/")
        self.webhook_tolerance = webhook_tolerance
        self.client = client or stripe.StripeClient(
            secret_key,
            http_client=stripe.RequestsClient(timeout=timeout),
            max_network_retries=0,
        )

    def create_checkout_session(self, account_id: str, account_email: Optional[str]) -> CheckoutSession:
        """Create Stripe subscription checkout session."""
        if not self.price_id:
            raise BillingProviderError("STRIPE_PRICE_ID not configured")

        params: Dict[str, Any] = {
            "mode": "subscription",
            "payment_method_types": ["card"],
            "line_items": [{"price": self.price_id, "quantity": 1}],
            "client_reference_id": account_id,
            "metadata": {"account_id": account_id},
            "subscription_data": {"metadata": {"account_id": account_id}},
            "success_url": f"{self.client_url}?success=true&session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": f"{self.client_url}?canceled=true",
        }
        if account_email:
            params["customer_email"] = account_email

        try:
            session = self.client.checkout.sessions.create(params=params)
        except stripe.APIConnectionError as e:
            raise BillingProviderUnavailable(f"Stripe unreachable: {e}") from e
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe checkout session creation failed: {e.user_message or e}") from e
        return CheckoutSession(session_id=session.id, redirect_url=session.url)

    def create_portal_session(self, customer_ref: str) -> PortalSession:
        """Create Stripe billing portal session."""
        try:
            session = self.client.billing_portal.sessions.create(
                params={"customer": customer_ref, "return_url": self.client_url}
            )
        except stripe.APIConnectionError as e:
            raise BillingProviderUnavailable(f"Stripe unreachable: {e}") from e
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe portal session creation failed: {e.user_message or e}") from e
        return PortalSession(redirect_url=session.url)

    def retrieve_checkout_session(self, session_id: str) -> CheckoutSessionDetails:
        """Fetch a Stripe checkout session after the success redirect."""
        try:
            session = self.client.checkout.sessions.retrieve(session_id)
        except stripe.APIConnectionError as e:
            raise BillingProviderUnavailable(f"Stripe unreachable: {e}") from e
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe checkout session lookup failed: {e.user_message or e}") from e

        metadata = _field(session, "metadata")
        details = _field(session, "customer_details")
        return CheckoutSessionDetails(
            session_id=session_id,
            account_id=_field(metadata, "account_id") or _field(session, "client_reference_id"),
            customer_ref=_ref(_field(session, "customer")),
            subscription_ref=_ref(_field(session, "subscription")),
            customer_email=_field(details, "email") or _field(session, "customer_email"),
            status=_field(session, "status"),
        )

    def verify_event(self, payload: bytes, signature_header: Optional[str]) -> BillingEvent:
        """Verify Stripe webhook signature and parse event."""
        if not self.webhook_secret:
            raise BillingWebhookError("STRIPE_WEBHOOK_SECRET not configured")
        if not signature_header:
            raise BillingWebhookError("Missing stripe-signature header")

        try:
            body = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise BillingWebhookError("Webhook body is not valid UTF-8") from e

        try:
            stripe.WebhookSignature.verify_header(
                body, signature_header, self.webhook_secret, self.webhook_tolerance
            )
        except stripe.SignatureVerificationError as e:
            raise BillingWebhookError(f"Invalid signature: {e}") from e

        try:
            event = json.loads(body)
        except ValueError as e:
            raise MalformedEventError(f"Invalid JSON payload: {e}") from e
        if not isinstance(event, dict):
            raise MalformedEventError("Event payload is not an object")

        return self._parse_event(event)

    def _parse_event(self, event: Dict[str, Any]) -> BillingEvent:
        """Parse Stripe event into normalized BillingEvent."""
        event_id = event.get("id")
        event_type = event.get("type")
        if not event_id or not event_type:
            raise MalformedEventError("Event is missing id or type", event_id=event_id)

        data = event.get("data")
        obj = data.get("object") if isinstance(data, dict) else None
        if not isinstance(obj, dict):
            raise MalformedEventError("Event has no data.object", event_id=event_id)

        kind = EVENT_KINDS.get(event_type, EventKind.UNRECOGNIZED)
        created_at = _timestamp(event.get("created"), event_id)

        if kind is EventKind.CHECKOUT_COMPLETED:
            metadata = obj.get("metadata") or {}
            details = obj.get("customer_details") or {}
            return BillingEvent(
                event_id=event_id,
                kind=kind,
                provider_type=event_type,
                created_at=created_at,
                account_id=metadata.get("account_id") or obj.get("client_reference_id"),
                customer_ref=_ref(obj.get("customer")),
                subscription_ref=_ref(obj.get("subscription")),
                customer_email=details.get("email") or obj.get("customer_email"),
            )

        if kind in (EventKind.SUBSCRIPTION_UPDATED, EventKind.SUBSCRIPTION_DELETED):
            metadata = obj.get("metadata") or {}
            return BillingEvent(
                event_id=event_id,
                kind=kind,
                provider_type=event_type,
                created_at=created_at,
                account_id=metadata.get("account_id"),
                customer_ref=_ref(obj.get("customer")),
                subscription_ref=obj.get("id"),
                provider_status=obj.get("status"),
                current_period_end=_timestamp(_current_period_end(obj), event_id),
            )

        return BillingEvent(
            event_id=event_id,
            kind=kind,
            provider_type=event_type,
            created_at=created_at,
        )
