"""
Billing provider protocol.

Defines the interface the entitlement engine needs from a billing provider
(Stripe, etc.) so orchestrators and the reconciler never touch the SDK.
"""
from typing import Protocol, Optional
from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class EventKind(str, Enum):
    CHECKOUT_COMPLETED = "checkout_completed"
    SUBSCRIPTION_UPDATED = "subscription_updated"
    SUBSCRIPTION_DELETED = "subscription_deleted"
    UNRECOGNIZED = "unrecognized"


@dataclass(frozen=True)
class CheckoutSession:
    session_id: str
    redirect_url: str


@dataclass(frozen=True)
class PortalSession:
    redirect_url: str


@dataclass(frozen=True)
class CheckoutSessionDetails:
    """What the provider knows about a checkout session after redirect."""
    session_id: str
    account_id: Optional[str]
    customer_ref: Optional[str]
    subscription_ref: Optional[str]
    customer_email: Optional[str]
    status: Optional[str]  # open, complete, expired


@dataclass(frozen=True)
class BillingEvent:
    """Verified, normalized provider event."""
    event_id: str
    kind: EventKind
    provider_type: str
    created_at: Optional[datetime]  # provider sequencing, used for last-write-wins
    account_id: Optional[str] = None
    customer_ref: Optional[str] = None
    subscription_ref: Optional[str] = None
    customer_email: Optional[str] = None
    provider_status: Optional[str] = None  # active, past_due, canceled, etc.
    current_period_end: Optional[datetime] = None


class BillingProvider(Protocol):
    """
    Protocol for billing providers.

    Implementations must handle:
    - Checkout session creation and retrieval
    - Portal session creation
    - Webhook signature verification and parsing
    """

    def create_checkout_session(self, account_id: str, account_email: Optional[str]) -> CheckoutSession:
        """
        Create a subscription checkout session correlated to an account.

        Args:
            account_id: Internal account ID, attached as correlation metadata
            account_email: Prefilled customer email (optional)

        Returns:
            Session ID and the URL to redirect the customer to

        Raises:
            BillingProviderUnavailable: If the provider cannot be reached in time
            BillingProviderError: If the provider rejects the request
        """
        ...

    def create_portal_session(self, customer_ref: str) -> PortalSession:
        """
        Create a billing portal session for customer self-service.

        Args:
            customer_ref: Provider customer ID

        Returns:
            Portal redirect URL

        Raises:
            BillingProviderUnavailable: If the provider cannot be reached in time
            BillingProviderError: If portal session creation fails
        """
        ...

    def retrieve_checkout_session(self, session_id: str) -> CheckoutSessionDetails:
        """
        Fetch a checkout session by ID.

        Raises:
            BillingProviderUnavailable: If the provider cannot be reached in time
            BillingProviderError: If the session cannot be retrieved
        """
        ...

    def verify_event(self, payload: bytes, signature_header: Optional[str]) -> BillingEvent:
        """
        Verify webhook signature, then parse the event.

        Signature verification happens before any parsing of the payload.

        Args:
            payload: Raw webhook body, exactly as received
            signature_header: Provider signature header value

        Returns:
            Normalized event

        Raises:
            BillingWebhookError: If the signature is missing or invalid
            MalformedEventError: If the payload is authentic but unparseable
        """
        ...


class BillingProviderError(Exception):
    """Base exception for billing provider errors."""
    pass


class BillingProviderUnavailable(BillingProviderError):
    """Provider timed out or the connection failed."""
    pass


class BillingWebhookError(BillingProviderError):
    """Webhook signature missing or invalid."""
    pass


class MalformedEventError(BillingProviderError):
    """Webhook was authentic but its content could not be understood."""

    def __init__(self, message: str, event_id: Optional[str] = None):
        super().__init__(message)
        self.event_id = event_id
