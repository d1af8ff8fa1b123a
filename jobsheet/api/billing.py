"""
Billing API routes.

Minimal surface:
- POST /api/billing/checkout: Create checkout session
- POST /api/billing/verify:   Reconcile right after the success redirect
- POST /api/billing/portal:   Create portal session
- POST /api/billing/webhook:  Handle Stripe webhooks
"""
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from pydantic import Field
from starlette.concurrency import run_in_threadpool

from jobsheet.api.deps import BillingServices, require_billing
from jobsheet.api.schemas import CamelModel


router = APIRouter(prefix="/billing", tags=["billing"])


class CheckoutRequest(CamelModel):
    """Request to create checkout session."""
    account_id: str = Field(min_length=1)
    account_email: Optional[str] = None


class CheckoutResponse(CamelModel):
    session_id: str
    redirect_url: str


class VerifyRequest(CamelModel):
    account_id: str = Field(min_length=1)
    session_id: str = Field(min_length=1)


class VerifyResponse(CamelModel):
    status: str  # active | unchanged


class PortalRequest(CamelModel):
    """Either the customer ref directly, or an account to resolve it from."""
    billing_customer_ref: Optional[str] = None
    account_id: Optional[str] = None


class PortalResponse(CamelModel):
    redirect_url: str


class WebhookResponse(CamelModel):
    received: bool
    event_id: Optional[str] = None
    outcome: str


@router.post("/checkout", response_model=CheckoutResponse)
def create_checkout(request: CheckoutRequest, billing: BillingServices = Depends(require_billing)):
    """
    Create Stripe checkout session.

    Errors:
        503: Billing disabled or Stripe unreachable
        502: Stripe rejected the session
    """
    session = billing.checkout.start_checkout(request.account_id, request.account_email)
    return CheckoutResponse(session_id=session.session_id, redirect_url=session.redirect_url)


@router.post("/verify", response_model=VerifyResponse)
def verify_subscription(request: VerifyRequest, billing: BillingServices = Depends(require_billing)):
    """
    Reconcile immediately after checkout.

    Returns "unchanged" (not an error) when the provider cannot confirm yet;
    the webhook will finish the job.
    """
    result = billing.verification.verify(request.account_id, request.session_id)
    return VerifyResponse(status=result.status)


@router.post("/portal", response_model=PortalResponse)
def create_portal(request: PortalRequest, billing: BillingServices = Depends(require_billing)):
    """
    Create Stripe billing portal session.

    Errors:
        409: No billing relationship (account only ever had a trial)
        503: Billing disabled or Stripe unreachable
    """
    if request.billing_customer_ref or not request.account_id:
        session = billing.portal.open_portal(request.billing_customer_ref)
    else:
        session = billing.portal.open_portal_for_account(request.account_id)
    return PortalResponse(redirect_url=session.redirect_url)


@router.post("/webhook", response_model=WebhookResponse)
async def handle_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None),
    billing: BillingServices = Depends(require_billing),
):
    """
    Handle Stripe webhook events.

    The raw body is passed through untouched for signature verification.

    Returns:
        {"received": true, ...} for every authentic event, handled or not

    Errors:
        400: Invalid signature
        503: Datastore unavailable (provider should redeliver)
    """
    body = await request.body()
    result = await run_in_threadpool(billing.reconciler.handle, body, stripe_signature)
    return WebhookResponse(received=True, event_id=result.event_id, outcome=result.outcome)
