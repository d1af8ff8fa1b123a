"""
Verification endpoint logic.

Runs right after the checkout success redirect, before the webhook may have
arrived. Uses the same activation path as the reconciler, so the two can
race safely. Any failure here is reported as "unchanged": the webhook
remains the authoritative path and the UI shows "pending".

A verification is sequenced at the moment it runs: the session was complete
by then, so any provider event older than that predates the completion.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from jobsheet.core.clock import Clock
from jobsheet.core.errors import DatastoreUnavailable, ReconciliationFailed, ValidationError
from jobsheet.features.billing.activation import SubscriptionActivator
from jobsheet.features.billing.provider import BillingProvider, BillingProviderError
from jobsheet.features.entitlements.store import EntitlementStore
from jobsheet.models.entitlement import SubscriptionStatus


logger = logging.getLogger(__name__)

STATUS_ACTIVE = "active"
STATUS_UNCHANGED = "unchanged"


@dataclass(frozen=True)
class VerificationResult:
    status: str


UNCHANGED = VerificationResult(status=STATUS_UNCHANGED)


class VerificationService:
    def __init__(
        self,
        store: EntitlementStore,
        provider: BillingProvider,
        activator: SubscriptionActivator,
        clock: Optional[Clock] = None,
    ):
        self.store = store
        self.provider = provider
        self.activator = activator
        self.clock = clock or activator.clock

    def verify(self, account_id: str, session_id: str) -> VerificationResult:
        if not account_id or not session_id:
            raise ValidationError("account_id and session_id are required")

        try:
            record = self.store.get(account_id)
        except DatastoreUnavailable:
            logger.warning(
                "billing.verify.store_unavailable",
                extra={"account_id": account_id, "error_code": "datastore_unavailable", "outcome": STATUS_UNCHANGED},
            )
            return UNCHANGED
        if record and record.status is SubscriptionStatus.ACTIVE and record.billing_subscription_ref:
            return VerificationResult(status=STATUS_ACTIVE)

        try:
            session = self.provider.retrieve_checkout_session(session_id)
        except BillingProviderError as e:
            logger.warning(
                "billing.verify.provider_failed",
                extra={"account_id": account_id, "error_code": type(e).__name__, "outcome": STATUS_UNCHANGED},
            )
            return UNCHANGED

        if session.account_id != account_id:
            logger.warning(
                "billing.verify.account_mismatch",
                extra={"account_id": account_id, "session_id": session_id, "outcome": STATUS_UNCHANGED},
            )
            return UNCHANGED

        if session.status != "complete" or not session.subscription_ref:
            logger.info(
                "billing.verify.incomplete",
                extra={"account_id": account_id, "session_status": session.status, "outcome": STATUS_UNCHANGED},
            )
            return UNCHANGED

        try:
            outcome = self.activator.activate(
                account_id,
                customer_ref=session.customer_ref,
                subscription_ref=session.subscription_ref,
                customer_email=session.customer_email,
                event_at=self.clock(),
                source="verify",
            )
        except (ReconciliationFailed, DatastoreUnavailable) as e:
            logger.warning(
                "billing.verify.write_failed",
                extra={"account_id": account_id, "error_code": e.code, "outcome": STATUS_UNCHANGED},
            )
            return UNCHANGED

        after = outcome.after
        if after and after.status is SubscriptionStatus.ACTIVE and after.billing_subscription_ref:
            return VerificationResult(status=STATUS_ACTIVE)
        return UNCHANGED
