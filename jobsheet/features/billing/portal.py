"""Portal orchestrator: self-service billing management for existing customers."""

import logging
from typing import Optional

from jobsheet.core.errors import NoBillingRelationship, ProviderUnavailable
from jobsheet.features.billing.provider import BillingProvider, BillingProviderError, PortalSession
from jobsheet.features.entitlements.store import EntitlementStore


logger = logging.getLogger(__name__)


class PortalOrchestrator:
    def __init__(self, provider: BillingProvider, store: Optional[EntitlementStore] = None):
        self.provider = provider
        self.store = store

    def open_portal(self, billing_customer_ref: Optional[str]) -> PortalSession:
        """
        Raises:
            NoBillingRelationship: If there is no customer ref (trial-only account)
            ProviderUnavailable: If the provider could not create the session
        """
        if not billing_customer_ref:
            raise NoBillingRelationship("No billing account found. Subscribe first to manage billing.")

        try:
            return self.provider.create_portal_session(billing_customer_ref)
        except BillingProviderError as e:
            logger.warning("billing.portal.failed", extra={"error_code": "provider_unavailable"})
            raise ProviderUnavailable(str(e)) from e

    def open_portal_for_account(self, account_id: str) -> PortalSession:
        """Resolve the customer ref from the account's record, then open the portal."""
        if self.store is None:
            raise RuntimeError("PortalOrchestrator needs a store to resolve accounts")
        record = self.store.get(account_id)
        return self.open_portal(record.billing_customer_ref if record else None)
