"""
Checkout orchestrator.

Originates a new paid relationship with the billing provider. Touches no
local state: the account id rides along as correlation metadata and the
record is only written when the provider reports completion.
"""

import logging
from typing import Optional

from jobsheet.core.errors import CheckoutFailed, ProviderUnavailable, ValidationError
from jobsheet.features.billing.provider import (
    BillingProvider,
    BillingProviderError,
    BillingProviderUnavailable,
    CheckoutSession,
)


logger = logging.getLogger(__name__)


class CheckoutOrchestrator:
    def __init__(self, provider: BillingProvider):
        self.provider = provider

    def start_checkout(self, account_id: str, account_email: Optional[str]) -> CheckoutSession:
        """
        Create a checkout session for the account.

        Not retried here: the user retries by clicking again.

        Raises:
            ValidationError: If account_id is empty
            ProviderUnavailable: If the provider timed out or was unreachable
            CheckoutFailed: If the provider rejected the request
        """
        if not account_id or not account_id.strip():
            raise ValidationError("account_id is required")

        try:
            session = self.provider.create_checkout_session(account_id, account_email)
        except BillingProviderUnavailable as e:
            logger.warning("billing.checkout.unavailable", extra={"account_id": account_id, "error_code": "provider_unavailable"})
            raise ProviderUnavailable(str(e)) from e
        except BillingProviderError as e:
            logger.warning("billing.checkout.failed", extra={"account_id": account_id, "error_code": "checkout_failed"})
            raise CheckoutFailed(str(e)) from e

        logger.info("billing.checkout.started", extra={"account_id": account_id, "session_id": session.session_id})
        return session
