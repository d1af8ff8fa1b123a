"""
Application service wiring.

Collaborators are constructed once in create_app and stored on app.state;
routes reach them through these dependencies instead of module globals.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Request

from jobsheet.core.clock import Clock
from jobsheet.core.config import Settings
from jobsheet.core.database import Database
from jobsheet.core.errors import BillingDisabledError
from jobsheet.features.billing.checkout import CheckoutOrchestrator
from jobsheet.features.billing.portal import PortalOrchestrator
from jobsheet.features.billing.reconciler import WebhookReconciler
from jobsheet.features.billing.verification import VerificationService
from jobsheet.features.entitlements.service import EntitlementService
from jobsheet.features.entitlements.store import EntitlementStore
from jobsheet.features.trials.service import TrialGrantIssuer


@dataclass
class BillingServices:
    checkout: CheckoutOrchestrator
    portal: PortalOrchestrator
    verification: VerificationService
    reconciler: WebhookReconciler


@dataclass
class Services:
    settings: Settings
    database: Database
    clock: Clock
    store: EntitlementStore
    entitlements: EntitlementService
    trials: TrialGrantIssuer
    billing: Optional[BillingServices]  # None when Stripe is not configured


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_entitlement_service(services: Services = Depends(get_services)) -> EntitlementService:
    return services.entitlements


def get_trial_issuer(services: Services = Depends(get_services)) -> TrialGrantIssuer:
    return services.trials


def require_billing(services: Services = Depends(get_services)) -> BillingServices:
    if services.billing is None:
        raise BillingDisabledError("Stripe is not configured. Set STRIPE_SECRET_KEY environment variable.")
    return services.billing
