"""
Entitlement API routes.

- GET  /api/entitlements/{account_id}: access decision for feature gates
- POST /api/entitlements/trial:        one-time trial grant
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import Field

from jobsheet.api.schemas import CamelModel
from jobsheet.api.deps import get_entitlement_service, get_trial_issuer
from jobsheet.core.errors import AlreadyExists
from jobsheet.features.entitlements.service import EntitlementService, EntitlementView
from jobsheet.features.trials.service import TrialGrantIssuer


router = APIRouter(prefix="/entitlements", tags=["entitlements"])


class EntitlementResponse(CamelModel):
    account_id: str
    has_access: bool
    is_trial_active: bool
    is_paid_active: bool
    is_expired: bool
    no_record: bool
    status: Optional[str] = None
    trial_end: Optional[datetime] = None
    subscription_end: Optional[datetime] = None


class TrialRequest(CamelModel):
    account_id: str = Field(min_length=1)


class TrialResponse(CamelModel):
    created: bool
    entitlement: EntitlementResponse


def _to_response(view: EntitlementView) -> EntitlementResponse:
    decision = view.decision
    return EntitlementResponse(
        account_id=view.account_id,
        has_access=decision.has_access,
        is_trial_active=decision.is_trial_active,
        is_paid_active=decision.is_paid_active,
        is_expired=decision.is_expired,
        no_record=decision.no_record,
        status=view.status,
        trial_end=view.trial_end,
        subscription_end=view.subscription_end,
    )


@router.get("/{account_id}", response_model=EntitlementResponse)
def get_entitlement(account_id: str, entitlements: EntitlementService = Depends(get_entitlement_service)):
    """Read-only; never creates a record."""
    return _to_response(entitlements.get_entitlement(account_id))


@router.post("/trial", response_model=TrialResponse)
def grant_trial(
    request: TrialRequest,
    trials: TrialGrantIssuer = Depends(get_trial_issuer),
    entitlements: EntitlementService = Depends(get_entitlement_service),
):
    """
    Grant a 72h trial to an account with no record.

    A repeat call is not an error: it returns the existing entitlement with
    created=false and leaves the record untouched.
    """
    try:
        trials.grant_trial(request.account_id)
        created = True
    except AlreadyExists:
        created = False
    view = entitlements.get_entitlement(request.account_id)
    return TrialResponse(created=created, entitlement=_to_response(view))
