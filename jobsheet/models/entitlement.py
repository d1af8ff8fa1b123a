"""
jobsheet/models/entitlement.py

Entitlement record model: one per account, the single source of truth for
subscription state.

Status is a closed enum. Trial and paid relationships are mutually exclusive:
- trial  => no billing subscription reference
- active => billing subscription reference present
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class SubscriptionStatus(str, Enum):
    TRIAL = "trial"
    ACTIVE = "active"
    CANCELED = "canceled"


class EntitlementRecord(BaseModel):
    """Durable per-account subscription state."""
    model_config = ConfigDict(frozen=True)

    account_id: str
    status: SubscriptionStatus
    trial_end: Optional[datetime] = None
    subscription_end: Optional[datetime] = None
    billing_customer_ref: Optional[str] = None
    billing_subscription_ref: Optional[str] = None
    last_event_at: Optional[datetime] = None
    version: int = 1
    created_at: datetime
    updated_at: datetime


def invariant_violations(record: EntitlementRecord) -> List[str]:
    """Return the names of record invariants this record breaks (empty if valid).

    Rows patched out-of-band can break these, so reads never enforce them;
    writers and the audit job do.
    """
    issues = []
    if record.status is SubscriptionStatus.TRIAL:
        if record.billing_subscription_ref is not None:
            issues.append("trial_with_subscription_ref")
        if record.trial_end is None:
            issues.append("trial_without_trial_end")
    elif record.status is SubscriptionStatus.ACTIVE:
        if record.billing_subscription_ref is None:
            issues.append("active_without_subscription_ref")
    if record.status is not SubscriptionStatus.TRIAL and record.trial_end is not None:
        issues.append("trial_end_outside_trial")
    if record.updated_at < record.created_at:
        issues.append("updated_before_created")
    return issues
