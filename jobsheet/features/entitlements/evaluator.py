"""
Entitlement evaluator.

Pure mapping of (record, now) to an access decision. No I/O and no clock
reads: callers always pass the instant to evaluate at.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from jobsheet.models.entitlement import EntitlementRecord, SubscriptionStatus


@dataclass(frozen=True)
class EntitlementDecision:
    has_access: bool
    is_trial_active: bool
    is_paid_active: bool
    is_expired: bool
    no_record: bool


NO_RECORD = EntitlementDecision(
    has_access=False,
    is_trial_active=False,
    is_paid_active=False,
    is_expired=False,
    no_record=True,
)


def evaluate(record: Optional[EntitlementRecord], now: datetime) -> EntitlementDecision:
    """Decide whether the account may use paid features at `now`.

    A missing record is not an error; it yields `no_record=True` and no access.
    """
    if record is None:
        return NO_RECORD

    is_trial_active = False
    is_paid_active = False
    is_expired = False

    status = record.status
    if status is SubscriptionStatus.TRIAL:
        if record.trial_end is not None:
            is_trial_active = now < record.trial_end
            is_expired = not is_trial_active
    elif status is SubscriptionStatus.ACTIVE:
        if record.subscription_end is not None:
            is_paid_active = record.billing_subscription_ref is not None and now < record.subscription_end
            is_expired = now >= record.subscription_end
    elif status is SubscriptionStatus.CANCELED:
        pass
    else:
        raise ValueError(f"unhandled subscription status: {status!r}")

    return EntitlementDecision(
        has_access=is_trial_active or is_paid_active,
        is_trial_active=is_trial_active,
        is_paid_active=is_paid_active,
        is_expired=is_expired,
        no_record=False,
    )
