"""
Pure entitlement state transitions.

Each function takes the current record (or None) and returns the proposed
record, or None when the event must not change anything. They never read a
clock or the store; callers pass `now` and apply the result with a
conditional write.

Ordering policy:
- an event older than the last applied event is stale and ignored; records
  with no applied event fall back to `updated_at`
- an event in the same second as the last applied one may not move a
  canceled record back to active
- a checkout for a subscription the record already carries is a redelivery
  and ignored, whether that subscription is active or already canceled
"""

from datetime import datetime
from typing import Optional

from jobsheet.core.clock import add_months
from jobsheet.models.entitlement import EntitlementRecord, SubscriptionStatus


def _later(current: Optional[datetime], candidate: Optional[datetime]) -> Optional[datetime]:
    if current is None:
        return candidate
    if candidate is None:
        return current
    return max(current, candidate)


def _sequence_point(record: EntitlementRecord) -> datetime:
    return record.last_event_at or record.updated_at


def is_stale(record: EntitlementRecord, event_at: Optional[datetime]) -> bool:
    """Older than the last applied event, or than the last write when no event was recorded."""
    return event_at is not None and event_at < _sequence_point(record)


def is_concurrent(record: EntitlementRecord, event_at: Optional[datetime]) -> bool:
    """Provider timestamps are whole seconds, so equal means order unknown."""
    return event_at is not None and event_at == _sequence_point(record)


def activate(
    record: Optional[EntitlementRecord],
    *,
    account_id: str,
    customer_ref: Optional[str],
    subscription_ref: str,
    now: datetime,
    period_months: int = 1,
    event_at: Optional[datetime] = None,
) -> Optional[EntitlementRecord]:
    """Start (or restart) a paid relationship; clears any trial."""
    subscription_end = add_months(now, period_months)

    if record is None:
        return EntitlementRecord(
            account_id=account_id,
            status=SubscriptionStatus.ACTIVE,
            subscription_end=subscription_end,
            billing_customer_ref=customer_ref,
            billing_subscription_ref=subscription_ref,
            last_event_at=event_at,
            created_at=now,
            updated_at=now,
        )

    if record.billing_subscription_ref == subscription_ref:
        return None
    if is_stale(record, event_at):
        return None

    return record.model_copy(update={
        "status": SubscriptionStatus.ACTIVE,
        "trial_end": None,
        "subscription_end": subscription_end,
        "billing_customer_ref": customer_ref or record.billing_customer_ref,
        "billing_subscription_ref": subscription_ref,
        "last_event_at": _later(record.last_event_at, event_at),
        "updated_at": max(now, record.updated_at),
    })


def apply_provider_status(
    record: Optional[EntitlementRecord],
    *,
    provider_status: Optional[str],
    now: datetime,
    event_at: Optional[datetime] = None,
    current_period_end: Optional[datetime] = None,
) -> Optional[EntitlementRecord]:
    """Map the provider's subscription status onto the record.

    `active` stays active; every other provider status cancels. A later
    period end (renewal) advances `subscription_end`.
    """
    if record is None or is_stale(record, event_at):
        return None

    if provider_status == "active":
        status = SubscriptionStatus.ACTIVE
    else:
        status = SubscriptionStatus.CANCELED

    if (
        record.status is SubscriptionStatus.CANCELED
        and status is SubscriptionStatus.ACTIVE
        and is_concurrent(record, event_at)
    ):
        return None

    subscription_end = record.subscription_end
    if status is SubscriptionStatus.ACTIVE and current_period_end is not None:
        subscription_end = _later(subscription_end, current_period_end)

    return record.model_copy(update={
        "status": status,
        "trial_end": None,
        "subscription_end": subscription_end,
        "last_event_at": _later(record.last_event_at, event_at),
        "updated_at": max(now, record.updated_at),
    })


def cancel(
    record: Optional[EntitlementRecord],
    *,
    now: datetime,
    event_at: Optional[datetime] = None,
) -> Optional[EntitlementRecord]:
    """Provider ended the subscription."""
    if record is None or is_stale(record, event_at):
        return None
    if record.status is SubscriptionStatus.CANCELED:
        return None

    return record.model_copy(update={
        "status": SubscriptionStatus.CANCELED,
        "trial_end": None,
        "last_event_at": _later(record.last_event_at, event_at),
        "updated_at": max(now, record.updated_at),
    })


def cancel_before_checkout(
    record: Optional[EntitlementRecord],
    *,
    account_id: str,
    customer_ref: Optional[str],
    subscription_ref: str,
    now: datetime,
    event_at: Optional[datetime] = None,
) -> Optional[EntitlementRecord]:
    """Provider ended a subscription whose checkout has not been applied yet.

    Records the subscription as canceled so the late checkout is recognised
    as a redelivery. Only a missing or trial record is touched; an account
    already carrying another subscription is left alone.
    """
    if record is None:
        return EntitlementRecord(
            account_id=account_id,
            status=SubscriptionStatus.CANCELED,
            billing_customer_ref=customer_ref,
            billing_subscription_ref=subscription_ref,
            last_event_at=event_at,
            created_at=now,
            updated_at=now,
        )
    if record.status is not SubscriptionStatus.TRIAL or is_stale(record, event_at):
        return None

    return record.model_copy(update={
        "status": SubscriptionStatus.CANCELED,
        "trial_end": None,
        "billing_customer_ref": customer_ref or record.billing_customer_ref,
        "billing_subscription_ref": subscription_ref,
        "last_event_at": _later(record.last_event_at, event_at),
        "updated_at": max(now, record.updated_at),
    })
