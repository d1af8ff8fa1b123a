"""
Test the entitlement evaluator.

evaluate() is a pure function of (record, now); every case below pins `now`.
"""
from datetime import datetime, timedelta, timezone

import pytest

from jobsheet.features.entitlements.evaluator import NO_RECORD, evaluate
from jobsheet.models.entitlement import EntitlementRecord, SubscriptionStatus


NOW = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)


def make_record(**overrides):
    values = dict(
        account_id="acct_alice",
        status=SubscriptionStatus.TRIAL,
        trial_end=NOW + timedelta(hours=10),
        created_at=NOW - timedelta(days=1),
        updated_at=NOW - timedelta(days=1),
    )
    values.update(overrides)
    return EntitlementRecord(**values)


def paid_record(**overrides):
    values = dict(
        status=SubscriptionStatus.ACTIVE,
        trial_end=None,
        subscription_end=NOW + timedelta(days=20),
        billing_customer_ref="cus_1",
        billing_subscription_ref="sub_1",
    )
    values.update(overrides)
    return make_record(**values)


def test_missing_record_is_no_record_without_access():
    """No record should report noRecord and deny access, not expiry."""
    decision = evaluate(None, NOW)
    assert decision == NO_RECORD
    assert decision.has_access is False
    assert decision.no_record is True
    assert decision.is_expired is False


def test_trial_before_end_grants_access():
    decision = evaluate(make_record(), NOW)
    assert decision.has_access is True
    assert decision.is_trial_active is True
    assert decision.is_paid_active is False
    assert decision.is_expired is False
    assert decision.no_record is False


def test_trial_at_exact_end_is_expired():
    """The trial boundary is exclusive: now == trial_end means expired."""
    record = make_record(trial_end=NOW)
    decision = evaluate(record, NOW)
    assert decision.has_access is False
    assert decision.is_trial_active is False
    assert decision.is_expired is True


def test_trial_without_end_neither_active_nor_expired():
    decision = evaluate(make_record(trial_end=None), NOW)
    assert decision.has_access is False
    assert decision.is_trial_active is False
    assert decision.is_expired is False


def test_active_subscription_within_period_is_paid_active():
    decision = evaluate(paid_record(), NOW)
    assert decision.has_access is True
    assert decision.is_paid_active is True
    assert decision.is_trial_active is False


def test_active_subscription_past_period_end_is_expired():
    decision = evaluate(paid_record(subscription_end=NOW - timedelta(seconds=1)), NOW)
    assert decision.has_access is False
    assert decision.is_paid_active is False
    assert decision.is_expired is True


def test_active_without_subscription_ref_has_no_access_until_expiry():
    """Paid access requires the subscription ref; expiry does not."""
    record = paid_record(billing_subscription_ref=None)
    assert evaluate(record, NOW).has_access is False
    assert evaluate(record, NOW).is_expired is False
    assert evaluate(record, NOW + timedelta(days=30)).is_expired is True


def test_canceled_subscription_has_no_access_even_before_period_end():
    record = paid_record(status=SubscriptionStatus.CANCELED)
    decision = evaluate(record, NOW)
    assert decision.has_access is False
    assert decision.is_paid_active is False
    assert decision.is_expired is False


@pytest.mark.parametrize("record", [None, "trial", "paid", "canceled"])
def test_evaluate_is_pure(record):
    """Identical inputs should always give identical output."""
    records = {
        None: None,
        "trial": make_record(),
        "paid": paid_record(),
        "canceled": paid_record(status=SubscriptionStatus.CANCELED),
    }
    subject = records[record]
    assert evaluate(subject, NOW) == evaluate(subject, NOW)
