"""
Test the trial grant issuer.

Scenario: fresh account gets a 72h trial, which expires on schedule and can
never be reset by calling again.
"""
from datetime import timedelta

import pytest

from jobsheet.core.errors import AlreadyExists, ValidationError
from jobsheet.features.entitlements.evaluator import evaluate
from jobsheet.features.entitlements.service import EntitlementService
from jobsheet.features.trials.service import TrialGrantIssuer
from jobsheet.models.entitlement import SubscriptionStatus


@pytest.fixture
def issuer(store, clock):
    return TrialGrantIssuer(store, clock)


def test_grant_trial_creates_72_hour_trial(issuer, store, clock):
    """grant_trial should insert a trial ending 72h from now with no billing refs."""
    record = issuer.grant_trial("acct_alice")

    assert record.status is SubscriptionStatus.TRIAL
    assert record.trial_end == clock() + timedelta(hours=72)
    assert record.billing_customer_ref is None
    assert record.billing_subscription_ref is None
    assert record.subscription_end is None
    assert store.get("acct_alice") == record


def test_trial_grants_access_then_expires_after_73_hours(issuer, store, clock):
    issuer.grant_trial("acct_alice")

    decision = evaluate(store.get("acct_alice"), clock())
    assert decision.has_access is True
    assert decision.is_trial_active is True

    clock.advance(hours=73)
    decision = evaluate(store.get("acct_alice"), clock())
    assert decision.has_access is False
    assert decision.is_expired is True


def test_second_grant_fails_and_keeps_original_trial(issuer, store, clock):
    """Repeated grants should not reset the trial window."""
    first = issuer.grant_trial("acct_alice")
    clock.advance(hours=70)

    with pytest.raises(AlreadyExists):
        issuer.grant_trial("acct_alice")

    assert store.get("acct_alice").trial_end == first.trial_end


def test_grant_refused_for_paid_account(issuer, activator, store):
    activator.activate("acct_alice", customer_ref="cus_1", subscription_ref="sub_1", source="test")

    with pytest.raises(AlreadyExists):
        issuer.grant_trial("acct_alice")
    assert store.get("acct_alice").status is SubscriptionStatus.ACTIVE


def test_grant_requires_account_id(issuer):
    with pytest.raises(ValidationError):
        issuer.grant_trial("  ")


def test_custom_trial_length(store, clock):
    issuer = TrialGrantIssuer(store, clock, trial_hours=24)
    record = issuer.grant_trial("acct_bob")
    assert record.trial_end == clock() + timedelta(hours=24)


def test_feature_gate_follows_trial_window(issuer, store, clock):
    gate = EntitlementService(store, clock)
    assert gate.has_access("acct_alice") is False

    issuer.grant_trial("acct_alice")
    assert gate.has_access("acct_alice") is True

    clock.advance(hours=72)
    assert gate.has_access("acct_alice") is False
    assert gate.get_entitlement("acct_alice").decision.is_expired is True
