# jobsheet/conftest.py
import pytest
from fastapi.testclient import TestClient

from jobsheet.core.config import Settings
from jobsheet.core.database import Database
from jobsheet.core.metrics import METRICS
from jobsheet.features.billing.activation import SubscriptionActivator, SubscriptionNotifier
from jobsheet.features.billing.checkout import CheckoutOrchestrator
from jobsheet.features.billing.portal import PortalOrchestrator
from jobsheet.features.billing.reconciler import WebhookReconciler
from jobsheet.features.billing.verification import VerificationService
from jobsheet.features.entitlements.store import EntitlementStore
from jobsheet.tests.fakes import (
    CLIENT_URL,
    PRICE_ID,
    WEBHOOK_SECRET,
    FakeAccountDirectory,
    FakeBillingProvider,
    FakeNotificationSender,
    FrozenClock,
)


@pytest.fixture(autouse=True)
def skip_env_validation(monkeypatch):
    """Tests build their own Settings; never fail on the developer's .env."""
    monkeypatch.setenv("SKIP_ENV_VALIDATION", "1")


@pytest.fixture(autouse=True)
def reset_metrics():
    METRICS.reset()
    yield


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def database():
    """Fresh in-memory SQLite store per test."""
    db = Database("sqlite://", timeout_seconds=1)
    db.create_all_tables()
    yield db
    db.dispose()


@pytest.fixture
def store(database):
    return EntitlementStore(database, retry_limit=3)


@pytest.fixture
def provider():
    return FakeBillingProvider()


@pytest.fixture
def sender():
    return FakeNotificationSender()


@pytest.fixture
def directory():
    return FakeAccountDirectory({"acct_alice": "alice@example.com", "acct_bob": "bob@example.com"})


@pytest.fixture
def notifier(sender, directory):
    return SubscriptionNotifier(sender, directory, app_url=CLIENT_URL)


@pytest.fixture
def activator(store, notifier, clock):
    return SubscriptionActivator(store, notifier, clock, period_months=1)


@pytest.fixture
def reconciler(provider, store, activator, notifier, clock):
    return WebhookReconciler(provider, store, activator, notifier, clock)


@pytest.fixture
def verifier(store, provider, activator, clock):
    return VerificationService(store, provider, activator, clock)


@pytest.fixture
def checkout(provider):
    return CheckoutOrchestrator(provider)


@pytest.fixture
def portal(provider, store):
    return PortalOrchestrator(provider, store)


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        ENV="test",
        DATABASE_URL="sqlite://",
        STRIPE_SECRET_KEY="sk_test_fake",
        STRIPE_WEBHOOK_SECRET=WEBHOOK_SECRET,
        STRIPE_PRICE_ID=PRICE_ID,
        CLIENT_URL=CLIENT_URL,
        RESEND_API_KEY=None,
        SUPABASE_URL=None,
        SUPABASE_SERVICE_ROLE_KEY=None,
    )


@pytest.fixture
def app(test_settings, database, provider, sender, directory, clock):
    from jobsheet.main import create_app

    return create_app(
        test_settings,
        database=database,
        provider=provider,
        sender=sender,
        directory=directory,
        clock=clock,
    )


@pytest.fixture
def client(app):
    return TestClient(app)
