import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv

# Load env from the working directory before settings are read
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException

from jobsheet.api import billing, entitlements, health, metrics
from jobsheet.api.deps import BillingServices, Services
from jobsheet.core.clock import Clock, utc_now
from jobsheet.core.config import Settings, settings as default_settings, validate_config
from jobsheet.core.database import Database
from jobsheet.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    request_validation_handler,
    unhandled_exception_handler,
)
from jobsheet.core.logging import configure_logging
from jobsheet.core.middleware.metrics import MetricsMiddleware
from jobsheet.core.middleware.request_id import RequestIdMiddleware
from jobsheet.core.validation import validate_env
from jobsheet.features.billing.activation import SubscriptionActivator, SubscriptionNotifier
from jobsheet.features.billing.checkout import CheckoutOrchestrator
from jobsheet.features.billing.portal import PortalOrchestrator
from jobsheet.features.billing.provider import BillingProvider
from jobsheet.features.billing.reconciler import WebhookReconciler
from jobsheet.features.billing.stripe_provider import StripeProvider
from jobsheet.features.billing.verification import VerificationService
from jobsheet.features.entitlements.service import EntitlementService
from jobsheet.features.entitlements.store import EntitlementStore
from jobsheet.features.notifications.directory import (
    AccountDirectory,
    NullAccountDirectory,
    SupabaseAccountDirectory,
)
from jobsheet.features.notifications.sender import (
    LoggingNotificationSender,
    NotificationSender,
    ResendNotificationSender,
)
from jobsheet.features.trials.service import TrialGrantIssuer


logger = logging.getLogger("jobsheet")


def _default_provider(cfg: Settings) -> Optional[BillingProvider]:
    if not cfg.STRIPE_SECRET_KEY:
        return None
    return StripeProvider(
        cfg.STRIPE_SECRET_KEY,
        cfg.STRIPE_WEBHOOK_SECRET,
        cfg.STRIPE_PRICE_ID,
        cfg.CLIENT_URL,
        timeout=cfg.BILLING_TIMEOUT_SECONDS,
        webhook_tolerance=cfg.STRIPE_WEBHOOK_TOLERANCE_SECONDS,
    )


def _default_sender(cfg: Settings) -> NotificationSender:
    if not cfg.RESEND_API_KEY:
        return LoggingNotificationSender()
    return ResendNotificationSender(cfg.RESEND_API_KEY, cfg.EMAIL_FROM, timeout=cfg.NOTIFY_TIMEOUT_SECONDS)


def _default_directory(cfg: Settings) -> AccountDirectory:
    if not (cfg.SUPABASE_URL and cfg.SUPABASE_SERVICE_ROLE_KEY):
        return NullAccountDirectory()
    return SupabaseAccountDirectory(
        cfg.SUPABASE_URL,
        cfg.SUPABASE_SERVICE_ROLE_KEY,
        timeout=cfg.NOTIFY_TIMEOUT_SECONDS,
    )


def build_services(
    cfg: Settings,
    *,
    database: Optional[Database] = None,
    provider: Optional[BillingProvider] = None,
    sender: Optional[NotificationSender] = None,
    directory: Optional[AccountDirectory] = None,
    clock: Clock = utc_now,
) -> Services:
    """Construct every collaborator once; nothing below reaches for a global."""
    database = database or Database(cfg.DATABASE_URL, timeout_seconds=cfg.DB_TIMEOUT_SECONDS)
    store = EntitlementStore(database, retry_limit=cfg.WRITE_RETRY_LIMIT)
    entitlement_service = EntitlementService(store, clock)
    trials = TrialGrantIssuer(store, clock, trial_hours=cfg.TRIAL_HOURS)

    provider = provider or _default_provider(cfg)
    billing_services = None
    if provider is not None:
        notifier = SubscriptionNotifier(
            sender or _default_sender(cfg),
            directory or _default_directory(cfg),
            app_url=cfg.CLIENT_URL,
        )
        activator = SubscriptionActivator(store, notifier, clock, period_months=cfg.PAID_PERIOD_MONTHS)
        billing_services = BillingServices(
            checkout=CheckoutOrchestrator(provider),
            portal=PortalOrchestrator(provider, store),
            verification=VerificationService(store, provider, activator, clock),
            reconciler=WebhookReconciler(provider, store, activator, notifier, clock),
        )
    else:
        logger.warning("Billing disabled: STRIPE_SECRET_KEY not set")

    return Services(
        settings=cfg,
        database=database,
        clock=clock,
        store=store,
        entitlements=entitlement_service,
        trials=trials,
        billing=billing_services,
    )


def create_app(
    cfg: Optional[Settings] = None,
    *,
    database: Optional[Database] = None,
    provider: Optional[BillingProvider] = None,
    sender: Optional[NotificationSender] = None,
    directory: Optional[AccountDirectory] = None,
    clock: Clock = utc_now,
) -> FastAPI:
    cfg = cfg or default_settings
    configure_logging(cfg.ENV)
    validate_env(settings_obj=cfg)
    validate_config(strict=cfg.CONFIG_STRICT, settings_obj=cfg)

    services = build_services(
        cfg,
        database=database,
        provider=provider,
        sender=sender,
        directory=directory,
        clock=clock,
    )
    services.database.create_all_tables()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting JobSheet entitlements service...")
        try:
            yield
        finally:
            logger.info("Stopping JobSheet entitlements service...")
            services.database.dispose()

    app = FastAPI(title="JobSheet - Entitlements", lifespan=lifespan)
    app.state.services = services

    # Middlewares
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[cfg.CLIENT_URL],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(HTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(billing.router, prefix="/api")
    app.include_router(entitlements.router, prefix="/api")
    app.include_router(health.router)
    app.include_router(metrics.router)

    return app
