import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Entitlement record store
    DATABASE_URL: str = "sqlite:///./jobsheet.db"
    DB_TIMEOUT_SECONDS: float = 5.0
    WRITE_RETRY_LIMIT: int = 3

    # Stripe
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    STRIPE_PRICE_ID: Optional[str] = None
    STRIPE_WEBHOOK_TOLERANCE_SECONDS: int = 300
    BILLING_TIMEOUT_SECONDS: float = 10.0

    # App URLs
    CLIENT_URL: str = "http://localhost:5173"

    # Transactional email (Resend)
    RESEND_API_KEY: Optional[str] = None
    EMAIL_FROM: str = "JobSheet Pro <noreply@jobsheet.pro>"
    NOTIFY_TIMEOUT_SECONDS: float = 5.0

    # Identity directory (Supabase auth admin API)
    SUPABASE_URL: Optional[str] = None
    SUPABASE_SERVICE_ROLE_KEY: Optional[str] = None

    # Plan shape
    TRIAL_HOURS: int = 72
    PAID_PERIOD_MONTHS: int = 1

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
settings = Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("jobsheet")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "DATABASE_URL",
        "STRIPE_SECRET_KEY",
        "STRIPE_WEBHOOK_SECRET",
        "STRIPE_PRICE_ID",
    ]

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    # Notifications fall back to log-only delivery
    if not getattr(cfg, "RESEND_API_KEY", None):
        log.warning("RESEND_API_KEY not set; subscription emails will be logged, not sent")

    return True
