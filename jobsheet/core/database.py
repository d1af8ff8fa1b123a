"""
Database configuration and connection management.

This module provides:
- The entitlement_records table (one row per account)
- A Database handle owning the SQLAlchemy engine and session factory
- Bounded connect/lock/pool timeouts so no store call hangs a request
"""
from typing import Any, Dict, Iterator, Optional
from contextlib import contextmanager
from sqlalchemy import create_engine, MetaData, Table, Column, Integer, String, DateTime, Index, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.orm import sessionmaker, Session

from jobsheet.core.config import settings


# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_RECYCLE = 3600  # Recycle connections after 1 hour


entitlement_records = Table(
    'entitlement_records',
    metadata,
    Column('account_id', String(100), primary_key=True),
    Column('status', String(20), nullable=False, index=True),  # trial, active, canceled
    Column('trial_end', DateTime(timezone=True), nullable=True),
    Column('subscription_end', DateTime(timezone=True), nullable=True),
    Column('billing_customer_ref', String(100), nullable=True),
    Column('billing_subscription_ref', String(100), nullable=True),
    Column('last_event_at', DateTime(timezone=True), nullable=True),  # provider sequencing of last applied event
    Column('version', Integer, nullable=False, server_default='1'),  # optimistic concurrency token
    Column('created_at', DateTime(timezone=True), nullable=False),
    Column('updated_at', DateTime(timezone=True), nullable=False),
    Index('idx_entitlement_records_subscription_ref', 'billing_subscription_ref'),
    Index('idx_entitlement_records_customer_ref', 'billing_customer_ref'),
)


def _engine_options(url: str, timeout_seconds: float) -> Dict[str, Any]:
    if url.startswith("sqlite"):
        options: Dict[str, Any] = {
            "connect_args": {"check_same_thread": False, "timeout": timeout_seconds},
        }
        if url in ("sqlite://", "sqlite:///:memory:"):
            # In-memory databases live and die with a single connection
            options["poolclass"] = StaticPool
        return options

    connect_args: Dict[str, Any] = {}
    if url.startswith("postgresql"):
        connect_args = {
            "connect_timeout": max(1, int(timeout_seconds)),
            "options": f"-c statement_timeout={int(timeout_seconds * 1000)}",
        }
    return {
        "poolclass": QueuePool,
        "pool_size": POOL_SIZE,
        "max_overflow": MAX_OVERFLOW,
        "pool_timeout": timeout_seconds,
        "pool_recycle": POOL_RECYCLE,
        "pool_pre_ping": True,
        "connect_args": connect_args,
    }


class Database:
    """Owns one engine and its session factory for the process lifetime."""

    def __init__(self, url: Optional[str] = None, *, timeout_seconds: Optional[float] = None, engine: Optional[Engine] = None):
        self.url = url or settings.DATABASE_URL
        if not self.url:
            raise ValueError(
                "DATABASE_URL is not configured. "
                "Set DATABASE_URL in environment or .env file."
            )
        timeout = timeout_seconds if timeout_seconds is not None else settings.DB_TIMEOUT_SECONDS
        self.engine = engine or create_engine(self.url, echo=False, **_engine_options(self.url, timeout))
        self._session_factory = sessionmaker(autoflush=False, bind=self.engine)

    @contextmanager
    def session(self) -> Iterator[Session]:
        """
        Context manager for database sessions.

        Commits on success, rolls back on any error.

        Usage:
            with database.session() as session:
                session.execute(...)
        """
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_all_tables(self) -> None:
        """
        Create all tables defined in metadata.

        This is idempotent - tables that already exist will not be recreated.
        """
        metadata.create_all(bind=self.engine)

    def check_connection(self) -> bool:
        """Return True when a trivial query round-trips."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    def missing_tables(self) -> list:
        inspector = inspect(self.engine)
        return [name for name in metadata.tables if not inspector.has_table(name)]

    def dispose(self) -> None:
        self.engine.dispose()
