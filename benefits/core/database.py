"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults
- Test database support (SQLite in-memory)
- Table definitions for the catalog, directory and entitlement ledger
"""
from typing import Optional, Generator
from contextlib import contextmanager
from sqlalchemy import create_engine, MetaData, Table, Column, Integer, String, DateTime, Boolean, Text, Index, ForeignKey, UniqueConstraint, CheckConstraint, text, false
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.sql import func
import logging
import os

from benefits.core.config import settings
from benefits.core.errors import StoreUnavailableError


logger = logging.getLogger(__name__)

# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour

# Global engine and session factory
_engine = None
_SessionLocal = None


def get_database_url() -> Optional[str]:
    """
    Get the database URL from settings or environment.

    For testing, use TEST_DATABASE_URL if available.
    """
    test_url = os.getenv("TEST_DATABASE_URL")
    if test_url:
        return test_url

    return settings.DATABASE_URL


def init_engine(database_url: Optional[str] = None):
    """
    Initialize the SQLAlchemy engine.

    Args:
        database_url: Optional override for DATABASE_URL
    """
    global _engine, _SessionLocal

    url = database_url or get_database_url()

    if not url:
        raise ValueError(
            "DATABASE_URL is not configured. "
            "Set DATABASE_URL in environment or .env file."
        )

    if url.startswith("sqlite"):
        # Single shared connection so in-memory databases survive across sessions
        _engine = create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=False,
        )
    else:
        _engine = create_engine(
            url,
            poolclass=QueuePool,
            pool_size=POOL_SIZE,
            max_overflow=MAX_OVERFLOW,
            pool_timeout=POOL_TIMEOUT,
            pool_recycle=POOL_RECYCLE,
            pool_pre_ping=True,
            echo=False,  # Set to True for SQL query logging
        )

    # Create session factory
    _SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=_engine
    )

    return _engine


def dispose_engine() -> None:
    """Dispose of the engine and forget the session factory."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None


def get_engine():
    """Get the current SQLAlchemy engine."""
    global _engine
    if _engine is None:
        init_engine()
    return _engine


def get_session_factory():
    """Get the session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        init_engine()
    return _SessionLocal


@contextmanager
def get_db_session():
    """
    Context manager for database sessions.

    Usage:
        with get_db_session() as session:
            session.execute(...)
            session.commit()
    """
    SessionLocal = get_session_factory()
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_db() -> Generator[Session, None, None]:
    """FastAPI-friendly DB dependency that yields a Session and closes it.

    Use this with `Depends(get_db)` in route functions. Services commit their
    own writes; anything left uncommitted is rolled back on close.
    """
    SessionLocal = get_session_factory()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_all_tables():
    """
    Create all tables defined in metadata.

    This is idempotent - tables that already exist will not be recreated.
    """
    engine = get_engine()
    metadata.create_all(bind=engine)


def drop_all_tables():
    """
    Drop all tables defined in metadata.

    WARNING: This is destructive! Only use in tests or development.
    """
    engine = get_engine()
    metadata.drop_all(bind=engine)


def check_connection() -> bool:
    """
    Check if database connection is available.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning("Database connection check failed: %s", e)
        return False


@contextmanager
def store_errors(db: Optional[Session] = None):
    """
    Translate driver-level failures into StoreUnavailableError.

    Usage:
        with store_errors(db):
            ...service calls...
    """
    try:
        yield
    except OperationalError as e:
        if db is not None:
            db.rollback()
        logger.error("Store operation failed: %s", e)
        raise StoreUnavailableError("Store unavailable") from e


# Benefit catalog
plans = Table(
    'plans',
    metadata,
    Column('plan_id', String(100), primary_key=True),
    Column('name', String(200), nullable=False),
    Column('stripe_product_id', String(100), nullable=True, unique=True),
    Column('stripe_price_id', String(100), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

# Claimable items granted by a plan
plan_items = Table(
    'plan_items',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('plan_id', String(100), ForeignKey('plans.plan_id'), nullable=False),
    Column('name', String(200), nullable=False),
    Column('claim_limit', Integer, nullable=False),
    Column('position', Integer, nullable=False, server_default='0'),
    UniqueConstraint('plan_id', 'name', name='uq_plan_items_plan_name'),
    CheckConstraint('claim_limit > 0', name='ck_plan_items_limit_positive'),
    Index('idx_plan_items_plan_position', 'plan_id', 'position'),
)

# Subscriber directory
subscribers = Table(
    'subscribers',
    metadata,
    Column('subscriber_id', String(200), primary_key=True),
    Column('stripe_customer_id', String(100), nullable=True, index=True),
    Column('points', Integer, nullable=False, server_default='0'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    CheckConstraint('points >= 0', name='ck_subscribers_points_non_negative'),
)

# Purchases (one per completed checkout)
purchases = Table(
    'purchases',
    metadata,
    Column('purchase_id', String(36), primary_key=True),
    Column('subscriber_id', String(200), ForeignKey('subscribers.subscriber_id'), nullable=False, index=True),
    Column('plan_id', String(100), nullable=False),
    Column('plan_name', String(200), nullable=False),
    Column('stripe_customer_id', String(100), nullable=True, index=True),
    Column('stripe_subscription_id', String(100), nullable=True, index=True),
    Column('checkout_session_id', String(200), nullable=True, unique=True),
    Column('subscription_status', String(20), nullable=False, server_default='active'),
    Column('purchased_at', DateTime(timezone=True), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    CheckConstraint("subscription_status IN ('active', 'inactive')", name='ck_purchases_status'),
    # Newest-first enumeration per subscriber
    Index('idx_purchases_subscriber_purchased', 'subscriber_id', 'purchased_at'),
)

# Monthly claim counters per purchase
purchase_claims = Table(
    'purchase_claims',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('purchase_id', String(36), ForeignKey('purchases.purchase_id'), nullable=False),
    Column('month_key', String(7), nullable=False),  # YYYY-MM
    Column('item_name', String(200), nullable=False),
    Column('used', Integer, nullable=False, server_default='0'),
    Column('claim_limit', Integer, nullable=False),
    UniqueConstraint('purchase_id', 'month_key', 'item_name', name='uq_purchase_claims_month_item'),
    CheckConstraint('used >= 0', name='ck_purchase_claims_used_non_negative'),
    CheckConstraint('used <= claim_limit', name='ck_purchase_claims_used_within_limit'),
    CheckConstraint('claim_limit > 0', name='ck_purchase_claims_limit_positive'),
    Index('idx_purchase_claims_purchase_month', 'purchase_id', 'month_key'),
)

# Billing events (webhook idempotency)
billing_events = Table(
    'billing_events',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('stripe_event_id', String(100), nullable=False, unique=True),
    Column('event_type', String(100), nullable=False, index=True),
    Column('received_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('payload_hash', String(64), nullable=False),  # SHA256 of the raw body
    Column('processed', Boolean, nullable=False, server_default=false(), index=True),
    Column('outcome', String(20), nullable=True),
    Column('processed_at', DateTime(timezone=True), nullable=True),
    Column('error', Text, nullable=True),
    Index('idx_billing_events_received_at', 'received_at'),
)
