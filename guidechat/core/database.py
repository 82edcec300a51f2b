"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults
- Test database support (TEST_DATABASE_URL wins)
- Dialect-aware atomic upserts for counters
- Table definitions for plans, usage, guests and chat sessions
"""
from typing import Optional
from contextlib import contextmanager
from sqlalchemy import create_engine, MetaData, Table, Column, Integer, BigInteger, String, DateTime, Boolean, JSON, Text, Index, ForeignKey, UniqueConstraint, text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import QueuePool
from sqlalchemy.orm import sessionmaker
from sqlalchemy.sql import func, false
import logging
import os

from guidechat.core.config import settings
from guidechat.core.errors import StorageTransientError


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

    connect_args = {}
    if url.startswith("sqlite"):
        # Concurrent writers wait on the file lock instead of failing fast
        connect_args = {"check_same_thread": False, "timeout": 30}

    # Create engine with connection pooling
    _engine = create_engine(
        url,
        poolclass=QueuePool,
        pool_size=POOL_SIZE,
        max_overflow=MAX_OVERFLOW,
        pool_timeout=POOL_TIMEOUT,
        pool_recycle=POOL_RECYCLE,
        connect_args=connect_args,
        echo=False,  # Set to True for SQL query logging
    )

    # Create session factory
    _SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=_engine
    )

    return _engine


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


@contextmanager
def storage_guard(operation: str, message: str = "Storage is temporarily unavailable. Please retry.", **context):
    """
    Surface SQLAlchemy failures as a retryable StorageTransientError (503).

    Usage:
        with storage_guard("chat.get_session", session_id=session_id):
            with get_db_session() as session:
                ...
    """
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error(
            "[storage] failure",
            extra={"operation": operation, "error": str(exc), **context},
        )
        raise StorageTransientError(message, details={"retryable": True, "operation": operation}) from exc


def upsert(table: Table):
    """Return an INSERT construct supporting ON CONFLICT for the active dialect.

    Counter increments are expressed as a single
    ``INSERT .. ON CONFLICT DO UPDATE SET col = col + excluded.col`` so the
    database applies them atomically.
    """
    dialect = get_engine().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(table)
    if dialect == "sqlite":
        return sqlite.insert(table)
    raise RuntimeError(f"Atomic upsert not supported for dialect {dialect!r}")


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


def reset_database():
    """
    Reset the database by dropping and recreating all tables.

    WARNING: This is destructive! Only use in tests.
    """
    drop_all_tables()
    create_all_tables()


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
        logging.getLogger("guidechat").warning(f"Database connection check failed: {e}")
        return False


# Subscription plan records (tier lookup)
user_plans = Table(
    'user_plans',
    metadata,
    Column('user_email', String(320), primary_key=True),
    Column('plan', String(20), nullable=False, server_default='free'),
    Column('plan_start_date', DateTime(timezone=True), nullable=True),
    Column('plan_end_date', DateTime(timezone=True), nullable=True),
    Column('stripe_customer_id', String(100), nullable=True),
    Column('stripe_subscription_id', String(100), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_user_plans_plan', 'plan'),
)

# Usage ledger: one row per (user, bucket, UTC day)
usage_records = Table(
    'usage_records',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_email', String(320), nullable=False),
    Column('bucket', String(20), nullable=False),
    Column('day', String(10), nullable=False),  # YYYY-MM-DD (UTC)
    Column('requests', Integer, nullable=False, server_default='0'),
    Column('text_requests', Integer, nullable=False, server_default='0'),
    Column('image_generations', Integer, nullable=False, server_default='0'),
    Column('tokens', BigInteger().with_variant(Integer, "sqlite"), nullable=False, server_default='0'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    UniqueConstraint('user_email', 'bucket', 'day', name='uq_usage_records_user_bucket_day'),
    # Composite index for history range queries: (user_email, day)
    Index('idx_usage_records_user_day', 'user_email', 'day'),
)

# Legacy per-user document (export timestamp survives; counters derive from usage_records)
user_limits = Table(
    'user_limits',
    metadata,
    Column('user_email', String(320), primary_key=True),
    Column('last_export', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

# Guest lifetime counters keyed by network identity
guest_limits = Table(
    'guest_limits',
    metadata,
    Column('identity', String(255), primary_key=True),
    Column('guides', Integer, nullable=False, server_default='0'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

# Chat sessions
chat_sessions = Table(
    'chat_sessions',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('user_email', String(320), nullable=False),
    Column('title', Text, nullable=False),
    Column('model', String(20), nullable=False),
    Column('archived', Boolean, nullable=False, server_default=false()),
    Column('created_at', DateTime(timezone=True), nullable=False),
    Column('updated_at', DateTime(timezone=True), nullable=False),
    # Composite index for list_sessions pattern: (user_email, updated_at)
    Index('idx_chat_sessions_user_updated', 'user_email', 'updated_at'),
)

# Chat messages (append-only rows, ordered by id)
chat_messages = Table(
    'chat_messages',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('session_id', String(36), ForeignKey('chat_sessions.id', ondelete='CASCADE'), nullable=False),
    Column('role', String(20), nullable=False),
    Column('content', Text, nullable=False),
    Column('model', String(100), nullable=True),
    Column('images', JSON, nullable=True),
    Column('created_at', DateTime(timezone=True), nullable=False),
    Index('idx_chat_messages_session_id', 'session_id', 'id'),
)
