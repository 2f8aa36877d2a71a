"""
Storage for the NextStep API (SQLAlchemy Core).

One engine per process, built lazily from DATABASE_URL (or TEST_DATABASE_URL
when set). Server databases get a QueuePool; SQLite URLs get a StaticPool
with a single shared connection so in-memory databases survive across
sessions and threads.

Timestamps are written as timezone-aware UTC. SQLite hands them back naive,
so readers pass them through as_utc().
"""
import logging
import os
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    create_engine, MetaData, Table, Column, Integer, String, DateTime, Boolean,
    JSON, Text, Index, ForeignKey, text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.sql import func

from nextstep.core.config import settings

logger = logging.getLogger("nextstep")

metadata = MetaData()

POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600

_engine: Optional[Engine] = None
_SessionLocal: Optional[sessionmaker] = None


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def get_database_url() -> Optional[str]:
    return os.getenv("TEST_DATABASE_URL") or settings.DATABASE_URL


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"poolclass": StaticPool, "connect_args": {"check_same_thread": False}}
    return {
        "poolclass": QueuePool,
        "pool_size": POOL_SIZE,
        "max_overflow": MAX_OVERFLOW,
        "pool_timeout": POOL_TIMEOUT,
        "pool_recycle": POOL_RECYCLE,
        "pool_pre_ping": True,
    }


def init_engine(database_url: Optional[str] = None) -> Engine:
    """(Re)build the engine and session factory; raises ValueError without a URL."""
    global _engine, _SessionLocal

    url = database_url or get_database_url()
    if not url:
        raise ValueError("DATABASE_URL is not configured. Set DATABASE_URL in environment or .env file.")

    if _engine is not None:
        _engine.dispose()
    _engine = create_engine(url, echo=False, **_engine_options(url))
    _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_engine)
    return _engine


def dispose_engine() -> None:
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None


def get_engine() -> Engine:
    if _engine is None:
        init_engine()
    return _engine


def get_session_factory() -> sessionmaker:
    if _SessionLocal is None:
        init_engine()
    return _SessionLocal


@contextmanager
def get_db_session():
    """
    One unit of work: commits on clean exit, rolls back on error.

        with get_db_session() as session:
            session.execute(...)
    """
    session = get_session_factory()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables() -> None:
    metadata.create_all(bind=get_engine())


def drop_all_tables() -> None:
    """Destructive; tests and local resets only."""
    metadata.drop_all(bind=get_engine())


def check_connection() -> bool:
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning(f"Database connection check failed: {e}")
        return False


# Users, keyed by the identity provider subject
users = Table(
    'app_users',
    metadata,
    Column('user_id', String(100), primary_key=True),
    Column('email', String(320), nullable=True, unique=True),
    Column('display_name', Text, nullable=True),
    Column('stripe_customer_id', String(100), nullable=True, unique=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    Index('idx_users_created_at', 'created_at'),
)

goals = Table(
    'goals',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('user_id', String(100), ForeignKey('app_users.user_id', ondelete='CASCADE'), nullable=False),
    Column('title', Text, nullable=False),
    Column('description', Text, nullable=False, server_default=''),
    Column('priority', Integer, nullable=False, server_default='3'),
    Column('deadline', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_goals_user_created', 'user_id', 'created_at'),
)

# One row per user. Tracker writes usage_count/last_usage_date,
# plan sync writes plan/status/period_end.
entitlements = Table(
    'entitlements',
    metadata,
    Column('user_id', String(100), ForeignKey('app_users.user_id', ondelete='CASCADE'), primary_key=True),
    Column('plan', String(20), nullable=False, server_default='FREE'),
    Column('status', String(20), nullable=False, server_default='ACTIVE'),
    Column('usage_count', Integer, nullable=False, server_default='0'),
    Column('last_usage_date', DateTime(timezone=True), nullable=True),
    Column('period_end', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
)

recommendations = Table(
    'recommendations',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('user_id', String(100), ForeignKey('app_users.user_id', ondelete='CASCADE'), nullable=False),
    Column('goal_id', String(36), ForeignKey('goals.id', ondelete='SET NULL'), nullable=True),
    Column('title', Text, nullable=False),
    Column('why_this', Text, nullable=False),
    Column('steps', JSON, nullable=False),
    Column('time_minutes', Integer, nullable=False),
    Column('difficulty', Integer, nullable=False),
    Column('success_criteria', Text, nullable=False),
    Column('fallback_if_stuck', Text, nullable=False),
    Column('raw_json', Text, nullable=False),
    Column('model_used', String(100), nullable=False),
    Column('attempts', Integer, nullable=False, server_default='1'),
    Column('created_at', DateTime(timezone=True), nullable=False),
    # History pattern: (user_id, created_at desc)
    Index('idx_recommendations_user_created', 'user_id', 'created_at'),
)

feedback = Table(
    'feedback',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('user_id', String(100), ForeignKey('app_users.user_id', ondelete='CASCADE'), nullable=False),
    Column('action_id', String(36), ForeignKey('recommendations.id', ondelete='CASCADE'), nullable=False),
    Column('type', String(20), nullable=False),
    Column('note', Text, nullable=True),
    Column('created_at', DateTime(timezone=True), nullable=False),
    Index('idx_feedback_action', 'action_id'),
)

# Stripe webhook delivery ledger
billing_events = Table(
    'billing_events',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('stripe_event_id', String(100), nullable=False, unique=True),
    Column('event_type', String(100), nullable=False, index=True),
    Column('received_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('processed', Boolean, nullable=False, server_default='false'),
    Column('processed_at', DateTime(timezone=True), nullable=True),
    Column('outcome', String(50), nullable=True),
    Index('idx_billing_events_received_at', 'received_at'),
)
