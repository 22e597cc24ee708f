"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults
- Test database support (SQLite file databases)
- Table definitions for users, memorials, markers and gifts
"""
from typing import Optional
from contextlib import contextmanager
from sqlalchemy import (
    create_engine,
    event,
    inspect,
    MetaData,
    Table,
    Column,
    Integer,
    String,
    DateTime,
    Date,
    Boolean,
    Float,
    JSON,
    Text,
    Index,
    ForeignKey,
    CheckConstraint,
    PrimaryKeyConstraint,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.sql import func
import logging
import os

from petmemorial.core.config import settings

logger = logging.getLogger("petmemorial")

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
    test_url = os.getenv("TEST_DATABASE_URL") or settings.TEST_DATABASE_URL
    if test_url:
        return test_url

    return os.getenv("DATABASE_URL") or settings.DATABASE_URL


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def _install_sqlite_transaction_hooks(engine: Engine) -> None:
    """
    Make pysqlite transactions explicit and write-locking.

    The driver defers BEGIN until the first DML statement, so reads that
    precede a write would run outside the transaction. Disabling its
    transaction handling and emitting BEGIN IMMEDIATE ourselves makes every
    session a single serialized unit (and enables SAVEPOINT).
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys = ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


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

    if _engine is not None:
        _engine.dispose()

    if _is_sqlite(url):
        _engine = create_engine(
            url,
            connect_args={
                "check_same_thread": False,
                "timeout": settings.SQLITE_BUSY_TIMEOUT_SECONDS,
            },
            echo=False,
        )
        _install_sqlite_transaction_hooks(_engine)
    else:
        # Create engine with connection pooling
        _engine = create_engine(
            url,
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

    The block is one transaction: committed on normal exit,
    rolled back if anything raises.

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


def clear_all_rows():
    """Delete every row, children first. Test helper."""
    with get_db_session() as session:
        for table in reversed(metadata.sorted_tables):
            session.execute(table.delete())


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
        logger.error(f"Database connection check failed: {e}")
        return False


def missing_tables() -> list[str]:
    """Names of tables defined in metadata that do not exist yet."""
    inspector = inspect(get_engine())
    return [name for name in metadata.tables if not inspector.has_table(name)]


# Users table. user_id is an opaque, client-supplied handle.
users = Table(
    'app_users',
    metadata,
    Column('user_id', String(200), primary_key=True),
    Column('email', String(320), nullable=False, unique=True),
    Column('login', String(40), nullable=True, unique=True),
    Column('coin_balance', Integer, nullable=False, server_default='0'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    CheckConstraint('coin_balance >= 0', name='ck_app_users_coin_balance_non_negative'),
    Index('idx_users_created_at', 'created_at'),
)

# Pets (memorials)
pets = Table(
    'pets',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('owner_id', String(200), ForeignKey('app_users.user_id'), nullable=False),
    Column('name', String(80), nullable=False),
    Column('species', String(40), nullable=True),
    Column('birth_date', Date, nullable=True),
    Column('death_date', Date, nullable=True),
    Column('epitaph', String(200), nullable=True),
    Column('favorite_treats', String(200), nullable=True),
    Column('favorite_toys', String(200), nullable=True),
    Column('favorite_sleep_places', String(200), nullable=True),
    Column('story', Text, nullable=True),
    Column('is_public', Boolean, nullable=False, server_default='0'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    # Composite index for list-by-owner pattern: (owner_id, created_at)
    Index('idx_pets_owner_created', 'owner_id', 'created_at'),
    Index('idx_pets_public', 'is_public'),
)

# Memorial scene configuration, one row per pet
memorials = Table(
    'memorials',
    metadata,
    Column('pet_id', String(36), ForeignKey('pets.id', ondelete='CASCADE'), primary_key=True),
    Column('environment_id', String(80), nullable=True),
    Column('house_id', String(80), nullable=True),
    Column('scene_json', JSON, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

# Map markers, at most one per pet
map_markers = Table(
    'map_markers',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('pet_id', String(36), ForeignKey('pets.id', ondelete='CASCADE'), nullable=False, unique=True),
    Column('lat', Float, nullable=False),
    Column('lng', Float, nullable=False),
    Column('marker_style', String(50), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

# Gift catalog (static reference data)
gift_catalog = Table(
    'gift_catalog',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('code', String(50), nullable=False, unique=True),
    Column('name', String(100), nullable=False),
    Column('price', Integer, nullable=False),
    Column('model_url', String(300), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    CheckConstraint('price >= 0', name='ck_gift_catalog_price_non_negative'),
    Index('idx_gift_catalog_price', 'price'),
)

# Gift placements (append-only). expires_at NULL means permanent.
gift_placements = Table(
    'gift_placements',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('pet_id', String(36), ForeignKey('pets.id', ondelete='CASCADE'), nullable=False),
    Column('gift_id', String(36), ForeignKey('gift_catalog.id'), nullable=False),
    Column('owner_id', String(200), ForeignKey('app_users.user_id'), nullable=False),
    Column('slot_name', String(100), nullable=False),
    Column('placed_at', DateTime(timezone=True), nullable=False),
    Column('expires_at', DateTime(timezone=True), nullable=True),
    # Composite index for the occupancy check: (pet_id, slot_name, expires_at)
    Index('idx_gift_placements_pet_slot_expires', 'pet_id', 'slot_name', 'expires_at'),
    Index('idx_gift_placements_pet_placed', 'pet_id', 'placed_at'),
    Index('idx_gift_placements_owner', 'owner_id'),
)

# Slot occupancy guard: one row per (pet_id, slot_name), claimed by the
# placement transaction. The primary key serializes concurrent first claims;
# later claims only succeed once expires_at has passed.
gift_slots = Table(
    'gift_slots',
    metadata,
    Column('pet_id', String(36), ForeignKey('pets.id', ondelete='CASCADE'), nullable=False),
    Column('slot_name', String(100), nullable=False),
    Column('placement_id', String(36), nullable=True),
    Column('expires_at', DateTime(timezone=True), nullable=True),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    PrimaryKeyConstraint('pet_id', 'slot_name', name='pk_gift_slots'),
)
