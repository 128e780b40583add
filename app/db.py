"""Media Chunk Pipeline - Database engine and session management.

SQLAlchemy sync engine/session factory for SQLite.
"""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import sessionmaker

from app.config import DB_PATH, MERGE_LOCK_TTL_SECONDS
from app.models import Base, utc_now

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from app.models import MergeLock


def get_database_url(db_path: str | None = None) -> str:
    """Get SQLite database URL.

    Args:
        db_path: Optional path override. Defaults to config.DB_PATH.

    Returns:
        SQLite connection URL string.
    """
    path = db_path if db_path is not None else DB_PATH
    return f"sqlite:///{path}"


def create_db_engine(db_path: str | None = None, echo: bool = False) -> Engine:
    """Create SQLAlchemy engine.

    Args:
        db_path: Optional path override for the database file.
        echo: If True, log all SQL statements.

    Returns:
        SQLAlchemy Engine instance.
    """
    url = get_database_url(db_path)
    return create_engine(
        url,
        echo=echo,
        # API threads and queue workers each open their own session;
        # connections are never shared across threads.
        connect_args={"check_same_thread": False},
    )


def create_session_factory(engine: Engine) -> sessionmaker:
    """Create a session factory bound to the given engine.

    Args:
        engine: SQLAlchemy Engine instance.

    Returns:
        Configured sessionmaker.
    """
    # autoflush=False: explicit flush control
    # expire_on_commit=False: objects remain usable post-commit
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_db(db_path: str | None = None, echo: bool = False) -> tuple[Engine, sessionmaker]:
    """Initialize the database: create engine, session factory, and all tables.

    This is idempotent - safe to call multiple times.

    Args:
        db_path: Optional path override for the database file.
        echo: If True, log all SQL statements.

    Returns:
        Tuple of (engine, SessionFactory).
    """
    if db_path is None:
        DB_PATH.parent.mkdir(parents=True, exist_ok=True)

    engine = create_db_engine(db_path, echo=echo)
    SessionFactory = create_session_factory(engine)

    # Create all tables (idempotent via checkfirst=True default)
    Base.metadata.create_all(engine)

    return engine, SessionFactory


# --- MergeLock Creation Primitive ---


def create_merge_lock(
    session: Session,
    session_id: str,
    holder_id: str,
    ttl_seconds: int | None = None,
) -> MergeLock:
    """Create a new MergeLock with expires_at = now + TTL.

    Does NOT check for existing locks or reclaim stale ones; that belongs
    in app.merge_lock.

    Note:
        This function does NOT commit the transaction. It calls session.flush()
        so a concurrent holder surfaces as an IntegrityError here.

    Args:
        session: Active database session.
        session_id: The upload session to lock.
        holder_id: Identifier of the merge acquiring the lock.
        ttl_seconds: Optional TTL override. Defaults to MERGE_LOCK_TTL_SECONDS.

    Returns:
        The created MergeLock instance (flushed but not committed).
    """
    # Local import to avoid circular import
    from app.models import MergeLock

    ttl = ttl_seconds if ttl_seconds is not None else MERGE_LOCK_TTL_SECONDS
    now = utc_now()

    lock = MergeLock(
        session_id=session_id,
        holder_id=holder_id,
        acquired_at=now,
        expires_at=now + timedelta(seconds=ttl),
    )
    session.add(lock)
    session.flush()
    return lock
