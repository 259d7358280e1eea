"""Database engine and helpers.

This module configures the SQLModel/SQLAlchemy engine from
`settings.DATABASE_URL` (a local SQLite file by default) and provides the
small helpers used by the application, scripts and tests.
"""

from contextlib import contextmanager

from sqlalchemy import event
from sqlmodel import Session, create_engine

from .config import settings


def build_engine(url: str):
    """Create an engine; SQLite connections get foreign keys switched on.

    SQLite ignores `ON DELETE CASCADE` unless the pragma is set on every
    new connection.
    """
    is_sqlite = url.startswith("sqlite")
    connect_args = {"check_same_thread": False} if is_sqlite else {}
    eng = create_engine(url, echo=False, connect_args=connect_args)
    if is_sqlite:
        @event.listens_for(eng, "connect")
        def _enable_foreign_keys(dbapi_conn, _record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()
    return eng


engine = build_engine(settings.DATABASE_URL)


def create_db_and_tables():
    """Create tables and apply the idempotent boot migrations."""
    from .migrations import run_migrations
    run_migrations(engine)


@contextmanager
def atomic(session: Session):
    """Commit the enclosed unit of work, or roll it back entirely on error."""
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise


def get_session():
    """Yield a database `Session` for FastAPI dependency injection.

    The generator yields a session and ensures it is closed when the
    request scope finishes.
    """
    with Session(engine) as session:
        yield session
