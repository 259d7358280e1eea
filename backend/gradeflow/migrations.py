"""Idempotent boot-time schema migrations.

`run_migrations` is safe to call on every start: it creates missing
tables from the SQLModel metadata, adds columns that older database files
lack, then runs small data migrations that only touch rows still needing
them. Each step logs what it did under the `gradeflow.migrations` logger.
"""

import logging
from typing import Callable, List, Tuple

from sqlalchemy import inspect
from sqlalchemy.engine import Connection, Engine
from sqlmodel import Session, SQLModel, select

from . import models  # noqa: F401  (registers tables on the metadata)
from .services import DefaultsService

logger = logging.getLogger("gradeflow.migrations")

# (table, column, DDL fragment used after ADD COLUMN)
ADDITIVE_COLUMNS: List[Tuple[str, str, str]] = [
    ("users", "is_active", "is_active BOOLEAN DEFAULT TRUE"),
    ("users", "school_name", "school_name VARCHAR(255)"),
    ("users", "first_day_of_school", "first_day_of_school DATE"),
    ("users", "grading_periods", "grading_periods INTEGER DEFAULT 6"),
    ("users", "last_login_at", "last_login_at TIMESTAMP"),
    ("subjects", "report_card_name", "report_card_name VARCHAR(255)"),
    ("grade_category_types", "is_active", "is_active BOOLEAN DEFAULT TRUE"),
    ("grade_category_types", "color", "color VARCHAR(7) DEFAULT '#6366f1'"),
    ("lessons", "category_id", "category_id INTEGER REFERENCES grade_category_types(id) ON DELETE SET NULL"),
]


def add_missing_columns(conn: Connection) -> int:
    """Add every column in `ADDITIVE_COLUMNS` that the live table lacks."""
    inspector = inspect(conn)
    tables = set(inspector.get_table_names())
    added = 0
    for table, column, ddl in ADDITIVE_COLUMNS:
        if table not in tables:
            continue
        existing = {c["name"] for c in inspector.get_columns(table)}
        if column in existing:
            continue
        conn.exec_driver_sql(f"ALTER TABLE {table} ADD COLUMN {ddl}")
        logger.info("added column %s.%s", table, column)
        added += 1
    return added


def seed_default_categories(session: Session) -> int:
    """Give every user without grade categories the default set."""
    seeded = 0
    defaults = DefaultsService(session)
    for user_id in session.exec(select(models.User.id)).all():
        if defaults.seed_categories(user_id):
            seeded += 1
    return seeded


def populate_user_metadata(session: Session) -> int:
    """Create the `user_metadata` row for users that predate the table."""
    known = set(session.exec(select(models.UserMetadata.user_id)).all())
    created = 0
    for user_id in session.exec(select(models.User.id)).all():
        if user_id in known:
            continue
        session.add(models.UserMetadata(user_id=user_id))
        created += 1
    return created


DATA_MIGRATIONS: List[Tuple[str, Callable[[Session], int]]] = [
    ("seed_default_categories", seed_default_categories),
    ("populate_user_metadata", populate_user_metadata),
]


def run_migrations(engine: Engine) -> None:
    """Bring the database at `engine` up to the current schema."""
    SQLModel.metadata.create_all(engine)
    with engine.begin() as conn:
        added = add_missing_columns(conn)
    logger.info("schema migration complete (%d columns added)", added)
    for name, step in DATA_MIGRATIONS:
        with Session(engine) as session:
            try:
                touched = step(session)
                session.commit()
            except Exception:
                session.rollback()
                logger.exception("data migration %s failed", name)
                raise
        logger.info("data migration %s: %d rows", name, touched)
