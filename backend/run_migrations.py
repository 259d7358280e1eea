"""Apply the boot migrations to the configured database.

Usage: python run_migrations.py

Uses `DATABASE_URL` (a local SQLite file beside this script by default).
The same migrations run automatically when the API starts; this script
is for bootstrapping or upgrading a database without starting the server.
"""
import logging
import os

from gradeflow.config import settings
from gradeflow.database import create_db_and_tables


def run():
    """Create missing tables and columns, then run the data migrations."""
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
    print("Using database:", settings.DATABASE_URL)
    create_db_and_tables()
    print("Migrations applied.")


if __name__ == '__main__':
    run()
