"""Create the configured database and the Waypost tables."""
from __future__ import annotations

import argparse
import logging
import sys

import psycopg
from psycopg import sql
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError

from waypost.core.log import configure_logging
from waypost.core.settings import settings
from waypost.db.session import create_tables, drop_tables

logger = logging.getLogger(__name__)


def maintenance_target(db_url: str) -> tuple[str, str] | None:
    """Return ``(maintenance_url, database)`` for Postgres URLs, else None.

    The maintenance URL keeps the credentials and host of ``db_url`` but points
    psycopg at the ``postgres`` database, where ``CREATE DATABASE`` can run.
    """
    url = make_url(db_url.strip().strip("'\""))
    if url.get_backend_name() != "postgresql":
        return None
    admin = url.set(drivername="postgresql", database="postgres")
    return admin.render_as_string(hide_password=False), url.database or "postgres"


def ensure_database_exists(admin_url: str, database: str) -> None:
    with psycopg.connect(admin_url, autocommit=True) as conn, conn.cursor() as cur:
        cur.execute("SELECT 1 FROM pg_database WHERE datname = %s", (database,))
        if cur.fetchone() is None:
            cur.execute(sql.SQL("CREATE DATABASE {}").format(sql.Identifier(database)))
            logger.info("Created database %s", database)
        else:
            logger.info("Database %s already exists", database)


def main() -> None:
    parser = argparse.ArgumentParser(description="Ensure the database and its tables exist")
    parser.add_argument(
        "--drop-tables",
        action="store_true",
        help="Drop all Waypost tables before creating them again.",
    )
    args = parser.parse_args()
    configure_logging()

    try:
        target = maintenance_target(settings.effective_database_url)
        if target is not None:
            ensure_database_exists(*target)
        if args.drop_tables:
            drop_tables()
            logger.info("Dropped all tables")
        create_tables()
        logger.info("Tables are in place")
    except (psycopg.Error, SQLAlchemyError) as exc:
        logger.error("Could not prepare the database: %s", exc)
        sys.exit(1)


if __name__ == "__main__":
    main()
