#!/usr/bin/env python3
"""
Container bootstrap: wait for the database, then `alembic upgrade head`.

Exits non-zero when the database never comes up or a migration fails, so the
API container does not start against an unknown schema.

    python run_migrations.py && uvicorn main:app --host 0.0.0.0
"""
import logging
import os
import sys
import time

from sqlalchemy import create_engine, text
from sqlalchemy.exc import OperationalError

from core.config import settings
from core.logging import setup_logging

logger = logging.getLogger("run_migrations")

READY_ATTEMPTS = 30
READY_INTERVAL_SECONDS = 1.0


def wait_for_database(url: str, attempts: int = READY_ATTEMPTS, interval: float = READY_INTERVAL_SECONDS) -> bool:
    """Poll with SELECT 1 until the server answers or attempts run out."""
    ready_engine = create_engine(url, pool_pre_ping=True)
    try:
        for attempt in range(1, attempts + 1):
            try:
                with ready_engine.connect() as conn:
                    conn.execute(text("SELECT 1"))
                logger.info("Database is ready")
                return True
            except OperationalError:
                logger.info(f"Database unavailable, retrying ({attempt}/{attempts})")
                time.sleep(interval)
        return False
    finally:
        ready_engine.dispose()


def alembic_config():
    from alembic.config import Config

    here = os.path.dirname(os.path.abspath(__file__))
    cfg = Config(os.path.join(here, "alembic.ini"))
    cfg.set_main_option("sqlalchemy.url", settings.database_url)
    return cfg


def upgrade_head() -> None:
    from alembic import command

    command.upgrade(alembic_config(), "head")


def main() -> int:
    setup_logging()

    if not wait_for_database(settings.database_url):
        logger.error("Database did not become ready; aborting")
        return 1

    try:
        upgrade_head()
    except Exception as e:
        logger.error(f"Alembic upgrade failed: {e}", exc_info=True)
        return 1

    logger.info("Migrations applied")
    return 0


if __name__ == "__main__":
    sys.exit(main())
