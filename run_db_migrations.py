#!/usr/bin/env python3
"""
Database migration script
"""

import logging
import sys
import time

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def wait_for_database(app):
    """Wait for database to be ready"""
    logger.info("Waiting for database to be ready...")

    max_retries = 30
    retry_count = 0

    while retry_count < max_retries:
        try:
            from sqlalchemy import text

            from ltipapi import db

            with app.app_context(), db.engine.connect() as connection:
                connection.execute(text("SELECT 1")).fetchone()

            logger.info("Database is ready!")
            return True

        except Exception as e:
            retry_count += 1
            logger.info(
                f"Database not ready (attempt {retry_count}/{max_retries}): {e}"
            )
            time.sleep(2)

    raise RuntimeError("Database did not become ready within timeout period")


def run_migrations():
    """Run database migrations"""
    logger.info("Migration script started")

    try:
        from alembic.runtime.migration import MigrationContext
        from flask_migrate import upgrade

        from ltipapi import app, db

        wait_for_database(app)

        with app.app_context():
            with db.engine.connect() as connection:
                current_rev = MigrationContext.configure(
                    connection
                ).get_current_revision()
            logger.info(f"Current database revision: {current_rev}")

            upgrade(revision="head")
            logger.info("Flask-Migrate upgrade completed successfully")

    except Exception as e:
        logger.error(f"Migration failed: {e}", exc_info=True)
        sys.exit(1)

    logger.info("Migration script completed successfully")


if __name__ == "__main__":
    run_migrations()
