"""
Database schema bootstrap for rotavault.

Tables are created with create_all; there are no column migrations yet.
"""

import logging
from sqlalchemy import inspect
from rotavault import db

logger = logging.getLogger(__name__)


def init_database_schema(app):
    """
    Create any missing tables.

    Safe to call from several processes (CLI, runner, web workers) sharing
    one database.
    """
    with app.app_context():
        existing_tables = set(inspect(db.engine).get_table_names())

        try:
            db.create_all()
        except Exception as e:
            # Another process may have created the tables first
            logger.error(f"Failed to create database schema: {e}")
            return

        if not existing_tables:
            logger.info("Database schema created successfully")
