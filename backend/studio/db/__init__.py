"""Database layer for subscriptions and OAuth tokens."""

from studio.db.database import close_database, get_db, init_database

__all__ = ["close_database", "get_db", "init_database"]
