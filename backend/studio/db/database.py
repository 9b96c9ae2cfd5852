"""SQLite database connection and schema initialization."""

from pathlib import Path

import aiosqlite

# Global connection holder
_db_connection: aiosqlite.Connection | None = None


async def init_database(db_path: str) -> None:
    """Initialize the database connection and create schema."""
    global _db_connection

    # Ensure the data directory exists
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    _db_connection = await aiosqlite.connect(db_path)
    _db_connection.row_factory = aiosqlite.Row

    await _create_schema(_db_connection)


async def close_database() -> None:
    """Close the database connection."""
    global _db_connection
    if _db_connection:
        await _db_connection.close()
        _db_connection = None


async def get_db() -> aiosqlite.Connection:
    """Get the database connection."""
    if _db_connection is None:
        raise RuntimeError("Database not initialized. Call init_database first.")
    return _db_connection


async def _create_schema(db: aiosqlite.Connection) -> None:
    """Create database tables and indexes."""
    # Polled webhook subscriptions
    await db.execute("""
        CREATE TABLE IF NOT EXISTS subscriptions (
            id TEXT PRIMARY KEY,
            provider TEXT NOT NULL,
            path TEXT NOT NULL,
            encrypted_secret TEXT,
            is_active INTEGER NOT NULL DEFAULT 1,
            config_json TEXT NOT NULL DEFAULT '{}',
            cursor_json TEXT NOT NULL DEFAULT '{}',
            created_at TEXT NOT NULL DEFAULT (datetime('now')),
            updated_at TEXT NOT NULL DEFAULT (datetime('now'))
        )
    """)

    await db.execute("""
        CREATE INDEX IF NOT EXISTS idx_subscriptions_provider_active
        ON subscriptions(provider, is_active)
    """)

    # OAuth access tokens per user and provider
    await db.execute("""
        CREATE TABLE IF NOT EXISTS oauth_tokens (
            user_id TEXT NOT NULL,
            provider TEXT NOT NULL,
            encrypted_token TEXT NOT NULL,
            updated_at TEXT NOT NULL DEFAULT (datetime('now')),
            PRIMARY KEY (user_id, provider)
        )
    """)

    await db.commit()
