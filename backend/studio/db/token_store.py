"""Encrypted storage of OAuth access tokens."""

from datetime import datetime, timezone

from studio.db.database import get_db
from studio.db.secrets import decrypt_secret, encrypt_secret


async def save_token(user_id: str, provider: str, access_token: str) -> None:
    """Store (or replace) a user's access token for a provider."""
    db = await get_db()

    await db.execute(
        """
        INSERT INTO oauth_tokens (user_id, provider, encrypted_token, updated_at)
        VALUES (?, ?, ?, ?)
        ON CONFLICT(user_id, provider) DO UPDATE SET
            encrypted_token = excluded.encrypted_token,
            updated_at = excluded.updated_at
        """,
        [user_id, provider, encrypt_secret(access_token), datetime.now(timezone.utc).isoformat()],
    )
    await db.commit()


async def get_token(user_id: str, provider: str) -> str | None:
    """Get a user's access token for a provider, or None if none is stored."""
    db = await get_db()

    cursor = await db.execute(
        "SELECT encrypted_token FROM oauth_tokens WHERE user_id = ? AND provider = ?",
        [user_id, provider],
    )
    row = await cursor.fetchone()

    if not row:
        return None
    return decrypt_secret(row["encrypted_token"])


async def delete_token(user_id: str, provider: str) -> bool:
    db = await get_db()

    cursor = await db.execute(
        "DELETE FROM oauth_tokens WHERE user_id = ? AND provider = ?",
        [user_id, provider],
    )
    await db.commit()
    return cursor.rowcount > 0


class DatabaseTokenProvider:
    """TokenProvider reading tokens saved with ``save_token``."""

    async def get_token(self, user_id: str, provider: str) -> str | None:
        return await get_token(user_id, provider)
