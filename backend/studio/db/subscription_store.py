"""Database operations for polled webhook subscriptions."""

import json
import uuid
from datetime import datetime, timezone

import aiosqlite

from studio.db.database import get_db
from studio.db.secrets import decrypt_secret, encrypt_secret
from studio.models.subscription import (
    MailboxConfig,
    PollingCursor,
    Subscription,
    SubscriptionCreate,
)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _row_to_subscription(row: aiosqlite.Row) -> Subscription:
    """Convert a database row to a Subscription model."""
    config_data = json.loads(row["config_json"] or "{}")
    cursor_data = json.loads(row["cursor_json"] or "{}")
    secret = decrypt_secret(row["encrypted_secret"]) if row["encrypted_secret"] else None

    return Subscription(
        id=row["id"],
        provider=row["provider"],
        path=row["path"],
        secret=secret,
        is_active=bool(row["is_active"]),
        config=MailboxConfig.model_validate(config_data),
        cursor=PollingCursor.model_validate(cursor_data),
    )


async def create_subscription(data: SubscriptionCreate) -> Subscription:
    """Register a new subscription with an empty cursor."""
    db = await get_db()

    subscription_id = str(uuid.uuid4())
    now = _now()

    await db.execute(
        """
        INSERT INTO subscriptions (
            id, provider, path, encrypted_secret, is_active,
            config_json, cursor_json, created_at, updated_at
        ) VALUES (?, ?, ?, ?, 1, ?, '{}', ?, ?)
        """,
        [
            subscription_id,
            data.provider,
            data.path,
            encrypt_secret(data.secret) if data.secret else None,
            data.config.model_dump_json(by_alias=True),
            now,
            now,
        ],
    )
    await db.commit()

    return await get_subscription(subscription_id)  # type: ignore


async def get_subscription(subscription_id: str) -> Subscription | None:
    db = await get_db()

    cursor = await db.execute(
        "SELECT * FROM subscriptions WHERE id = ?",
        [subscription_id],
    )
    row = await cursor.fetchone()

    if not row:
        return None
    return _row_to_subscription(row)


async def list_active_subscriptions(provider: str) -> list[Subscription]:
    """List active subscriptions for a provider, oldest first."""
    db = await get_db()

    cursor = await db.execute(
        """
        SELECT * FROM subscriptions
        WHERE provider = ? AND is_active = 1
        ORDER BY created_at ASC
        """,
        [provider],
    )
    rows = await cursor.fetchall()
    return [_row_to_subscription(row) for row in rows]


async def update_cursor(subscription_id: str, polling_cursor: PollingCursor) -> None:
    """Persist a subscription's cursor after a poll."""
    db = await get_db()

    await db.execute(
        "UPDATE subscriptions SET cursor_json = ?, updated_at = ? WHERE id = ?",
        [polling_cursor.model_dump_json(by_alias=True), _now(), subscription_id],
    )
    await db.commit()


async def set_active(subscription_id: str, is_active: bool) -> bool:
    """Enable or disable polling for a subscription.

    Returns:
        False if the subscription does not exist
    """
    db = await get_db()

    cursor = await db.execute(
        "UPDATE subscriptions SET is_active = ?, updated_at = ? WHERE id = ?",
        [1 if is_active else 0, _now(), subscription_id],
    )
    await db.commit()
    return cursor.rowcount > 0


async def delete_subscription(subscription_id: str) -> bool:
    db = await get_db()

    cursor = await db.execute("DELETE FROM subscriptions WHERE id = ?", [subscription_id])
    await db.commit()
    return cursor.rowcount > 0
