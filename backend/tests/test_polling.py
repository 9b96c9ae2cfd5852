"""Tests for the polling reconciler and subscription storage."""

import asyncio

import pytest

from fake_gmail import APP_URL, FakeGmail
from studio.db import subscription_store, token_store
from studio.db.secrets import SecretsError, decrypt_secret, encrypt_secret
from studio.db.token_store import DatabaseTokenProvider
from studio.models import (
    MailboxConfig,
    PollingCursor,
    PollStatus,
    SubscriptionCreate,
)
from studio.models.subscription import MAX_PROCESSED_IDS
from studio.services.polling import PollingReconciler


class StaticTokenProvider:
    """Token provider backed by a dict."""

    def __init__(self, tokens: dict[str, str]):
        self.tokens = tokens
        self.lookups: list[tuple[str, str]] = []

    async def get_token(self, user_id: str, provider: str) -> str | None:
        self.lookups.append((user_id, provider))
        return self.tokens.get(user_id)


def _reconciler(gmail: FakeGmail, tokens: dict[str, str] | None = None) -> PollingReconciler:
    return PollingReconciler(
        StaticTokenProvider(tokens if tokens is not None else {"user-1": "token-1"}),
        app_url=APP_URL,
        transport=gmail.transport,
        clock=lambda: "2024-05-01T12:00:00Z",
    )


async def _subscribe(path: str = "inbox-hook", user_id: str | None = "user-1", **config):
    return await subscription_store.create_subscription(
        SubscriptionCreate(
            path=path,
            secret="s3cret",
            config=MailboxConfig(user_id=user_id, **config),
        )
    )


class TestSubscriptionStore:
    """Tests for subscription persistence."""

    @pytest.mark.asyncio
    async def test_create_and_get(self):
        created = await _subscribe(label_ids=["Work"])

        fetched = await subscription_store.get_subscription(created.id)

        assert fetched.path == "inbox-hook"
        assert fetched.secret == "s3cret"
        assert fetched.config.label_ids == ["Work"]
        assert fetched.cursor == PollingCursor()

    @pytest.mark.asyncio
    async def test_secret_encrypted_at_rest(self):
        from studio.db.database import get_db

        created = await _subscribe()
        db = await get_db()
        cursor = await db.execute(
            "SELECT encrypted_secret FROM subscriptions WHERE id = ?", [created.id]
        )
        row = await cursor.fetchone()

        assert row["encrypted_secret"] != "s3cret"

    @pytest.mark.asyncio
    async def test_list_active_and_disable(self):
        first = await _subscribe(path="one")
        second = await _subscribe(path="two")

        assert await subscription_store.set_active(first.id, False) is True
        active = await subscription_store.list_active_subscriptions("gmail")

        assert [s.id for s in active] == [second.id]

    @pytest.mark.asyncio
    async def test_update_cursor(self):
        created = await _subscribe()
        cursor = PollingCursor(history_id="42", processed_ids=["a", "b"])

        await subscription_store.update_cursor(created.id, cursor)

        fetched = await subscription_store.get_subscription(created.id)
        assert fetched.cursor.history_id == "42"
        assert fetched.cursor.processed_ids == ["a", "b"]

    @pytest.mark.asyncio
    async def test_delete(self):
        created = await _subscribe()

        assert await subscription_store.delete_subscription(created.id) is True
        assert await subscription_store.get_subscription(created.id) is None


class TestTokenStore:
    """Tests for OAuth token storage."""

    @pytest.mark.asyncio
    async def test_save_and_replace(self):
        await token_store.save_token("user-1", "google-email", "first")
        await token_store.save_token("user-1", "google-email", "second")

        assert await DatabaseTokenProvider().get_token("user-1", "google-email") == "second"

    @pytest.mark.asyncio
    async def test_delete_token(self):
        await token_store.save_token("user-1", "google-email", "token")

        assert await token_store.delete_token("user-1", "google-email") is True
        assert await token_store.get_token("user-1", "google-email") is None
        assert await token_store.delete_token("user-1", "google-email") is False

    @pytest.mark.asyncio
    async def test_missing_token(self):
        assert await token_store.get_token("nobody", "google-email") is None


class TestSecrets:
    """Tests for at-rest encryption."""

    def test_round_trip(self):
        encrypted = encrypt_secret("hunter2")

        assert encrypted != "hunter2"
        assert decrypt_secret(encrypted) == "hunter2"

    def test_corrupted_value(self):
        with pytest.raises(SecretsError):
            decrypt_secret("not-a-fernet-token")


class TestPollingCursor:
    """Tests for cursor advancement."""

    def test_processed_ids_bounded(self):
        cursor = PollingCursor(processed_ids=[str(i) for i in range(95)])

        advanced = cursor.advance("now", "7", [f"new-{i}" for i in range(10)])

        assert len(advanced.processed_ids) == MAX_PROCESSED_IDS
        assert advanced.processed_ids[0] == "5"
        assert advanced.processed_ids[-1] == "new-9"

    def test_keeps_history_id_when_none(self):
        cursor = PollingCursor(history_id="10")

        assert cursor.advance("now", None).history_id == "10"


class TestPollingReconciler:
    """Tests for PollingReconciler."""

    @pytest.mark.asyncio
    async def test_no_subscriptions(self):
        summary = await _reconciler(FakeGmail()).poll()

        assert summary.total == 0

    @pytest.mark.asyncio
    async def test_delivers_new_messages(self):
        gmail = FakeGmail()
        gmail.add_message("m1", history_id="101")
        gmail.add_message("m2", history_id="102")
        subscription = await _subscribe()
        reconciler = _reconciler(gmail)

        summary = await reconciler.poll()

        assert summary.total == 1
        assert summary.successful == 1
        detail = summary.details[0]
        assert detail.status == PollStatus.PROCESSED
        assert detail.items_found == 2
        assert detail.items_delivered == 2
        assert [d["email_id"] for d in gmail.deliveries] == ["m2", "m1"]
        assert gmail.deliveries[0]["path"] == "inbox-hook"
        assert gmail.deliveries[0]["secret"] == "s3cret"
        assert gmail.deliveries[0]["timestamp"] == "2024-05-01T12:00:00Z"

        stored = await subscription_store.get_subscription(subscription.id)
        assert stored.cursor.history_id == "102"
        assert stored.cursor.processed_ids == ["m2", "m1"]
        assert stored.cursor.last_checked_timestamp == "2024-05-01T12:00:00Z"

    @pytest.mark.asyncio
    async def test_token_lookup_uses_oauth_provider_name(self):
        gmail = FakeGmail()
        await _subscribe()
        tokens = StaticTokenProvider({"user-1": "token-1"})
        reconciler = PollingReconciler(tokens, app_url=APP_URL, transport=gmail.transport)

        await reconciler.poll()

        assert tokens.lookups == [("user-1", "google-email")]

    @pytest.mark.asyncio
    async def test_already_processed_items_not_redelivered(self):
        gmail = FakeGmail()
        gmail.add_message("m1")
        subscription = await _subscribe()
        await subscription_store.update_cursor(
            subscription.id, PollingCursor(history_id="100", processed_ids=["m1"])
        )

        summary = await _reconciler(gmail).poll()

        assert summary.details[0].status == PollStatus.ALREADY_PROCESSED
        assert gmail.deliveries == []
        stored = await subscription_store.get_subscription(subscription.id)
        assert stored.cursor.history_id == "9000"

    @pytest.mark.asyncio
    async def test_second_tick_is_idempotent(self):
        gmail = FakeGmail()
        gmail.add_message("m1")
        await _subscribe()
        reconciler = _reconciler(gmail)

        await reconciler.poll()
        summary = await reconciler.poll()

        assert [d["email_id"] for d in gmail.deliveries] == ["m1"]
        assert summary.details[0].status == PollStatus.ALREADY_PROCESSED

    @pytest.mark.asyncio
    async def test_no_items(self):
        gmail = FakeGmail()
        subscription = await _subscribe()

        summary = await _reconciler(gmail).poll()

        assert summary.details[0].status == PollStatus.NO_ITEMS
        assert summary.details[0].success is True
        stored = await subscription_store.get_subscription(subscription.id)
        assert stored.cursor.last_checked_timestamp == "2024-05-01T12:00:00Z"

    @pytest.mark.asyncio
    async def test_single_email_mode_delivers_newest_unprocessed(self):
        """The newest item is already processed, so the next newest is delivered."""
        gmail = FakeGmail()
        gmail.add_message("m1")
        gmail.add_message("m2")
        gmail.add_message("m3")
        subscription = await _subscribe(single_email_mode=True)
        await subscription_store.update_cursor(
            subscription.id, PollingCursor(history_id="100", processed_ids=["m3"])
        )

        summary = await _reconciler(gmail).poll()

        assert [d["email_id"] for d in gmail.deliveries] == ["m2"]
        assert summary.details[0].new_items == 2
        stored = await subscription_store.get_subscription(subscription.id)
        assert stored.cursor.processed_ids == ["m3", "m2"]

    @pytest.mark.asyncio
    async def test_single_email_mode_search(self):
        gmail = FakeGmail()
        gmail.add_message("m1")
        gmail.add_message("m2")
        await _subscribe(single_email_mode=True)

        await _reconciler(gmail).poll()

        assert [d["email_id"] for d in gmail.deliveries] == ["m2"]

    @pytest.mark.asyncio
    async def test_delivery_failure_continues_and_marks_processed(self):
        gmail = FakeGmail()
        gmail.add_message("m1")
        gmail.add_message("m2")
        gmail.webhook_status["m2"] = 500
        subscription = await _subscribe()

        summary = await _reconciler(gmail).poll()

        detail = summary.details[0]
        assert detail.success is True
        assert detail.items_delivered == 1
        assert [d["email_id"] for d in gmail.deliveries] == ["m2", "m1"]
        stored = await subscription_store.get_subscription(subscription.id)
        assert set(stored.cursor.processed_ids) == {"m1", "m2"}

    @pytest.mark.asyncio
    async def test_mark_as_read_after_successful_delivery(self):
        gmail = FakeGmail()
        gmail.add_message("m1")
        gmail.add_message("m2")
        gmail.webhook_status["m2"] = 500
        await _subscribe(mark_as_read=True)

        await _reconciler(gmail).poll()

        assert gmail.modified == ["m1"]

    @pytest.mark.asyncio
    async def test_history_fallback_to_search(self):
        gmail = FakeGmail()
        gmail.history_status = 404
        gmail.add_message("m1", history_id="555")
        subscription = await _subscribe()
        await subscription_store.update_cursor(subscription.id, PollingCursor(history_id="stale"))

        summary = await _reconciler(gmail).poll()

        assert summary.details[0].items_delivered == 1
        stored = await subscription_store.get_subscription(subscription.id)
        assert stored.cursor.history_id == "555"

    @pytest.mark.asyncio
    async def test_failures_are_isolated(self):
        gmail = FakeGmail()
        gmail.add_message("m1")
        await _subscribe(path="no-user", user_id=None)
        await _subscribe(path="no-token", user_id="user-2")
        await _subscribe(path="disabled", process_incoming_emails=False)
        await _subscribe(path="healthy")

        summary = await _reconciler(gmail).poll()

        assert summary.total == 4
        assert summary.successful == 1
        assert summary.failed == 3
        errors = sorted(d.error for d in summary.details if not d.success)
        assert errors == ["No access token", "No user ID", "Not configured to process emails"]
        assert [d["path"] for d in gmail.deliveries] == ["healthy"]

    @pytest.mark.asyncio
    async def test_expired_token_fails_subscription(self):
        gmail = FakeGmail()
        gmail.auth_status = 401
        await _subscribe()

        summary = await _reconciler(gmail).poll()

        assert summary.failed == 1
        assert summary.details[0].status == PollStatus.FAILED
        assert "401" in summary.details[0].error

    @pytest.mark.asyncio
    async def test_concurrent_ticks_do_not_double_deliver(self):
        gmail = FakeGmail()
        gmail.add_message("m1")
        await _subscribe()
        reconciler = _reconciler(gmail)

        await asyncio.gather(reconciler.poll(), reconciler.poll())

        assert [d["email_id"] for d in gmail.deliveries] == ["m1"]
