"""Incremental polling of mailbox subscriptions into webhook deliveries.

Each tick reads the active subscriptions, fetches items added since each
subscription's cursor, drops items already delivered, POSTs the rest to the
subscription's webhook trigger and advances the cursor.
"""

import asyncio
import logging
import uuid
from typing import Any, Callable, Protocol

import httpx

from studio.config import get_settings
from studio.connectors import ConnectorRegistry
from studio.connectors.base import ConnectorError, MailboxConnector
from studio.db import subscription_store
from studio.models.execution import utc_now_iso
from studio.models.subscription import (
    PollStatus,
    PollSummary,
    Subscription,
    SubscriptionPollResult,
)

logger = logging.getLogger(__name__)

# OAuth provider names used to look up access tokens per subscription provider
TOKEN_PROVIDERS = {"gmail": "google-email"}


class TokenProvider(Protocol):
    """Resolves OAuth access tokens for subscription owners."""

    async def get_token(self, user_id: str, provider: str) -> str | None: ...


class PollingReconciler:
    """Runs poll ticks over all active subscriptions of a provider.

    Subscriptions are polled concurrently; a failure in one never affects the
    others. Two ticks never process the same subscription at the same time.

    Example:
        reconciler = PollingReconciler(DatabaseTokenProvider())
        summary = await reconciler.poll()
        print(summary.successful, summary.failed)
    """

    def __init__(
        self,
        token_provider: TokenProvider,
        app_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], str] = utc_now_iso,
    ) -> None:
        """Initialize the reconciler.

        Args:
            token_provider: Source of mailbox access tokens
            app_url: Base URL hosting ``/api/webhooks/trigger/{path}``
            transport: Optional httpx transport for provider and webhook calls
            clock: Returns the current time as an ISO 8601 string
        """
        self.token_provider = token_provider
        self.app_url = (app_url or get_settings().app_url).rstrip("/")
        self._transport = transport
        self._clock = clock
        self._locks: dict[str, asyncio.Lock] = {}

    async def poll(self, provider: str = "gmail") -> PollSummary:
        """Run one tick over every active subscription of ``provider``."""
        logger.info(f"Starting {provider} webhook polling")
        subscriptions = await subscription_store.list_active_subscriptions(provider)
        if not subscriptions:
            logger.info(f"No active {provider} subscriptions found")
            return PollSummary()

        logger.info(f"Found {len(subscriptions)} active {provider} subscriptions")
        results = await asyncio.gather(*(self.poll_subscription(s) for s in subscriptions))
        summary = PollSummary.from_results(list(results))
        logger.info(
            f"{provider} polling completed: {summary.successful} succeeded, "
            f"{summary.failed} failed of {summary.total}"
        )
        return summary

    async def poll_subscription(self, subscription: Subscription) -> SubscriptionPollResult:
        """Poll one subscription, serialized against concurrent ticks."""
        lock = self._locks.setdefault(subscription.id, asyncio.Lock())
        request_id = uuid.uuid4().hex[:12]
        async with lock:
            try:
                # Re-read under the lock so a tick that waited sees the advanced cursor
                current = await subscription_store.get_subscription(subscription.id)
                return await self._poll(current or subscription, request_id)
            except Exception as e:
                logger.exception(
                    f"[{request_id}] Error processing subscription {subscription.id}"
                )
                return self._failure(subscription, str(e) or type(e).__name__)

    async def _poll(self, subscription: Subscription, request_id: str) -> SubscriptionPollResult:
        config = subscription.config
        if not config.user_id:
            logger.error(f"[{request_id}] No user ID found for subscription {subscription.id}")
            return self._failure(subscription, "No user ID")

        token = await self.token_provider.get_token(
            config.user_id, TOKEN_PROVIDERS.get(subscription.provider, subscription.provider)
        )
        if not token:
            logger.error(
                f"[{request_id}] Failed to get access token for subscription {subscription.id}"
            )
            return self._failure(subscription, "No access token")

        if not config.process_incoming_emails:
            logger.info(
                f"[{request_id}] Subscription {subscription.id} is not configured to "
                "process incoming emails"
            )
            return self._failure(subscription, "Not configured to process emails")

        now = self._clock()
        cursor = subscription.cursor
        connector = ConnectorRegistry.create(
            subscription.provider, token, transport=self._transport
        )
        fetched = await connector.fetch_changes(config, cursor.history_id, request_id)
        latest_history_id = fetched.latest_history_id or cursor.history_id

        if not fetched.items:
            await subscription_store.update_cursor(
                subscription.id, cursor.advance(now, latest_history_id)
            )
            logger.info(f"[{request_id}] No new emails found for subscription {subscription.id}")
            return SubscriptionPollResult(
                subscription_id=subscription.id, success=True, status=PollStatus.NO_ITEMS
            )

        seen = set(cursor.processed_ids)
        new_items = [item for item in fetched.items if item.get("id") not in seen]
        if not new_items:
            await subscription_store.update_cursor(
                subscription.id, cursor.advance(now, latest_history_id)
            )
            logger.info(
                f"[{request_id}] All emails have already been processed for subscription "
                f"{subscription.id}"
            )
            return SubscriptionPollResult(
                subscription_id=subscription.id,
                success=True,
                status=PollStatus.ALREADY_PROCESSED,
                items_found=len(fetched.items),
            )

        # Items arrive newest first
        to_process = new_items[:1] if config.single_email_mode else new_items
        logger.info(
            f"[{request_id}] Processing {len(to_process)} new emails for subscription "
            f"{subscription.id}"
        )
        delivered = await self._deliver(subscription, to_process, connector, request_id)

        # Attempted ids count as processed even when delivery failed
        await subscription_store.update_cursor(
            subscription.id,
            cursor.advance(now, latest_history_id, [item["id"] for item in to_process]),
        )
        return SubscriptionPollResult(
            subscription_id=subscription.id,
            success=True,
            status=PollStatus.PROCESSED,
            items_found=len(fetched.items),
            new_items=len(new_items),
            items_delivered=delivered,
        )

    async def _deliver(
        self,
        subscription: Subscription,
        items: list[dict[str, Any]],
        connector: MailboxConnector,
        request_id: str,
    ) -> int:
        """POST each item to the subscription's trigger; return how many were accepted."""
        url = f"{self.app_url}/api/webhooks/trigger/{subscription.path}"
        headers = {
            "Content-Type": "application/json",
            "X-Webhook-Secret": subscription.secret or "",
        }
        delivered = 0

        async with httpx.AsyncClient(timeout=30.0, transport=self._transport) as client:
            for item in items:
                try:
                    response = await client.post(
                        url, headers=headers, json={"email": item, "timestamp": self._clock()}
                    )
                except httpx.HTTPError as e:
                    logger.error(f"[{request_id}] Error delivering email {item.get('id')}: {e}")
                    continue

                if not response.is_success:
                    logger.error(
                        f"[{request_id}] Failed to trigger webhook for email {item.get('id')}: "
                        f"{response.status_code} {response.text[:500]}"
                    )
                    continue

                delivered += 1
                if subscription.config.mark_as_read:
                    try:
                        await connector.mark_as_read(item["id"])
                    except ConnectorError as e:
                        logger.warning(
                            f"[{request_id}] Could not mark email {item['id']} as read: {e}"
                        )

        return delivered

    @staticmethod
    def _failure(subscription: Subscription, error: str) -> SubscriptionPollResult:
        return SubscriptionPollResult(
            subscription_id=subscription.id,
            success=False,
            status=PollStatus.FAILED,
            error=error,
        )
