"""Gmail connector over the Gmail REST API (v1)."""

import asyncio
import logging
from typing import Any, ClassVar

import httpx

from studio.connectors.base import (
    AuthenticationError,
    ConnectorError,
    ConnectorRegistry,
    MailboxConnector,
    NotFoundError,
    RateLimitError,
)
from studio.models.subscription import FetchResult, LabelFilterBehavior, MailboxConfig

logger = logging.getLogger(__name__)

GMAIL_API_URL = "https://gmail.googleapis.com/gmail/v1/users/me"

# Upper bound on messages fetched from one history page
MAX_HISTORY_MESSAGES = 100


def build_search_query(config: MailboxConfig) -> str:
    """Gmail search query selecting (or excluding) the configured labels.

    Without labels the query covers the inbox.
    """
    if not config.label_ids:
        return "in:inbox"
    prefix = "-" if config.label_filter_behavior == LabelFilterBehavior.EXCLUDE else ""
    return " ".join(f"{prefix}label:{label}" for label in config.label_ids)


@ConnectorRegistry.register
class GmailConnector(MailboxConnector):
    """Gmail mailbox connector.

    Uses the history API when a history id is known, falling back to a label
    search when the history API rejects the request (for example an expired
    history id) or when no history id is stored yet.
    """

    system: ClassVar[str] = "gmail"

    def __init__(
        self,
        access_token: str,
        transport: httpx.AsyncBaseTransport | None = None,
        base_url: str = GMAIL_API_URL,
        timeout: float = 30.0,
    ) -> None:
        super().__init__(access_token, transport=transport)
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> dict[str, Any]:
        """Call the Gmail API and return the parsed JSON body.

        Raises:
            AuthenticationError: 401 or 403
            NotFoundError: 404
            RateLimitError: 429
            ConnectorError: Any other failure (retriable for 5xx and network errors)
        """
        url = f"{self.base_url}/{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.request(
                    method,
                    url,
                    headers={"Authorization": f"Bearer {self.access_token}"},
                    params=params,
                    json=json,
                )
        except httpx.HTTPError as e:
            raise ConnectorError(
                f"Gmail request {method} {path} failed: {e}", system=self.system, retriable=True
            ) from e

        if response.is_success:
            if not response.content:
                return {}
            try:
                return response.json()
            except ValueError as e:
                raise ConnectorError(
                    f"Gmail returned malformed JSON for {path}", system=self.system
                ) from e

        message = f"Gmail API error {response.status_code} {response.reason_phrase} for {path}"
        if response.status_code in (401, 403):
            raise AuthenticationError(message, system=self.system)
        if response.status_code == 404:
            raise NotFoundError(message, system=self.system)
        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimitError(
                message,
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
                system=self.system,
            )
        raise ConnectorError(message, system=self.system, retriable=response.status_code >= 500)

    # =========================================================================
    # Gmail API
    # =========================================================================

    async def list_history(self, start_history_id: str) -> dict[str, Any]:
        return await self._request("GET", "history", params={"startHistoryId": start_history_id})

    async def search_messages(self, query: str, max_results: int) -> list[dict[str, Any]]:
        """Message stubs (``{"id", "threadId"}``) matching a query, newest first."""
        data = await self._request(
            "GET", "messages", params={"q": query, "maxResults": max_results}
        )
        return data.get("messages") or []

    async def get_message(self, message_id: str) -> dict[str, Any]:
        return await self._request("GET", f"messages/{message_id}", params={"format": "full"})

    async def mark_as_read(self, message_id: str) -> None:
        await self._request(
            "POST", f"messages/{message_id}/modify", json={"removeLabelIds": ["UNREAD"]}
        )

    async def _get_messages(self, message_ids: list[str]) -> list[dict[str, Any]]:
        return list(await asyncio.gather(*(self.get_message(m) for m in message_ids)))

    # =========================================================================
    # Change feed
    # =========================================================================

    async def fetch_changes(
        self,
        config: MailboxConfig,
        history_id: str | None = None,
        request_id: str = "",
    ) -> FetchResult:
        """Fetch messages added since ``history_id``.

        Failures other than authentication are logged and reported as an
        empty fetch that keeps the previous history id.
        """
        try:
            if history_id:
                return await self._fetch_history(config, history_id, request_id)
            return await self._search(config, history_id, request_id)
        except AuthenticationError:
            raise
        except ConnectorError as e:
            logger.error(f"[{request_id}] Error fetching new emails: {e}")
            return FetchResult(items=[], latest_history_id=history_id)

    async def _fetch_history(
        self, config: MailboxConfig, history_id: str, request_id: str
    ) -> FetchResult:
        try:
            data = await self.list_history(history_id)
        except AuthenticationError:
            raise
        except ConnectorError as e:
            logger.error(f"[{request_id}] Gmail history API error: {e}")
            logger.info(f"[{request_id}] Falling back to search API after history API failure")
            return await self._search(config, history_id, request_id)

        latest_history_id = str(data.get("historyId") or history_id)
        message_ids: set[str] = set()
        for record in data.get("history") or []:
            for added in record.get("messagesAdded") or []:
                message = added.get("message") or {}
                if message.get("id"):
                    message_ids.add(message["id"])

        if not message_ids:
            return FetchResult(items=[], latest_history_id=latest_history_id)

        # Gmail ids increase over time, so reverse order is newest first
        ordered = sorted(message_ids, reverse=True)
        to_fetch = ordered[: config.max_emails_per_poll or MAX_HISTORY_MESSAGES]

        messages = await self._get_messages(to_fetch)
        return FetchResult(
            items=self.filter_by_labels(messages, config),
            latest_history_id=latest_history_id,
        )

    async def _search(
        self, config: MailboxConfig, history_id: str | None, request_id: str
    ) -> FetchResult:
        query = build_search_query(config)
        try:
            stubs = await self.search_messages(query, config.max_emails_per_poll)
        except AuthenticationError:
            raise
        except ConnectorError as e:
            logger.error(f"[{request_id}] Gmail search API error for query '{query}': {e}")
            return FetchResult(items=[], latest_history_id=history_id)

        if not stubs:
            return FetchResult(items=[], latest_history_id=history_id)

        stubs = stubs[: config.max_emails_per_poll]

        messages = await self._get_messages([s["id"] for s in stubs])
        latest_history_id = history_id
        if messages and messages[0].get("historyId"):
            latest_history_id = str(messages[0]["historyId"])
        return FetchResult(items=messages, latest_history_id=latest_history_id)
