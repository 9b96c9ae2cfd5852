"""Base connector interface for polled mailbox change feeds.

A connector turns a provider's REST API into four operations the polling
reconciler relies on:
1. Fetch items changed since a cursor (history id), with a search fallback
2. Read a single item in full
3. Filter items by label
4. Acknowledge an item (mark as read)
"""

from abc import ABC, abstractmethod
from typing import Any, ClassVar

import httpx

from studio.models.subscription import FetchResult, LabelFilterBehavior, MailboxConfig


class ConnectorError(Exception):
    """Base exception for connector errors."""

    def __init__(self, message: str, system: str | None = None, retriable: bool = False):
        super().__init__(message)
        self.system = system
        self.retriable = retriable


class AuthenticationError(ConnectorError):
    """Authentication failed (token expired, invalid credentials)."""

    pass


class NotFoundError(ConnectorError):
    """External object not found."""

    pass


class RateLimitError(ConnectorError):
    """Rate limit exceeded."""

    def __init__(self, message: str, retry_after: int | None = None, **kwargs: Any):
        super().__init__(message, retriable=True, **kwargs)
        self.retry_after = retry_after


class MailboxConnector(ABC):
    """Abstract base class for mailbox connectors.

    Example implementation:
        @ConnectorRegistry.register
        class OutlookConnector(MailboxConnector):
            system = "outlook"

            async def fetch_changes(self, config, history_id=None, request_id=""):
                ...
    """

    system: ClassVar[str]

    def __init__(
        self,
        access_token: str,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the connector.

        Args:
            access_token: OAuth access token for the mailbox owner
            transport: Optional httpx transport (tests pass ``httpx.MockTransport``)
        """
        self.access_token = access_token
        self._transport = transport

    # =========================================================================
    # Abstract Methods (must implement)
    # =========================================================================

    @abstractmethod
    async def fetch_changes(
        self,
        config: MailboxConfig,
        history_id: str | None = None,
        request_id: str = "",
    ) -> FetchResult:
        """List items added since ``history_id`` (or by search when unset).

        Returns:
            Fetched items (newest first) and the history id to resume from

        Raises:
            AuthenticationError: If the access token is rejected
        """
        pass

    @abstractmethod
    async def get_message(self, message_id: str) -> dict[str, Any]:
        """Fetch one item in full."""
        pass

    @abstractmethod
    async def mark_as_read(self, message_id: str) -> None:
        pass

    # =========================================================================
    # Helper Methods
    # =========================================================================

    @staticmethod
    def filter_by_labels(
        items: list[dict[str, Any]], config: MailboxConfig
    ) -> list[dict[str, Any]]:
        """Keep (INCLUDE) or drop (EXCLUDE) items carrying any configured label."""
        if not config.label_ids:
            return items

        wanted = set(config.label_ids)
        include = config.label_filter_behavior == LabelFilterBehavior.INCLUDE
        return [
            item
            for item in items
            if bool(wanted & set(item.get("labelIds") or [])) == include
        ]


class ConnectorRegistry:
    """Registry of available connectors keyed by provider name."""

    _connectors: dict[str, type[MailboxConnector]] = {}

    @classmethod
    def register(cls, connector_class: type[MailboxConnector]) -> type[MailboxConnector]:
        """Register a connector class.

        Can be used as a decorator:
            @ConnectorRegistry.register
            class GmailConnector(MailboxConnector):
                system = "gmail"
        """
        cls._connectors[connector_class.system] = connector_class
        return connector_class

    @classmethod
    def get(cls, system: str) -> type[MailboxConnector] | None:
        """Get connector class by provider name."""
        return cls._connectors.get(system)

    @classmethod
    def create(
        cls,
        system: str,
        access_token: str,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> MailboxConnector:
        """Instantiate the connector for a provider.

        Raises:
            ConnectorError: If no connector is registered for ``system``
        """
        connector_class = cls._connectors.get(system)
        if connector_class is None:
            raise ConnectorError(f"No connector registered for '{system}'", system=system)
        return connector_class(access_token=access_token, transport=transport)

    @classmethod
    def list_systems(cls) -> list[str]:
        return list(cls._connectors.keys())
