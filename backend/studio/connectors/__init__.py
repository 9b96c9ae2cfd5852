"""Mailbox connectors used by the polling reconciler."""

from studio.connectors.base import (
    AuthenticationError,
    ConnectorError,
    ConnectorRegistry,
    MailboxConnector,
    NotFoundError,
    RateLimitError,
)

# Import connectors to trigger registration via @ConnectorRegistry.register decorator
from studio.connectors.gmail import GmailConnector  # noqa: F401

__all__ = [
    "AuthenticationError",
    "ConnectorError",
    "ConnectorRegistry",
    "GmailConnector",
    "MailboxConnector",
    "NotFoundError",
    "RateLimitError",
]
