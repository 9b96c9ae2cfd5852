"""Pydantic models for polled webhook subscriptions (mailbox change feeds)."""

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field

MAX_PROCESSED_IDS = 100


class LabelFilterBehavior(str, Enum):
    """Whether configured labels select or exclude items."""

    INCLUDE = "INCLUDE"
    EXCLUDE = "EXCLUDE"


class PollingCursor(BaseModel):
    """Resumable position in a subscription's change feed."""

    last_checked_timestamp: str | None = Field(default=None, alias="lastCheckedTimestamp")
    history_id: str | None = Field(default=None, alias="historyId")
    processed_ids: list[str] = Field(default_factory=list, alias="processedIds")

    model_config = {"populate_by_name": True}

    def advance(
        self,
        timestamp: str,
        history_id: str | None,
        attempted_ids: list[str] | None = None,
    ) -> "PollingCursor":
        """Return the cursor after a tick.

        The history id is only replaced when a new one is known. Attempted ids
        are appended and the list is trimmed to the most recent entries.
        """
        processed = list(self.processed_ids)
        if attempted_ids:
            processed.extend(attempted_ids)
        return PollingCursor(
            last_checked_timestamp=timestamp,
            history_id=history_id or self.history_id,
            processed_ids=processed[-MAX_PROCESSED_IDS:],
        )


class MailboxConfig(BaseModel):
    """Provider configuration of a mailbox subscription."""

    user_id: str | None = Field(default=None, alias="userId")
    label_ids: list[str] = Field(default_factory=list, alias="labelIds")
    label_filter_behavior: LabelFilterBehavior = Field(
        LabelFilterBehavior.INCLUDE, alias="labelFilterBehavior"
    )
    process_incoming_emails: bool = Field(True, alias="processIncomingEmails")
    mark_as_read: bool = Field(False, alias="markAsRead")
    max_emails_per_poll: int = Field(25, ge=1, le=100, alias="maxEmailsPerPoll")
    single_email_mode: bool = Field(False, alias="singleEmailMode")

    model_config = {"populate_by_name": True}


class Subscription(BaseModel):
    """An active webhook subscription fed by polling."""

    id: str
    provider: Literal["gmail"] = "gmail"
    path: str
    secret: str | None = None
    is_active: bool = True
    config: MailboxConfig = Field(default_factory=MailboxConfig)
    cursor: PollingCursor = Field(default_factory=PollingCursor)


class SubscriptionCreate(BaseModel):
    """Request model for registering a subscription."""

    path: str
    secret: str | None = None
    provider: Literal["gmail"] = "gmail"
    config: MailboxConfig = Field(default_factory=MailboxConfig)


class PollStatus(str, Enum):
    """Outcome of one subscription within a poll tick."""

    PROCESSED = "processed"
    NO_ITEMS = "no_items"
    ALREADY_PROCESSED = "already_processed"
    FAILED = "failed"


class SubscriptionPollResult(BaseModel):
    """Result of polling one subscription."""

    subscription_id: str
    success: bool
    status: PollStatus
    items_found: int = 0
    new_items: int = 0
    items_delivered: int = 0
    error: str | None = None


class PollSummary(BaseModel):
    """Aggregate result of one poll tick across subscriptions."""

    total: int = 0
    successful: int = 0
    failed: int = 0
    details: list[SubscriptionPollResult] = Field(default_factory=list)

    @classmethod
    def from_results(cls, results: list[SubscriptionPollResult]) -> "PollSummary":
        return cls(
            total=len(results),
            successful=sum(1 for r in results if r.success),
            failed=sum(1 for r in results if not r.success),
            details=results,
        )


class FetchResult(BaseModel):
    """Items discovered by a change-feed fetch and the cursor to resume from."""

    items: list[dict[str, Any]] = Field(default_factory=list)
    latest_history_id: str | None = None
