"""Pydantic models for the studio workflow core."""

from studio.models.block import (
    Block,
    BlockType,
    Condition,
    agent_block,
    api_block,
    condition_block,
    evaluator_block,
    function_block,
    router_block,
    starter_block,
)
from studio.models.execution import (
    ExecutionMetadata,
    ExecutionOutput,
    ExecutionResult,
    LogEntry,
)
from studio.models.response import (
    EmptyContent,
    JsonContent,
    ResponseContent,
    TextContent,
    resolve_content,
)
from studio.models.run import BatchReport, BatchState, UsageSnapshot
from studio.models.subscription import (
    FetchResult,
    LabelFilterBehavior,
    MailboxConfig,
    PollingCursor,
    PollStatus,
    PollSummary,
    Subscription,
    SubscriptionCreate,
    SubscriptionPollResult,
)
from studio.models.workflow import Connection, LoopConfig, Workflow

__all__ = [
    # Blocks
    "Block",
    "BlockType",
    "Condition",
    "agent_block",
    "api_block",
    "condition_block",
    "evaluator_block",
    "function_block",
    "router_block",
    "starter_block",
    # Graph
    "Connection",
    "LoopConfig",
    "Workflow",
    # Execution
    "ExecutionMetadata",
    "ExecutionOutput",
    "ExecutionResult",
    "LogEntry",
    # Response content
    "EmptyContent",
    "JsonContent",
    "ResponseContent",
    "TextContent",
    "resolve_content",
    # Batches
    "BatchReport",
    "BatchState",
    "UsageSnapshot",
    # Polling
    "FetchResult",
    "LabelFilterBehavior",
    "MailboxConfig",
    "PollingCursor",
    "PollStatus",
    "PollSummary",
    "Subscription",
    "SubscriptionCreate",
    "SubscriptionPollResult",
]
