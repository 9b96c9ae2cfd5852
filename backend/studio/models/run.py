"""Pydantic models for multi-run batches and usage quota."""

from enum import Enum

from pydantic import BaseModel, Field


class UsageSnapshot(BaseModel):
    """Usage against the account's execution quota."""

    percent_used: float = Field(0, alias="percentUsed")
    is_warning: bool = Field(False, alias="isWarning")
    is_exceeded: bool = Field(False, alias="isExceeded")
    current_usage: float = Field(0, alias="currentUsage")
    limit: float = 0

    model_config = {"populate_by_name": True}


class BatchState(str, Enum):
    """Lifecycle of a multi-run batch."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    QUOTA_EXCEEDED = "quota_exceeded"
    FAILED = "failed"


class BatchReport(BaseModel):
    """Terminal report for a batch of sequential runs.

    ``failed_runs`` counts runs that returned an unsuccessful result. A run
    that raised instead ends the batch in ``FAILED`` with ``error`` set.
    """

    workflow_id: str
    requested_runs: int
    completed_runs: int = 0
    state: BatchState = BatchState.IDLE
    failed_runs: int = 0
    usage: UsageSnapshot | None = None
    error: str | None = None

    @property
    def message(self) -> str:
        """Human-readable summary of the outcome."""
        if self.state == BatchState.CANCELLED:
            return "Workflow run cancelled"
        if self.state == BatchState.QUOTA_EXCEEDED:
            return f"Usage limit reached after {self.completed_runs} runs. Execution stopped."
        if self.error:
            return f"Batch stopped after {self.completed_runs} runs: {self.error}"
        return f"Completed {self.completed_runs} of {self.requested_runs} runs"
