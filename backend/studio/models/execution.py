"""Pydantic models for execution traces and results."""

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field


class LogEntry(BaseModel):
    """One block invocation in an execution trace."""

    block_id: str = Field(alias="blockId")
    block_name: str | None = Field(default=None, alias="blockName")
    block_type: str | None = Field(default=None, alias="blockType")
    started_at: str | None = Field(default=None, alias="startedAt")
    ended_at: str | None = Field(default=None, alias="endedAt")
    duration_ms: float | None = Field(default=None, alias="durationMs")
    success: bool
    error: str | None = None
    output: Any = None

    model_config = {"populate_by_name": True, "extra": "allow"}


class ExecutionOutput(BaseModel):
    """Final output of an execution."""

    response: Any = Field(default_factory=dict)

    model_config = {"extra": "allow"}


class ExecutionMetadata(BaseModel):
    """Timing metadata for an execution."""

    start_time: str | None = Field(default=None, alias="startTime")
    end_time: str | None = Field(default=None, alias="endTime")
    duration: float | None = None

    model_config = {"populate_by_name": True}


class ExecutionResult(BaseModel):
    """Normalized result of one workflow execution.

    A result with ``success=False`` is still a valid result: remote and local
    executors return partial traces as data so callers can see which block failed.
    """

    success: bool
    output: ExecutionOutput = Field(default_factory=ExecutionOutput)
    error: str | None = None
    logs: list[LogEntry] = Field(default_factory=list)
    metadata: ExecutionMetadata = Field(default_factory=ExecutionMetadata)

    model_config = {"populate_by_name": True}

    @classmethod
    def from_payload(cls, data: dict[str, Any], success: bool | None = None) -> "ExecutionResult":
        """Map an execution API payload into a result.

        Args:
            data: Parsed JSON body of the execute endpoint
            success: Force the success flag (used for non-2xx responses)
        """
        metadata = data.get("metadata") or {}
        error = data.get("error")
        if success is False and not error:
            error = "Execution failed"
        return cls(
            success=bool(data.get("success")) if success is None else success,
            output=data.get("output") or {"response": {}},
            error=error,
            logs=data.get("logs") or [],
            metadata=ExecutionMetadata(
                start_time=metadata.get("startTime"),
                end_time=metadata.get("endTime"),
                duration=metadata.get("duration"),
            ),
        )

    def to_payload(self) -> dict[str, Any]:
        """Serialize using the API's camelCase field names."""
        return self.model_dump(mode="json", by_alias=True)


def utc_now_iso() -> str:
    """Current UTC time as an ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
