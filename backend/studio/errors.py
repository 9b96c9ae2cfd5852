"""Exception hierarchy for the studio workflow core."""

from typing import Any


class StudioError(Exception):
    """Base exception for studio errors."""

    pass


class WorkflowValidationError(StudioError):
    """The workflow graph is malformed (raised while building, never while running)."""

    def __init__(self, message: str, block_id: str | None = None):
        super().__init__(message)
        self.block_id = block_id


class DuplicateBlockIdError(WorkflowValidationError):
    """A block with the same ID is already registered."""

    pass


class UnknownBlockError(WorkflowValidationError):
    """A connection or loop references a block that does not exist."""

    pass


class NoStarterBlockError(WorkflowValidationError):
    """The workflow has no starter block."""

    pass


class TransportError(StudioError):
    """The request never produced an HTTP response (network failure or timeout)."""

    def __init__(self, message: str, timed_out: bool = False):
        super().__init__(message)
        self.timed_out = timed_out


class ApiError(StudioError):
    """The server answered with a non-2xx status and no execution payload."""

    def __init__(self, message: str, status: int, body: Any = None):
        super().__init__(message)
        self.status = status
        self.body = body if body is not None else {}
