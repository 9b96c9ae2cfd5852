"""Remote execution of workflows through the studio API."""

import logging
import uuid
from typing import Any

import httpx

from studio.client.base import BaseApiClient
from studio.config import DEFAULT_BASE_URL, DEFAULT_TIMEOUT_SECONDS
from studio.errors import ApiError
from studio.models.execution import ExecutionResult
from studio.models.workflow import Workflow

logger = logging.getLogger(__name__)


def workflow_payload(workflow: Workflow) -> dict[str, Any]:
    """Body used to create or update a workflow."""
    return {
        "name": workflow.name,
        "description": workflow.description,
        "state": workflow.to_state(),
        "metadata": workflow.metadata,
    }


class Executor(BaseApiClient):
    """Runs workflows on the server instead of locally.

    Example:
        executor = Executor(api_key="sk-...", base_url="https://studio.example.com")
        result = await executor.execute("wf-123", {"text": "hello"})
        if not result.success:
            print(result.error)
    """

    def __init__(
        self,
        api_key: str,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("API key is required for workflow execution")
        super().__init__(
            api_key=api_key,
            base_url=base_url or DEFAULT_BASE_URL,
            timeout=timeout or DEFAULT_TIMEOUT_SECONDS,
            transport=transport,
        )

    async def execute(
        self, workflow_id: str, input: dict[str, Any] | None = None
    ) -> ExecutionResult:
        """Execute a saved workflow by ID.

        A non-2xx response that still carries an execution payload (an
        ``output`` key) is returned as a failed result, not raised.

        Raises:
            ApiError: For non-2xx responses without an execution payload
            TransportError: On network failure or timeout
        """
        response = await self._request(
            "POST",
            f"/api/workflow/{workflow_id}/execute",
            "Failed to execute workflow",
            json=input or {},
        )
        data = self._read_json(response)

        if not response.is_success:
            if isinstance(data, dict) and "output" in data:
                logger.info(
                    f"Workflow {workflow_id} failed with status {response.status_code}; "
                    "returning partial execution result"
                )
                return ExecutionResult.from_payload(data, success=False)
            raise ApiError(
                f"API error: {response.status_code} {response.reason_phrase}",
                status=response.status_code,
                body=data if data is not None else {},
            )

        if not isinstance(data, dict):
            raise ApiError(
                "Failed to execute workflow: malformed response body",
                status=response.status_code,
                body=response.text,
            )
        return ExecutionResult.from_payload(data)

    async def save(self, workflow: Workflow) -> dict[str, Any]:
        """Create the workflow (no ID) or update it in place (ID set).

        Returns:
            The saved workflow record as returned by the server
        """
        if workflow.id:
            response = await self._request(
                "PUT",
                f"/api/workflow/{workflow.id}",
                "Failed to update workflow",
                json=workflow_payload(workflow),
            )
            data = self._check_response(response, "Failed to update workflow")
        else:
            response = await self._request(
                "POST",
                "/api/workflows",
                "Failed to create workflow",
                json=workflow_payload(workflow),
            )
            data = self._check_response(response, "Failed to create workflow")
        return (data or {}).get("workflow") or {}

    async def execute_workflow(
        self, workflow: Workflow, input: dict[str, Any] | None = None
    ) -> ExecutionResult:
        """Save a workflow definition, then execute it once.

        Execution uses the ID returned by the save, falling back to the
        workflow's own ID (or a fresh one when it has none).

        Raises:
            ApiError: If the save or the execution is rejected
            TransportError: On network failure or timeout
        """
        saved = await self.save(workflow)
        workflow_id = saved.get("id") or workflow.id or str(uuid.uuid4())
        logger.debug(f"Saved workflow '{workflow.name}' as {workflow_id}")
        return await self.execute(workflow_id, input)
