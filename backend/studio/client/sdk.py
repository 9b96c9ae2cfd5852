"""High-level client for the studio API: workflows, deployments, schedules, usage."""

import logging
import os
from typing import Any

import httpx

from studio.client.base import BaseApiClient
from studio.client.executor import Executor, workflow_payload
from studio.config import DEFAULT_BASE_URL, DEFAULT_TIMEOUT_SECONDS
from studio.errors import ApiError
from studio.models.execution import ExecutionResult
from studio.models.run import UsageSnapshot
from studio.models.workflow import Workflow
from studio.workflows.builder import WorkflowBuilder

logger = logging.getLogger(__name__)


class StudioClient(BaseApiClient):
    """Client for managing and running workflows on a studio deployment.

    Defaults come from ``STUDIO_API_KEY`` and ``STUDIO_API_URL``. Errors are
    raised as ApiError ("<server message> (Status: <code>)") or TransportError.

    Example:
        client = StudioClient(api_key="sk-...")
        builder = client.create_workflow("Greeter")
        saved = await client.save_workflow(builder.build())
        await client.deploy_workflow(saved.id)
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(
            api_key=api_key if api_key is not None else os.getenv("STUDIO_API_KEY", ""),
            base_url=base_url or os.getenv("STUDIO_API_URL") or DEFAULT_BASE_URL,
            timeout=timeout or DEFAULT_TIMEOUT_SECONDS,
            transport=transport,
        )

    # =========================================================================
    # Workflows
    # =========================================================================

    def create_workflow(self, name: str, description: str | None = None) -> WorkflowBuilder:
        """Start a new workflow builder."""
        return WorkflowBuilder(name, description)

    async def get_workflow(self, workflow_id: str) -> Workflow:
        operation = "Failed to retrieve workflow"
        response = await self._request("GET", f"/api/workflow/{workflow_id}", operation)
        data = self._check_response(response, operation) or {}
        return Workflow.from_api(data.get("workflow") or {})

    async def list_workflows(self, limit: int | None = None, offset: int | None = None) -> list[Workflow]:
        """List workflows, optionally paginated."""
        operation = "Failed to list workflows"
        params: dict[str, Any] = {}
        if limit:
            params["limit"] = limit
        if offset:
            params["offset"] = offset
        response = await self._request(
            "GET", "/api/workflows", operation, params=params or None
        )
        data = self._check_response(response, operation) or {}
        return [Workflow.from_api(w) for w in data.get("workflows") or []]

    async def save_workflow(self, workflow: Workflow) -> Workflow:
        """Create or update a workflow and return the stored version.

        A workflow without an ID is created; one with an ID is updated in place.
        """
        if workflow.id:
            operation = "Failed to update workflow"
            response = await self._request(
                "PUT", f"/api/workflow/{workflow.id}", operation, json=workflow_payload(workflow)
            )
        else:
            operation = "Failed to create workflow"
            response = await self._request(
                "POST", "/api/workflows", operation, json=workflow_payload(workflow)
            )
        data = self._check_response(response, operation) or {}
        saved = data.get("workflow")
        if not isinstance(saved, dict):
            raise ApiError(
                f"{operation}: response has no workflow", status=response.status_code, body=data
            )
        return Workflow.from_api(saved)

    async def delete_workflow(self, workflow_id: str) -> None:
        operation = "Failed to delete workflow"
        response = await self._request("DELETE", f"/api/workflow/{workflow_id}", operation)
        self._check_response(response, operation)

    # =========================================================================
    # Execution
    # =========================================================================

    def get_executor(self) -> Executor:
        """Executor sharing this client's credentials and transport.

        Raises:
            ValueError: If no API key is configured
        """
        return Executor(
            api_key=self.api_key,
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
        )

    async def execute(self, workflow_id: str, input: dict[str, Any] | None = None) -> ExecutionResult:
        return await self.get_executor().execute(workflow_id, input)

    async def execute_workflow(
        self, workflow: Workflow, input: dict[str, Any] | None = None
    ) -> ExecutionResult:
        return await self.get_executor().execute_workflow(workflow, input)

    # =========================================================================
    # Deployments and schedules
    # =========================================================================

    async def deploy_workflow(
        self, workflow_id: str, options: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """Deploy a workflow as an API endpoint.

        Args:
            workflow_id: Workflow to deploy
            options: Deployment options (e.g. ``{"isPublic": True}``)
        """
        operation = "Failed to deploy workflow"
        response = await self._request(
            "POST", f"/api/workflow/{workflow_id}/deploy", operation, json=options or {}
        )
        return self._check_response(response, operation) or {}

    async def get_deployment(self, workflow_id: str) -> dict[str, Any]:
        operation = "Failed to get deployment"
        response = await self._request("GET", f"/api/workflow/{workflow_id}/deployment", operation)
        return self._check_response(response, operation) or {}

    async def undeploy_workflow(self, workflow_id: str) -> None:
        operation = "Failed to undeploy workflow"
        response = await self._request(
            "DELETE", f"/api/workflow/{workflow_id}/deployment", operation
        )
        self._check_response(response, operation)

    async def schedule_workflow(self, workflow_id: str, options: dict[str, Any]) -> dict[str, Any]:
        """Schedule recurring runs.

        Args:
            workflow_id: Workflow to schedule
            options: Schedule options (e.g. ``{"cron": "0 9 * * *", "timezone": "UTC"}``)
        """
        operation = "Failed to schedule workflow"
        response = await self._request(
            "POST", f"/api/workflow/{workflow_id}/schedule", operation, json=options
        )
        return self._check_response(response, operation) or {}

    async def get_schedule(self, schedule_id: str) -> dict[str, Any]:
        operation = "Failed to get schedule"
        response = await self._request("GET", f"/api/schedules/{schedule_id}", operation)
        return self._check_response(response, operation) or {}

    async def list_schedules(self, workflow_id: str) -> list[dict[str, Any]]:
        operation = "Failed to list schedules"
        response = await self._request("GET", f"/api/workflow/{workflow_id}/schedules", operation)
        data = self._check_response(response, operation) or {}
        return data.get("schedules") or []

    async def delete_schedule(self, schedule_id: str) -> None:
        operation = "Failed to delete schedule"
        response = await self._request("DELETE", f"/api/schedules/{schedule_id}", operation)
        self._check_response(response, operation)

    # =========================================================================
    # Usage and run statistics
    # =========================================================================

    async def get_usage(self) -> UsageSnapshot:
        """Current usage against the account's execution quota."""
        operation = "Failed to fetch usage"
        response = await self._request("GET", "/api/user/usage", operation)
        data = self._check_response(response, operation) or {}
        return UsageSnapshot.model_validate(data)

    async def record_run_stats(self, workflow_id: str, runs: int) -> None:
        """Report how many runs a batch completed."""
        operation = "Failed to record run statistics"
        response = await self._request(
            "POST", f"/api/workflows/{workflow_id}/stats", operation, params={"runs": runs}
        )
        self._check_response(response, operation)
