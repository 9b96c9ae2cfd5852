"""In-process workflow execution routes."""

import logging
import os
from typing import Any

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from studio.errors import WorkflowValidationError
from studio.llm.client import AnthropicModelProvider, ModelProvider
from studio.models.response import resolve_content
from studio.models.workflow import Workflow
from studio.services.local_executor import LocalExecutor

logger = logging.getLogger(__name__)

router = APIRouter()


class LocalExecuteRequest(BaseModel):
    """Request body for executing a workflow definition in-process."""

    workflow: Workflow
    input: dict[str, Any] | None = Field(default=None)


# Global executor instance
_executor: LocalExecutor | None = None


def _default_model_provider() -> ModelProvider | None:
    if not os.getenv("ANTHROPIC_API_KEY"):
        return None
    return AnthropicModelProvider()


def get_local_executor() -> LocalExecutor:
    """Get or create the local executor."""
    global _executor
    if _executor is None:
        _executor = LocalExecutor(model_provider=_default_model_provider())
    return _executor


@router.post("/api/workflows/execute-local")
async def execute_local(request: LocalExecuteRequest) -> dict[str, Any]:
    """Execute a workflow definition without saving it.

    The response is the execution result plus ``content``, the final output
    classified for display (text, json or empty).
    """
    try:
        result = await get_local_executor().run(request.workflow, request.input)
    except WorkflowValidationError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    payload = result.to_payload()
    payload["content"] = resolve_content(result.output.response).model_dump(mode="json")
    return payload
