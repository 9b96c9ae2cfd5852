"""Studio workflow core: block graphs, execution, batch runs and polling triggers."""

from studio.client import Executor, StudioClient
from studio.models import ExecutionResult, Workflow
from studio.workflows import WorkflowBuilder

__all__ = ["Executor", "ExecutionResult", "StudioClient", "Workflow", "WorkflowBuilder"]
