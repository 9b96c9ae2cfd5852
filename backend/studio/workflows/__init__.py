"""Workflow graph construction."""

from studio.workflows.builder import WorkflowBuilder, validate_workflow

__all__ = ["WorkflowBuilder", "validate_workflow"]
