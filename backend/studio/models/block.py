"""Pydantic models for workflow blocks (the typed units of work)."""

import copy
import uuid
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class BlockType(str, Enum):
    """Supported block types."""

    STARTER = "starter"
    AGENT = "agent"
    FUNCTION = "function"
    CONDITION = "condition"
    ROUTER = "router"
    API = "api"
    EVALUATOR = "evaluator"


# Output paths each block type exposes to downstream blocks
DEFAULT_OUTPUTS: dict[BlockType, dict[str, Any]] = {
    BlockType.STARTER: {"input": "any"},
    BlockType.AGENT: {
        "response": {"content": "string", "model": "string", "tokens": "any"}
    },
    BlockType.FUNCTION: {"response": "any"},
    BlockType.CONDITION: {"response": "any"},
    BlockType.ROUTER: {
        "response": {
            "content": "string",
            "model": "string",
            "tokens": "any",
            "selectedPath": "json",
        }
    },
    BlockType.API: {"response": {"data": "any", "status": "number", "headers": "json"}},
    BlockType.EVALUATOR: {
        "response": {"content": "string", "model": "string", "tokens": "any"}
    },
}

CONDITION_HANDLE_PREFIX = "condition-"


class Condition(BaseModel):
    """One ordered branch of a condition block."""

    id: str
    expression: str

    @property
    def handle(self) -> str:
        """The source handle an edge must carry to follow this branch."""
        return f"{CONDITION_HANDLE_PREFIX}{self.id}"


class Block(BaseModel):
    """A block in a workflow graph.

    Identity is fixed at creation; ``name`` and ``data`` may still be changed
    while the graph is being built.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    type: BlockType
    name: str = ""
    data: dict[str, Any] = Field(default_factory=dict)
    outputs: dict[str, Any] | None = None

    def set_name(self, name: str) -> "Block":
        """Rename the block (returns self for chaining)."""
        self.name = name
        return self

    @property
    def conditions(self) -> list[Condition]:
        """Conditions of a condition block, in declaration order."""
        if self.type != BlockType.CONDITION:
            return []
        return [Condition.model_validate(c) for c in self.data.get("conditions", [])]


def _make_block(block_type: BlockType, name: str, data: dict[str, Any], block_id: str | None) -> Block:
    kwargs: dict[str, Any] = {
        "type": block_type,
        "name": name,
        "data": data,
        "outputs": copy.deepcopy(DEFAULT_OUTPUTS[block_type]),
    }
    if block_id:
        kwargs["id"] = block_id
    return Block(**kwargs)


def starter_block(block_id: str | None = None) -> Block:
    """Create the entry point block of a workflow."""
    return _make_block(BlockType.STARTER, "Starter", {}, block_id)


def function_block(code: str, name: str = "Function", block_id: str | None = None) -> Block:
    """Create a block that runs Python code against its input.

    The code is the body of a function taking ``input`` and should ``return``
    the block output.
    """
    return _make_block(BlockType.FUNCTION, name, {"code": code}, block_id)


def condition_block(
    conditions: list[Condition | dict[str, str]],
    name: str = "Condition",
    block_id: str | None = None,
) -> Block:
    """Create a block that routes to the first condition evaluating true."""
    normalized = [
        c.model_dump() if isinstance(c, Condition) else Condition.model_validate(c).model_dump()
        for c in conditions
    ]
    return _make_block(BlockType.CONDITION, name, {"conditions": normalized}, block_id)


def agent_block(
    model: str,
    prompt: str,
    system_prompt: str | None = None,
    temperature: float = 0.7,
    name: str = "Agent",
    block_id: str | None = None,
) -> Block:
    """Create a block that sends a templated prompt to a language model."""
    data: dict[str, Any] = {"model": model, "prompt": prompt, "temperature": temperature}
    if system_prompt:
        data["systemPrompt"] = system_prompt
    return _make_block(BlockType.AGENT, name, data, block_id)


def router_block(
    model: str,
    prompt: str,
    name: str = "Router",
    block_id: str | None = None,
) -> Block:
    """Create a block that asks a model to pick one of its downstream blocks."""
    return _make_block(BlockType.ROUTER, name, {"model": model, "prompt": prompt}, block_id)


def api_block(
    url: str,
    method: str = "GET",
    headers: dict[str, str] | None = None,
    body: Any = None,
    params: dict[str, str] | None = None,
    name: str = "API",
    block_id: str | None = None,
) -> Block:
    """Create a block that performs an HTTP request."""
    data: dict[str, Any] = {
        "url": url,
        "method": method.upper(),
        "headers": headers or {},
        "params": params or {},
    }
    if body is not None:
        data["body"] = body
    return _make_block(BlockType.API, name, data, block_id)


def evaluator_block(
    model: str,
    metrics: list[dict[str, Any]],
    content: str = "{{input}}",
    name: str = "Evaluator",
    block_id: str | None = None,
) -> Block:
    """Create a block that scores content against named metrics with a model.

    Each metric is ``{"name", "description", "range": {"min", "max"}}``.
    """
    return _make_block(
        BlockType.EVALUATOR,
        name,
        {"model": model, "metrics": metrics, "content": content},
        block_id,
    )
