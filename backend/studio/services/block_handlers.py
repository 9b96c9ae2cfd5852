"""Block handlers: how each block type turns its input into an output.

Handlers are registered per block type in BlockHandlerRegistry. The local
executor looks up the handler for every block it invokes.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar

import httpx

from studio.llm.client import ModelProvider, parse_json_text
from studio.models.block import Block, BlockType
from studio.services.expressions import (
    ExpressionError,
    evaluate_condition,
    render_template,
    render_value,
    run_function_code,
)

if TYPE_CHECKING:
    from studio.services.graph_resolver import GraphResolver

logger = logging.getLogger(__name__)


class BlockExecutionError(Exception):
    """A block could not produce an output."""

    def __init__(self, message: str, block_id: str | None = None):
        super().__init__(message)
        self.block_id = block_id


@dataclass
class BlockOutcome:
    """Output of a block plus its routing decision.

    ``route`` is the selected source handle for condition blocks and the selected
    target block ID for router blocks; other blocks leave it unset.
    """

    output: Any
    route: str | None = None


@dataclass
class ExecutionContext:
    """Collaborators available to handlers during one execution."""

    resolver: GraphResolver
    model_provider: ModelProvider | None = None
    http_client: httpx.AsyncClient | None = None

    def require_model_provider(self, block: Block) -> ModelProvider:
        if self.model_provider is None:
            raise BlockExecutionError(
                f"No model provider configured for {block.type.value} block "
                f"'{block.name or block.id}'",
                block_id=block.id,
            )
        return self.model_provider


class BlockHandler(ABC):
    """Abstract base class for block handlers."""

    block_type: ClassVar[BlockType]

    @abstractmethod
    async def execute(
        self, block: Block, input_data: Any, context: ExecutionContext
    ) -> BlockOutcome:
        """Run the block against its (merged) input.

        Raises:
            BlockExecutionError: If the block fails
        """
        pass


class BlockHandlerRegistry:
    """Registry of handlers keyed by block type."""

    _handlers: dict[BlockType, type[BlockHandler]] = {}

    @classmethod
    def register(cls, handler_class: type[BlockHandler]) -> type[BlockHandler]:
        """Register a handler class (usable as a decorator)."""
        cls._handlers[handler_class.block_type] = handler_class
        return handler_class

    @classmethod
    def get(cls, block_type: BlockType) -> type[BlockHandler] | None:
        return cls._handlers.get(block_type)

    @classmethod
    def create(cls, block_type: BlockType) -> BlockHandler:
        handler_class = cls._handlers.get(block_type)
        if handler_class is None:
            raise BlockExecutionError(f"No handler registered for block type '{block_type.value}'")
        return handler_class()


@BlockHandlerRegistry.register
class StarterHandler(BlockHandler):
    """Passes the workflow input through."""

    block_type: ClassVar[BlockType] = BlockType.STARTER

    async def execute(self, block: Block, input_data: Any, context: ExecutionContext) -> BlockOutcome:
        return BlockOutcome(output=input_data)


@BlockHandlerRegistry.register
class FunctionHandler(BlockHandler):
    """Runs the block's Python code with ``input`` bound to its input."""

    block_type: ClassVar[BlockType] = BlockType.FUNCTION

    async def execute(self, block: Block, input_data: Any, context: ExecutionContext) -> BlockOutcome:
        code = block.data.get("code")
        if not code:
            raise BlockExecutionError(
                f"Function block '{block.name or block.id}' has no code", block_id=block.id
            )
        try:
            result, stdout = run_function_code(code, input_data)
        except ExpressionError as e:
            raise BlockExecutionError(str(e), block_id=block.id) from e
        if stdout:
            logger.debug(f"Function block {block.id} stdout: {stdout[:500]}")
        return BlockOutcome(output=result)


@BlockHandlerRegistry.register
class ConditionHandler(BlockHandler):
    """Selects the first condition that evaluates true.

    The input passes through unchanged so the chosen branch sees the same data.
    When no condition is true no branch is selected and the path ends.
    """

    block_type: ClassVar[BlockType] = BlockType.CONDITION

    async def execute(self, block: Block, input_data: Any, context: ExecutionContext) -> BlockOutcome:
        for condition in block.conditions:
            try:
                matched = evaluate_condition(condition.expression, input_data)
            except ExpressionError as e:
                raise BlockExecutionError(str(e), block_id=block.id) from e
            if matched:
                return BlockOutcome(output=input_data, route=condition.handle)
        logger.debug(f"Condition block {block.id}: no condition matched, branch ends")
        return BlockOutcome(output=input_data, route=None)


@BlockHandlerRegistry.register
class AgentHandler(BlockHandler):
    """Sends the rendered prompt to the configured model."""

    block_type: ClassVar[BlockType] = BlockType.AGENT

    async def execute(self, block: Block, input_data: Any, context: ExecutionContext) -> BlockOutcome:
        provider = context.require_model_provider(block)
        prompt = render_template(block.data.get("prompt", ""), input_data)
        system_prompt = block.data.get("systemPrompt")
        if system_prompt:
            system_prompt = render_template(system_prompt, input_data)

        response = await provider.complete(
            model=block.data.get("model", ""),
            prompt=prompt,
            system_prompt=system_prompt,
            temperature=float(block.data.get("temperature", 0.7)),
        )
        return BlockOutcome(
            output={
                "content": response.content,
                "model": response.model,
                "tokens": response.tokens,
            }
        )


ROUTER_INSTRUCTIONS = """{prompt}

Choose exactly one of the following destinations:
{destinations}

Respond with ONLY the destination id, nothing else."""


@BlockHandlerRegistry.register
class RouterHandler(BlockHandler):
    """Asks the model to choose one of the block's downstream blocks."""

    block_type: ClassVar[BlockType] = BlockType.ROUTER

    async def execute(self, block: Block, input_data: Any, context: ExecutionContext) -> BlockOutcome:
        provider = context.require_model_provider(block)
        candidates = context.resolver.downstream_blocks(block.id)
        if not candidates:
            raise BlockExecutionError(
                f"Router block '{block.name or block.id}' has no destinations",
                block_id=block.id,
            )

        destinations = "\n".join(
            f"- id: {c.id} (name: {c.name or c.type.value})" for c in candidates
        )
        prompt = ROUTER_INSTRUCTIONS.format(
            prompt=render_template(block.data.get("prompt", ""), input_data),
            destinations=destinations,
        )
        response = await provider.complete(
            model=block.data.get("model", ""), prompt=prompt, temperature=0.0
        )

        choice = response.content.strip().strip("`'\"").strip()
        selected = next(
            (c for c in candidates if c.id == choice or (c.name and c.name.lower() == choice.lower())),
            None,
        )
        if selected is None:
            raise BlockExecutionError(
                f"Router block '{block.name or block.id}' chose unknown destination '{choice}'",
                block_id=block.id,
            )

        return BlockOutcome(
            output={
                "content": response.content,
                "model": response.model,
                "tokens": response.tokens,
                "selectedPath": {
                    "blockId": selected.id,
                    "blockType": selected.type.value,
                    "blockTitle": selected.name,
                },
            },
            route=selected.id,
        )


@BlockHandlerRegistry.register
class ApiHandler(BlockHandler):
    """Performs the configured HTTP request."""

    block_type: ClassVar[BlockType] = BlockType.API

    async def execute(self, block: Block, input_data: Any, context: ExecutionContext) -> BlockOutcome:
        url = render_template(block.data.get("url", ""), input_data)
        if not url:
            raise BlockExecutionError(
                f"API block '{block.name or block.id}' has no URL", block_id=block.id
            )
        method = block.data.get("method", "GET").upper()
        headers = render_value(block.data.get("headers") or {}, input_data)
        params = render_value(block.data.get("params") or {}, input_data)
        body = render_value(block.data.get("body"), input_data)

        request_kwargs: dict[str, Any] = {"headers": headers, "params": params}
        if body is not None and method not in ("GET", "HEAD"):
            if isinstance(body, (dict, list)):
                request_kwargs["json"] = body
            else:
                request_kwargs["content"] = str(body)

        try:
            if context.http_client is not None:
                response = await context.http_client.request(method, url, **request_kwargs)
            else:
                async with httpx.AsyncClient(timeout=30.0) as client:
                    response = await client.request(method, url, **request_kwargs)
        except httpx.HTTPError as e:
            raise BlockExecutionError(f"Request to {url} failed: {e}", block_id=block.id) from e

        try:
            data: Any = response.json()
        except (json.JSONDecodeError, ValueError):
            data = response.text

        if not response.is_success:
            raise BlockExecutionError(
                f"API request failed with status {response.status_code}", block_id=block.id
            )
        return BlockOutcome(
            output={
                "data": data,
                "status": response.status_code,
                "headers": dict(response.headers),
            }
        )


EVALUATOR_INSTRUCTIONS = """Evaluate the content below against each metric.

Metrics:
{metrics}

Content:
{content}

Return ONLY a JSON object mapping each metric name to a numeric score within its range."""


@BlockHandlerRegistry.register
class EvaluatorHandler(BlockHandler):
    """Scores content against named metrics using the model."""

    block_type: ClassVar[BlockType] = BlockType.EVALUATOR

    async def execute(self, block: Block, input_data: Any, context: ExecutionContext) -> BlockOutcome:
        provider = context.require_model_provider(block)
        metrics = block.data.get("metrics") or []
        if not metrics:
            raise BlockExecutionError(
                f"Evaluator block '{block.name or block.id}' has no metrics", block_id=block.id
            )

        content_template = block.data.get("content") or "{{input}}"
        if content_template.strip() == "{{input}}":
            content = input_data if isinstance(input_data, str) else json.dumps(input_data)
        else:
            content = render_template(content_template, input_data)

        metric_lines = []
        for metric in metrics:
            bounds = metric.get("range") or {}
            metric_lines.append(
                f"- {metric['name']}: {metric.get('description', '')} "
                f"(range {bounds.get('min', 0)}-{bounds.get('max', 10)})"
            )
        prompt = EVALUATOR_INSTRUCTIONS.format(metrics="\n".join(metric_lines), content=content)

        response = await provider.complete(
            model=block.data.get("model", ""), prompt=prompt, temperature=0.0
        )
        try:
            scores = parse_json_text(response.content)
        except ValueError as e:
            raise BlockExecutionError(str(e), block_id=block.id) from e
        if not isinstance(scores, dict):
            raise BlockExecutionError(
                "Evaluator response was not a JSON object", block_id=block.id
            )

        output: dict[str, Any] = {
            "content": content,
            "model": response.model,
            "tokens": response.tokens,
        }
        for metric in metrics:
            name = metric["name"]
            output[name.lower()] = scores.get(name, scores.get(name.lower()))
        return BlockOutcome(output=output)
