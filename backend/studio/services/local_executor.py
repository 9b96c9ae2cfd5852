"""Local (in-process) execution of workflow graphs."""

from __future__ import annotations

import logging
import time
from collections import deque
from typing import Any

import httpx

from studio.config import get_settings
from studio.llm.client import ModelProvider
from studio.models.block import Block
from studio.models.execution import (
    ExecutionMetadata,
    ExecutionOutput,
    ExecutionResult,
    LogEntry,
    utc_now_iso,
)
from studio.models.workflow import Workflow
from studio.services.block_handlers import (
    BlockExecutionError,
    BlockHandlerRegistry,
    ExecutionContext,
)
from studio.services.graph_resolver import GraphResolver, merge_inputs

logger = logging.getLogger(__name__)


class LoopLimitExceeded(Exception):
    """A loop back-edge was traversed more often than allowed."""

    pass


class LocalExecutor:
    """Executes a workflow in-process, one block at a time.

    Planning and execution are interleaved: a FIFO frontier holds blocks that
    received input, and a queued block is only picked once none of its
    forward ancestors is still queued, so joins see every live upstream
    output. Each invocation appends one LogEntry, including repeated
    invocations inside loops. The final response is the output of the last
    block that ran.

    Example:
        executor = LocalExecutor()
        result = await executor.run(workflow, {"a": 5, "b": 7})
        if not result.success:
            failed = [log for log in result.logs if not log.success]
    """

    def __init__(
        self,
        model_provider: ModelProvider | None = None,
        http_client: httpx.AsyncClient | None = None,
        max_loop_iterations: int | None = None,
    ) -> None:
        self.model_provider = model_provider
        self.http_client = http_client
        self.max_loop_iterations = (
            max_loop_iterations
            if max_loop_iterations is not None
            else get_settings().max_loop_iterations
        )

    async def run(self, workflow: Workflow, input: dict[str, Any] | None = None) -> ExecutionResult:
        """Execute a workflow definition against an input.

        Raises:
            WorkflowValidationError: If the graph is malformed
        """
        resolver = GraphResolver(workflow, max_loop_iterations=self.max_loop_iterations)
        context = ExecutionContext(
            resolver=resolver,
            model_provider=self.model_provider,
            http_client=self.http_client,
        )

        start_time = utc_now_iso()
        started = time.perf_counter()
        logs: list[LogEntry] = []
        final_output: Any = {}
        error: str | None = None

        queue: deque[str] = deque([resolver.starter.id])
        deliveries: dict[str, list[tuple[int, str, Any]]] = {}
        traversals: dict[int, int] = {}

        while queue:
            block_id = self._next_ready(queue, resolver)
            block = resolver.blocks[block_id]

            if block_id == resolver.starter.id:
                block_input: Any = input or {}
            else:
                block_input = merge_inputs(deliveries.pop(block_id, []))

            entry, outcome = await self._invoke(block, block_input, context)
            logs.append(entry)
            if outcome is None:
                error = f"Block '{block.name or block.id}' failed: {entry.error}"
                break

            final_output = outcome.output
            try:
                targets = self._activate(block, outcome.route, resolver, traversals)
            except LoopLimitExceeded as e:
                error = str(e)
                break

            for index in targets:
                target = resolver.connections[index].target
                deliveries.setdefault(target, []).append((index, block.id, outcome.output))
                if target not in queue:
                    queue.append(target)

        duration_ms = round((time.perf_counter() - started) * 1000, 3)
        success = error is None
        if success:
            logger.info(
                f"Workflow '{workflow.name}' completed: {len(logs)} block runs in {duration_ms}ms"
            )
        else:
            logger.warning(f"Workflow '{workflow.name}' failed: {error}")

        return ExecutionResult(
            success=success,
            output=ExecutionOutput(response=final_output if success else {}),
            error=error,
            logs=logs,
            metadata=ExecutionMetadata(
                start_time=start_time,
                end_time=utc_now_iso(),
                duration=duration_ms,
            ),
        )

    @staticmethod
    def _next_ready(queue: deque[str], resolver: GraphResolver) -> str:
        """Pop the first queued block none of whose forward ancestors is queued."""
        queued = set(queue)
        for block_id in queue:
            if not (resolver.forward_ancestors(block_id) & (queued - {block_id})):
                queue.remove(block_id)
                return block_id
        return queue.popleft()

    async def _invoke(
        self, block: Block, block_input: Any, context: ExecutionContext
    ) -> tuple[LogEntry, Any]:
        """Run one block and build its log entry.

        Returns:
            Tuple of (log entry, BlockOutcome or None on failure)
        """
        started_at = utc_now_iso()
        started = time.perf_counter()
        outcome = None
        error: str | None = None

        try:
            handler = BlockHandlerRegistry.create(block.type)
            outcome = await handler.execute(block, block_input, context)
        except BlockExecutionError as e:
            error = str(e)
        except Exception as e:
            logger.exception(f"Unexpected error in block {block.id}")
            error = f"{type(e).__name__}: {e}"

        return (
            LogEntry(
                block_id=block.id,
                block_name=block.name,
                block_type=block.type.value,
                started_at=started_at,
                ended_at=utc_now_iso(),
                duration_ms=round((time.perf_counter() - started) * 1000, 3),
                success=outcome is not None,
                error=error,
                output=outcome.output if outcome is not None else None,
            ),
            outcome,
        )

    @staticmethod
    def _activate(
        block: Block,
        route: str | None,
        resolver: GraphResolver,
        traversals: dict[int, int],
    ) -> list[int]:
        """Connections to follow after a block, enforcing loop bounds."""
        targets = []
        for index in resolver.next_connections(block, route):
            if resolver.is_back_edge(index):
                limit = resolver.iteration_limit(index)
                count = traversals.get(index, 0)
                if count >= limit:
                    if resolver.loop_for_edge(index) is not None:
                        # Declared loop finished its iterations
                        continue
                    raise LoopLimitExceeded(
                        f"Maximum loop iterations ({limit}) exceeded at block "
                        f"'{block.name or block.id}'"
                    )
                traversals[index] = count + 1
            targets.append(index)
        return targets
