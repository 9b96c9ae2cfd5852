"""Graph resolution for workflow execution.

This module provides:
- GraphResolver: indexes a workflow graph, classifies loop back-edges and
  decides which outgoing connections a block activates
- merge_inputs: the merge policy for blocks with several upstream blocks
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any

from studio.config import DEFAULT_MAX_LOOP_ITERATIONS
from studio.errors import WorkflowValidationError
from studio.models.block import Block, BlockType
from studio.models.workflow import Connection, LoopConfig, Workflow
from studio.workflows.builder import validate_workflow

logger = logging.getLogger(__name__)

# Block types whose routing decision can end a cycle
_BRANCHING_TYPES = {BlockType.CONDITION, BlockType.ROUTER}


class GraphResolver:
    """Resolves execution order over a workflow graph.

    Connections are addressed by their index in ``workflow.connections`` so that
    declaration order is preserved everywhere. Back-edges (connections closing a
    cycle) are found by depth-first search from the starter block. A cycle is
    accepted only if it is a declared loop or if it passes through a condition
    or router block, which is what eventually breaks it.

    Example:
        resolver = GraphResolver(workflow)
        for index in resolver.next_connections(block, route="condition-even"):
            target = resolver.connections[index].target
    """

    def __init__(
        self,
        workflow: Workflow,
        max_loop_iterations: int = DEFAULT_MAX_LOOP_ITERATIONS,
    ) -> None:
        validate_workflow(workflow)
        self.workflow = workflow
        self.max_loop_iterations = max_loop_iterations
        self.connections: list[Connection] = list(workflow.connections)
        self.blocks: dict[str, Block] = {b.id: b for b in workflow.blocks}
        self.starter: Block = workflow.starter_blocks[0]

        self._outgoing: dict[str, list[int]] = defaultdict(list)
        for index, conn in enumerate(self.connections):
            self._outgoing[conn.source].append(index)

        self.back_edges: dict[int, list[str]] = self._find_back_edges()
        self._edge_loops: dict[int, LoopConfig] = self._match_declared_loops()
        self._validate_cycles()
        self._ancestors = self._compute_forward_ancestors()

        unreachable = set(self.blocks) - self.reachable
        if unreachable:
            logger.warning(
                f"Workflow '{workflow.name}' has {len(unreachable)} block(s) "
                f"unreachable from the starter: {sorted(unreachable)}"
            )

    # =========================================================================
    # Graph queries
    # =========================================================================

    def outgoing(self, block_id: str) -> list[int]:
        """Indexes of connections leaving a block, in declaration order."""
        return list(self._outgoing.get(block_id, []))

    def downstream_blocks(self, block_id: str) -> list[Block]:
        """Distinct target blocks of a block's outgoing connections."""
        seen: list[str] = []
        for index in self.outgoing(block_id):
            target = self.connections[index].target
            if target not in seen:
                seen.append(target)
        return [self.blocks[t] for t in seen]

    def is_back_edge(self, index: int) -> bool:
        return index in self.back_edges

    def loop_for_edge(self, index: int) -> LoopConfig | None:
        """The declared loop a back-edge belongs to, if any."""
        return self._edge_loops.get(index)

    def iteration_limit(self, index: int) -> int:
        """How many times a back-edge may be traversed in one execution.

        A declared loop of ``n`` iterations re-enters its body ``n - 1`` times;
        undeclared condition loops get the global bound.
        """
        loop = self._edge_loops.get(index)
        if loop is not None:
            return loop.iterations - 1
        return self.max_loop_iterations

    def forward_ancestors(self, block_id: str) -> set[str]:
        """Blocks that reach ``block_id`` without following a back-edge."""
        return self._ancestors.get(block_id, set())

    def next_connections(self, block: Block, route: str | None = None) -> list[int]:
        """Connections activated after ``block`` ran.

        Args:
            block: The block that just completed
            route: For condition blocks, the selected source handle; for router
                blocks, the selected target block ID. ``None`` on a condition or
                router block means no branch was selected (a dead branch).

        Returns:
            Connection indexes to follow, in declaration order
        """
        indexes = self.outgoing(block.id)
        if block.type == BlockType.CONDITION:
            if route is None:
                return []
            return [i for i in indexes if self.connections[i].source_handle == route]
        if block.type == BlockType.ROUTER:
            if route is None:
                return []
            return [i for i in indexes if self.connections[i].target == route]
        return indexes

    # =========================================================================
    # Construction helpers
    # =========================================================================

    @property
    def reachable(self) -> set[str]:
        """Block IDs reachable from the starter."""
        seen = {self.starter.id}
        frontier = [self.starter.id]
        while frontier:
            current = frontier.pop()
            for index in self._outgoing.get(current, []):
                target = self.connections[index].target
                if target not in seen:
                    seen.add(target)
                    frontier.append(target)
        return seen

    def _find_back_edges(self) -> dict[int, list[str]]:
        """Depth-first search from the starter recording each cycle-closing edge.

        Returns:
            Mapping of connection index to the blocks on the cycle it closes
        """
        back_edges: dict[int, list[str]] = {}
        on_path: list[str] = [self.starter.id]
        visiting = {self.starter.id}
        done: set[str] = set()
        stack = [(self.starter.id, iter(self._outgoing.get(self.starter.id, [])))]

        while stack:
            node, edges = stack[-1]
            for index in edges:
                target = self.connections[index].target
                if target in visiting:
                    back_edges[index] = on_path[on_path.index(target):]
                elif target not in done:
                    visiting.add(target)
                    on_path.append(target)
                    stack.append((target, iter(self._outgoing.get(target, []))))
                    break
            else:
                stack.pop()
                on_path.pop()
                visiting.discard(node)
                done.add(node)

        return back_edges

    def _match_declared_loops(self) -> dict[int, LoopConfig]:
        edge_loops: dict[int, LoopConfig] = {}
        for index in self.back_edges:
            conn = self.connections[index]
            for loop in self.workflow.loops.values():
                if conn.source in loop.nodes and conn.target in loop.nodes:
                    edge_loops[index] = loop
                    break
        return edge_loops

    def _validate_cycles(self) -> None:
        for index, cycle in self.back_edges.items():
            if index in self._edge_loops:
                continue
            if any(self.blocks[b].type in _BRANCHING_TYPES for b in cycle):
                continue
            conn = self.connections[index]
            names = " -> ".join(self.blocks[b].name or b for b in cycle)
            raise WorkflowValidationError(
                f"Cycle {names} has no condition or router block to end it and is not "
                "a declared loop",
                block_id=conn.target,
            )

    def _compute_forward_ancestors(self) -> dict[str, set[str]]:
        parents: dict[str, set[str]] = defaultdict(set)
        for index, conn in enumerate(self.connections):
            if index not in self.back_edges:
                parents[conn.target].add(conn.source)

        ancestors: dict[str, set[str]] = {}
        for block_id in self.blocks:
            seen: set[str] = set()
            frontier = list(parents.get(block_id, ()))
            while frontier:
                current = frontier.pop()
                if current in seen or current == block_id:
                    continue
                seen.add(current)
                frontier.extend(parents.get(current, ()))
            ancestors[block_id] = seen
        return ancestors


def merge_inputs(deliveries: list[tuple[int, str, Any]]) -> Any:
    """Merge outputs delivered to a block since its previous run.

    Deliveries are ``(connection index, source block id, output)``. A single
    delivery passes through unchanged. Several deliveries are merged shallowly
    in connection declaration order, so the last writer wins; an output that is
    not a mapping is stored under its source block ID.
    """
    if not deliveries:
        return {}
    ordered = sorted(deliveries, key=lambda d: d[0])
    if len(ordered) == 1:
        return ordered[0][2]

    merged: dict[str, Any] = {}
    for _, source_id, output in ordered:
        if isinstance(output, dict):
            merged.update(output)
        else:
            merged[source_id] = output
    return merged
