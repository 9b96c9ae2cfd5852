"""Incremental builder for workflow graphs."""

from studio.errors import (
    DuplicateBlockIdError,
    NoStarterBlockError,
    UnknownBlockError,
    WorkflowValidationError,
)
from studio.models.block import Block, BlockType, starter_block
from studio.models.workflow import Connection, LoopConfig, Workflow


class WorkflowBuilder:
    """Assembles a valid Workflow from typed blocks.

    A starter block is created with the builder, so every graph has exactly one
    entry point. Mutating calls return the builder for chaining.

    Example:
        builder = WorkflowBuilder("Adder")
        add = function_block("return {'sum': input['a'] + input['b']}")
        builder.add_block(add).connect(builder.get_starter_block().id, add.id)
        workflow = builder.build()
    """

    def __init__(self, name: str, description: str | None = None) -> None:
        self.name = name
        self.description = description
        self.metadata: dict | None = None
        self._workflow_id: str | None = None
        self._blocks: dict[str, Block] = {}
        self._connections: list[Connection] = []
        self._loops: dict[str, LoopConfig] = {}

        starter = starter_block()
        self._blocks[starter.id] = starter

    @classmethod
    def from_workflow(cls, workflow: Workflow) -> "WorkflowBuilder":
        """Rehydrate a builder from an existing workflow (e.g. one fetched from the API)."""
        builder = cls.__new__(cls)
        builder.name = workflow.name
        builder.description = workflow.description
        builder.metadata = dict(workflow.metadata) if workflow.metadata else None
        builder._workflow_id = workflow.id
        builder._blocks = {b.id: b.model_copy(deep=True) for b in workflow.blocks}
        builder._connections = list(workflow.connections)
        builder._loops = {k: v.model_copy(deep=True) for k, v in workflow.loops.items()}
        return builder

    def add_block(self, block: Block) -> "WorkflowBuilder":
        if block.id in self._blocks:
            raise DuplicateBlockIdError(
                f"Block with ID '{block.id}' already exists", block_id=block.id
            )
        self._blocks[block.id] = block
        return self

    def connect(
        self,
        source_id: str,
        target_id: str,
        source_handle: str | None = None,
    ) -> "WorkflowBuilder":
        for block_id in (source_id, target_id):
            if block_id not in self._blocks:
                raise UnknownBlockError(
                    f"Block with ID '{block_id}' not found", block_id=block_id
                )
        self._connections.append(
            Connection(source=source_id, target=target_id, source_handle=source_handle)
        )
        return self

    def add_loop(
        self,
        nodes: list[str],
        iterations: int = 5,
        loop_id: str | None = None,
    ) -> "WorkflowBuilder":
        """Declare a loop over existing blocks, capped at ``iterations`` passes."""
        for block_id in nodes:
            if block_id not in self._blocks:
                raise UnknownBlockError(
                    f"Block with ID '{block_id}' not found", block_id=block_id
                )
        loop = (
            LoopConfig(id=loop_id, nodes=nodes, iterations=iterations)
            if loop_id
            else LoopConfig(nodes=nodes, iterations=iterations)
        )
        self._loops[loop.id] = loop
        return self

    def get_starter_block(self) -> Block:
        for block in self._blocks.values():
            if block.type == BlockType.STARTER:
                return block
        raise NoStarterBlockError("Workflow has no starter block")

    def build(self) -> Workflow:
        """Validate the graph and return an immutable snapshot."""
        blocks = [b.model_copy(deep=True) for b in self._blocks.values()]
        workflow = Workflow(
            id=self._workflow_id,
            name=self.name,
            description=self.description,
            blocks=blocks,
            connections=list(self._connections),
            loops={k: v.model_copy(deep=True) for k, v in self._loops.items()},
            metadata=self.metadata,
        )
        validate_workflow(workflow)
        return workflow


def validate_workflow(workflow: Workflow) -> None:
    """Check structural invariants of a workflow graph.

    Raises:
        NoStarterBlockError: If no starter block exists
        UnknownBlockError: If a connection references a missing block
        WorkflowValidationError: For any other structural violation
    """
    starters = workflow.starter_blocks
    if not starters:
        raise NoStarterBlockError("Workflow has no starter block")
    if len(starters) > 1:
        raise WorkflowValidationError(
            f"Workflow has {len(starters)} starter blocks, expected exactly one"
        )
    starter_id = starters[0].id

    block_ids = {b.id for b in workflow.blocks}
    for conn in workflow.connections:
        for block_id in (conn.source, conn.target):
            if block_id not in block_ids:
                raise UnknownBlockError(
                    f"Connection references unknown block '{block_id}'", block_id=block_id
                )
        if conn.target == starter_id:
            raise WorkflowValidationError(
                "Starter block cannot have incoming connections", block_id=starter_id
            )

    for loop in workflow.loops.values():
        for block_id in loop.nodes:
            if block_id not in block_ids:
                raise UnknownBlockError(
                    f"Loop '{loop.id}' references unknown block '{block_id}'",
                    block_id=block_id,
                )

    for block in workflow.blocks:
        if block.type == BlockType.CONDITION:
            _validate_condition_edges(workflow, block)


def _validate_condition_edges(workflow: Workflow, block: Block) -> None:
    handles = {c.handle for c in block.conditions}
    seen: set[str] = set()
    for conn in workflow.connections:
        if conn.source != block.id:
            continue
        if not conn.source_handle:
            raise WorkflowValidationError(
                f"Condition block '{block.name or block.id}' has an outgoing connection "
                "without a source handle",
                block_id=block.id,
            )
        if conn.source_handle not in handles:
            raise WorkflowValidationError(
                f"Condition block '{block.name or block.id}' has no condition for "
                f"handle '{conn.source_handle}'",
                block_id=block.id,
            )
        if conn.source_handle in seen:
            raise WorkflowValidationError(
                f"Condition block '{block.name or block.id}' has more than one "
                f"connection on handle '{conn.source_handle}'",
                block_id=block.id,
            )
        seen.add(conn.source_handle)
