"""Pydantic models for workflow graphs (blocks, connections, loops)."""

import uuid
from typing import Any, Literal

from pydantic import BaseModel, Field

from studio.models.block import Block, BlockType


class Connection(BaseModel):
    """A directed edge from one block's output to another block's input."""

    source: str
    target: str
    source_handle: str | None = Field(default=None, alias="sourceHandle")

    model_config = {"populate_by_name": True, "frozen": True}


class LoopConfig(BaseModel):
    """An explicitly declared loop over a set of blocks."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    nodes: list[str]
    iterations: int = Field(5, ge=1)
    loop_type: Literal["for"] = Field("for", alias="loopType")

    model_config = {"populate_by_name": True}


class Workflow(BaseModel):
    """A built workflow graph.

    Instances are frozen: the builder produces a new snapshot on every
    ``build()`` and nothing mutates a workflow once execution begins.
    """

    id: str | None = None
    name: str
    description: str | None = None
    blocks: list[Block]
    connections: list[Connection] = Field(default_factory=list)
    loops: dict[str, LoopConfig] = Field(default_factory=dict)
    metadata: dict[str, Any] | None = None

    model_config = {"populate_by_name": True, "frozen": True}

    def get_block(self, block_id: str) -> Block | None:
        """Look up a block by ID."""
        for block in self.blocks:
            if block.id == block_id:
                return block
        return None

    @property
    def starter_blocks(self) -> list[Block]:
        """All blocks of type starter (a valid workflow has exactly one)."""
        return [b for b in self.blocks if b.type == BlockType.STARTER]

    def to_state(self) -> dict[str, Any]:
        """Serialize into the ``state`` payload used by the workflow API."""
        return {
            "blocks": [b.model_dump(mode="json", exclude_none=True) for b in self.blocks],
            "edges": [
                c.model_dump(mode="json", by_alias=True, exclude_none=True)
                for c in self.connections
            ],
            "loops": {
                k: v.model_dump(mode="json", by_alias=True) for k, v in self.loops.items()
            },
        }

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Workflow":
        """Rehydrate a workflow from the API's ``{id, name, state: {...}}`` shape."""
        state = data.get("state") or {}
        return cls(
            id=data.get("id"),
            name=data.get("name", ""),
            description=data.get("description"),
            blocks=state.get("blocks") or [],
            connections=state.get("edges") or [],
            loops=state.get("loops") or {},
            metadata=data.get("metadata"),
        )
