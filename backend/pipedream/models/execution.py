"""
Execution models: what executors return and what a run reports.

These are run-scoped: a fresh ``ExecutionContext`` and set of ``NodeState``
values is created for every ``run_workflow`` call.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from pipedream.models.graph import Edge, GalleryItem, Node

if TYPE_CHECKING:
    from pipedream.services.workflow_runner import CancellationToken, RunOptions


OutputType = Literal["text", "image", "video", "list", "gallery"]
NodeStatus = Literal["pending", "running", "completed", "failed"]
ExecutorStatus = Literal["completed", "failed"]


class _WireModel(BaseModel):
    # camelCase on the wire, snake_case in Python
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class NodeOutput(_WireModel):
    value: str = ""
    items: list[str] | None = None
    type: OutputType
    gallery_outputs: list[GalleryItem] | None = None

    @model_validator(mode="after")
    def _value_mirrors_first_item(self) -> "NodeOutput":
        # A fan-out result always exposes its first element as the scalar value.
        if self.items and self.value != self.items[0]:
            self.value = self.items[0]
        return self

    @property
    def is_batch(self) -> bool:
        return bool(self.items)


class ExecutorResult(_WireModel):
    output: NodeOutput
    status: ExecutorStatus
    error: str | None = None

    @classmethod
    def completed(cls, output: NodeOutput) -> "ExecutorResult":
        return cls(output=output, status="completed")

    @classmethod
    def failed(cls, output_type: OutputType, error: str) -> "ExecutorResult":
        """A failure that still carries a typed, empty output for downstream readers."""
        return cls(output=NodeOutput(value="", type=output_type), status="failed", error=error)


class NodeState(_WireModel):
    status: NodeStatus = "pending"
    output: NodeOutput | None = None
    error: str | None = None
    execution_time_ms: int = 0


class RunError(_WireModel):
    node_id: str | None = None
    message: str


class WorkflowRunResult(_WireModel):
    status: ExecutorStatus
    node_states: dict[str, NodeState]
    # Outputs of terminal nodes (no outgoing edges), keyed by node id.
    outputs: dict[str, NodeOutput] = Field(default_factory=dict)
    # Outputs of named Output nodes, keyed by their configured name.
    named_outputs: dict[str, NodeOutput] = Field(default_factory=dict)
    error: RunError | None = None
    cancelled: bool = False
    total_execution_time_ms: int = 0

    def failed_nodes(self) -> dict[str, NodeState]:
        return {nid: s for nid, s in self.node_states.items() if s.status == "failed"}


@dataclass
class ExecutionContext:
    """
    Shared, read-mostly state for one run.

    ``node_outputs`` is the only mutable piece; it is written exclusively by the
    orchestrator through ``record_output`` and each node id is written once.
    """

    nodes: list[Node]
    edges: list[Edge]
    node_outputs: dict[str, NodeOutput] = field(default_factory=dict)
    workflow_inputs: dict[str, Any] = field(default_factory=dict)
    options: "RunOptions | None" = None
    cancel_token: "CancellationToken | None" = None

    def record_output(self, node_id: str, output: NodeOutput) -> None:
        if node_id in self.node_outputs:
            raise RuntimeError(f"Output for node {node_id} was already recorded")
        self.node_outputs[node_id] = output
