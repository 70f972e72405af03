"""
Workflow execution engine.

Takes a node/edge graph plus external run inputs, orders the nodes
topologically, resolves each node's inputs from upstream outputs, dispatches
to the node type's executor and reports per-node and overall state.

Key behaviour:
- Best effort: a failing node never stops the run. Downstream nodes that
  depend on it fail their own validation, independent branches keep going.
- Sequential by default (one node at a time in topological order). With
  ``parallel_waves`` each dependency depth runs concurrently.
- Nodes blocked by a dependency cycle are failed (``cycle_policy="fail"``) or
  left pending (``cycle_policy="skip"``).
- Cancellation is cooperative: the token is checked between nodes, and by the
  batch wrapper before each fan-out item starts.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, AsyncIterator, Callable, Literal

from pydantic import BaseModel, Field

from pipedream import config
from pipedream.models.execution import (
    ExecutionContext,
    NodeState,
    RunError,
    WorkflowRunResult,
)
from pipedream.models.graph import Edge, Node, OutputNode, parse_graph
from pipedream.services.executors import BatchOptions, ExecutorRegistry, build_executor_registry
from pipedream.services.graph_utils import (
    find_terminal_nodes,
    find_unscheduled_nodes,
    resolve_node_inputs,
    topological_sort,
    topological_waves,
)

logger = logging.getLogger(__name__)

CYCLE_ERROR = "Node is part of, or depends on, a dependency cycle"
CANCELLED_ERROR = "Run cancelled"

EventCallback = Callable[[dict[str, Any]], None]


class RunOptions(BaseModel):
    parallel_waves: bool = False
    cycle_policy: Literal["fail", "skip"] = "fail"
    batch: BatchOptions = Field(default_factory=BatchOptions)

    @classmethod
    def from_env(cls) -> "RunOptions":
        return cls(
            parallel_waves=config.parallel_waves_enabled(),
            cycle_policy=config.cycle_policy(),
            batch=BatchOptions(
                max_concurrency=config.fanout_max_concurrency(),
                item_timeout_s=config.item_timeout_seconds(),
                fail_when_all_items_fail=config.fail_empty_batch(),
            ),
        )


class CancellationToken:
    """Shared flag for cooperative cancellation of a run."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


def _error_message(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


async def run_workflow(
    nodes: list[Node] | list[dict[str, Any]],
    edges: list[Edge] | list[dict[str, Any]],
    workflow_inputs: dict[str, Any] | None = None,
    *,
    registry: ExecutorRegistry | None = None,
    options: RunOptions | None = None,
    cancel_token: CancellationToken | None = None,
    on_event: EventCallback | None = None,
) -> WorkflowRunResult:
    """
    Run a workflow headlessly and return every node's state plus terminal outputs.

    ``registry`` defaults to the fal.ai-backed executors.
    """
    start_time = time.perf_counter()
    graph = parse_graph(nodes, edges)
    registry = registry if registry is not None else build_executor_registry()
    options = options or RunOptions()

    context = ExecutionContext(
        nodes=graph.nodes,
        edges=graph.edges,
        workflow_inputs=dict(workflow_inputs or {}),
        options=options,
        cancel_token=cancel_token,
    )
    node_states: dict[str, NodeState] = {n.id: NodeState() for n in graph.nodes}

    def emit(event: dict[str, Any]) -> None:
        if on_event is None:
            return
        try:
            on_event(event)
        except Exception:
            logger.exception("Event callback failed for %s", event.get("event"))

    def is_cancelled() -> bool:
        return cancel_token is not None and cancel_token.cancelled

    async def execute_single_node(node: Node) -> None:
        node_states[node.id] = NodeState(status="running")
        emit({"event": "node_start", "nodeId": node.id, "nodeType": node.type})

        executor = registry.get(node.type)
        if executor is None:
            logger.warning("No executor found for node type: %s", node.type)
            node_states[node.id] = NodeState(
                status="failed", error=f"No executor for node type: {node.type}"
            )
            emit({
                "event": "node_error",
                "nodeId": node.id,
                "error": node_states[node.id].error,
                "executionTimeMs": 0,
            })
            return

        node_start = time.perf_counter()
        try:
            inputs = resolve_node_inputs(node.id, context)
            result = await executor(node, inputs, context)
        except Exception as e:
            elapsed_ms = int((time.perf_counter() - node_start) * 1000)
            logger.exception("Node %s failed: %s", node.id, e)
            node_states[node.id] = NodeState(
                status="failed", error=_error_message(e), execution_time_ms=elapsed_ms
            )
            emit({
                "event": "node_error",
                "nodeId": node.id,
                "error": node_states[node.id].error,
                "executionTimeMs": elapsed_ms,
            })
            return

        elapsed_ms = int((time.perf_counter() - node_start) * 1000)
        context.record_output(node.id, result.output)
        node_states[node.id] = NodeState(
            status=result.status,
            output=result.output,
            error=result.error,
            execution_time_ms=elapsed_ms,
        )

        if result.status == "failed":
            logger.info("Node %s (%s) failed: %s", node.id, node.type, result.error)
            emit({
                "event": "node_error",
                "nodeId": node.id,
                "error": result.error,
                "output": result.output.model_dump(mode="json", by_alias=True),
                "executionTimeMs": elapsed_ms,
            })
        else:
            emit({
                "event": "node_complete",
                "nodeId": node.id,
                "status": result.status,
                "output": result.output.model_dump(mode="json", by_alias=True),
                "executionTimeMs": elapsed_ms,
            })

    cancelled = False
    if options.parallel_waves:
        waves = topological_waves(graph.nodes, graph.edges)
        scheduled = [n for wave in waves for n in wave]
        emit({
            "event": "workflow_start",
            "executionOrder": [n.id for n in scheduled],
            "totalNodes": len(graph.nodes),
        })
        for wave in waves:
            if is_cancelled():
                cancelled = True
                break
            logger.debug("Running wave of %d node(s)", len(wave))
            await asyncio.gather(*(execute_single_node(n) for n in wave))
    else:
        scheduled = topological_sort(graph.nodes, graph.edges)
        emit({
            "event": "workflow_start",
            "executionOrder": [n.id for n in scheduled],
            "totalNodes": len(graph.nodes),
        })
        for node in scheduled:
            if is_cancelled():
                cancelled = True
                break
            await execute_single_node(node)

    cancelled = cancelled or is_cancelled()
    if cancelled:
        logger.info("Workflow run cancelled")

    if options.cycle_policy == "fail":
        for node in find_unscheduled_nodes(graph.nodes, scheduled):
            node_states[node.id] = NodeState(status="failed", error=CYCLE_ERROR)
            emit({"event": "node_error", "nodeId": node.id, "error": CYCLE_ERROR, "executionTimeMs": 0})

    # Terminal nodes that never recorded an output are skipped.
    outputs = {
        n.id: context.node_outputs[n.id]
        for n in find_terminal_nodes(graph.nodes, graph.edges)
        if n.id in context.node_outputs
    }

    named_outputs = {
        n.data.name: context.node_outputs[n.id]
        for n in graph.nodes
        if isinstance(n, OutputNode)
        and n.data.name
        and node_states[n.id].status == "completed"
        and n.id in context.node_outputs
    }

    failed = next(
        ((nid, s) for nid, s in node_states.items() if s.status == "failed"), None
    )
    error: RunError | None = None
    if failed is not None:
        error = RunError(node_id=failed[0], message=failed[1].error or "Unknown error")
    elif cancelled:
        error = RunError(message=CANCELLED_ERROR)

    result = WorkflowRunResult(
        status="failed" if error is not None else "completed",
        node_states=node_states,
        outputs=outputs,
        named_outputs=named_outputs,
        error=error,
        cancelled=cancelled,
        total_execution_time_ms=int((time.perf_counter() - start_time) * 1000),
    )

    emit({
        "event": "workflow_complete",
        "status": result.status,
        "result": result.model_dump(mode="json", by_alias=True),
    })
    logger.info(
        "Workflow run finished with status %s (%d node(s), %d failed) in %dms",
        result.status,
        len(node_states),
        len(result.failed_nodes()),
        result.total_execution_time_ms,
    )
    return result


# ---------------------------------------------------------------------------
# Streaming execution (SSE)
# ---------------------------------------------------------------------------


async def stream_workflow(
    nodes: list[Node] | list[dict[str, Any]],
    edges: list[Edge] | list[dict[str, Any]],
    workflow_inputs: dict[str, Any] | None = None,
    *,
    registry: ExecutorRegistry | None = None,
    options: RunOptions | None = None,
    cancel_token: CancellationToken | None = None,
) -> AsyncIterator[str]:
    """
    Run a workflow and yield Server-Sent Events as nodes progress.

    Yields ``data: {...}\\n\\n`` lines for:
    - {"event": "workflow_start", "executionOrder": [...], "totalNodes": N}
    - {"event": "node_start", "nodeId": "...", "nodeType": "..."}
    - {"event": "node_complete", "nodeId": "...", "output": {...}, "executionTimeMs": ...}
    - {"event": "node_error", "nodeId": "...", "error": "...", "executionTimeMs": ...}
    - {"event": "workflow_complete", "status": "...", "result": {...}}

    If the consumer stops iterating, the run is cancelled.
    """
    token = cancel_token or CancellationToken()
    queue: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue()

    async def _run() -> WorkflowRunResult:
        try:
            return await run_workflow(
                nodes,
                edges,
                workflow_inputs,
                registry=registry,
                options=options,
                cancel_token=token,
                on_event=queue.put_nowait,
            )
        finally:
            queue.put_nowait(None)

    task = asyncio.create_task(_run())
    try:
        while True:
            event = await queue.get()
            if event is None:
                break
            yield f"data: {json.dumps(event)}\n\n"
        # Surface a crash of the run itself.
        task.result()
    finally:
        if not task.done():
            token.cancel()
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
