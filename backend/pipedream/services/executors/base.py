"""
Executor interface and registry.

An executor is an async callable ``(node, resolved_inputs, context) ->
ExecutorResult``. Expected failures (missing input, empty list, remote error)
are returned as ``status="failed"`` rather than raised.
"""

from __future__ import annotations

from typing import Awaitable, Callable, Iterator, Protocol

from pipedream.models.execution import ExecutionContext, ExecutorResult, NodeOutput
from pipedream.models.graph import Node


class NodeExecutor(Protocol):
    def __call__(
        self,
        node: Node,
        inputs: dict[str, NodeOutput],
        context: ExecutionContext,
    ) -> Awaitable[ExecutorResult]: ...


class ExecutorRegistry:
    """
    Maps node type names to executors.

    Built once (see ``build_executor_registry``) and passed to the runner, so a
    run's dependencies are visible at the call site.

    Usage:
        registry = ExecutorRegistry()

        @registry.executor("myNode")
        async def _exec_my_node(node, inputs, context) -> ExecutorResult:
            ...
    """

    def __init__(self, executors: dict[str, NodeExecutor] | None = None):
        self._executors: dict[str, NodeExecutor] = dict(executors or {})

    def executor(self, *node_types: str) -> Callable[[NodeExecutor], NodeExecutor]:
        def decorator(fn: NodeExecutor) -> NodeExecutor:
            for node_type in node_types:
                self._executors[node_type] = fn
            return fn
        return decorator

    def register(self, node_type: str, fn: NodeExecutor) -> None:
        self._executors[node_type] = fn

    def get(self, node_type: str) -> NodeExecutor | None:
        return self._executors.get(node_type)

    def __contains__(self, node_type: object) -> bool:
        return node_type in self._executors

    def __iter__(self) -> Iterator[str]:
        return iter(self._executors)

    def __len__(self) -> int:
        return len(self._executors)
