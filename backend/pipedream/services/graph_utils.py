"""
Graph utilities for workflow execution: input resolution, scheduling and
terminal-node discovery.
"""

from __future__ import annotations

import logging
from collections import deque

from pipedream.models.execution import ExecutionContext, NodeOutput
from pipedream.models.graph import Edge, Node

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Input resolution
# ---------------------------------------------------------------------------


def get_source_connections(node_id: str, edges: list[Edge]) -> list[tuple[str, str]]:
    """(source node id, target handle id) for every edge feeding ``node_id``."""
    return [(e.source, e.handle) for e in edges if e.target == node_id]


def resolve_node_inputs(node_id: str, context: ExecutionContext) -> dict[str, NodeOutput]:
    """
    Collect already-computed upstream outputs keyed by target handle.

    A handle whose upstream has no recorded output is simply absent; executors
    report that as a validation failure. Nothing is executed here.
    """
    inputs: dict[str, NodeOutput] = {}
    for source_id, handle_id in get_source_connections(node_id, context.edges):
        source_output = context.node_outputs.get(source_id)
        if source_output is not None:
            inputs[handle_id] = source_output
    return inputs


# ---------------------------------------------------------------------------
# Scheduling
# ---------------------------------------------------------------------------


def _build_dependency_graph(
    nodes: list[Node],
    edges: list[Edge],
) -> tuple[dict[str, int], dict[str, list[str]]]:
    """
    In-degree and adjacency over edges whose endpoints both exist.

    Dangling edges are ignored rather than treated as errors.
    """
    in_degree: dict[str, int] = {n.id: 0 for n in nodes}
    adjacency: dict[str, list[str]] = {n.id: [] for n in nodes}

    for edge in edges:
        if edge.source in in_degree and edge.target in in_degree:
            in_degree[edge.target] += 1
            adjacency[edge.source].append(edge.target)

    return in_degree, adjacency


def topological_sort(nodes: list[Node], edges: list[Edge]) -> list[Node]:
    """
    Order nodes so every dependency precedes its dependents (Kahn's algorithm).

    Ties are broken FIFO in node-list order. Nodes caught in or behind a cycle
    never reach in-degree zero and are left out of the result.
    """
    node_map = {n.id: n for n in nodes}
    in_degree, adjacency = _build_dependency_graph(nodes, edges)

    queue = deque(nid for nid, degree in in_degree.items() if degree == 0)
    ordered: list[Node] = []

    while queue:
        current = queue.popleft()
        ordered.append(node_map[current])
        for downstream in adjacency[current]:
            in_degree[downstream] -= 1
            if in_degree[downstream] == 0:
                queue.append(downstream)

    if len(ordered) != len(node_map):
        logger.warning(
            "Workflow graph contains cycles - %d node(s) will not execute",
            len(node_map) - len(ordered),
        )

    return ordered


def topological_waves(nodes: list[Node], edges: list[Edge]) -> list[list[Node]]:
    """
    Group nodes by dependency depth.

    Every node in a wave depends only on nodes in earlier waves, so a wave can
    be executed concurrently. Cyclic nodes are omitted, as in ``topological_sort``.
    """
    node_map = {n.id: n for n in nodes}
    in_degree, adjacency = _build_dependency_graph(nodes, edges)

    current = [nid for nid, degree in in_degree.items() if degree == 0]
    waves: list[list[Node]] = []

    while current:
        waves.append([node_map[nid] for nid in current])
        following: list[str] = []
        for nid in current:
            for downstream in adjacency[nid]:
                in_degree[downstream] -= 1
                if in_degree[downstream] == 0:
                    following.append(downstream)
        current = following

    scheduled = sum(len(w) for w in waves)
    if scheduled != len(node_map):
        logger.warning(
            "Workflow graph contains cycles - %d node(s) will not execute",
            len(node_map) - scheduled,
        )

    return waves


def find_unscheduled_nodes(nodes: list[Node], ordered: list[Node]) -> list[Node]:
    """Nodes missing from a computed order, i.e. those blocked by a cycle."""
    scheduled = {n.id for n in ordered}
    return [n for n in nodes if n.id not in scheduled]


def find_terminal_nodes(nodes: list[Node], edges: list[Edge]) -> list[Node]:
    """Nodes with no outgoing edges."""
    node_ids = {n.id for n in nodes}
    with_outgoing = {e.source for e in edges if e.source in node_ids}
    return [n for n in nodes if n.id not in with_outgoing]
