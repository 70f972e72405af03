"""
Tests for scheduling, input resolution and terminal-node discovery.
"""

import sys
from pathlib import Path

backend_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(backend_root))

from pipedream.models.execution import ExecutionContext, NodeOutput
from pipedream.models.graph import Edge, parse_node
from pipedream.services.graph_utils import (
    find_terminal_nodes,
    find_unscheduled_nodes,
    resolve_node_inputs,
    topological_sort,
    topological_waves,
)


def _text(node_id):
    return parse_node({"id": node_id, "type": "text", "data": {"value": node_id}})


def _edge(source, target, handle=None):
    return Edge(id=f"{source}->{target}", source=source, target=target, target_handle=handle)


def _ids(nodes):
    return [n.id for n in nodes]


class TestTopologicalSort:
    def test_chain(self):
        nodes = [_text("c"), _text("b"), _text("a")]
        edges = [_edge("a", "b"), _edge("b", "c")]
        assert _ids(topological_sort(nodes, edges)) == ["a", "b", "c"]

    def test_every_edge_respected_in_diamond(self):
        nodes = [_text(n) for n in ("d", "b", "c", "a")]
        edges = [_edge("a", "b"), _edge("a", "c"), _edge("b", "d"), _edge("c", "d")]
        order = _ids(topological_sort(nodes, edges))

        assert sorted(order) == ["a", "b", "c", "d"]
        for edge in edges:
            assert order.index(edge.source) < order.index(edge.target)

    def test_independent_nodes_keep_list_order(self):
        nodes = [_text("x"), _text("y"), _text("z")]
        assert _ids(topological_sort(nodes, [])) == ["x", "y", "z"]

    def test_dangling_edges_ignored(self):
        nodes = [_text("a")]
        assert _ids(topological_sort(nodes, [_edge("ghost", "a")])) == ["a"]

    def test_duplicate_edges_between_same_nodes(self):
        nodes = [_text("a"), _text("b")]
        edges = [_edge("a", "b", "x"), _edge("a", "b", "y")]
        assert _ids(topological_sort(nodes, edges)) == ["a", "b"]

    def test_cycle_nodes_omitted(self):
        nodes = [_text("a"), _text("b"), _text("c"), _text("free")]
        edges = [_edge("a", "b"), _edge("b", "a"), _edge("b", "c")]
        order = topological_sort(nodes, edges)

        assert _ids(order) == ["free"]
        assert _ids(find_unscheduled_nodes(nodes, order)) == ["a", "b", "c"]


class TestTopologicalWaves:
    def test_groups_by_depth(self):
        nodes = [_text(n) for n in ("a", "b", "c", "d", "e")]
        edges = [_edge("a", "c"), _edge("b", "c"), _edge("c", "d")]
        waves = [_ids(w) for w in topological_waves(nodes, edges)]
        assert waves == [["a", "b", "e"], ["c"], ["d"]]

    def test_cycle_nodes_omitted(self):
        nodes = [_text("a"), _text("b"), _text("c")]
        edges = [_edge("a", "b"), _edge("b", "a")]
        assert [_ids(w) for w in topological_waves(nodes, edges)] == [["c"]]


class TestResolveNodeInputs:
    def test_keys_by_target_handle_and_skips_missing(self):
        nodes = [_text("a"), _text("b"), _text("c")]
        edges = [_edge("a", "c", "subject"), _edge("b", "c", "place")]
        context = ExecutionContext(nodes=nodes, edges=edges)
        context.record_output("a", NodeOutput(value="cat", type="text"))

        inputs = resolve_node_inputs("c", context)
        assert list(inputs) == ["subject"]
        assert inputs["subject"].value == "cat"

    def test_missing_handle_defaults(self):
        nodes = [_text("a"), _text("b")]
        context = ExecutionContext(nodes=nodes, edges=[_edge("a", "b")])
        context.record_output("a", NodeOutput(value="x", type="text"))
        assert list(resolve_node_inputs("b", context)) == ["default"]


class TestTerminalNodes:
    def test_only_nodes_without_outgoing_edges(self):
        nodes = [_text("a"), _text("b"), _text("c"), _text("d")]
        edges = [_edge("a", "b"), _edge("a", "c")]
        assert _ids(find_terminal_nodes(nodes, edges)) == ["b", "c", "d"]
