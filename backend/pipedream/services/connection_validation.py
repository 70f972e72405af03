"""
Connection type validation between nodes.

Decides whether an edge is semantically legal given the output type of the
source node and the types accepted by the target handle. Pure functions with
no side effects.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Literal, Protocol

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from pipedream.models.graph import (
    DEFAULT_HANDLE,
    IMAGE_MODEL_TYPES,
    VIDEO_MODEL_TYPES,
    Edge,
    InputNode,
    ListNode,
    Node,
    OutputGalleryNode,
    TextNode,
)
from pipedream.models.node_registry import (
    ALL_CONCRETE_TYPES,
    ConnectionDataType,
    get_handle_spec,
    is_dynamic_image_handle,
)

_SINGULAR_TO_PLURAL: dict[str, ConnectionDataType] = {
    "text": "text[]",
    "image": "image[]",
    "video": "video[]",
}

_INPUT_TYPE_TO_CONNECTION: dict[str, ConnectionDataType] = {
    "string": "text",
    "string[]": "text[]",
    "image": "image",
    "number": "text",
}


class Connection(Protocol):
    source: str | None
    target: str | None
    target_handle: str | None


class ConnectionDiagnostic(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    level: Literal["error", "warning"]
    message: str
    edge_id: str | None = None
    node_id: str | None = None


def get_node_output_type(node: Node) -> ConnectionDataType:
    """Infer what a node emits when used as an edge source."""
    if isinstance(node, TextNode):
        return "text[]" if node.data.resolved_items else "text"
    if isinstance(node, ListNode):
        return "text[]"
    if node.type in ("image", "video"):
        return node.type  # type: ignore[return-value]
    if node.type in IMAGE_MODEL_TYPES:
        return "image"
    if node.type in VIDEO_MODEL_TYPES:
        return "video"
    if isinstance(node, OutputGalleryNode):
        outputs = node.data.outputs
        if outputs and outputs[0].type == "video":
            return "video[]"
        return "image[]"
    if isinstance(node, InputNode):
        return _INPUT_TYPE_TO_CONNECTION.get(node.data.input_type, "text")
    # Output nodes are sinks; unknown types are unrestricted.
    return "any"


def get_handle_accepted_types(node: Node, handle_id: str) -> list[ConnectionDataType]:
    """Types accepted by ``handle_id`` on ``node``."""
    spec = get_handle_spec(node.type, handle_id)
    if spec is not None:
        return list(spec.accepts)

    # Template variable handles
    if node.type == "text":
        return ["text", "text[]"]

    if node.type == "nanoBanana" and is_dynamic_image_handle(handle_id):
        return ["image", "image[]"]

    return list(ALL_CONCRETE_TYPES)


def is_type_compatible(
    source_type: ConnectionDataType,
    accepted_types: list[ConnectionDataType],
) -> bool:
    """
    Exact match, singular-to-plural promotion, or an ``any`` source.

    Image and video URLs are also accepted wherever plain text is.
    """
    if source_type == "any":
        return True
    if source_type in accepted_types:
        return True
    if source_type in ("image", "video") and "text" in accepted_types:
        return True
    plural = _SINGULAR_TO_PLURAL.get(source_type)
    return plural is not None and plural in accepted_types


def is_valid_connection(connection: Connection, nodes: list[Node]) -> bool:
    source, target = connection.source, connection.target
    if not source or not target:
        return False
    if source == target:
        return False

    source_node = next((n for n in nodes if n.id == source), None)
    target_node = next((n for n in nodes if n.id == target), None)
    if source_node is None or target_node is None:
        return False

    source_type = get_node_output_type(source_node)
    accepted = get_handle_accepted_types(target_node, connection.target_handle or DEFAULT_HANDLE)
    return is_type_compatible(source_type, accepted)


def validate_connections(nodes: list[Node], edges: list[Edge]) -> list[ConnectionDiagnostic]:
    """
    Check every edge of a saved graph.

    Reports self-loops, dangling endpoints, incompatible types and handles fed
    by more than one edge. All findings are warnings; the engine still runs.
    """
    diagnostics: list[ConnectionDiagnostic] = []
    node_ids = {n.id for n in nodes}
    feeds: dict[tuple[str, str], list[str]] = defaultdict(list)

    for edge in edges:
        if edge.source == edge.target:
            diagnostics.append(ConnectionDiagnostic(
                level="warning",
                message=f"Edge connects node '{edge.source}' to itself",
                edge_id=edge.id,
                node_id=edge.source,
            ))
            continue
        missing = [nid for nid in (edge.source, edge.target) if nid not in node_ids]
        if missing:
            diagnostics.append(ConnectionDiagnostic(
                level="warning",
                message=f"Edge references unknown node(s): {', '.join(missing)}",
                edge_id=edge.id,
            ))
            continue
        if not is_valid_connection(edge, nodes):
            diagnostics.append(ConnectionDiagnostic(
                level="warning",
                message=(
                    f"Incompatible connection from '{edge.source}' to "
                    f"'{edge.target}' handle '{edge.handle}'"
                ),
                edge_id=edge.id,
                node_id=edge.target,
            ))
        feeds[(edge.target, edge.handle)].append(edge.id)

    for (target, handle), edge_ids in feeds.items():
        if len(edge_ids) > 1:
            diagnostics.append(ConnectionDiagnostic(
                level="warning",
                message=(
                    f"Handle '{handle}' on node '{target}' is fed by {len(edge_ids)} "
                    "edges; only the last resolved input is used"
                ),
                node_id=target,
            ))

    return diagnostics
