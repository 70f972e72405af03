"""
Graph models: the node/edge document produced by the editor.

Nodes form a tagged union keyed by ``type``; each variant owns its payload
shape. The engine reads these models but never writes back into them during
a run. Field aliases match the editor's camelCase JSON.
"""

from __future__ import annotations

import logging
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_HANDLE = "default"

ImageModelType = Literal["fluxDev", "nanoBanana", "recraftV3"]
VideoModelType = Literal[
    "veo3Fast",
    "veo31",
    "veo31I2v",
    "veo31Ref",
    "veo31Keyframe",
    "veo31Fast",
    "veo31FastI2v",
    "veo31FastKeyframe",
    "klingVideo",
]

IMAGE_MODEL_TYPES: tuple[str, ...] = ("fluxDev", "nanoBanana", "recraftV3")
VIDEO_MODEL_TYPES: tuple[str, ...] = (
    "veo3Fast",
    "veo31",
    "veo31I2v",
    "veo31Ref",
    "veo31Keyframe",
    "veo31Fast",
    "veo31FastI2v",
    "veo31FastKeyframe",
    "klingVideo",
)

NODE_TYPES: tuple[str, ...] = (
    "text",
    "list",
    "image",
    "video",
    "input",
    "output",
    "outputGallery",
    *IMAGE_MODEL_TYPES,
    *VIDEO_MODEL_TYPES,
)

InputNodeInputType = Literal["string", "string[]", "image", "number"]
OutputNodeOutputType = Literal[
    "string", "string[]", "image", "image[]", "video", "video[]", "any"
]


class _EditorModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------


class GalleryItem(_EditorModel):
    """One fan-out element; ``error`` set with an empty ``url`` means it failed."""

    type: Literal["image", "video"]
    url: str = ""
    input_value: str = Field("", alias="inputValue")
    error: str | None = None
    thumbnail: str | None = None


class TextNodeData(_EditorModel):
    label: str = "Text"
    value: str = ""
    resolved_value: str = Field("", alias="resolvedValue")
    resolved_items: list[str] = Field(default_factory=list, alias="resolvedItems")
    template_variables: list[str] = Field(default_factory=list, alias="templateVariables")


class ListNodeData(_EditorModel):
    label: str = "List"
    items: list[str] = Field(default_factory=list)


class MediaNodeData(_EditorModel):
    label: str = ""
    value: str = ""


class InputNodeData(_EditorModel):
    label: str = "Input"
    name: str = ""
    input_type: InputNodeInputType = Field("string", alias="inputType")
    required: bool = False
    default_value: str = Field("", alias="defaultValue")
    description: str = ""


class OutputNodeData(_EditorModel):
    label: str = "Output"
    name: str = ""
    output_type: OutputNodeOutputType = Field("any", alias="outputType")


class OutputGalleryNodeData(_EditorModel):
    label: str = "Output Gallery"
    outputs: list[GalleryItem] = Field(default_factory=list)


class ModelNodeData(_EditorModel):
    label: str = ""
    status: str = "idle"
    output: str | None = None
    error: str | None = None


# ---------------------------------------------------------------------------
# Nodes
# ---------------------------------------------------------------------------


class TextNode(_EditorModel):
    id: str
    type: Literal["text"] = "text"
    data: TextNodeData = Field(default_factory=TextNodeData)


class ListNode(_EditorModel):
    id: str
    type: Literal["list"] = "list"
    data: ListNodeData = Field(default_factory=ListNodeData)


class ImageNode(_EditorModel):
    id: str
    type: Literal["image"] = "image"
    data: MediaNodeData = Field(default_factory=MediaNodeData)


class VideoNode(_EditorModel):
    id: str
    type: Literal["video"] = "video"
    data: MediaNodeData = Field(default_factory=MediaNodeData)


class InputNode(_EditorModel):
    id: str
    type: Literal["input"] = "input"
    data: InputNodeData = Field(default_factory=InputNodeData)


class OutputNode(_EditorModel):
    id: str
    type: Literal["output"] = "output"
    data: OutputNodeData = Field(default_factory=OutputNodeData)


class OutputGalleryNode(_EditorModel):
    id: str
    type: Literal["outputGallery"] = "outputGallery"
    data: OutputGalleryNodeData = Field(default_factory=OutputGalleryNodeData)


class ImageModelNode(_EditorModel):
    id: str
    type: ImageModelType
    data: ModelNodeData = Field(default_factory=ModelNodeData)


class VideoModelNode(_EditorModel):
    id: str
    type: VideoModelType
    data: ModelNodeData = Field(default_factory=ModelNodeData)


KnownNode = Annotated[
    Union[
        TextNode,
        ListNode,
        ImageNode,
        VideoNode,
        InputNode,
        OutputNode,
        OutputGalleryNode,
        ImageModelNode,
        VideoModelNode,
    ],
    Field(discriminator="type"),
]


class UnknownNode(_EditorModel):
    """A node whose type this engine has no model for. Kept so it can fail at run time."""

    id: str
    type: str
    data: dict[str, Any] = Field(default_factory=dict)


Node = Union[
    TextNode,
    ListNode,
    ImageNode,
    VideoNode,
    InputNode,
    OutputNode,
    OutputGalleryNode,
    ImageModelNode,
    VideoModelNode,
    UnknownNode,
]

_known_node_adapter: TypeAdapter = TypeAdapter(KnownNode)


class Edge(_EditorModel):
    id: str = ""
    source: str
    target: str
    source_handle: str | None = Field(None, alias="sourceHandle")
    target_handle: str | None = Field(None, alias="targetHandle")

    @property
    def handle(self) -> str:
        """The target input slot this edge feeds."""
        return self.target_handle or DEFAULT_HANDLE


class WorkflowGraph(BaseModel):
    nodes: list[Node] = Field(default_factory=list)
    edges: list[Edge] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def parse_node(raw: dict[str, Any] | Node) -> Node:
    """
    Build a typed node from raw editor JSON.

    Unknown ``type`` values become ``UnknownNode``. A known type with a
    malformed payload raises ``ValidationError``.
    """
    if isinstance(raw, BaseModel):
        return raw  # type: ignore[return-value]

    node_type = raw.get("type")
    if node_type not in NODE_TYPES:
        logger.warning("Unknown node type %r on node %s", node_type, raw.get("id"))
        return UnknownNode(
            id=str(raw.get("id", "")),
            type=str(node_type),
            data=raw.get("data") or {},
        )
    payload = dict(raw)
    if payload.get("data") is None:
        payload.pop("data", None)
    return _known_node_adapter.validate_python(payload)


def parse_edge(raw: dict[str, Any] | Edge) -> Edge:
    if isinstance(raw, Edge):
        return raw
    return Edge.model_validate(raw)


def parse_graph(
    nodes: list[dict[str, Any]] | list[Node],
    edges: list[dict[str, Any]] | list[Edge],
) -> WorkflowGraph:
    """Parse a persisted graph blob into typed nodes and edges."""
    try:
        parsed_nodes = [parse_node(n) for n in nodes]
        parsed_edges = [parse_edge(e) for e in edges]
    except ValidationError:
        logger.exception("Failed to parse workflow graph")
        raise
    return WorkflowGraph.model_construct(nodes=parsed_nodes, edges=parsed_edges)
