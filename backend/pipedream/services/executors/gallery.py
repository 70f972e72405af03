"""Output gallery executor: collects fan-out results from every upstream handle."""

from __future__ import annotations

from pipedream.models.execution import ExecutionContext, ExecutorResult, NodeOutput
from pipedream.models.graph import GalleryItem, OutputGalleryNode


async def exec_output_gallery(
    node: OutputGalleryNode, inputs: dict[str, NodeOutput], context: ExecutionContext
) -> ExecutorResult:
    collected: list[GalleryItem] = []
    for upstream in inputs.values():
        if upstream.gallery_outputs:
            collected.extend(item.model_copy() for item in upstream.gallery_outputs)

    # Nothing new arrived: keep what the gallery already holds.
    if not collected:
        collected = [item.model_copy() for item in node.data.outputs]

    return ExecutorResult.completed(
        NodeOutput(value="", type="gallery", gallery_outputs=collected)
    )
