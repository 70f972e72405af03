"""Passthrough executors for nodes that hold their value directly."""

from __future__ import annotations

from pipedream.models.execution import ExecutionContext, ExecutorResult, NodeOutput
from pipedream.models.graph import ImageNode, ListNode, VideoNode


async def exec_image(
    node: ImageNode, inputs: dict[str, NodeOutput], context: ExecutionContext
) -> ExecutorResult:
    if not node.data.value:
        return ExecutorResult.failed("image", "Image node has no value")
    return ExecutorResult.completed(NodeOutput(value=node.data.value, type="image"))


async def exec_video(
    node: VideoNode, inputs: dict[str, NodeOutput], context: ExecutionContext
) -> ExecutorResult:
    if not node.data.value:
        return ExecutorResult.failed("video", "Video node has no value")
    return ExecutorResult.completed(NodeOutput(value=node.data.value, type="video"))


async def exec_list(
    node: ListNode, inputs: dict[str, NodeOutput], context: ExecutionContext
) -> ExecutorResult:
    items = node.data.items
    if not items:
        return ExecutorResult.failed("list", "List node has no items")
    return ExecutorResult.completed(NodeOutput(value=items[0], items=list(items), type="list"))
