"""
Executors for a workflow's external contract: Input nodes read run parameters,
Output nodes forward whatever reaches them.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from pipedream.models.execution import ExecutionContext, ExecutorResult, NodeOutput, OutputType
from pipedream.models.graph import DEFAULT_HANDLE, InputNode, OutputNode

logger = logging.getLogger(__name__)

_INPUT_OUTPUT_TYPES: dict[str, OutputType] = {
    "string": "text",
    "string[]": "list",
    "image": "image",
    "number": "text",
}


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple)):
        return len(value) == 0
    return False


def parse_string_list(value: Any) -> list[str]:
    """
    Normalize a list-typed run input.

    Accepts a real list, a JSON array string, or a comma-separated string.
    Blank entries are dropped.
    """
    if isinstance(value, (list, tuple)):
        items = [str(v) for v in value if v is not None]
    else:
        text = str(value).strip()
        parsed: Any = None
        if text.startswith("["):
            try:
                parsed = json.loads(text)
            except json.JSONDecodeError:
                logger.debug("Input is not a JSON array, splitting on commas: %s", text[:80])
        if isinstance(parsed, list):
            items = [str(v) for v in parsed if v is not None]
        else:
            items = text.split(",")
    return [item.strip() for item in items if item.strip()]


def _parse_number(value: Any) -> str | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return str(value)
    text = str(value).strip()
    try:
        float(text)
    except ValueError:
        return None
    return text


async def exec_input(
    node: InputNode, inputs: dict[str, NodeOutput], context: ExecutionContext
) -> ExecutorResult:
    """Read this node's named run parameter, falling back to its default."""
    data = node.data
    output_type = _INPUT_OUTPUT_TYPES.get(data.input_type, "text")

    value: Any = context.workflow_inputs.get(data.name) if data.name else None
    if _is_empty(value):
        value = data.default_value

    if _is_empty(value):
        if data.required:
            return ExecutorResult.failed(output_type, f'Required input "{data.name}" is missing')
        return ExecutorResult.completed(NodeOutput(value="", type=output_type))

    if data.input_type == "string[]":
        items = parse_string_list(value)
        if not items:
            if data.required:
                return ExecutorResult.failed(
                    "list", f'Required input "{data.name}" is an empty list'
                )
            return ExecutorResult.completed(NodeOutput(value="", type="list"))
        return ExecutorResult.completed(NodeOutput(value=items[0], items=items, type="list"))

    if data.input_type == "number":
        number = _parse_number(value)
        if number is None:
            return ExecutorResult.failed("text", f'Input "{data.name}" must be a number')
        return ExecutorResult.completed(NodeOutput(value=number, type="text"))

    return ExecutorResult.completed(NodeOutput(value=str(value), type=output_type))


async def exec_output(
    node: OutputNode, inputs: dict[str, NodeOutput], context: ExecutionContext
) -> ExecutorResult:
    """
    Forward the ``value`` handle (or ``default``, or the first input) unchanged.

    An empty upstream output (e.g. the placeholder a failed node records) fails
    the node, so a named output is never reported as an empty success.
    """
    upstream = inputs.get("value") or inputs.get(DEFAULT_HANDLE)
    if upstream is None and inputs:
        upstream = next(iter(inputs.values()))

    if upstream is None:
        return ExecutorResult.failed("text", "Output node has no input connected")

    if not upstream.value and not upstream.items and not upstream.gallery_outputs:
        return ExecutorResult.failed(upstream.type, "Output node received no value")

    return ExecutorResult.completed(upstream.model_copy(deep=True))
