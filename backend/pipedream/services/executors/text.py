"""Text node executor: template interpolation with fan-out over list inputs."""

from __future__ import annotations

import logging

from pipedream.models.execution import ExecutionContext, ExecutorResult, NodeOutput
from pipedream.models.graph import TextNode
from pipedream.services.template_parser import (
    interpolate_template_with_list,
    parse_template_variables,
)

logger = logging.getLogger(__name__)


async def exec_text(
    node: TextNode, inputs: dict[str, NodeOutput], context: ExecutionContext
) -> ExecutorResult:
    """
    Interpolate the node's template from its inputs.

    Input handle ids are template variable names. A fan-out input binds its
    full ``items`` list, which multiplies the results; handles that are not
    template variables are ignored.
    """
    template = node.data.value
    variables = set(parse_template_variables(template))

    values: dict[str, str | list[str]] = {}
    for handle_id, upstream in inputs.items():
        if handle_id not in variables:
            continue
        values[handle_id] = list(upstream.items) if upstream.items else upstream.value

    interpolated = interpolate_template_with_list(template, values)
    if interpolated.error:
        return ExecutorResult.failed("text", interpolated.error)

    results = interpolated.results
    if not results:
        return ExecutorResult.completed(NodeOutput(value=template, type="text"))
    if len(results) == 1:
        return ExecutorResult.completed(NodeOutput(value=results[0], type="text"))

    logger.debug("Text node %s expanded to %d results", node.id, len(results))
    return ExecutorResult.completed(NodeOutput(value=results[0], items=results, type="text"))
