"""
Generative model executors.

Every image/video model node is one ``GenerativeExecutor`` configured by the
node type's ``ModelSpec`` and wrapping a single-item generator. Fan-out comes
from the shared batch helpers, so an executor only validates its inputs and
shapes the output.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Union

from pipedream.models.execution import ExecutionContext, ExecutorResult, NodeOutput
from pipedream.models.graph import DEFAULT_HANDLE, Node
from pipedream.models.node_registry import (
    DYNAMIC_IMAGE_HANDLE_PREFIX,
    MAX_DYNAMIC_IMAGE_HANDLES,
    ModelSpec,
)
from pipedream.services.executors.batch import build_batch_output, run_batch, run_single

logger = logging.getLogger(__name__)

# Auxiliary media keyed by handle id. Dynamic image handles are collected
# under "images" as a list.
MediaInputs = dict[str, Union[str, list[str]]]

# generate(prompt, media) -> URL of the produced artifact. Raises on failure.
MediaGenerator = Callable[[str, MediaInputs], Awaitable[str]]

DYNAMIC_IMAGES_KEY = "images"


class GenerativeExecutor:
    def __init__(self, spec: ModelSpec, generate: MediaGenerator):
        self.spec = spec
        self.generate = generate

    def _collect_media(self, node: Node, inputs: dict[str, NodeOutput]) -> tuple[MediaInputs, str | None]:
        media: MediaInputs = {}
        for handle in self.spec.media_handles:
            upstream = inputs.get(handle.key)
            url = upstream.value.strip() if upstream is not None else ""
            if url:
                media[handle.key] = url
            elif handle.required:
                return media, (
                    f"No {handle.display_name} connected to '{handle.key}' "
                    f"- required for {node.type}"
                )

        if self.spec.dynamic_image_handles:
            images: list[str] = []
            for i in range(MAX_DYNAMIC_IMAGE_HANDLES):
                upstream = inputs.get(f"{DYNAMIC_IMAGE_HANDLE_PREFIX}{i}")
                if upstream is not None and upstream.value.strip():
                    images.append(upstream.value.strip())
            if images:
                media[DYNAMIC_IMAGES_KEY] = images

        return media, None

    async def __call__(
        self, node: Node, inputs: dict[str, NodeOutput], context: ExecutionContext
    ) -> ExecutorResult:
        media_type = self.spec.media_type
        prompt_input = inputs.get("prompt") or inputs.get(DEFAULT_HANDLE)
        if prompt_input is None:
            return ExecutorResult.failed(media_type, "No prompt input connected")

        media, error = self._collect_media(node, inputs)
        if error:
            return ExecutorResult.failed(media_type, error)

        options = context.options.batch if context.options is not None else None

        async def _call(prompt: str) -> str:
            return await self.generate(prompt, media)

        if prompt_input.is_batch:
            logger.info(
                "%s node %s: batch of %d prompt(s), media handles: %s",
                node.type, node.id, len(prompt_input.items), sorted(media) or "none",
            )
            results = await run_batch(prompt_input.items, _call, options, context.cancel_token)
            return build_batch_output(results, media_type, options)

        if not prompt_input.value.strip():
            return ExecutorResult.failed(media_type, "Prompt input is empty")

        logger.info("%s node %s: single generation", node.type, node.id)
        return await run_single(prompt_input.value, _call, media_type, options)
