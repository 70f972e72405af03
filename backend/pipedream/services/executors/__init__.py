"""
Node executors, one per node type.

``build_executor_registry`` assembles the registry a run uses. Generative
model executors are created from a mapping of node type to generator, so a
caller can swap in billed, mocked or alternative backends.
"""

from __future__ import annotations

import logging

from pipedream.models.node_registry import get_model_spec
from pipedream.services.executors.base import ExecutorRegistry, NodeExecutor
from pipedream.services.executors.batch import (
    BatchItemResult,
    BatchOptions,
    build_batch_output,
    run_batch,
    run_single,
)
from pipedream.services.executors.gallery import exec_output_gallery
from pipedream.services.executors.generative import (
    GenerativeExecutor,
    MediaGenerator,
    MediaInputs,
)
from pipedream.services.executors.io import exec_input, exec_output
from pipedream.services.executors.static import exec_image, exec_list, exec_video
from pipedream.services.executors.text import exec_text

logger = logging.getLogger(__name__)


def build_executor_registry(
    generators: dict[str, MediaGenerator] | None = None,
) -> ExecutorRegistry:
    """
    Build the executor registry for a run.

    ``generators`` maps generative node types to their single-item generator.
    When omitted the fal.ai generators are used. Model types without a
    generator get no executor and fail at run time.
    """
    registry = ExecutorRegistry()
    registry.register("text", exec_text)
    registry.register("list", exec_list)
    registry.register("image", exec_image)
    registry.register("video", exec_video)
    registry.register("input", exec_input)
    registry.register("output", exec_output)
    registry.register("outputGallery", exec_output_gallery)

    if generators is None:
        from pipedream.generation.fal import build_fal_generators

        generators = build_fal_generators()

    for node_type, generate in generators.items():
        spec = get_model_spec(node_type)
        if spec is None:
            logger.warning("Ignoring generator for non-generative node type %r", node_type)
            continue
        registry.register(node_type, GenerativeExecutor(spec, generate))

    return registry


__all__ = [
    "BatchItemResult",
    "BatchOptions",
    "ExecutorRegistry",
    "GenerativeExecutor",
    "MediaGenerator",
    "MediaInputs",
    "NodeExecutor",
    "build_batch_output",
    "build_executor_registry",
    "run_batch",
    "run_single",
]
