"""
Fan-out execution shared by every generative executor.

When a prompt carries ``items``, the single-item generator is called once per
item. All calls are launched together; each one succeeds or fails on its own
and never aborts its siblings.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Awaitable, Callable, Literal

from pydantic import BaseModel, Field

from pipedream.models.execution import ExecutorResult, NodeOutput
from pipedream.models.graph import GalleryItem

if TYPE_CHECKING:
    from pipedream.services.workflow_runner import CancellationToken

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Run cancelled"


class BatchOptions(BaseModel):
    # 0 disables the cap: every item is in flight at once.
    max_concurrency: int = Field(0, ge=0)
    # 0 disables the per-item timeout.
    item_timeout_s: float = Field(0, ge=0)
    # Treat a batch where every item failed as a node-level failure.
    fail_when_all_items_fail: bool = False


class BatchItemResult(BaseModel):
    input_value: str
    url: str = ""
    error: str | None = None

    @property
    def ok(self) -> bool:
        return bool(self.url) and self.error is None


def _error_message(exc: BaseException) -> str:
    message = str(exc)
    return message or type(exc).__name__


class ItemTimeoutError(Exception):
    """The per-item timeout expired before the generator returned."""


async def _call_with_timeout(
    call: Callable[[str], Awaitable[str]], prompt: str, timeout_s: float
) -> str:
    if not timeout_s:
        return await call(prompt)
    try:
        return await asyncio.wait_for(call(prompt), timeout=timeout_s)
    except asyncio.TimeoutError as e:
        raise ItemTimeoutError(f"Timed out after {timeout_s:g}s") from e


async def run_batch(
    prompts: list[str],
    call: Callable[[str], Awaitable[str]],
    options: BatchOptions | None = None,
    cancel_token: "CancellationToken | None" = None,
) -> list[BatchItemResult]:
    """
    Run ``call`` once per prompt, concurrently, and collect results in input order.

    Items that have not started when the run is cancelled fail with
    ``"Run cancelled"``; a call already in flight is allowed to finish.
    """
    options = options or BatchOptions()
    semaphore = asyncio.Semaphore(options.max_concurrency) if options.max_concurrency else None

    async def _run_one(index: int, prompt: str) -> BatchItemResult:
        try:
            if semaphore is not None:
                async with semaphore:
                    if cancel_token is not None and cancel_token.cancelled:
                        return BatchItemResult(input_value=prompt, error=CANCELLED_MESSAGE)
                    url = await _call_with_timeout(call, prompt, options.item_timeout_s)
            else:
                if cancel_token is not None and cancel_token.cancelled:
                    return BatchItemResult(input_value=prompt, error=CANCELLED_MESSAGE)
                url = await _call_with_timeout(call, prompt, options.item_timeout_s)
        except ItemTimeoutError as e:
            logger.warning("Batch item %d timed out after %.1fs", index, options.item_timeout_s)
            return BatchItemResult(input_value=prompt, error=str(e))
        except Exception as e:
            logger.warning("Batch item %d failed: %s", index, e)
            return BatchItemResult(input_value=prompt, error=_error_message(e))

        if not url:
            return BatchItemResult(input_value=prompt, error="Generator returned no URL")
        return BatchItemResult(input_value=prompt, url=url)

    logger.info(
        "Running batch of %d item(s) (max concurrency: %s)",
        len(prompts),
        options.max_concurrency or "unbounded",
    )
    return list(await asyncio.gather(*(_run_one(i, p) for i, p in enumerate(prompts))))


def build_batch_output(
    results: list[BatchItemResult],
    media_type: Literal["image", "video"],
    options: BatchOptions | None = None,
) -> ExecutorResult:
    """
    Assemble a fan-out ``NodeOutput``.

    ``gallery_outputs`` has one entry per item in input order, ``items`` only
    the successful URLs, ``value`` the first success (or ``""``).
    """
    options = options or BatchOptions()
    gallery = [
        GalleryItem(type=media_type, url=r.url, input_value=r.input_value, error=r.error)
        for r in results
    ]
    urls = [r.url for r in results if r.ok]
    output = NodeOutput(
        value=urls[0] if urls else "",
        items=urls,
        type=media_type,
        gallery_outputs=gallery,
    )

    if results and not urls and options.fail_when_all_items_fail:
        return ExecutorResult(
            output=output,
            status="failed",
            error=f"All {len(results)} batch item(s) failed",
        )
    return ExecutorResult(output=output, status="completed")


async def run_single(
    prompt: str,
    call: Callable[[str], Awaitable[str]],
    media_type: Literal["image", "video"],
    options: BatchOptions | None = None,
) -> ExecutorResult:
    """Run a scalar prompt once; a failure here is a node-level failure."""
    options = options or BatchOptions()
    try:
        url = await _call_with_timeout(call, prompt, options.item_timeout_s)
    except ItemTimeoutError as e:
        return ExecutorResult.failed(media_type, str(e))
    except Exception as e:
        logger.warning("Generation failed: %s", e)
        return ExecutorResult.failed(media_type, _error_message(e))

    if not url:
        return ExecutorResult.failed(media_type, "Generator returned no URL")

    return ExecutorResult.completed(
        NodeOutput(
            value=url,
            type=media_type,
            gallery_outputs=[GalleryItem(type=media_type, url=url, input_value=prompt)],
        )
    )
