"""
Tests for the fan-out batch wrapper: isolation, ordering, concurrency cap,
per-item timeout and cancellation.
"""

import asyncio
import pytest

import sys
from pathlib import Path

backend_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(backend_root))

from pipedream.services.executors.batch import (
    CANCELLED_MESSAGE,
    BatchItemResult,
    BatchOptions,
    build_batch_output,
    run_batch,
    run_single,
)
from pipedream.services.workflow_runner import CancellationToken


class TestRunBatch:
    @pytest.mark.asyncio
    async def test_results_in_input_order(self):
        async def call(prompt):
            # Later items finish first
            await asyncio.sleep(0.01 * (3 - int(prompt)))
            return f"url-{prompt}"

        results = await run_batch(["0", "1", "2"], call)
        assert [r.url for r in results] == ["url-0", "url-1", "url-2"]

    @pytest.mark.asyncio
    async def test_items_run_concurrently_by_default(self):
        active = 0
        peak = 0

        async def call(prompt):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.02)
            active -= 1
            return prompt

        await run_batch([str(i) for i in range(5)], call)
        assert peak == 5

    @pytest.mark.asyncio
    async def test_concurrency_cap(self):
        active = 0
        peak = 0

        async def call(prompt):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return prompt

        results = await run_batch([str(i) for i in range(6)], call, BatchOptions(max_concurrency=2))
        assert peak == 2
        assert all(r.ok for r in results)

    @pytest.mark.asyncio
    async def test_item_timeout(self):
        async def call(prompt):
            if prompt == "slow":
                await asyncio.sleep(1)
            return prompt

        results = await run_batch(["fast", "slow"], call, BatchOptions(item_timeout_s=0.05))

        assert results[0].ok
        assert not results[1].ok
        assert results[1].error == "Timed out after 0.05s"

    @pytest.mark.asyncio
    async def test_empty_url_is_an_error(self):
        async def call(prompt):
            return ""

        results = await run_batch(["x"], call)
        assert results[0].error == "Generator returned no URL"

    @pytest.mark.asyncio
    async def test_cancelled_items_do_not_start(self):
        token = CancellationToken()
        started = []

        async def call(prompt):
            started.append(prompt)
            token.cancel()
            await asyncio.sleep(0.01)
            return prompt

        results = await run_batch(["a", "b", "c"], call, BatchOptions(max_concurrency=1), token)

        assert started == ["a"]
        assert results[0].url == "a"
        assert [r.error for r in results[1:]] == [CANCELLED_MESSAGE, CANCELLED_MESSAGE]


class TestBuildBatchOutput:
    def test_shape(self):
        results = [
            BatchItemResult(input_value="p1", error="nope"),
            BatchItemResult(input_value="p2", url="u2"),
        ]
        result = build_batch_output(results, "image")

        assert result.status == "completed"
        assert result.output.items == ["u2"]
        assert result.output.value == "u2"
        assert [g.input_value for g in result.output.gallery_outputs] == ["p1", "p2"]

    def test_all_failed_completes_by_default(self):
        results = [BatchItemResult(input_value="p", error="nope")]
        result = build_batch_output(results, "video")

        assert result.status == "completed"
        assert result.output.value == ""
        assert result.output.items == []

    def test_all_failed_policy(self):
        results = [BatchItemResult(input_value="p", error="nope")] * 2
        result = build_batch_output(results, "video", BatchOptions(fail_when_all_items_fail=True))

        assert result.status == "failed"
        assert result.error == "All 2 batch item(s) failed"
        assert len(result.output.gallery_outputs) == 2


class TestRunSingle:
    @pytest.mark.asyncio
    async def test_timeout_fails_node(self):
        async def call(prompt):
            await asyncio.sleep(1)
            return "late"

        result = await run_single("p", call, "image", BatchOptions(item_timeout_s=0.02))
        assert result.status == "failed"
        assert result.error.startswith("Timed out")

    @pytest.mark.asyncio
    async def test_generator_timeout_error_keeps_its_message(self):
        async def call(prompt):
            raise asyncio.TimeoutError("gateway timed out")

        result = await run_single("p", call, "video")
        assert result.error == "gateway timed out"


class TestGeneratorTimeouts:
    @pytest.mark.asyncio
    async def test_batch_item_without_timeout_configured(self):
        async def call(prompt):
            raise asyncio.TimeoutError()

        results = await run_batch(["a"], call)
        assert results[0].error == "TimeoutError"
