"""
Tests for per-call credit billing.
"""

import asyncio
import time
import pytest
import httpx

import sys
from pathlib import Path

backend_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(backend_root))

from fake_supabase import FakeSupabase
from pipedream.models.graph import parse_node
from pipedream.models.node_registry import MODEL_SPECS
from pipedream.models.execution import ExecutionContext, NodeOutput
from pipedream.services.credits import (
    InsufficientCreditsError,
    Reservation,
    SupabaseCreditLedger,
    billed_generator,
)
from pipedream.services.executors import BatchOptions, GenerativeExecutor
from pipedream.services.workflow_runner import RunOptions

USER_ID = "11111111-1111-1111-1111-111111111111"


class RecordingLedger:
    def __init__(self, fail_reserve=None):
        self.fail_reserve = fail_reserve
        self.reserved = []
        self.refunded = []

    async def reserve(self, user_id, endpoint_id):
        if self.fail_reserve is not None:
            raise self.fail_reserve
        self.reserved.append((user_id, endpoint_id))
        return Reservation(transaction_id=f"tx-{len(self.reserved)}", cost=0.05, endpoint_id=endpoint_id)

    async def refund(self, user_id, transaction_id, reason=None):
        self.refunded.append((user_id, transaction_id, reason))


def _pricing_transport(unit_price=0.05):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["endpoint_id"] == "fal-ai/flux/dev"
        assert request.headers["Authorization"] == "Key test-key"
        return httpx.Response(200, json={"prices": [{"unit_price": unit_price}]})

    return httpx.MockTransport(handler)


class TestBilledGenerator:
    @pytest.mark.asyncio
    async def test_success_reserves_once(self):
        ledger = RecordingLedger()

        async def generate(prompt, media):
            return "https://cdn/x.png"

        billed = billed_generator(generate, ledger, USER_ID, lambda media: "fal-ai/flux/dev")

        assert await billed("p", {}) == "https://cdn/x.png"
        assert ledger.reserved == [(USER_ID, "fal-ai/flux/dev")]
        assert ledger.refunded == []

    @pytest.mark.asyncio
    async def test_failure_refunds_and_reraises(self):
        ledger = RecordingLedger()

        async def generate(prompt, media):
            raise RuntimeError("No image generated")

        billed = billed_generator(generate, ledger, USER_ID, lambda media: "fal-ai/flux/dev")

        with pytest.raises(RuntimeError, match="No image generated"):
            await billed("p", {})
        assert ledger.refunded == [(USER_ID, "tx-1", "No image generated")]

    @pytest.mark.asyncio
    async def test_timeout_refunds(self):
        ledger = RecordingLedger()

        async def generate(prompt, media):
            await asyncio.sleep(1)
            return "late"

        billed = billed_generator(generate, ledger, USER_ID, lambda media: "fal-ai/veo3.1")

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(billed("p", {}), timeout=0.02)
        assert [r[1] for r in ledger.refunded] == ["tx-1"]

    @pytest.mark.asyncio
    async def test_insufficient_credits_is_per_item(self):
        ledger = RecordingLedger(fail_reserve=InsufficientCreditsError(required=0.5, available=0.1))
        calls = []

        async def generate(prompt, media):
            calls.append(prompt)
            return "u"

        billed = billed_generator(generate, ledger, USER_ID, lambda media: "fal-ai/flux/dev")
        executor = GenerativeExecutor(MODEL_SPECS["fluxDev"], billed)
        context = ExecutionContext(
            nodes=[], edges=[], options=RunOptions(batch=BatchOptions())
        )
        prompt = NodeOutput(value="a", items=["a", "b"], type="text")

        result = await executor(parse_node({"id": "f", "type": "fluxDev"}), {"prompt": prompt}, context)

        assert calls == []
        assert result.status == "completed"
        assert [g.error for g in result.output.gallery_outputs] == [
            "Insufficient credits. Required: $0.50, Available: $0.10",
        ] * 2


class TestSupabaseCreditLedger:
    @pytest.fixture(autouse=True)
    def _fal_key(self, monkeypatch):
        monkeypatch.setenv("FAL_KEY", "test-key")

    def _ledger(self, balance):
        db = {"user_credits": [{"user_id": USER_ID, "balance": balance, "total_spent": 1.0, "total_purchased": 10.0}]}
        ledger = SupabaseCreditLedger(
            client=FakeSupabase(db), markup=1.1, pricing_transport=_pricing_transport()
        )
        return ledger, db

    @pytest.mark.asyncio
    async def test_price_includes_markup(self):
        ledger, _ = self._ledger(5.0)
        assert await ledger.fetch_model_price("fal-ai/flux/dev") == pytest.approx(0.055)

    @pytest.mark.asyncio
    async def test_reserve_deducts_and_records(self):
        ledger, db = self._ledger(5.0)

        reservation = await ledger.reserve(USER_ID, "fal-ai/flux/dev")

        assert reservation.cost == pytest.approx(0.055)
        assert db["user_credits"][0]["balance"] == pytest.approx(4.945)
        assert db["user_credits"][0]["total_spent"] == pytest.approx(1.055)
        tx = db["credit_transactions"][0]
        assert tx["id"] == reservation.transaction_id
        assert tx["transaction_type"] == "spend"
        assert tx["amount"] == pytest.approx(-0.055)
        assert tx["model_endpoint_id"] == "fal-ai/flux/dev"

    @pytest.mark.asyncio
    async def test_reserve_insufficient(self):
        ledger, db = self._ledger(0.01)

        with pytest.raises(InsufficientCreditsError) as exc_info:
            await ledger.reserve(USER_ID, "fal-ai/flux/dev")

        assert exc_info.value.available == pytest.approx(0.01)
        assert exc_info.value.required == pytest.approx(0.055)
        assert db["user_credits"][0]["balance"] == 0.01
        assert "credit_transactions" not in db

    @pytest.mark.asyncio
    async def test_refund_restores_balance(self):
        ledger, db = self._ledger(5.0)
        reservation = await ledger.reserve(USER_ID, "fal-ai/flux/dev")

        await ledger.refund(USER_ID, reservation.transaction_id, "No image generated")

        assert db["user_credits"][0]["balance"] == pytest.approx(5.0)
        refund = db["credit_transactions"][1]
        assert refund["transaction_type"] == "refund"
        assert refund["amount"] == pytest.approx(0.055)
        assert refund["metadata"] == {
            "original_transaction_id": reservation.transaction_id,
            "reason": "No image generated",
        }

    def test_account(self):
        ledger, _ = self._ledger(2.5)
        account = ledger.get_account(USER_ID)

        assert account.balance == 2.5
        assert account.total_purchased == 10.0
        assert account.transactions == []


class TestLedgerConcurrency:
    @pytest.fixture(autouse=True)
    def _fal_key(self, monkeypatch):
        monkeypatch.setenv("FAL_KEY", "test-key")

    def _ledger(self, balance, latency):
        db = {"user_credits": [{"user_id": USER_ID, "balance": balance, "total_spent": 0.0, "total_purchased": 10.0}]}
        ledger = SupabaseCreditLedger(
            client=FakeSupabase(db, latency=latency), markup=1.0, pricing_transport=_pricing_transport()
        )
        return ledger, db

    @pytest.mark.asyncio
    async def test_reserve_leaves_event_loop_free(self):
        ledger, _ = self._ledger(5.0, latency=0.05)
        ticks = 0

        async def ticker():
            nonlocal ticks
            while True:
                await asyncio.sleep(0.01)
                ticks += 1

        task = asyncio.create_task(ticker())
        try:
            await ledger.reserve(USER_ID, "fal-ai/flux/dev")
        finally:
            task.cancel()

        # four blocking round trips of 50ms each
        assert ticks >= 5

    @pytest.mark.asyncio
    async def test_concurrent_reserves_keep_balance_exact(self):
        ledger, db = self._ledger(5.0, latency=0.01)

        reservations = await asyncio.gather(
            *(ledger.reserve(USER_ID, "fal-ai/flux/dev") for _ in range(5))
        )

        assert db["user_credits"][0]["balance"] == pytest.approx(4.75)
        assert db["user_credits"][0]["total_spent"] == pytest.approx(0.25)
        assert len({r.transaction_id for r in reservations}) == 5
        balances = sorted(tx["balance_after"] for tx in db["credit_transactions"])
        assert balances == pytest.approx([4.75, 4.8, 4.85, 4.9, 4.95])

    @pytest.mark.asyncio
    async def test_billed_batch_items_overlap(self):
        ledger, db = self._ledger(5.0, latency=0.05)

        async def generate(prompt, media):
            await asyncio.sleep(0.3)
            return f"https://cdn/{prompt}.png"

        billed = billed_generator(generate, ledger, USER_ID, lambda media: "fal-ai/flux/dev")
        executor = GenerativeExecutor(MODEL_SPECS["fluxDev"], billed)
        context = ExecutionContext(nodes=[], edges=[], options=RunOptions(batch=BatchOptions()))
        prompt = NodeOutput(value="a", items=["a", "b", "c"], type="text")

        started = time.monotonic()
        result = await executor(parse_node({"id": "f", "type": "fluxDev"}), {"prompt": prompt}, context)
        elapsed = time.monotonic() - started

        assert [g.url for g in result.output.gallery_outputs] == [
            "https://cdn/a.png",
            "https://cdn/b.png",
            "https://cdn/c.png",
        ]
        assert db["user_credits"][0]["balance"] == pytest.approx(4.85)
        # reservations run one after another (3 x 0.2s) while generations overlap
        assert elapsed < 1.5
