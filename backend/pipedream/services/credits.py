"""
Per-call credit billing for generative models.

Billing sits around the generators, not inside the executors: the API layer
wraps each generator with ``billed_generator`` so every remote call reserves
credits first and is refunded if it fails. The engine itself runs unbilled.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Protocol

import httpx
from pydantic import BaseModel, Field
from supabase import Client

from pipedream import config
from pipedream.services.executors.generative import MediaGenerator, MediaInputs

logger = logging.getLogger(__name__)


class InsufficientCreditsError(Exception):
    def __init__(self, required: float, available: float):
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient credits. Required: ${required:.2f}, Available: ${available:.2f}"
        )


class Reservation(BaseModel):
    transaction_id: str
    cost: float
    endpoint_id: str


class CreditAccount(BaseModel):
    balance: float = 0.0
    total_purchased: float = 0.0
    total_spent: float = 0.0
    transactions: list[dict[str, Any]] = Field(default_factory=list)


class CreditLedger(Protocol):
    async def reserve(self, user_id: str, endpoint_id: str) -> Reservation: ...

    async def refund(self, user_id: str, transaction_id: str, reason: str | None = None) -> None: ...


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SupabaseCreditLedger:
    """Credits kept in ``user_credits`` with an audit trail in ``credit_transactions``."""

    def __init__(
        self,
        client: Client | None = None,
        *,
        markup: float | None = None,
        pricing_transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._client = client
        self.markup = config.credit_markup_multiplier() if markup is None else markup
        self._pricing_transport = pricing_transport
        self._balance_lock = asyncio.Lock()

    @property
    def client(self) -> Client:
        if self._client is None:
            from pipedream.db.supabase import get_supabase

            self._client = get_supabase().client
        return self._client

    async def fetch_model_price(self, endpoint_id: str) -> float:
        """Current fal.ai unit price for ``endpoint_id`` with the markup applied."""
        timeout = httpx.Timeout(30.0, connect=10.0)
        async with httpx.AsyncClient(timeout=timeout, transport=self._pricing_transport) as client:
            response = await client.get(
                config.fal_pricing_url(),
                params={"endpoint_id": endpoint_id},
                headers={"Authorization": f"Key {config.fal_key()}"},
            )
        if response.status_code >= 400:
            raise RuntimeError(
                f"Failed to fetch pricing: {response.reason_phrase} - {response.text[:200]}"
            )
        try:
            data = response.json()
        except ValueError:
            raise RuntimeError(f"Invalid JSON response from pricing API: {response.text[:200]}")

        prices = data.get("prices") or []
        if not prices:
            raise RuntimeError(f"No pricing found for endpoint: {endpoint_id}")
        return float(prices[0]["unit_price"]) * self.markup

    def get_balance(self, user_id: str) -> float:
        result = self.client.table("user_credits")\
            .select("balance")\
            .eq("user_id", user_id)\
            .execute()
        if not result.data:
            raise RuntimeError("Failed to fetch user balance")
        return float(result.data[0]["balance"])

    def get_account(self, user_id: str, transaction_limit: int = 100) -> CreditAccount:
        """Balance totals plus the most recent transactions, newest first."""
        credits = self.client.table("user_credits")\
            .select("balance, total_purchased, total_spent")\
            .eq("user_id", user_id)\
            .execute()
        transactions = self.client.table("credit_transactions")\
            .select("*")\
            .eq("user_id", user_id)\
            .order("created_at", desc=True)\
            .limit(transaction_limit)\
            .execute()

        row = credits.data[0] if credits.data else {}
        return CreditAccount(
            balance=float(row.get("balance") or 0),
            total_purchased=float(row.get("total_purchased") or 0),
            total_spent=float(row.get("total_spent") or 0),
            transactions=transactions.data or [],
        )

    # The supabase client is synchronous, so every ledger mutation runs in a
    # worker thread. ``_balance_lock`` keeps each read-modify-write of
    # ``user_credits`` whole while other coroutines keep running.

    def _deduct(self, user_id: str, endpoint_id: str, cost: float) -> Reservation:
        result = self.client.table("user_credits")\
            .select("balance, total_spent")\
            .eq("user_id", user_id)\
            .execute()
        if not result.data:
            raise RuntimeError("Failed to fetch user credits")

        row = result.data[0]
        balance = float(row["balance"])
        if balance < cost:
            raise InsufficientCreditsError(required=cost, available=balance)

        new_balance = balance - cost
        self.client.table("user_credits")\
            .update({
                "balance": new_balance,
                "total_spent": float(row.get("total_spent") or 0) + cost,
                "updated_at": _now(),
            })\
            .eq("user_id", user_id)\
            .execute()

        tx = self.client.table("credit_transactions")\
            .insert({
                "user_id": user_id,
                "amount": -cost,
                "balance_after": new_balance,
                "transaction_type": "spend",
                "model_endpoint_id": endpoint_id,
            })\
            .execute()
        if not tx.data:
            raise RuntimeError("Failed to record transaction: No data returned")

        logger.info(
            "Credits deducted for %s: $%.2f (balance: $%.2f)", endpoint_id, cost, new_balance
        )
        return Reservation(transaction_id=str(tx.data[0]["id"]), cost=cost, endpoint_id=endpoint_id)

    def _credit_back(self, user_id: str, transaction_id: str, reason: str | None) -> None:
        original = self.client.table("credit_transactions")\
            .select("amount, model_endpoint_id")\
            .eq("id", transaction_id)\
            .execute()
        if not original.data:
            logger.error("Failed to fetch transaction %s for refund", transaction_id)
            return

        refund_amount = abs(float(original.data[0]["amount"]))
        new_balance = self.get_balance(user_id) + refund_amount

        self.client.table("user_credits")\
            .update({"balance": new_balance, "updated_at": _now()})\
            .eq("user_id", user_id)\
            .execute()
        self.client.table("credit_transactions")\
            .insert({
                "user_id": user_id,
                "amount": refund_amount,
                "balance_after": new_balance,
                "transaction_type": "refund",
                "model_endpoint_id": original.data[0].get("model_endpoint_id"),
                "metadata": {"original_transaction_id": transaction_id, "reason": reason},
            })\
            .execute()
        logger.info("Credits refunded: $%.2f (balance: $%.2f)", refund_amount, new_balance)

    async def reserve(self, user_id: str, endpoint_id: str) -> Reservation:
        cost = await self.fetch_model_price(endpoint_id)
        async with self._balance_lock:
            return await asyncio.to_thread(self._deduct, user_id, endpoint_id, cost)

    async def refund(self, user_id: str, transaction_id: str, reason: str | None = None) -> None:
        async with self._balance_lock:
            await asyncio.to_thread(self._credit_back, user_id, transaction_id, reason)


def billed_generator(
    generate: MediaGenerator,
    ledger: CreditLedger,
    user_id: str,
    endpoint_for: Callable[[MediaInputs], str],
) -> MediaGenerator:
    """Reserve credits before each call and refund them when the call does not produce a result."""

    async def _billed(prompt: str, media: MediaInputs) -> str:
        endpoint_id = endpoint_for(media)
        reservation = await ledger.reserve(user_id, endpoint_id)
        try:
            return await generate(prompt, media)
        except (Exception, asyncio.CancelledError) as e:
            reason = str(e) or type(e).__name__
            try:
                await ledger.refund(user_id, reservation.transaction_id, reason)
            except Exception:
                logger.exception("Refund of transaction %s failed", reservation.transaction_id)
            raise

    return _billed


def billing_wrapper(ledger: CreditLedger, user_id: str) -> Callable[[Any], MediaGenerator]:
    """Adapter for ``build_fal_generators(wrap=...)``."""
    return lambda generator: billed_generator(generator, ledger, user_id, generator.endpoint_for)
