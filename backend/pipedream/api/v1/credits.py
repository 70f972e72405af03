"""Credit balance endpoint."""

import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException

from pipedream.api.dependencies import get_credit_ledger
from pipedream.auth.dependencies import User, get_current_user
from pipedream.services.credits import CreditAccount, SupabaseCreditLedger

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/credits", tags=["credits"])


@router.get("", response_model=CreditAccount)
async def get_credits(
    user: User = Depends(get_current_user),
    ledger: SupabaseCreditLedger = Depends(get_credit_ledger),
):
    """Current balance, totals and the last 100 transactions of the authenticated user."""
    try:
        return await asyncio.to_thread(ledger.get_account, user.sub)
    except Exception as e:
        logger.exception("Failed to fetch credits for user %s", user.sub)
        raise HTTPException(status_code=500, detail=f"Failed to fetch credits: {e}")
