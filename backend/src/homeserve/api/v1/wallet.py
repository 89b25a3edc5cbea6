"""Wallet API v1 endpoints."""

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from homeserve.api.dependencies import get_database
from homeserve.auth.middleware import require_auth
from homeserve.auth.models import UserAccount
from homeserve.storage.db import Database
from homeserve.wallet.ledger import WalletService

router = APIRouter(prefix="/wallet", tags=["wallet"])


# ==================== MODELS ====================


class WalletSummaryResponse(BaseModel):
    """Wallet balance and totals."""
    balance: float
    total_credited: float
    total_debited: float


class WalletTransactionResponse(BaseModel):
    """One wallet ledger line."""
    id: int
    amount: float
    balance_after: float
    operation: str
    reference_id: str | None = None
    description: str | None = None
    created_at: datetime

    class Config:
        from_attributes = True


# ==================== ENDPOINTS ====================


@router.get("", response_model=WalletSummaryResponse)
async def get_wallet(
    user: UserAccount = Depends(require_auth),
    database: Database = Depends(get_database),
):
    """Get current user's wallet balance and totals."""
    return WalletService(database).get_summary(user.id)


@router.get("/transactions", response_model=list[WalletTransactionResponse])
async def get_wallet_transactions(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user: UserAccount = Depends(require_auth),
    database: Database = Depends(get_database),
):
    """Get current user's wallet history, newest first."""
    return WalletService(database).get_history(user.id, limit=limit, offset=offset)
