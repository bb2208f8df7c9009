"""Creator earnings and withdrawal router."""
from decimal import Decimal
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from patronly.database import get_db
from patronly.config import settings
from patronly.auth.dependencies import get_identity
from patronly.auth.security import Identity
from patronly.schemas.earnings import EarningListResponse, EarningResponse, PendingBalanceResponse
from patronly.schemas.withdrawals import WithdrawalListResponse, WithdrawalResponse
from patronly.services.earnings_ledger import EarningsLedger
from patronly.services.withdrawals import WithdrawalService

router = APIRouter()


@router.get("/api/earnings/me", response_model=EarningListResponse)
async def get_my_earnings(
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db)
):
    """Earnings history for the authenticated creator (newest first)."""
    earnings = await EarningsLedger(db).history(identity.user_id)
    return EarningListResponse(
        items=[EarningResponse.model_validate(e) for e in earnings],
        total=len(earnings),
    )


@router.get("/api/earnings/me/balance", response_model=PendingBalanceResponse)
async def get_my_pending_balance(
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db)
):
    """Pending (withdrawable) balance for the authenticated creator."""
    balance = await EarningsLedger(db).pending_balance(identity.user_id)
    minimum = Decimal(settings.MIN_WITHDRAWAL_AMOUNT)
    return PendingBalanceResponse(
        owner_id=identity.user_id,
        pending_balance=balance,
        minimum_withdrawal=minimum,
        can_withdraw=balance >= minimum,
    )


@router.post("/api/withdrawals", response_model=WithdrawalResponse, status_code=status.HTTP_201_CREATED)
async def request_withdrawal(
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db)
):
    """
    Withdraw the full pending balance.

    The amount is computed server-side; the request body carries nothing.
    """
    return await WithdrawalService(db).request_withdrawal(identity.user_id)


@router.get("/api/withdrawals/me", response_model=WithdrawalListResponse)
async def list_my_withdrawals(
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db)
):
    """Withdrawal history for the authenticated creator."""
    withdrawals = await WithdrawalService(db).history(identity.user_id)
    return WithdrawalListResponse(
        items=[WithdrawalResponse.model_validate(w) for w in withdrawals],
        total=len(withdrawals),
    )
