"""Wallet API endpoints: balance, deposits, recent transactions."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from bettask.db.models import User, Wallet
from bettask.db.repositories import UnitOfWork
from bettask.dependencies import get_current_user, get_uow
from bettask.time_utils import ensure_utc
from bettask.wallet.schemas import DepositRequest, TransactionListResponse, TransactionResponse, WalletResponse
from bettask.wallet.service import deposit, get_wallet, recent_transactions

router = APIRouter(prefix="/api/v1", tags=["Wallet"])


def _wallet_response(wallet: Wallet) -> WalletResponse:
    return WalletResponse(owner_id=wallet.owner_id, balance=wallet.balance, updated_at=ensure_utc(wallet.updated_at))


@router.get("/wallet", response_model=WalletResponse)
async def balance(
    user: User = Depends(get_current_user),  # noqa: B008
    uow: UnitOfWork = Depends(get_uow),  # noqa: B008
) -> WalletResponse:
    return _wallet_response(await get_wallet(uow, user.id))


@router.post("/wallet/deposits", response_model=WalletResponse, status_code=201)
async def add_funds(
    body: DepositRequest,
    user: User = Depends(get_current_user),  # noqa: B008
    uow: UnitOfWork = Depends(get_uow),  # noqa: B008
) -> WalletResponse:
    """Credit the wallet. Payment collection happens upstream."""
    return _wallet_response(await deposit(uow, user.id, body.amount, body.description))


@router.get("/wallet/transactions", response_model=TransactionListResponse)
async def transactions(
    user: User = Depends(get_current_user),  # noqa: B008
    uow: UnitOfWork = Depends(get_uow),  # noqa: B008
) -> TransactionListResponse:
    """The 20 most recent ledger entries, newest first."""
    rows = await recent_transactions(uow, user.id)
    return TransactionListResponse(
        transactions=[
            TransactionResponse(
                id=t.id,
                amount=t.amount,
                type=t.type,
                description=t.description,
                challenge_id=t.challenge_id,
                created_at=ensure_utc(t.created_at),
            )
            for t in rows
        ]
    )
