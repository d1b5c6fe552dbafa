"""Wallet balance, deposits and transaction history."""

from __future__ import annotations

from collections.abc import Sequence

import structlog

from bettask.db.models import Transaction, Wallet
from bettask.db.repositories import UnitOfWork
from bettask.errors import ValidationError
from bettask.time_utils import utcnow

logger = structlog.get_logger()

RECENT_TRANSACTIONS = 20
MAX_DEPOSIT = 1_000_000


async def get_wallet(uow: UnitOfWork, owner_id: str) -> Wallet:
    """Return the owner's wallet, creating an empty one on first access."""
    wallet = await uow.wallets.get_or_create(owner_id)
    await uow.commit()
    return wallet


async def deposit(uow: UnitOfWork, owner_id: str, amount: int, description: str | None = None) -> Wallet:
    """Credit the wallet and record a deposit transaction in one commit."""
    if amount <= 0:
        raise ValidationError("Deposit amount must be positive.")
    if amount > MAX_DEPOSIT:
        raise ValidationError(f"Deposits are limited to ₹{MAX_DEPOSIT:,} at a time.")

    await uow.wallets.get_or_create(owner_id)
    wallet = await uow.wallets.get_for_update(owner_id)
    assert wallet is not None
    now = utcnow()
    wallet.balance += amount
    wallet.updated_at = now
    await uow.wallets.add_transaction(Transaction(
        owner_id=owner_id,
        amount=amount,
        type="deposit",
        description=(description or "Wallet deposit")[:256],
        created_at=now,
    ))
    await uow.commit()
    logger.info("wallet_deposit", owner_id=owner_id, amount=amount, balance_after=wallet.balance)
    return wallet


async def recent_transactions(uow: UnitOfWork, owner_id: str, limit: int = RECENT_TRANSACTIONS) -> Sequence[Transaction]:
    return await uow.wallets.list_transactions(owner_id, limit)
