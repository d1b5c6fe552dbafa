"""Pydantic request/response models for wallet endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class WalletResponse(BaseModel):
    owner_id: str
    balance: int
    updated_at: datetime


class DepositRequest(BaseModel):
    amount: int = Field(gt=0)
    description: str | None = Field(default=None, max_length=256)


class TransactionResponse(BaseModel):
    id: str
    amount: int
    type: str
    description: str | None = None
    challenge_id: str | None = None
    created_at: datetime


class TransactionListResponse(BaseModel):
    transactions: list[TransactionResponse]
