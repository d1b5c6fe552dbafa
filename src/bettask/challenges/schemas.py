"""Pydantic request/response models for challenge endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class CreateChallengeRequest(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    stake: int
    deadline: datetime
    description: str | None = Field(default=None, max_length=2000)
    verification_method: str | None = Field(default=None, max_length=64)
    verification_details: str | None = Field(default=None, max_length=2000)


class SubmissionResponse(BaseModel):
    id: str
    verification_status: str
    verified: bool | None
    metadata_attempts: int
    ai_attempts: int
    metadata_attempts_left: int
    ai_attempts_left: int
    verification_notes: str | None = None
    media_url: str | None = None
    proof_text: str | None = None
    submitted_at: datetime | None = None


class ChallengeResponse(BaseModel):
    id: str
    title: str
    description: str
    verification_method: str | None = None
    verification_details: str | None = None
    stake: int
    deadline: datetime
    status: str
    settlement_outcome: str | None = None
    settled_at: datetime | None = None
    created_at: datetime
    submission: SubmissionResponse | None = None


class ChallengeListResponse(BaseModel):
    challenges: list[ChallengeResponse]
    total: int


class ErrorBody(BaseModel):
    detail: str
    code: str
    hint: str


class SettlementResponse(BaseModel):
    outcome: str
    amount: int
    balance_after: int | None = None


class VerificationResponse(BaseModel):
    challenge_id: str
    submission_id: str
    challenge_status: str
    verification_status: str
    verdict: str | None
    reason: str | None
    notes: str | None
    attempts_left: int
    metadata_attempts_left: int
    ai_attempts_left: int
    media_url: str | None = None
    settlement: SettlementResponse | None = None
    error: ErrorBody | None = None


class CreateReminderRequest(BaseModel):
    remind_at: datetime


class ReminderResponse(BaseModel):
    id: str
    challenge_id: str
    remind_at: datetime
    sent: bool
