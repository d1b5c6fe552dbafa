"""Pydantic models for the chat command adapter."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

ChatIntent = Literal[
    "create_challenge",
    "submit_proof",
    "list_challenges",
    "get_balance",
    "set_reminder",
    "help",
    "unknown",
]


class ChatEntities(BaseModel):
    title: str | None = None
    amount: int | None = None
    deadline: str | None = None
    description: str | None = None
    challenge_id: str | None = None
    remind_at: str | None = None


class ChatCommand(BaseModel):
    """An already-classified chat message."""

    phone: str = Field(min_length=5, max_length=32)
    intent: ChatIntent
    entities: ChatEntities = Field(default_factory=ChatEntities)
    media_url: str | None = None
    text: str | None = None


class ChatReply(BaseModel):
    intent: ChatIntent
    success: bool
    reply: str
    delivered: bool
    challenge_id: str | None = None
