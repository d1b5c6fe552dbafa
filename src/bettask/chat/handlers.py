"""Chat command adapter.

Turns an already-classified chat command into calls on the same services
and VerificationPipeline the HTTP API uses, and answers through the
messaging gateway. Domain errors become reply text (message plus hint).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from zoneinfo import ZoneInfo

import httpx
import structlog

from bettask.challenges.service import create_challenge, list_challenges, resolve_challenge
from bettask.chat.schemas import ChatCommand, ChatReply
from bettask.db.models import User
from bettask.db.repositories import UnitOfWork
from bettask.errors import BetTaskError, ExternalServiceError, RetryExhaustedError, ValidationError
from bettask.notifications import templates
from bettask.notifications.gateway import NotificationService
from bettask.reminders.service import create_reminder
from bettask.retry import RetryPolicy
from bettask.time_utils import localize
from bettask.verification.pipeline import ProofSubmission, VerificationPipeline, outcome_message
from bettask.wallet.service import get_wallet

logger = structlog.get_logger()

MAX_MEDIA_BYTES = 10 * 1024 * 1024


@dataclass
class _Result:
    success: bool
    reply: str
    challenge_id: str | None = None


def parse_when(value: str | None, tz: ZoneInfo, *, field: str) -> datetime | None:
    """Parse an ISO timestamp; naive values are read as wall-clock time in ``tz``."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError as exc:
        raise ValidationError(
            f"I couldn't understand the {field} format.",
            hint="Please use a format like 'tomorrow at 8pm' or 'June 5th'.",
        ) from exc
    return localize(parsed, tz)


class MediaDownloader:
    """Fetch chat media by URL with the transport retry budget."""

    def __init__(self, retry_policy: RetryPolicy, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.retry_policy = retry_policy
        self._transport = transport

    async def download(self, url: str) -> tuple[bytes, str]:
        async def _call() -> tuple[bytes, str]:
            async with httpx.AsyncClient(timeout=30.0, transport=self._transport, follow_redirects=True) as client:
                response = await client.get(url)
                response.raise_for_status()
                content_type = response.headers.get("content-type", "image/jpeg").split(";")[0].strip()
                return response.content, content_type

        try:
            data, content_type = await self.retry_policy.run("media_download", _call)
        except (httpx.HTTPError, httpx.InvalidURL, RetryExhaustedError) as exc:
            logger.warning("media_download_failed", error=str(exc), outcome="infrastructure_error")
            raise ExternalServiceError(
                "I couldn't download your photo.",
                hint="Please send the photo again.",
            ) from exc
        if len(data) > MAX_MEDIA_BYTES:
            raise ValidationError("The photo is too large.", hint="Send an image smaller than 10 MB.")
        return data, content_type


class ChatCommandHandler:
    def __init__(
        self,
        uow: UnitOfWork,
        pipeline: VerificationPipeline,
        notifications: NotificationService,
        downloader: MediaDownloader,
        *,
        tz: ZoneInfo,
        min_stake: int,
        support_email: str,
    ) -> None:
        self.uow = uow
        self.pipeline = pipeline
        self.notifications = notifications
        self.downloader = downloader
        self.tz = tz
        self.min_stake = min_stake
        self.support_email = support_email

    async def handle(self, command: ChatCommand) -> ChatReply:
        user = await self.uow.users.upsert_by_phone(command.phone)
        await self.uow.commit()
        structlog.contextvars.bind_contextvars(intent=command.intent)

        try:
            result = await self._dispatch(user, command)
        except BetTaskError as exc:
            logger.info("chat_command_rejected", code=exc.code)
            result = _Result(False, templates.error_reply(exc.message, exc.hint))

        delivered = await self.notifications.notify(command.phone, result.reply)
        return ChatReply(
            intent=command.intent,
            success=result.success,
            reply=result.reply,
            delivered=delivered,
            challenge_id=result.challenge_id,
        )

    async def _dispatch(self, user: User, command: ChatCommand) -> _Result:
        entities = command.entities
        if command.intent == "create_challenge":
            if not entities.title or not entities.amount or not entities.deadline:
                raise ValidationError(
                    "Missing required information.",
                    hint="Please provide a title, amount, and deadline for your challenge.",
                )
            challenge = await create_challenge(
                self.uow,
                user.id,
                title=entities.title,
                stake=entities.amount,
                deadline=parse_when(entities.deadline, self.tz, field="deadline"),
                description=entities.description,
                min_stake=self.min_stake,
            )
            return _Result(
                True,
                templates.challenge_created(challenge.title, challenge.stake, challenge.deadline, self.tz),
                challenge.id,
            )

        if command.intent == "submit_proof":
            if not command.media_url:
                raise ValidationError(
                    "Please attach a photo as proof for your challenge.",
                    hint="Send a photo with the caption 'proof for challenge'.",
                )
            challenge = await resolve_challenge(self.uow, user.id, entities.challenge_id)
            data, content_type = await self.downloader.download(command.media_url)
            outcome = await self.pipeline.submit(
                user.id,
                challenge.id,
                ProofSubmission(data=data, content_type=content_type, proof_text=command.text),
            )
            success = outcome.verdict == "pass" and outcome.error is None
            return _Result(success, outcome_message(challenge, outcome), challenge.id)

        if command.intent == "list_challenges":
            challenges = await list_challenges(self.uow, user.id)
            return _Result(True, templates.challenge_list(challenges, self.tz))

        if command.intent == "get_balance":
            wallet = await get_wallet(self.uow, user.id)
            return _Result(True, templates.balance(wallet.balance))

        if command.intent == "set_reminder":
            remind_at = parse_when(entities.remind_at, self.tz, field="reminder time")
            challenge = await resolve_challenge(self.uow, user.id, entities.challenge_id)
            reminder = await create_reminder(self.uow, user.id, challenge.id, remind_at)
            return _Result(True, templates.reminder_set(challenge.title, reminder.remind_at, self.tz), challenge.id)

        if command.intent == "help":
            return _Result(True, templates.help_text(self.support_email))

        return _Result(
            False,
            "🤔 I didn't quite get that. Send 'help' to see what I can do.",
        )
