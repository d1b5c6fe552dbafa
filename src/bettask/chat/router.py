"""Chat adapter endpoint: already-classified commands from the chat gateway."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from bettask.chat.handlers import ChatCommandHandler, MediaDownloader
from bettask.chat.schemas import ChatCommand, ChatReply
from bettask.config import get_settings
from bettask.db.repositories import UnitOfWork
from bettask.dependencies import get_classifier, get_notifications, get_storage, get_uow
from bettask.notifications.gateway import NotificationService
from bettask.retry import RetryPolicy
from bettask.storage.media import BaseMediaStorage
from bettask.time_utils import get_reference_timezone
from bettask.verification.classifier import RelevanceClassifier
from bettask.verification.pipeline import VerificationPipeline

router = APIRouter(prefix="/api/v1", tags=["Chat"])


def get_media_downloader() -> MediaDownloader:
    return MediaDownloader(RetryPolicy.from_settings(get_settings()))


async def get_chat_handler(
    uow: UnitOfWork = Depends(get_uow),  # noqa: B008
    classifier: RelevanceClassifier = Depends(get_classifier),  # noqa: B008
    storage: BaseMediaStorage = Depends(get_storage),  # noqa: B008
    notifications: NotificationService = Depends(get_notifications),  # noqa: B008
    downloader: MediaDownloader = Depends(get_media_downloader),  # noqa: B008
) -> ChatCommandHandler:
    settings = get_settings()
    # The handler replies itself, so the pipeline gets no gateway of its own
    pipeline = VerificationPipeline.from_settings(settings, uow, classifier, storage, notifications=None)
    return ChatCommandHandler(
        uow,
        pipeline,
        notifications,
        downloader,
        tz=get_reference_timezone(settings.reference_timezone),
        min_stake=settings.min_stake,
        support_email=settings.support_email,
    )


@router.post("/chat/commands", response_model=ChatReply)
async def handle_command(
    command: ChatCommand,
    handler: ChatCommandHandler = Depends(get_chat_handler),  # noqa: B008
) -> ChatReply:
    """Run one chat command and send the reply to the sender."""
    return await handler.handle(command)
