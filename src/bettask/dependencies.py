"""Shared FastAPI dependencies."""

from __future__ import annotations

from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from bettask.config import get_settings
from bettask.database import get_session
from bettask.db.models import User
from bettask.db.repositories import UnitOfWork
from bettask.notifications.gateway import NotificationService, get_notification_service
from bettask.storage.media import BaseMediaStorage, get_media_storage
from bettask.verification.classifier import GeminiClassifier, RelevanceClassifier
from bettask.verification.pipeline import VerificationPipeline

get_db = get_session

_MAX_USER_ID_LENGTH = 36


async def get_uow(db: AsyncSession = Depends(get_session)) -> UnitOfWork:  # noqa: B008
    return UnitOfWork(db)


async def get_current_user(
    x_user_id: str | None = Header(None),
    uow: UnitOfWork = Depends(get_uow),  # noqa: B008
) -> User:
    """
    Resolve the caller from the X-User-Id header set by the upstream gateway.

    Unknown ids are provisioned on first use. Raises 401 if the header is
    missing or malformed.
    """
    user_id = (x_user_id or "").strip()
    if not user_id or len(user_id) > _MAX_USER_ID_LENGTH:
        raise HTTPException(status_code=401, detail="Missing or invalid X-User-Id header")

    user = await uow.users.get(user_id)
    if user is None:
        user = User(id=user_id)
        uow.session.add(user)
        await uow.commit()
    return user


def get_classifier() -> RelevanceClassifier:
    return GeminiClassifier.from_settings(get_settings())


def get_storage() -> BaseMediaStorage:
    return get_media_storage()


def get_notifications() -> NotificationService:
    return get_notification_service()


async def get_pipeline(
    uow: UnitOfWork = Depends(get_uow),  # noqa: B008
    classifier: RelevanceClassifier = Depends(get_classifier),  # noqa: B008
    storage: BaseMediaStorage = Depends(get_storage),  # noqa: B008
    notifications: NotificationService = Depends(get_notifications),  # noqa: B008
) -> VerificationPipeline:
    return VerificationPipeline.from_settings(get_settings(), uow, classifier, storage, notifications)
