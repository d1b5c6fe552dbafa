"""Shared test fixtures.

Database tests run against a throwaway SQLite file (aiosqlite) with the
schema created from the ORM metadata. External collaborators (classifier,
media storage, messaging gateway) are replaced by in-memory fakes.
"""

from __future__ import annotations

import io
from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timedelta

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from PIL import Image
from sqlalchemy.ext.asyncio import AsyncSession

from bettask.config import get_settings
from bettask.database import close_db, get_engine, get_session_factory, init_db
from bettask.db import models  # noqa: F401
from bettask.db.base import Base
from bettask.db.models import Challenge, User
from bettask.db.repositories import UnitOfWork
from bettask.notifications.gateway import NotificationService
from bettask.verification.pipeline import VerificationPipeline
from bettask.wallet.service import deposit
from support import IST, NOW, FakeClassifier, FakeStorage, RecordingProvider


# ── Settings / database ──


@pytest.fixture(autouse=True)
def _test_settings(tmp_path, monkeypatch):
    """Point settings at throwaway resources for every test."""
    monkeypatch.setenv("BETTASK_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'bettask.db'}")
    monkeypatch.setenv("BETTASK_LOCAL_STORAGE_PATH", str(tmp_path / "media"))
    monkeypatch.setenv("BETTASK_MESSAGING_PROVIDER", "log")
    monkeypatch.setenv("BETTASK_STORAGE_PROVIDER", "local")
    monkeypatch.setenv("BETTASK_LOG_FORMAT", "console")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest_asyncio.fixture
async def database() -> AsyncGenerator[None, None]:
    """Initialise the engine and create the schema."""
    await init_db(get_settings().database_url)
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await close_db()


@pytest_asyncio.fixture
async def db_session(database) -> AsyncGenerator[AsyncSession, None]:
    async with get_session_factory()() as session:
        yield session


@pytest.fixture
def uow(db_session: AsyncSession) -> UnitOfWork:
    return UnitOfWork(db_session)


# ── Domain helpers ──


@pytest_asyncio.fixture
async def owner(uow: UnitOfWork) -> User:
    user = await uow.users.upsert_by_phone("+919800000001")
    await uow.commit()
    return user


@pytest.fixture
def make_challenge(uow: UnitOfWork, owner: User) -> Callable:
    async def _make(
        stake: int = 500,
        balance: int | None = None,
        deadline: datetime | None = None,
        status: str = "active",
        title: str = "Go to the gym",
    ) -> Challenge:
        if balance is not None:
            await deposit(uow, owner.id, balance)
        challenge = Challenge(
            owner_id=owner.id,
            title=title,
            description="One hour workout",
            stake=stake,
            deadline=deadline or NOW + timedelta(days=1),
            status=status,
        )
        await uow.challenges.add(challenge)
        await uow.commit()
        return challenge

    return _make


@pytest.fixture
def make_photo() -> Callable[..., bytes]:
    """JPEG bytes, optionally stamped with an EXIF DateTime in IST wall-clock time."""

    def _make(captured_at: datetime | None = None) -> bytes:
        image = Image.new("RGB", (16, 12), "white")
        buf = io.BytesIO()
        if captured_at is None:
            image.save(buf, format="JPEG")
        else:
            exif = Image.Exif()
            exif[0x0132] = captured_at.astimezone(IST).strftime("%Y:%m:%d %H:%M:%S")
            image.save(buf, format="JPEG", exif=exif)
        return buf.getvalue()

    return _make


@pytest.fixture
def recording_provider() -> RecordingProvider:
    return RecordingProvider()


@pytest.fixture
def notifications(recording_provider: RecordingProvider) -> NotificationService:
    return NotificationService(provider=recording_provider)


# ── HTTP client ──


@pytest.fixture
def fake_classifier() -> FakeClassifier:
    return FakeClassifier()


@pytest.fixture
def fake_storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def app(
    database,
    fake_classifier: FakeClassifier,
    fake_storage: FakeStorage,
    notifications: NotificationService,
) -> FastAPI:
    """The ASGI app with fakes for every outbound service."""
    from bettask import dependencies
    from bettask.main import create_app

    application = create_app()
    application.dependency_overrides[dependencies.get_classifier] = lambda: fake_classifier
    application.dependency_overrides[dependencies.get_storage] = lambda: fake_storage
    application.dependency_overrides[dependencies.get_notifications] = lambda: notifications
    return application


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP test client. Lifespan does not run; the database fixture did the setup."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def user_headers() -> dict[str, str]:
    return {"X-User-Id": "user-0001"}


@pytest.fixture
def make_pipeline(uow: UnitOfWork, notifications: NotificationService) -> Callable[..., VerificationPipeline]:
    """Pipeline on the test session with the fixed NOW clock."""

    def _make(
        classifier: FakeClassifier | None = None,
        storage: FakeStorage | None = None,
        **kwargs,
    ) -> VerificationPipeline:
        kwargs.setdefault("clock", lambda: NOW)
        return VerificationPipeline(
            uow,
            classifier or FakeClassifier(),
            storage or FakeStorage(),
            notifications,
            tz=IST,
            **kwargs,
        )

    return _make
