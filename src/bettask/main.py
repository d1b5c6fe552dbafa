"""BetTask API application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from urllib.parse import urlparse

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from bettask.challenges.router import router as challenges_router
from bettask.chat.router import router as chat_router
from bettask.config import Settings, get_settings
from bettask.database import close_db, init_db
from bettask.health.router import router as health_router
from bettask.middleware import setup_middleware
from bettask.redis_client import close_redis, init_redis
from bettask.wallet.router import router as wallet_router


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Open the database and Redis for the life of the process."""
    settings = get_settings()
    await init_db(settings.database_url)
    await init_redis(settings.redis_url)
    try:
        yield
    finally:
        await close_redis()
        await close_db()


def _mount_local_media(app: FastAPI, settings: Settings) -> None:
    """Serve locally stored proof photos under the path of ``storage_base_url``."""
    if settings.storage_provider.lower() != "local":
        return
    path = urlparse(settings.storage_base_url).path.rstrip("/") or "/media"
    app.mount(path, StaticFiles(directory=settings.local_storage_path, check_dir=False), name="media")


def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="BetTask API",
        description="Stake money on your goals: proof verification and settlement",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(challenges_router)
    app.include_router(wallet_router)
    app.include_router(chat_router)
    _mount_local_media(app, settings)

    return app


app = create_app()
