"""Liveness, readiness and version probes."""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from bettask.config import Settings, get_settings
from bettask.database import get_session
from bettask.redis_client import check_redis

router = APIRouter()


async def _check_database(db: AsyncSession) -> str:
    try:
        await db.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as exc:
        return f"error: {type(exc).__name__}"
    return "ok"


def _collaborators(settings: Settings) -> dict[str, str]:
    """Outbound services, reported but not gated on: an unconfigured classifier
    only means every proof lands in manual review."""
    return {
        "classifier": "configured" if settings.classifier_api_key else "not_configured",
        "messaging": settings.messaging_provider,
        "storage": settings.storage_provider,
    }


@router.get("/health")
async def health() -> dict[str, str]:
    """Process is up."""
    return {"status": "healthy"}


@router.get("/ready")
async def readiness(
    db: AsyncSession = Depends(get_session),  # noqa: B008
) -> dict[str, object]:
    """Ready when the database and Redis answer."""
    checks: dict[str, str] = {"database": await _check_database(db), "redis": await check_redis()}
    ready = all(value == "ok" for value in checks.values())
    return {
        "status": "ready" if ready else "degraded",
        "checks": checks | _collaborators(get_settings()),
    }


@router.get("/version")
async def version() -> dict[str, str]:
    settings = get_settings()
    return {"version": settings.app_version, "environment": settings.environment}
