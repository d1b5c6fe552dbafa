"""arq worker for scheduled jobs: reminder dispatch and the deadline sweep.

Runs as a separate process next to the API:

    arq bettask.workers.scheduler.WorkerSettings
"""

from __future__ import annotations

import logging

from arq import cron
from arq.connections import RedisSettings

from bettask.challenges.service import sweep_expired_challenges
from bettask.config import get_settings
from bettask.database import close_db, init_db, session_scope
from bettask.db.repositories import UnitOfWork
from bettask.middleware.logging import configure_logging
from bettask.notifications.gateway import NotificationService, get_notification_service
from bettask.reminders.service import dispatch_due_reminders
from bettask.time_utils import get_reference_timezone

logger = logging.getLogger(__name__)

_settings = get_settings()


async def startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize logging, the database and the messaging gateway."""
    settings = get_settings()
    configure_logging(settings)
    await init_db(settings.database_url)
    ctx["notifications"] = get_notification_service()
    ctx["tz"] = get_reference_timezone(settings.reference_timezone)
    logger.info("Scheduler worker started (environment=%s)", settings.environment)


async def shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    """Clean up on worker shutdown."""
    await close_db()
    logger.info("Scheduler worker shut down")


async def send_due_reminders(ctx: dict) -> dict[str, int]:  # type: ignore[type-arg]
    """Every minute: deliver reminders whose time has come."""
    notifications: NotificationService = ctx["notifications"]
    settings = get_settings()
    async with session_scope() as session:
        summary = await dispatch_due_reminders(
            UnitOfWork(session),
            notifications,
            ctx["tz"],
            batch_size=settings.reminder_batch_size,
        )
    if summary["total"]:
        logger.info(
            "Reminders processed: %d total, %d sent, %d failed",
            summary["total"], summary["successful"], summary["failed"],
        )
    return summary


async def sweep_deadlines(ctx: dict) -> dict[str, int]:  # type: ignore[type-arg]
    """Every five minutes: fail and settle open challenges past their deadline."""
    settings = get_settings()
    async with session_scope() as session:
        summary = await sweep_expired_challenges(
            UnitOfWork(session),
            notifications=ctx["notifications"],
            tz=ctx["tz"],
            batch_size=settings.reminder_batch_size,
            record_refund_on_success=settings.refund_record_on_success,
        )
    if summary["shortfall"]:
        logger.warning("Deadline sweep hit %d wallet shortfalls", summary["shortfall"])
    return summary


class WorkerSettings:
    """arq worker settings for the scheduler."""

    functions = [send_due_reminders, sweep_deadlines]
    cron_jobs = [
        cron(send_due_reminders, second=0, run_at_startup=False),
        cron(sweep_deadlines, minute=set(range(0, 60, 5)), second=0),
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = RedisSettings.from_dsn(_settings.arq_redis_url)
    max_jobs = 4
    job_timeout = 240
    allow_abort_jobs = True
