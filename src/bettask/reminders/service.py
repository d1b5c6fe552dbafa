"""Reminder scheduling and dispatch."""

from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo

import structlog

from bettask.challenges.service import get_owned_challenge
from bettask.challenges.state_machine import is_terminal
from bettask.db.models import Reminder
from bettask.db.repositories import UnitOfWork
from bettask.errors import StateConflictError, ValidationError
from bettask.notifications import templates
from bettask.notifications.gateway import NotificationService
from bettask.time_utils import ensure_utc, utcnow

logger = structlog.get_logger()

MAX_REMINDER_ATTEMPTS = 3


async def create_reminder(
    uow: UnitOfWork,
    owner_id: str,
    challenge_id: str,
    remind_at: datetime | None,
    *,
    now: datetime | None = None,
) -> Reminder:
    """Schedule a reminder before the challenge deadline. Commits."""
    now = now or utcnow()
    if remind_at is None:
        raise ValidationError("Please specify when you want to be reminded.")
    if remind_at.tzinfo is None:
        raise ValidationError(
            "The reminder time must include a time zone.",
            hint="Send the time as an ISO timestamp with an offset, e.g. 2026-06-05T09:00:00+05:30.",
        )

    challenge = await get_owned_challenge(uow, owner_id, challenge_id)
    if is_terminal(challenge):
        raise StateConflictError(
            f"This challenge is already marked as {challenge.status}.",
            hint="You can only set reminders for active challenges.",
        )

    remind_at = ensure_utc(remind_at)
    if remind_at <= now:
        raise ValidationError("The reminder time must be in the future.")
    if remind_at >= ensure_utc(challenge.deadline):
        raise ValidationError(
            "The reminder time can't be after the challenge deadline.",
            hint="Pick a time before the deadline.",
        )

    reminder = Reminder(owner_id=owner_id, challenge_id=challenge.id, remind_at=remind_at)
    await uow.reminders.add(reminder)
    await uow.commit()
    logger.info("reminder_created", reminder_id=reminder.id, challenge_id=challenge.id)
    return reminder


async def dispatch_due_reminders(
    uow: UnitOfWork,
    notifications: NotificationService,
    tz: ZoneInfo,
    *,
    now: datetime | None = None,
    batch_size: int = 100,
    max_attempts: int = MAX_REMINDER_ATTEMPTS,
) -> dict[str, int]:
    """Send every due, unsent reminder once.

    A reminder is only marked sent after the gateway accepted it. A failed
    send stays pending and moves behind fresh reminders; after
    ``max_attempts`` failures it is retired undelivered. Reminders whose
    owner has no chat number are retired straight away. Failures are
    counted, never raised.
    """
    now = now or utcnow()
    due = await uow.reminders.list_due(now, batch_size)
    summary = {"total": len(due), "successful": 0, "failed": 0}

    for reminder, challenge, owner in due:
        if is_terminal(challenge):
            # Nothing left to remind about; retire it quietly.
            await uow.reminders.mark_sent(reminder.id, now, delivered=False)
            await uow.commit()
            summary["successful"] += 1
            continue

        if not owner.phone:
            await uow.reminders.mark_sent(reminder.id, now, delivered=False)
            await uow.commit()
            summary["failed"] += 1
            logger.info("reminder_undeliverable", reminder_id=reminder.id, owner_id=owner.id)
            continue

        sent = await notifications.notify(owner.phone, templates.reminder(challenge.title, challenge.deadline, tz))
        if sent:
            await uow.reminders.mark_sent(reminder.id, now)
            await uow.commit()
            summary["successful"] += 1
            continue

        summary["failed"] += 1
        attempts = await uow.reminders.record_failure(reminder.id)
        if attempts >= max_attempts:
            await uow.reminders.mark_sent(reminder.id, now, delivered=False)
            logger.warning("reminder_abandoned", reminder_id=reminder.id, attempts=attempts)
        else:
            logger.warning("reminder_failed", reminder_id=reminder.id, challenge_id=challenge.id, attempts=attempts)
        await uow.commit()

    logger.info("reminders_dispatched", **summary)
    return summary
