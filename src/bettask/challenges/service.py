"""Challenge creation, lookup and the deadline sweep."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from zoneinfo import ZoneInfo

import structlog

from bettask.challenges.state_machine import ChallengeStateMachine
from bettask.db.models import Challenge, Submission
from bettask.db.repositories import UnitOfWork
from bettask.errors import AuthorizationError, InsufficientBalanceError, NotFoundError, ValidationError
from bettask.notifications import templates
from bettask.notifications.gateway import NotificationService
from bettask.time_utils import ensure_utc, utcnow
from bettask.wallet.settlement import SettlementEngine

logger = structlog.get_logger()

MIN_STAKE = 50
MAX_TITLE_LENGTH = 200


async def create_challenge(
    uow: UnitOfWork,
    owner_id: str,
    *,
    title: str,
    stake: int,
    deadline: datetime | None,
    description: str | None = None,
    verification_method: str | None = None,
    verification_details: str | None = None,
    min_stake: int = MIN_STAKE,
    now: datetime | None = None,
) -> Challenge:
    """Validate and persist a new active challenge. Commits."""
    now = now or utcnow()
    title = (title or "").strip()
    if not title:
        raise ValidationError(
            "Missing challenge title.",
            hint="Provide a title, amount, and deadline for your challenge.",
        )
    if len(title) > MAX_TITLE_LENGTH:
        raise ValidationError(f"Challenge title is longer than {MAX_TITLE_LENGTH} characters.")
    if stake < min_stake:
        raise ValidationError(
            f"Minimum challenge amount is ₹{min_stake}.",
            hint="Please set a higher stake.",
        )
    if deadline is None:
        raise ValidationError(
            "Missing challenge deadline.",
            hint="Use a format like 'tomorrow at 8pm' or an ISO date and time.",
        )
    if deadline.tzinfo is None:
        raise ValidationError(
            "The deadline must include a time zone.",
            hint="Send the deadline as an ISO timestamp with an offset, e.g. 2026-06-05T18:00:00+05:30.",
        )
    deadline = ensure_utc(deadline)
    if deadline <= now:
        raise ValidationError("The deadline must be in the future.")

    challenge = Challenge(
        owner_id=owner_id,
        title=title,
        description=(description or "").strip() or title,
        verification_method=verification_method,
        verification_details=verification_details,
        stake=stake,
        deadline=deadline,
        status="active",
    )
    await uow.challenges.add(challenge)
    await uow.commit()
    logger.info("challenge_created", challenge_id=challenge.id, owner_id=owner_id, stake=stake)
    return challenge


async def list_challenges(uow: UnitOfWork, owner_id: str) -> Sequence[Challenge]:
    return await uow.challenges.list_for_owner(owner_id)


async def get_owned_challenge(uow: UnitOfWork, owner_id: str, challenge_id: str) -> Challenge:
    challenge = await uow.challenges.get(challenge_id)
    if challenge is None:
        raise NotFoundError("Challenge not found.")
    if challenge.owner_id != owner_id:
        raise AuthorizationError("This challenge doesn't belong to you.")
    return challenge


async def get_challenge_detail(
    uow: UnitOfWork, owner_id: str, challenge_id: str
) -> tuple[Challenge, Submission | None]:
    challenge = await get_owned_challenge(uow, owner_id, challenge_id)
    submission = await uow.submissions.get_for_challenge(challenge.id)
    return challenge, submission


async def resolve_challenge(uow: UnitOfWork, owner_id: str, challenge_id: str | None) -> Challenge:
    """Use the given challenge, or the owner's most recent open one."""
    if challenge_id:
        return await get_owned_challenge(uow, owner_id, challenge_id)
    challenge = await uow.challenges.latest_open_for_owner(owner_id)
    if challenge is None:
        raise NotFoundError(
            "You don't have any active challenges.",
            hint="Create a challenge first or specify which challenge you mean.",
        )
    return challenge


async def sweep_expired_challenges(
    uow: UnitOfWork,
    *,
    notifications: NotificationService | None = None,
    tz: ZoneInfo | None = None,
    now: datetime | None = None,
    batch_size: int = 100,
    record_refund_on_success: bool = True,
) -> dict[str, int]:
    """Fail and settle every open challenge whose deadline has passed.

    Each challenge commits on its own so one shortfall does not hold back
    the rest of the batch.
    """
    now = now or utcnow()
    machine = ChallengeStateMachine(SettlementEngine(uow.challenges, uow.wallets, record_refund_on_success))
    expired = list(await uow.challenges.list_expired(now, batch_size))
    summary = {"total": len(expired), "deducted": 0, "shortfall": 0}

    for challenge in expired:
        deducted = False
        try:
            result = await machine.expire(challenge, now)
            deducted = result is not None and result.outcome == "deducted"
            summary["deducted"] += int(deducted)
        except InsufficientBalanceError:
            summary["shortfall"] += 1
        await uow.commit()

        if notifications is not None and tz is not None:
            owner = await uow.users.get(challenge.owner_id)
            if owner is not None and owner.phone:
                await notifications.notify(
                    owner.phone, templates.deadline_missed(challenge.title, challenge.stake, deducted)
                )

    if expired:
        logger.info("deadline_sweep_complete", **summary)
    return summary
