"""Challenge lifecycle state machine.

State progression: active -> pending_verification -> completed | failed
Deadline expiry fails an open challenge directly. Terminal states never move.
"""

from __future__ import annotations

from datetime import datetime

import structlog

from bettask.db.models import Challenge
from bettask.errors import StateConflictError
from bettask.time_utils import ensure_utc, utcnow
from bettask.verification.attempts import Verdict
from bettask.wallet.settlement import SettlementEngine, SettlementResult

logger = structlog.get_logger()

ACTIVE = "active"
PENDING_VERIFICATION = "pending_verification"
COMPLETED = "completed"
FAILED = "failed"

TERMINAL_STATUSES = frozenset({COMPLETED, FAILED})

VALID_TRANSITIONS: dict[str, list[str]] = {
    ACTIVE: [PENDING_VERIFICATION, FAILED],
    PENDING_VERIFICATION: [PENDING_VERIFICATION, COMPLETED, FAILED],
    COMPLETED: [],
    FAILED: [],
}

_VERDICT_TARGETS: dict[str, str] = {
    "pass": COMPLETED,
    "retry": PENDING_VERIFICATION,
    "exhausted": FAILED,
}


def validate_transition(current_status: str, target_status: str) -> None:
    """Raise StateConflictError if the transition is not allowed."""
    valid = VALID_TRANSITIONS.get(current_status, [])
    if target_status not in valid:
        raise StateConflictError(
            f"Invalid transition: {current_status} -> {target_status}.",
            hint=_terminal_hint(current_status),
        )


def _terminal_hint(status: str) -> str:
    if status == COMPLETED:
        return "This challenge is already completed. Create a new challenge to keep going."
    if status == FAILED:
        return "This challenge has already ended. Create a new challenge to keep going."
    return "Refresh the challenge and try again."


def is_terminal(challenge: Challenge) -> bool:
    return challenge.status in TERMINAL_STATUSES


def is_expired(challenge: Challenge, now: datetime | None = None) -> bool:
    return ensure_utc(challenge.deadline) <= (now or utcnow())


def ensure_accepts_submission(challenge: Challenge, now: datetime | None = None) -> None:
    """Reject proofs for terminal or past-deadline challenges."""
    if is_terminal(challenge):
        raise StateConflictError(
            f"This challenge is already marked as {challenge.status}.",
            hint=_terminal_hint(challenge.status),
        )
    if is_expired(challenge, now):
        raise StateConflictError(
            "The deadline for this challenge has passed.",
            hint="Proof can no longer be submitted. Create a new challenge to keep going.",
        )


def transition(challenge: Challenge, target_status: str, *, cause: str) -> Challenge:
    """Move the challenge to ``target_status``. Caller commits."""
    validate_transition(challenge.status, target_status)
    previous = challenge.status
    challenge.status = target_status
    challenge.updated_at = utcnow()
    logger.info(
        "challenge_transition",
        challenge_id=challenge.id,
        from_status=previous,
        to_status=target_status,
        cause=cause,
    )
    return challenge


def begin_verification(challenge: Challenge, now: datetime | None = None) -> Challenge:
    """Enter pending_verification when a proof arrives (re-entry allowed)."""
    ensure_accepts_submission(challenge, now)
    return transition(challenge, PENDING_VERIFICATION, cause="submission")


def apply_verdict(challenge: Challenge, verdict: Verdict) -> Challenge:
    """Apply a pass / retry / exhausted verdict to a challenge in pending_verification."""
    if challenge.status != PENDING_VERIFICATION:
        raise StateConflictError(
            f"Cannot apply a verdict to a challenge that is {challenge.status}.",
            hint=_terminal_hint(challenge.status),
        )
    return transition(challenge, _VERDICT_TARGETS[verdict], cause=f"verdict:{verdict}")


def expire(challenge: Challenge, now: datetime | None = None) -> Challenge:
    """Fail an open challenge whose deadline has passed."""
    if not is_expired(challenge, now):
        raise StateConflictError("The deadline for this challenge has not passed yet.")
    return transition(challenge, FAILED, cause="deadline_expired")


class ChallengeStateMachine:
    """Drives transitions and fires settlement on the one terminal transition.

    Settlement runs inside the caller's transaction. If it raises
    InsufficientBalanceError the status change is still pending in the
    session; the caller commits it and surfaces the shortfall.
    """

    def __init__(self, settlement: SettlementEngine) -> None:
        self.settlement = settlement

    def begin_verification(self, challenge: Challenge, now: datetime | None = None) -> Challenge:
        return begin_verification(challenge, now)

    async def apply_verdict(self, challenge: Challenge, verdict: Verdict) -> SettlementResult | None:
        apply_verdict(challenge, verdict)
        return await self._settle_if_terminal(challenge)

    async def expire(self, challenge: Challenge, now: datetime | None = None) -> SettlementResult | None:
        expire(challenge, now)
        return await self._settle_if_terminal(challenge)

    async def _settle_if_terminal(self, challenge: Challenge) -> SettlementResult | None:
        if challenge.status == FAILED:
            return await self.settlement.settle_failure(challenge)
        if challenge.status == COMPLETED:
            return await self.settlement.settle_success(challenge)
        return None
