"""Verification pipeline.

One submission is one linear sequence:

    claim -> extract metadata -> store media -> timestamp check
          -> relevance check -> attempt decision -> state transition
          -> settlement -> commit -> notify

Both entry points (HTTP upload and chat command) call ``submit``. The
challenge status, the submission's verification fields and any ledger
entry are committed together. Infrastructure failures (storage or
classifier down, classifier timeout) leave the submission in
``manual_review`` without consuming an attempt.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import structlog

from bettask.challenges.state_machine import ChallengeStateMachine, ensure_accepts_submission
from bettask.config import Settings
from bettask.db.models import Challenge, Submission
from bettask.db.repositories import UnitOfWork
from bettask.errors import (
    AuthorizationError,
    BetTaskError,
    ExternalServiceError,
    InsufficientBalanceError,
    NotFoundError,
)
from bettask.notifications import templates
from bettask.notifications.gateway import NotificationService
from bettask.storage.media import BaseMediaStorage
from bettask.time_utils import get_reference_timezone, utcnow
from bettask.verification.attempts import (
    AI_CONFIDENCE_THRESHOLD,
    MAX_AI_ATTEMPTS,
    MAX_METADATA_ATTEMPTS,
    AttemptDecision,
    Verdict,
    decide,
)
from bettask.verification.classifier import ProofMedia, RelevanceClassifier, RelevanceResult
from bettask.verification.timestamp import MediaMetadata, check_timestamp, extract_media_metadata
from bettask.wallet.settlement import SettlementEngine, SettlementResult

logger = structlog.get_logger()

PENDING = "pending"
APPROVED = "approved"
REJECTED = "failed"
MANUAL_REVIEW = "manual_review"

_STATUS_FOR_VERDICT: dict[str, str] = {
    "pass": APPROVED,
    "retry": PENDING,
    "exhausted": REJECTED,
}


@dataclass(frozen=True)
class ProofSubmission:
    """Raw proof as received from an entry point."""

    data: bytes
    content_type: str | None = None
    file_name: str | None = None
    proof_text: str | None = None
    last_modified: datetime | None = None


@dataclass(frozen=True)
class VerificationOutcome:
    challenge_id: str
    submission_id: str
    challenge_status: str
    verification_status: str
    verdict: Verdict | None
    reason: str | None
    notes: str | None
    metadata_attempts_left: int
    ai_attempts_left: int
    attempts_left: int
    media_url: str | None = None
    settlement: SettlementResult | None = None
    error: BetTaskError | None = None


class VerificationPipeline:
    def __init__(
        self,
        uow: UnitOfWork,
        classifier: RelevanceClassifier,
        storage: BaseMediaStorage,
        notifications: NotificationService | None = None,
        *,
        tz: ZoneInfo,
        confidence_threshold: int = AI_CONFIDENCE_THRESHOLD,
        classifier_timeout: float = 30.0,
        claim_timeout_seconds: int = 300,
        record_refund_on_success: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.uow = uow
        self.classifier = classifier
        self.storage = storage
        self.notifications = notifications
        self.tz = tz
        self.confidence_threshold = confidence_threshold
        self.classifier_timeout = classifier_timeout
        self.claim_timeout = timedelta(seconds=claim_timeout_seconds)
        self.clock = clock
        self.state_machine = ChallengeStateMachine(
            SettlementEngine(uow.challenges, uow.wallets, record_refund_on_success)
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        uow: UnitOfWork,
        classifier: RelevanceClassifier,
        storage: BaseMediaStorage,
        notifications: NotificationService | None = None,
    ) -> VerificationPipeline:
        return cls(
            uow,
            classifier,
            storage,
            notifications,
            tz=get_reference_timezone(settings.reference_timezone),
            confidence_threshold=settings.ai_confidence_threshold,
            classifier_timeout=settings.classifier_timeout_seconds,
            claim_timeout_seconds=settings.claim_timeout_seconds,
            record_refund_on_success=settings.refund_record_on_success,
        )

    async def submit(self, owner_id: str, challenge_id: str, proof: ProofSubmission) -> VerificationOutcome:
        """Run one verification attempt for ``challenge_id``.

        Raises NotFoundError, AuthorizationError or StateConflictError before
        anything is recorded. Everything after the claim is reported through
        the returned outcome, including a settlement shortfall.
        """
        now = self.clock()
        challenge = await self._load_owned(owner_id, challenge_id)
        ensure_accepts_submission(challenge, now)

        submission = await self.uow.submissions.claim(challenge_id, now, now - self.claim_timeout)
        try:
            return await self._verify(owner_id, challenge, submission, proof, now)
        except Exception:
            await self.uow.rollback()
            await self.uow.submissions.release_claim(challenge_id)
            await self.uow.commit()
            raise

    async def _load_owned(self, owner_id: str, challenge_id: str) -> Challenge:
        challenge = await self.uow.challenges.get(challenge_id)
        if challenge is None:
            raise NotFoundError("Challenge not found.")
        if challenge.owner_id != owner_id:
            raise AuthorizationError("This challenge doesn't belong to you.")
        return challenge

    async def _verify(
        self,
        owner_id: str,
        challenge: Challenge,
        submission: Submission,
        proof: ProofSubmission,
        now: datetime,
    ) -> VerificationOutcome:
        metadata = extract_media_metadata(
            proof.data,
            self.tz,
            last_modified=proof.last_modified,
            content_type=proof.content_type,
            file_name=proof.file_name,
        )
        submission.proof_text = proof.proof_text
        submission.media_metadata = metadata.to_json()
        submission.submitted_at = now

        try:
            submission.media_url = await self.storage.upload(
                owner_id, challenge.id, proof.data, proof.content_type
            )
        except ExternalServiceError as exc:
            return await self._manual_review(challenge, submission, exc)

        timestamp = check_timestamp(metadata.captured_at, now, self.tz)
        relevance: RelevanceResult | None = None
        if timestamp.is_valid:
            try:
                relevance = await self._classify(challenge, proof, metadata)
            except ExternalServiceError as exc:
                return await self._manual_review(challenge, submission, exc)

        decision = decide(
            submission.metadata_attempts,
            submission.ai_attempts,
            timestamp.is_valid,
            relevance.is_valid if relevance is not None else None,
            relevance.confidence if relevance is not None else None,
            threshold=self.confidence_threshold,
        )
        if decision.reason == "metadata":
            notes = timestamp.message
        else:
            notes = relevance.analysis if relevance is not None else None

        # Re-read in case the deadline sweep settled the challenge or the deadline passed meanwhile
        challenge = await self._load_owned(owner_id, challenge.id)
        decided_at = self.clock()
        ensure_accepts_submission(challenge, decided_at)

        submission.metadata_attempts = decision.metadata_attempts
        submission.ai_attempts = decision.ai_attempts
        submission.verification_status = _STATUS_FOR_VERDICT[decision.verdict]
        submission.verified = {"pass": True, "exhausted": False}.get(decision.verdict)
        submission.verification_notes = notes

        self.state_machine.begin_verification(challenge, decided_at)
        settlement: SettlementResult | None = None
        error: BetTaskError | None = None
        try:
            settlement = await self.state_machine.apply_verdict(challenge, decision.verdict)
        except InsufficientBalanceError as exc:
            settlement = SettlementResult(challenge.id, "shortfall", 0, exc.available)
            error = exc

        await self.uow.submissions.release(submission)
        await self.uow.commit()

        self._log_attempt(challenge, decision, timestamp.reason, relevance)
        outcome = VerificationOutcome(
            challenge_id=challenge.id,
            submission_id=submission.id,
            challenge_status=challenge.status,
            verification_status=submission.verification_status,
            verdict=decision.verdict,
            reason=decision.reason,
            notes=notes,
            metadata_attempts_left=decision.metadata_attempts_left,
            ai_attempts_left=decision.ai_attempts_left,
            attempts_left=decision.attempts_left,
            media_url=submission.media_url,
            settlement=settlement,
            error=error,
        )
        await self._notify(owner_id, challenge, outcome)
        return outcome

    async def _classify(
        self,
        challenge: Challenge,
        proof: ProofSubmission,
        metadata: MediaMetadata,
    ) -> RelevanceResult:
        media = ProofMedia(proof.data, metadata.content_type or "image/jpeg")
        try:
            async with asyncio.timeout(self.classifier_timeout):
                return await self.classifier.check_relevance(
                    media,
                    challenge.title,
                    challenge.description,
                    challenge.verification_details,
                )
        except TimeoutError as exc:
            logger.warning(
                "classifier_timeout",
                challenge_id=challenge.id,
                timeout_seconds=self.classifier_timeout,
                outcome="infrastructure_error",
            )
            raise ExternalServiceError("The proof checker took too long to respond.") from exc

    async def _manual_review(
        self,
        challenge: Challenge,
        submission: Submission,
        exc: ExternalServiceError,
    ) -> VerificationOutcome:
        """Park the proof for a human; no attempt is consumed and no money moves."""
        challenge = await self._load_owned(challenge.owner_id, challenge.id)
        decided_at = self.clock()
        ensure_accepts_submission(challenge, decided_at)

        submission.verification_status = MANUAL_REVIEW
        submission.verified = None
        submission.verification_notes = exc.message
        self.state_machine.begin_verification(challenge, decided_at)
        await self.uow.submissions.release(submission)
        await self.uow.commit()

        logger.warning(
            "verification_attempt",
            challenge_id=challenge.id,
            verdict=None,
            verification_status=MANUAL_REVIEW,
            error=exc.message,
            outcome="infrastructure_error",
        )
        outcome = VerificationOutcome(
            challenge_id=challenge.id,
            submission_id=submission.id,
            challenge_status=challenge.status,
            verification_status=MANUAL_REVIEW,
            verdict=None,
            reason=None,
            notes=exc.message,
            metadata_attempts_left=max(0, MAX_METADATA_ATTEMPTS - submission.metadata_attempts),
            ai_attempts_left=max(0, MAX_AI_ATTEMPTS - submission.ai_attempts),
            attempts_left=0,
            media_url=submission.media_url,
            error=exc,
        )
        await self._notify(challenge.owner_id, challenge, outcome)
        return outcome

    def _log_attempt(
        self,
        challenge: Challenge,
        decision: AttemptDecision,
        timestamp_reason: str,
        relevance: RelevanceResult | None,
    ) -> None:
        outcome = {"pass": "completed", "retry": "retry", "exhausted": "attempts_exhausted"}[decision.verdict]
        logger.info(
            "verification_attempt",
            challenge_id=challenge.id,
            verdict=decision.verdict,
            reason=decision.reason,
            timestamp_check=timestamp_reason,
            ai_valid=relevance.is_valid if relevance is not None else None,
            ai_confidence=relevance.confidence if relevance is not None else None,
            metadata_attempts=decision.metadata_attempts,
            ai_attempts=decision.ai_attempts,
            challenge_status=challenge.status,
            outcome=outcome,
        )

    async def _notify(self, owner_id: str, challenge: Challenge, outcome: VerificationOutcome) -> None:
        if self.notifications is None:
            return
        owner = await self.uow.users.get(owner_id)
        if owner is None or not owner.phone:
            return
        await self.notifications.notify(owner.phone, outcome_message(challenge, outcome))


def outcome_message(challenge: Challenge, outcome: VerificationOutcome) -> str:
    """Chat text describing a verification outcome."""
    if outcome.verification_status == MANUAL_REVIEW:
        return templates.verification_manual_review(challenge.title)
    if outcome.verdict == "pass":
        return templates.verification_passed(challenge.title, challenge.stake)
    if outcome.verdict == "retry":
        return templates.verification_retry(challenge.title, outcome.notes, outcome.attempts_left)
    deducted = outcome.settlement is not None and outcome.settlement.outcome == "deducted"
    return templates.verification_failed(challenge.title, challenge.stake, outcome.notes, deducted)
