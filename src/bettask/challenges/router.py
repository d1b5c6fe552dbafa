"""Challenge API endpoints: create, list, detail, proof submission, reminders."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import JSONResponse

from bettask.challenges.schemas import (
    ChallengeListResponse,
    ChallengeResponse,
    CreateChallengeRequest,
    CreateReminderRequest,
    ErrorBody,
    ReminderResponse,
    SettlementResponse,
    SubmissionResponse,
    VerificationResponse,
)
from bettask.challenges.service import create_challenge, get_challenge_detail, list_challenges
from bettask.config import get_settings
from bettask.db.models import Challenge, Submission, User
from bettask.db.repositories import UnitOfWork
from bettask.dependencies import get_current_user, get_pipeline, get_uow
from bettask.errors import InsufficientBalanceError, ValidationError
from bettask.reminders.service import create_reminder
from bettask.time_utils import ensure_utc
from bettask.verification.attempts import MAX_AI_ATTEMPTS, MAX_METADATA_ATTEMPTS
from bettask.verification.pipeline import MANUAL_REVIEW, ProofSubmission, VerificationOutcome, VerificationPipeline

router = APIRouter(prefix="/api/v1", tags=["Challenges"])

MAX_UPLOAD_BYTES = 10 * 1024 * 1024


# ── Helpers ──


def _submission_response(submission: Submission) -> SubmissionResponse:
    return SubmissionResponse(
        id=submission.id,
        verification_status=submission.verification_status,
        verified=submission.verified,
        metadata_attempts=submission.metadata_attempts,
        ai_attempts=submission.ai_attempts,
        metadata_attempts_left=max(0, MAX_METADATA_ATTEMPTS - submission.metadata_attempts),
        ai_attempts_left=max(0, MAX_AI_ATTEMPTS - submission.ai_attempts),
        verification_notes=submission.verification_notes,
        media_url=submission.media_url,
        proof_text=submission.proof_text,
        submitted_at=ensure_utc(submission.submitted_at) if submission.submitted_at else None,
    )


def _challenge_response(challenge: Challenge, submission: Submission | None = None) -> ChallengeResponse:
    return ChallengeResponse(
        id=challenge.id,
        title=challenge.title,
        description=challenge.description,
        verification_method=challenge.verification_method,
        verification_details=challenge.verification_details,
        stake=challenge.stake,
        deadline=ensure_utc(challenge.deadline),
        status=challenge.status,
        settlement_outcome=challenge.settlement_outcome,
        settled_at=ensure_utc(challenge.settled_at) if challenge.settled_at else None,
        created_at=ensure_utc(challenge.created_at),
        submission=_submission_response(submission) if submission is not None else None,
    )


def _verification_response(outcome: VerificationOutcome) -> VerificationResponse:
    settlement = outcome.settlement
    return VerificationResponse(
        challenge_id=outcome.challenge_id,
        submission_id=outcome.submission_id,
        challenge_status=outcome.challenge_status,
        verification_status=outcome.verification_status,
        verdict=outcome.verdict,
        reason=outcome.reason,
        notes=outcome.notes,
        attempts_left=outcome.attempts_left,
        metadata_attempts_left=outcome.metadata_attempts_left,
        ai_attempts_left=outcome.ai_attempts_left,
        media_url=outcome.media_url,
        settlement=SettlementResponse(
            outcome=settlement.outcome,
            amount=settlement.amount,
            balance_after=settlement.balance_after,
        ) if settlement is not None else None,
        error=ErrorBody(**outcome.error.to_dict()) if outcome.error is not None else None,
    )


def _status_code_for(outcome: VerificationOutcome) -> int:
    if isinstance(outcome.error, InsufficientBalanceError):
        return outcome.error.status_code
    if outcome.verification_status == MANUAL_REVIEW:
        return 202
    return 200


# ── Challenges ──


@router.post("/challenges", response_model=ChallengeResponse, status_code=201)
async def create(
    body: CreateChallengeRequest,
    user: User = Depends(get_current_user),  # noqa: B008
    uow: UnitOfWork = Depends(get_uow),  # noqa: B008
) -> ChallengeResponse:
    """Create an active challenge. Stake must be at least the configured minimum."""
    challenge = await create_challenge(
        uow,
        user.id,
        title=body.title,
        stake=body.stake,
        deadline=body.deadline,
        description=body.description,
        verification_method=body.verification_method,
        verification_details=body.verification_details,
        min_stake=get_settings().min_stake,
    )
    return _challenge_response(challenge)


@router.get("/challenges", response_model=ChallengeListResponse)
async def list_mine(
    user: User = Depends(get_current_user),  # noqa: B008
    uow: UnitOfWork = Depends(get_uow),  # noqa: B008
) -> ChallengeListResponse:
    challenges = await list_challenges(uow, user.id)
    return ChallengeListResponse(
        challenges=[_challenge_response(c) for c in challenges],
        total=len(challenges),
    )


@router.get("/challenges/{challenge_id}", response_model=ChallengeResponse)
async def detail(
    challenge_id: str,
    user: User = Depends(get_current_user),  # noqa: B008
    uow: UnitOfWork = Depends(get_uow),  # noqa: B008
) -> ChallengeResponse:
    challenge, submission = await get_challenge_detail(uow, user.id, challenge_id)
    return _challenge_response(challenge, submission)


# ── Proof submission ──


@router.post("/challenges/{challenge_id}/submissions", response_model=VerificationResponse)
async def submit_proof(
    challenge_id: str,
    file: UploadFile = File(...),  # noqa: B008
    proof_text: str | None = Form(None),
    last_modified: datetime | None = Form(None),
    user: User = Depends(get_current_user),  # noqa: B008
    pipeline: VerificationPipeline = Depends(get_pipeline),  # noqa: B008
) -> JSONResponse:
    """
    Upload a proof photo and run one verification attempt.

    200 with the verdict; 202 when the proof was parked for manual review;
    402 when the challenge failed but the wallet could not cover the stake.
    """
    data = await file.read(MAX_UPLOAD_BYTES + 1)
    if not data:
        raise ValidationError("Please attach a photo as proof for your challenge.")
    if len(data) > MAX_UPLOAD_BYTES:
        raise ValidationError("The photo is too large.", hint="Upload an image smaller than 10 MB.")
    content_type = file.content_type or "application/octet-stream"
    if not content_type.startswith("image/"):
        raise ValidationError("Proof must be an image.", hint="Upload a JPEG or PNG photo.")

    outcome = await pipeline.submit(
        user.id,
        challenge_id,
        ProofSubmission(
            data=data,
            content_type=content_type,
            file_name=file.filename,
            proof_text=proof_text,
            last_modified=last_modified,
        ),
    )
    return JSONResponse(
        status_code=_status_code_for(outcome),
        content=_verification_response(outcome).model_dump(mode="json"),
    )


# ── Reminders ──


@router.post("/challenges/{challenge_id}/reminders", response_model=ReminderResponse, status_code=201)
async def add_reminder(
    challenge_id: str,
    body: CreateReminderRequest,
    user: User = Depends(get_current_user),  # noqa: B008
    uow: UnitOfWork = Depends(get_uow),  # noqa: B008
) -> ReminderResponse:
    reminder = await create_reminder(uow, user.id, challenge_id, body.remind_at)
    return ReminderResponse(
        id=reminder.id,
        challenge_id=reminder.challenge_id,
        remind_at=ensure_utc(reminder.remind_at),
        sent=reminder.sent,
    )
