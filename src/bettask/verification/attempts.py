"""Verification attempt budget: a pure decision over counters and check outcomes.

Budgets: three failed timestamp checks, and one AI retry (a second AI
failure exhausts). Counters passed in are the values *before* the current
attempt; the returned decision carries the counters *after* it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

Verdict = Literal["pass", "retry", "exhausted"]
FailureReason = Literal["metadata", "ai"]

MAX_METADATA_ATTEMPTS = 3
MAX_AI_ATTEMPTS = 1
AI_CONFIDENCE_THRESHOLD = 70


@dataclass(frozen=True)
class AttemptDecision:
    verdict: Verdict
    reason: FailureReason | None
    metadata_attempts: int
    ai_attempts: int

    @property
    def metadata_attempts_left(self) -> int:
        return max(0, MAX_METADATA_ATTEMPTS - self.metadata_attempts)

    @property
    def ai_attempts_left(self) -> int:
        return max(0, MAX_AI_ATTEMPTS - self.ai_attempts)

    @property
    def attempts_left(self) -> int:
        """Remaining attempts for the check that drove this decision."""
        if self.reason == "metadata":
            return self.metadata_attempts_left
        if self.reason == "ai":
            return self.ai_attempts_left
        return 0


def ai_passes(ai_valid: bool, ai_confidence: int, threshold: int = AI_CONFIDENCE_THRESHOLD) -> bool:
    """The classifier's boolean only counts at or above the confidence threshold."""
    return ai_valid and ai_confidence >= threshold


def decide(
    metadata_attempts_used: int,
    ai_attempts_used: int,
    timestamp_valid: bool,
    ai_valid: bool | None = None,
    ai_confidence: int | None = None,
    threshold: int = AI_CONFIDENCE_THRESHOLD,
) -> AttemptDecision:
    """Return exactly one of pass / retry / exhausted with the reason behind it.

    ``ai_valid`` and ``ai_confidence`` are only read when the timestamp
    check passed; the AI check is never consulted for a metadata failure.
    """
    if metadata_attempts_used < 0 or ai_attempts_used < 0:
        raise ValueError("Attempt counters cannot be negative")

    if not timestamp_valid:
        used = metadata_attempts_used + 1
        verdict: Verdict = "exhausted" if metadata_attempts_used >= MAX_METADATA_ATTEMPTS - 1 else "retry"
        return AttemptDecision(verdict, "metadata", used, ai_attempts_used)

    if ai_valid is None or ai_confidence is None:
        raise ValueError("AI outcome is required when the timestamp check passes")

    if not ai_passes(ai_valid, ai_confidence, threshold):
        used = ai_attempts_used + 1
        verdict = "exhausted" if ai_attempts_used >= MAX_AI_ATTEMPTS else "retry"
        return AttemptDecision(verdict, "ai", metadata_attempts_used, used)

    return AttemptDecision("pass", None, metadata_attempts_used, ai_attempts_used)
