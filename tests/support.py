"""Fakes and constants shared by the test suite."""

from __future__ import annotations

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from bettask.errors import ExternalServiceError
from bettask.notifications.gateway import BaseMessagingProvider
from bettask.storage.media import BaseMediaStorage
from bettask.verification.classifier import ProofMedia, RelevanceResult, RelevanceVerdict

IST = ZoneInfo("Asia/Kolkata")

# 12:00 IST on a fixed day; pipeline tests run with this clock
NOW = datetime(2026, 6, 5, 6, 30, tzinfo=timezone.utc)


# ── Fakes ──


class FakeClassifier:
    """Returns queued results in order; repeats the last one when the queue runs dry."""

    def __init__(self, *results: RelevanceResult | Exception) -> None:
        self.results: list[RelevanceResult | Exception] = list(results) or [
            RelevanceVerdict(is_valid=True, confidence=90, analysis="Gym equipment visible")
        ]
        self.calls: list[tuple[str, str, str | None]] = []

    async def check_relevance(
        self,
        media: ProofMedia,
        title: str,
        description: str,
        verification_details: str | None = None,
    ) -> RelevanceResult:
        self.calls.append((title, description, verification_details))
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result


class FakeStorage(BaseMediaStorage):
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.uploads: list[tuple[str, str, int, str | None]] = []

    async def upload(
        self,
        owner_id: str,
        challenge_id: str,
        data: bytes,
        content_type: str | None = None,
    ) -> str:
        if self.fail:
            raise ExternalServiceError("Your proof could not be stored right now.")
        self.uploads.append((owner_id, challenge_id, len(data), content_type))
        return f"https://media.test/{owner_id}/{challenge_id}/{len(self.uploads)}.jpg"


class RecordingProvider(BaseMessagingProvider):
    def __init__(self, succeed: bool = True) -> None:
        self.succeed = succeed
        self.sent: list[tuple[str, str]] = []

    async def send(self, recipient: str, body: str) -> bool:
        if self.succeed:
            self.sent.append((recipient, body))
        return self.succeed

