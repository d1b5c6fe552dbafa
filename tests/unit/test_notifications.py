"""Message templates and the notification service."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from types import SimpleNamespace
from zoneinfo import ZoneInfo

import httpx
import pytest

from bettask.notifications import templates
from bettask.notifications.gateway import (
    HttpMessagingProvider,
    LogMessagingProvider,
    NotificationService,
    get_notification_service,
    reset_notification_service,
)
from bettask.retry import RetryPolicy

IST = ZoneInfo("Asia/Kolkata")


async def _no_sleep(_delay: float) -> None:
    return None


class _ExplodingProvider(LogMessagingProvider):
    async def send(self, recipient: str, body: str) -> bool:
        raise RuntimeError("provider bug")


class TestTemplates:
    def test_amount_formatting(self):
        assert templates.format_amount(500) == "₹500"
        assert templates.format_amount(125000) == "₹125,000"

    def test_deadline_in_reference_zone(self):
        deadline = datetime(2026, 6, 5, 12, 30, tzinfo=timezone.utc)
        assert templates.format_deadline(deadline, IST) == "Fri, 5 Jun, 06:00 PM"

    def test_naive_deadline_treated_as_utc(self):
        deadline = datetime(2026, 6, 5, 12, 30)
        assert templates.format_deadline(deadline, IST) == "Fri, 5 Jun, 06:00 PM"

    def test_retry_pluralisation(self):
        assert "1 attempt left" in templates.verification_retry("Gym", None, 1)
        assert "2 attempts left" in templates.verification_retry("Gym", "Photo must be taken today", 2)

    def test_failed_mentions_deduction_or_shortfall(self):
        assert "₹500 has been deducted" in templates.verification_failed("Gym", 500, None, True)
        assert "could not cover the ₹500 stake" in templates.verification_failed("Gym", 500, None, False)

    def test_help_includes_support_email(self):
        assert "help@bettask.test" in templates.help_text("help@bettask.test")

    def test_challenge_list_groups_and_truncates(self):
        deadline = datetime(2026, 6, 5, 12, 30, tzinfo=timezone.utc)
        challenges = [SimpleNamespace(title="Open", stake=100, deadline=deadline, status="active")]
        challenges += [
            SimpleNamespace(title=f"Done {i}", stake=50, deadline=deadline, status="completed") for i in range(5)
        ]
        text = templates.challenge_list(challenges, IST)
        assert "🟢 *Active Challenges:*" in text
        assert '1. "Open" - ₹100 - Due: Fri, 5 Jun, 06:00 PM' in text
        assert '"Done 2"' in text
        assert '"Done 3"' not in text
        assert "...and 2 more" in text
        assert "Failed Challenges" not in text

    def test_empty_challenge_list(self):
        assert "don't have any challenges" in templates.challenge_list([], IST)


@pytest.mark.asyncio
class TestHttpMessagingProvider:
    async def test_posts_text_payload(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"ok": True})

        provider = HttpMessagingProvider(
            "https://chat.test/send", "k-123", RetryPolicy(sleep=_no_sleep), httpx.MockTransport(handler)
        )
        assert await provider.send("+919800000001", "hello") is True
        assert seen[0].headers["x-api-key"] == "k-123"
        assert json.loads(seen[0].content) == {
            "to": "+919800000001",
            "type": "text",
            "text": {"body": "hello"},
        }

    async def test_failure_reported_not_raised(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503)

        provider = HttpMessagingProvider(
            "https://chat.test/send", "k", RetryPolicy(max_attempts=2, sleep=_no_sleep), httpx.MockTransport(handler)
        )
        assert await provider.send("+919800000001", "hello") is False


@pytest.mark.asyncio
class TestNotificationService:
    async def test_skips_missing_recipient(self, recording_provider):
        service = NotificationService(provider=recording_provider)
        assert await service.notify(None, "hi") is False
        assert recording_provider.sent == []

    async def test_delivers(self, recording_provider):
        service = NotificationService(provider=recording_provider)
        assert await service.notify("+91", "hi") is True
        assert recording_provider.sent == [("+91", "hi")]

    async def test_provider_exception_swallowed(self):
        assert await NotificationService(provider=_ExplodingProvider()).notify("+91", "hi") is False

    async def test_singleton_uses_configured_provider(self):
        reset_notification_service()
        try:
            service = get_notification_service()
            assert isinstance(service.provider, LogMessagingProvider)
            assert get_notification_service() is service
        finally:
            reset_notification_service()
