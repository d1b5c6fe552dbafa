"""
Messaging gateway with provider abstraction.

Supports an HTTP chat gateway (WhatsApp-style JSON) and a log-only provider
for development. Provider is selected via configuration. Delivery is best
effort: failures are logged and reported as False, never raised.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

import httpx
import structlog

from bettask.config import get_settings
from bettask.retry import RetryPolicy

logger = structlog.get_logger()


class BaseMessagingProvider(ABC):
    """Abstract base class for message delivery providers."""

    @abstractmethod
    async def send(self, recipient: str, body: str) -> bool:
        """Send a text message. Returns True on success."""
        ...


class HttpMessagingProvider(BaseMessagingProvider):
    """POST ``{to, type: "text", text: {body}}`` to the chat gateway."""

    def __init__(
        self,
        api_url: str,
        api_key: str,
        retry_policy: RetryPolicy,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_url = api_url
        self.api_key = api_key
        self.retry_policy = retry_policy
        self._transport = transport

    async def send(self, recipient: str, body: str) -> bool:
        payload = {"to": recipient, "type": "text", "text": {"body": body}}

        async def _call() -> None:
            async with httpx.AsyncClient(timeout=10.0, transport=self._transport) as client:
                response = await client.post(
                    self.api_url,
                    headers={"x-api-key": self.api_key, "Content-Type": "application/json"},
                    json=payload,
                )
                response.raise_for_status()

        try:
            await self.retry_policy.run("messaging", _call)
        except Exception:
            logger.exception("notification_failed", to=recipient, provider="http", outcome="infrastructure_error")
            return False
        logger.info("notification_sent", to=recipient, provider="http")
        return True


class LogMessagingProvider(BaseMessagingProvider):
    """Write messages to the log instead of delivering them."""

    async def send(self, recipient: str, body: str) -> bool:
        logger.info("notification_logged", to=recipient, body=body)
        return True


def _create_provider() -> BaseMessagingProvider:
    """Create messaging provider based on configuration."""
    settings = get_settings()
    provider_name = settings.messaging_provider.lower()

    if provider_name == "http":
        return HttpMessagingProvider(
            api_url=settings.messaging_api_url,
            api_key=settings.messaging_api_key,
            retry_policy=RetryPolicy.from_settings(settings),
        )
    if provider_name == "log":
        return LogMessagingProvider()
    msg = f"Unsupported messaging provider: {provider_name}"
    raise ValueError(msg)


class NotificationService:
    """High-level messaging service used by the engine and workers."""

    def __init__(self, provider: BaseMessagingProvider | None = None) -> None:
        self.provider = provider or _create_provider()

    async def notify(self, recipient: str | None, body: str) -> bool:
        """Send ``body`` to ``recipient``. Returns False if it could not be delivered."""
        if not recipient:
            logger.info("notification_skipped", reason="no_recipient")
            return False
        try:
            return await self.provider.send(recipient, body)
        except Exception:
            logger.exception("notification_failed", to=recipient, outcome="infrastructure_error")
            return False


# Module-level singleton
_notification_service: NotificationService | None = None


def get_notification_service() -> NotificationService:
    """Get or create the notification service singleton."""
    global _notification_service  # noqa: PLW0603
    if _notification_service is None:
        _notification_service = NotificationService()
    return _notification_service


def reset_notification_service() -> None:
    """Reset the notification service singleton (for testing)."""
    global _notification_service  # noqa: PLW0603
    _notification_service = None
