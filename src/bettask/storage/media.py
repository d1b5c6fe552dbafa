"""
Proof media storage with provider abstraction.

Supports a local filesystem store (default, development) and Supabase
Storage over its REST API. Provider is selected via configuration.
"""

from __future__ import annotations

import asyncio
import mimetypes
import time
from abc import ABC, abstractmethod
from pathlib import Path

import httpx
import structlog

from bettask.config import get_settings
from bettask.errors import ExternalServiceError
from bettask.retry import RetryPolicy

logger = structlog.get_logger()

_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/heic": "heic",
}


def object_path(owner_id: str, challenge_id: str, content_type: str | None) -> str:
    """Build ``{owner}/{challenge}/{epoch_ms}.{ext}``."""
    ext = _EXTENSIONS.get(content_type or "")
    if ext is None:
        guessed = mimetypes.guess_extension(content_type or "") or ".jpg"
        ext = guessed.lstrip(".")
    return f"{owner_id}/{challenge_id}/{int(time.time() * 1000)}.{ext}"


class BaseMediaStorage(ABC):
    """Abstract base class for proof media stores."""

    @abstractmethod
    async def upload(
        self,
        owner_id: str,
        challenge_id: str,
        data: bytes,
        content_type: str | None = None,
    ) -> str:
        """Store the bytes and return a publicly resolvable URL."""
        ...


class LocalMediaStorage(BaseMediaStorage):
    """Write media under a local directory and serve it from a base URL."""

    def __init__(self, root: str | Path, base_url: str, bucket: str) -> None:
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")
        self.bucket = bucket

    async def upload(
        self,
        owner_id: str,
        challenge_id: str,
        data: bytes,
        content_type: str | None = None,
    ) -> str:
        path = object_path(owner_id, challenge_id, content_type)
        target = self.root / self.bucket / path
        try:
            await asyncio.to_thread(_write_file, target, data)
        except OSError as exc:
            logger.error("media_upload_failed", provider="local", path=path, error=str(exc))
            raise ExternalServiceError("Your proof could not be stored right now.") from exc
        logger.info("media_uploaded", provider="local", path=path, size_bytes=len(data))
        return f"{self.base_url}/{self.bucket}/{path}"


def _write_file(target: Path, data: bytes) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(data)


class SupabaseMediaStorage(BaseMediaStorage):
    """Upload to a Supabase Storage bucket and return the public object URL."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        bucket: str,
        retry_policy: RetryPolicy,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.bucket = bucket
        self.retry_policy = retry_policy
        self._transport = transport

    async def upload(
        self,
        owner_id: str,
        challenge_id: str,
        data: bytes,
        content_type: str | None = None,
    ) -> str:
        path = object_path(owner_id, challenge_id, content_type)
        url = f"{self.base_url}/storage/v1/object/{self.bucket}/{path}"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "apikey": self.api_key,
            "Content-Type": content_type or "application/octet-stream",
            "x-upsert": "false",
        }

        async def _call() -> None:
            async with httpx.AsyncClient(timeout=30.0, transport=self._transport) as client:
                response = await client.post(url, headers=headers, content=data)
                response.raise_for_status()

        try:
            await self.retry_policy.run("media_storage", _call)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.error(
                "media_upload_failed",
                provider="supabase",
                path=path,
                status_code=exc.response.status_code if isinstance(exc, httpx.HTTPStatusError) else None,
                error=type(exc).__name__,
                outcome="infrastructure_error",
            )
            raise ExternalServiceError("Your proof could not be stored right now.") from exc

        logger.info("media_uploaded", provider="supabase", path=path, size_bytes=len(data))
        return f"{self.base_url}/storage/v1/object/public/{self.bucket}/{path}"


def _create_storage() -> BaseMediaStorage:
    """Create the media store based on configuration."""
    settings = get_settings()
    provider_name = settings.storage_provider.lower()

    if provider_name == "local":
        return LocalMediaStorage(
            root=settings.local_storage_path,
            base_url=settings.storage_base_url,
            bucket=settings.storage_bucket,
        )
    if provider_name == "supabase":
        return SupabaseMediaStorage(
            base_url=settings.storage_base_url,
            api_key=settings.storage_api_key,
            bucket=settings.storage_bucket,
            retry_policy=RetryPolicy.from_settings(settings),
        )
    msg = f"Unsupported storage provider: {provider_name}"
    raise ValueError(msg)


# Module-level singleton
_media_storage: BaseMediaStorage | None = None


def get_media_storage() -> BaseMediaStorage:
    """Get or create the media storage singleton."""
    global _media_storage  # noqa: PLW0603
    if _media_storage is None:
        _media_storage = _create_storage()
    return _media_storage


def reset_media_storage() -> None:
    """Reset the media storage singleton (for testing)."""
    global _media_storage  # noqa: PLW0603
    _media_storage = None
