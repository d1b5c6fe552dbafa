"""Proof media metadata extraction and the "taken today" timestamp check."""

from __future__ import annotations

import io
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any, Literal
from zoneinfo import ZoneInfo

import structlog
from PIL import Image, UnidentifiedImageError

from bettask.time_utils import localize

logger = structlog.get_logger()

# EXIF tag ids
_EXIF_IFD = 0x8769
_DATETIME_ORIGINAL = 0x9003
_DATETIME = 0x0132
_EXIF_FORMAT = "%Y:%m:%d %H:%M:%S"

TimestampSource = Literal["exif", "file_modified"]


@dataclass
class MediaMetadata:
    """What we know about an uploaded proof file."""

    captured_at: datetime | None = None
    timestamp_source: TimestampSource | None = None
    width: int | None = None
    height: int | None = None
    size_bytes: int | None = None
    content_type: str | None = None
    file_name: str | None = None

    def to_json(self) -> dict[str, Any]:
        data = asdict(self)
        if self.captured_at is not None:
            data["captured_at"] = self.captured_at.isoformat()
        return data


@dataclass(frozen=True)
class TimestampCheck:
    is_valid: bool
    reason: Literal["ok", "no_timestamp", "wrong_day"]
    message: str | None = None


def _exif_capture_time(image: Image.Image, tz: ZoneInfo) -> datetime | None:
    exif = image.getexif()
    raw = exif.get_ifd(_EXIF_IFD).get(_DATETIME_ORIGINAL) or exif.get(_DATETIME)
    if not raw:
        return None
    try:
        # EXIF times are wall-clock with no zone; read them in the reference zone
        return localize(datetime.strptime(str(raw).strip("\x00 "), _EXIF_FORMAT), tz)
    except ValueError:
        logger.info("exif_timestamp_unparseable", raw=str(raw))
        return None


def extract_media_metadata(
    data: bytes,
    tz: ZoneInfo,
    *,
    last_modified: datetime | None = None,
    content_type: str | None = None,
    file_name: str | None = None,
) -> MediaMetadata:
    """Read capture time and dimensions from image bytes.

    Falls back to the client-reported file modification time when the image
    carries no embedded capture time (or is not an image Pillow can read).
    """
    metadata = MediaMetadata(size_bytes=len(data), content_type=content_type, file_name=file_name)
    try:
        with Image.open(io.BytesIO(data)) as image:
            metadata.width, metadata.height = image.size
            metadata.captured_at = _exif_capture_time(image, tz)
    except (UnidentifiedImageError, OSError):
        logger.info("media_not_an_image", file_name=file_name, size_bytes=len(data))

    if metadata.captured_at is not None:
        metadata.timestamp_source = "exif"
    elif last_modified is not None:
        metadata.captured_at = localize(last_modified, tz)
        metadata.timestamp_source = "file_modified"
    return metadata


def check_timestamp(captured_at: datetime | None, now: datetime, tz: ZoneInfo) -> TimestampCheck:
    """Valid iff ``captured_at`` falls on the same calendar day as ``now`` in ``tz``."""
    if captured_at is None:
        return TimestampCheck(False, "no_timestamp", "No timestamp found in the photo's metadata")

    local_now = localize(now, tz)
    day_start = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
    day_end = day_start + timedelta(days=1)
    if not day_start <= localize(captured_at, tz) < day_end:
        return TimestampCheck(False, "wrong_day", "Photo must be taken today to verify task completion")
    return TimestampCheck(True, "ok")
