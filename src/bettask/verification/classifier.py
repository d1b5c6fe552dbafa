"""AI relevance check against an external vision/language classifier.

The classifier is untrusted input. Whatever comes back is parsed into
``RelevanceVerdict`` or ``MalformedResponse``; validity is never inferred
from substrings of free text.
"""

from __future__ import annotations

import base64
import json
import re
from dataclasses import dataclass
from typing import Any, Literal, Protocol

import httpx
import structlog

from bettask.config import Settings
from bettask.errors import ExternalServiceError
from bettask.retry import RetryPolicy
from bettask.verification.prompts import relevance_prompt, token_prompt

logger = structlog.get_logger()

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)
_RAW_PREVIEW = 200


@dataclass(frozen=True)
class RelevanceVerdict:
    is_valid: bool
    confidence: int
    analysis: str
    kind: Literal["verdict"] = "verdict"


@dataclass(frozen=True)
class MalformedResponse:
    """Unparseable classifier output. Always invalid with zero confidence."""

    raw: str
    error: str
    kind: Literal["malformed"] = "malformed"

    @property
    def is_valid(self) -> bool:
        return False

    @property
    def confidence(self) -> int:
        return 0

    @property
    def analysis(self) -> str:
        return f"AI response could not be parsed ({self.error}). Raw response: {self.raw[:_RAW_PREVIEW]}"


RelevanceResult = RelevanceVerdict | MalformedResponse


@dataclass(frozen=True)
class ProofMedia:
    data: bytes
    content_type: str = "image/jpeg"


class RelevanceClassifier(Protocol):
    async def check_relevance(
        self,
        media: ProofMedia,
        title: str,
        description: str,
        verification_details: str | None = None,
    ) -> RelevanceResult: ...


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def extract_text(payload: Any) -> str | None:
    """Pull candidates[0].content.parts[0].text out of a generateContent reply."""
    try:
        text = payload["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        return None
    return text if isinstance(text, str) else None


def parse_relevance_text(text: str) -> RelevanceResult:
    cleaned = _FENCE_RE.sub("", text.strip()).strip()
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        return MalformedResponse(raw=text, error=f"invalid JSON: {exc.msg}")
    if not isinstance(data, dict):
        return MalformedResponse(raw=text, error="expected a JSON object")

    is_valid = data.get("isValid")
    if not isinstance(is_valid, bool):
        return MalformedResponse(raw=text, error="isValid is not a boolean")

    confidence = data.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        return MalformedResponse(raw=text, error="confidence is not a number")

    analysis = data.get("analysis")
    return RelevanceVerdict(
        is_valid=is_valid,
        confidence=int(round(min(100.0, max(0.0, float(confidence))))),
        analysis=analysis if isinstance(analysis, str) and analysis else "No analysis provided",
    )


def parse_relevance_payload(payload: Any) -> RelevanceResult:
    text = extract_text(payload)
    if text is None:
        return MalformedResponse(raw=json.dumps(payload)[:_RAW_PREVIEW * 2], error="no candidate text")
    return parse_relevance_text(text)


def parse_token_payload(payload: Any) -> RelevanceResult:
    """Map a Valid/Invalid token reply onto the relevance result shape."""
    text = extract_text(payload)
    if text is None:
        return MalformedResponse(raw=json.dumps(payload)[:_RAW_PREVIEW * 2], error="no candidate text")
    token = text.strip().strip('".').lower()
    if token == "valid":
        return RelevanceVerdict(is_valid=True, confidence=100, analysis="Classifier approved the proof")
    if token == "invalid":
        return RelevanceVerdict(is_valid=False, confidence=0, analysis="Classifier rejected the proof")
    return MalformedResponse(raw=text, error="expected Valid or Invalid")


# ---------------------------------------------------------------------------
# Gemini client
# ---------------------------------------------------------------------------


class GeminiClassifier:
    """Calls the Gemini generateContent endpoint with inline image data."""

    def __init__(
        self,
        api_url: str,
        api_key: str,
        model: str,
        retry_policy: RetryPolicy,
        timeout: float = 30.0,
        mode: Literal["relevance", "token"] = "relevance",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.retry_policy = retry_policy
        self.timeout = timeout
        self.mode = mode
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> GeminiClassifier:
        return cls(
            api_url=settings.classifier_api_url,
            api_key=settings.classifier_api_key,
            model=settings.classifier_model,
            retry_policy=RetryPolicy.from_settings(settings),
            timeout=settings.classifier_timeout_seconds,
            mode=settings.classifier_mode,
            transport=transport,
        )

    async def check_relevance(
        self,
        media: ProofMedia,
        title: str,
        description: str,
        verification_details: str | None = None,
    ) -> RelevanceResult:
        if self.mode == "token":
            payload = await self._generate(token_prompt(title, description), media, max_output_tokens=100)
            result = parse_token_payload(payload)
        else:
            prompt = relevance_prompt(title, description, verification_details)
            payload = await self._generate(prompt, media, max_output_tokens=500)
            result = parse_relevance_payload(payload)

        if isinstance(result, MalformedResponse):
            logger.warning("classifier_malformed_response", error=result.error, raw=result.raw[:_RAW_PREVIEW])
        return result

    async def _generate(self, prompt: str, media: ProofMedia, max_output_tokens: int) -> Any:
        body = {
            "contents": [{
                "parts": [
                    {"text": prompt},
                    {"inline_data": {
                        "mime_type": media.content_type,
                        "data": base64.b64encode(media.data).decode("ascii"),
                    }},
                ],
            }],
            "generationConfig": {"temperature": 0.1, "maxOutputTokens": max_output_tokens},
        }
        url = f"{self.api_url}/{self.model}:generateContent"

        async def _call() -> Any:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(url, params={"key": self.api_key}, json=body)
                response.raise_for_status()
                try:
                    return response.json()
                except ValueError:
                    return {"raw_body": response.text}

        try:
            return await self.retry_policy.run("classifier", _call)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.error(
                "classifier_request_rejected",
                status_code=exc.response.status_code if isinstance(exc, httpx.HTTPStatusError) else None,
                error=type(exc).__name__,
                outcome="infrastructure_error",
            )
            raise ExternalServiceError("The proof checker is unavailable right now.") from exc
