"""Classifier response parsing and the Gemini HTTP client."""

from __future__ import annotations

import json

import httpx
import pytest

from bettask.errors import ExternalServiceError, RetryExhaustedError
from bettask.retry import RetryPolicy
from bettask.verification.classifier import (
    GeminiClassifier,
    MalformedResponse,
    ProofMedia,
    RelevanceVerdict,
    parse_relevance_payload,
    parse_relevance_text,
    parse_token_payload,
)


def _reply(text: str) -> dict:
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


async def _no_sleep(_delay: float) -> None:
    return None


def _classifier(handler, mode: str = "relevance") -> GeminiClassifier:
    return GeminiClassifier(
        api_url="https://ai.test/models/",
        api_key="secret",
        model="gemini-test",
        retry_policy=RetryPolicy(max_attempts=3, sleep=_no_sleep),
        mode=mode,
        transport=httpx.MockTransport(handler),
    )


MEDIA = ProofMedia(b"\xff\xd8fake-jpeg", "image/jpeg")


class TestParseRelevanceText:
    def test_plain_json(self):
        result = parse_relevance_text('{"isValid": true, "confidence": 85, "analysis": "Gym equipment visible"}')
        assert result == RelevanceVerdict(True, 85, "Gym equipment visible")

    def test_fenced_json(self):
        text = '```json\n{"isValid": false, "confidence": 20, "analysis": "A beach"}\n```'
        result = parse_relevance_text(text)
        assert result.kind == "verdict"
        assert result.is_valid is False
        assert result.confidence == 20

    def test_confidence_clamped_and_rounded(self):
        assert parse_relevance_text('{"isValid": true, "confidence": 140}').confidence == 100
        assert parse_relevance_text('{"isValid": true, "confidence": -3}').confidence == 0
        assert parse_relevance_text('{"isValid": true, "confidence": 69.6}').confidence == 70

    def test_missing_analysis_defaulted(self):
        assert parse_relevance_text('{"isValid": true, "confidence": 90}').analysis == "No analysis provided"

    def test_free_text_is_malformed(self):
        """A "valid" substring in prose never counts as a pass."""
        result = parse_relevance_text("The image is valid and shows a gym.")
        assert isinstance(result, MalformedResponse)
        assert result.is_valid is False
        assert result.confidence == 0
        assert "could not be parsed" in result.analysis

    @pytest.mark.parametrize(
        "text",
        [
            '{"isValid": "true", "confidence": 90}',
            '{"isValid": true, "confidence": "high"}',
            '{"isValid": true, "confidence": true}',
            '{"confidence": 90}',
            "[true, 90]",
        ],
    )
    def test_wrong_shapes_are_malformed(self, text):
        assert parse_relevance_text(text).kind == "malformed"


class TestParsePayload:
    def test_missing_candidates(self):
        result = parse_relevance_payload({"promptFeedback": {"blockReason": "SAFETY"}})
        assert isinstance(result, MalformedResponse)
        assert result.error == "no candidate text"

    @pytest.mark.parametrize(("text", "valid"), [("Valid", True), ("invalid.", False), (' "VALID" ', True)])
    def test_token_mode(self, text, valid):
        result = parse_token_payload(_reply(text))
        assert result.kind == "verdict"
        assert result.is_valid is valid

    def test_token_mode_unexpected_word(self):
        assert parse_token_payload(_reply("Maybe")).kind == "malformed"


@pytest.mark.asyncio
class TestGeminiClassifier:
    async def test_request_shape_and_success(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=_reply('{"isValid": true, "confidence": 92, "analysis": "Gym"}'))

        result = await _classifier(handler).check_relevance(MEDIA, "Go to the gym", "One hour workout", "selfie")

        assert result == RelevanceVerdict(True, 92, "Gym")
        request = seen[0]
        assert request.url.path == "/models/gemini-test:generateContent"
        assert request.url.params["key"] == "secret"
        body = json.loads(request.content)
        parts = body["contents"][0]["parts"]
        assert "Go to the gym" in parts[0]["text"]
        assert parts[1]["inline_data"]["mime_type"] == "image/jpeg"
        assert body["generationConfig"]["maxOutputTokens"] == 500

    async def test_fenced_reply(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=_reply('```json\n{"isValid": true, "confidence": 75}\n```'))

        result = await _classifier(handler).check_relevance(MEDIA, "Read", "Read a book")
        assert result.is_valid and result.confidence == 75

    async def test_malformed_reply_is_returned_not_raised(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=_reply("Looks valid to me!"))

        result = await _classifier(handler).check_relevance(MEDIA, "Read", "Read a book")
        assert isinstance(result, MalformedResponse)

    async def test_non_json_body_is_malformed(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>oops</html>")

        result = await _classifier(handler).check_relevance(MEDIA, "Read", "Read a book")
        assert isinstance(result, MalformedResponse)

    async def test_retries_server_errors(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) == 1:
                return httpx.Response(503)
            return httpx.Response(200, json=_reply('{"isValid": false, "confidence": 10, "analysis": "Beach"}'))

        result = await _classifier(handler).check_relevance(MEDIA, "Go to the gym", "Workout")
        assert len(calls) == 2
        assert result.is_valid is False

    async def test_client_error_is_external_service_error(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(400, json={"error": "bad key"})

        with pytest.raises(ExternalServiceError):
            await _classifier(handler).check_relevance(MEDIA, "Go to the gym", "Workout")
        assert len(calls) == 1

    async def test_non_transport_request_error_is_external_service_error(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            raise httpx.TooManyRedirects("redirect loop", request=request)

        with pytest.raises(ExternalServiceError) as excinfo:
            await _classifier(handler).check_relevance(MEDIA, "Go to the gym", "Workout")
        assert not isinstance(excinfo.value, RetryExhaustedError)
        assert isinstance(excinfo.value.__cause__, httpx.TooManyRedirects)
        assert len(calls) == 1

    async def test_exhausted_budget(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(RetryExhaustedError):
            await _classifier(handler).check_relevance(MEDIA, "Go to the gym", "Workout")

    async def test_token_mode_request(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=_reply("Valid"))

        result = await _classifier(handler, mode="token").check_relevance(MEDIA, "Go to the gym", "Workout")
        assert result.is_valid and result.confidence == 100
        assert json.loads(seen[0].content)["generationConfig"]["maxOutputTokens"] == 100
