"""Per-caller quotas in the rate-limit middleware."""

from __future__ import annotations

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from redis.exceptions import ConnectionError as RedisConnectionError

from bettask.middleware import rate_limit
from bettask.middleware.rate_limit import RateLimitMiddleware


class _FakePipeline:
    def __init__(self, store: dict[str, int], fail: bool) -> None:
        self.store = store
        self.fail = fail
        self.ops: list[tuple[str, str]] = []

    async def __aenter__(self) -> _FakePipeline:
        return self

    async def __aexit__(self, *exc) -> None:
        return None

    def incr(self, key: str) -> None:
        self.ops.append(("incr", key))

    def expire(self, key: str, _seconds: int) -> None:
        self.ops.append(("expire", key))

    async def execute(self) -> list:
        if self.fail:
            raise RedisConnectionError("connection refused")
        results: list = []
        for op, key in self.ops:
            if op == "incr":
                self.store[key] = self.store.get(key, 0) + 1
                results.append(self.store[key])
            else:
                results.append(True)
        return results


class _FakeRedis:
    def __init__(self, fail: bool = False) -> None:
        self.store: dict[str, int] = {}
        self.fail = fail

    def pipeline(self, transaction: bool = True) -> _FakePipeline:
        return _FakePipeline(self.store, self.fail)


def _app() -> FastAPI:
    app = FastAPI()
    app.add_middleware(RateLimitMiddleware, requests_per_window=3, window_seconds=60, proof_requests_per_window=1)

    @app.get("/api/v1/challenges")
    async def challenges() -> dict:
        return {"ok": True}

    @app.post("/api/v1/challenges/{challenge_id}/submissions")
    async def submit(challenge_id: str) -> dict:
        return {"id": challenge_id}

    @app.get("/health")
    async def health() -> dict:
        return {"status": "healthy"}

    return app


@pytest.fixture
def fake_redis(monkeypatch) -> _FakeRedis:
    redis = _FakeRedis()
    monkeypatch.setattr(rate_limit, "get_redis", lambda: redis)
    return redis


@pytest_asyncio.fixture
async def limited_client():
    async with AsyncClient(transport=ASGITransport(app=_app()), base_url="http://test") as ac:
        yield ac


class TestBuckets:
    def test_proof_paths(self):
        from starlette.requests import Request

        def request(method: str, path: str) -> Request:
            return Request({"type": "http", "method": method, "path": path, "headers": []})

        assert RateLimitMiddleware.bucket(request("POST", "/api/v1/challenges/abc/submissions")) == "proof"
        assert RateLimitMiddleware.bucket(request("POST", "/api/v1/chat/commands")) == "proof"
        assert RateLimitMiddleware.bucket(request("GET", "/api/v1/challenges/abc")) == "api"
        assert RateLimitMiddleware.bucket(request("POST", "/api/v1/challenges")) == "api"


@pytest.mark.asyncio
class TestDispatch:
    async def test_headers_count_down(self, fake_redis, limited_client):
        headers = {"X-User-Id": "u1"}
        first = await limited_client.get("/api/v1/challenges", headers=headers)
        second = await limited_client.get("/api/v1/challenges", headers=headers)
        assert first.headers["X-RateLimit-Limit"] == "3"
        assert first.headers["X-RateLimit-Remaining"] == "2"
        assert second.headers["X-RateLimit-Remaining"] == "1"

    async def test_over_quota_is_429(self, fake_redis, limited_client):
        headers = {"X-User-Id": "u1"}
        for _ in range(3):
            assert (await limited_client.get("/api/v1/challenges", headers=headers)).status_code == 200
        resp = await limited_client.get("/api/v1/challenges", headers=headers)
        assert resp.status_code == 429
        assert resp.json()["code"] == "rate_limited"
        assert resp.headers["Retry-After"] == "60"

    async def test_proof_quota_is_separate(self, fake_redis, limited_client):
        headers = {"X-User-Id": "u1"}
        path = "/api/v1/challenges/c1/submissions"
        assert (await limited_client.post(path, headers=headers)).status_code == 200
        resp = await limited_client.post(path, headers=headers)
        assert resp.status_code == 429
        assert "too quickly" in resp.json()["hint"]
        assert (await limited_client.get("/api/v1/challenges", headers=headers)).status_code == 200

    async def test_callers_counted_apart(self, fake_redis, limited_client):
        path = "/api/v1/challenges/c1/submissions"
        assert (await limited_client.post(path, headers={"X-User-Id": "u1"})).status_code == 200
        assert (await limited_client.post(path, headers={"X-User-Id": "u2"})).status_code == 200

    async def test_health_unmetered(self, fake_redis, limited_client):
        for _ in range(5):
            resp = await limited_client.get("/health")
            assert resp.status_code == 200
        assert fake_redis.store == {}

    async def test_redis_error_lets_request_through(self, monkeypatch, limited_client):
        monkeypatch.setattr(rate_limit, "get_redis", lambda: _FakeRedis(fail=True))
        for _ in range(5):
            resp = await limited_client.get("/api/v1/challenges", headers={"X-User-Id": "u1"})
            assert resp.status_code == 200
        assert "X-RateLimit-Limit" not in resp.headers
