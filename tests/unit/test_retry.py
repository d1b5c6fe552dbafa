"""Transport-level retry policy."""

from __future__ import annotations

import httpx
import pytest

from bettask.errors import RetryExhaustedError
from bettask.retry import RetryPolicy

def _status_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://api.test/x")
    return httpx.HTTPStatusError("boom", request=request, response=httpx.Response(status, request=request))


class _Flaky:
    def __init__(self, *errors: BaseException, result: str = "ok") -> None:
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def policy(sleeps) -> RetryPolicy:
    async def _sleep(delay: float) -> None:
        sleeps.append(delay)

    return RetryPolicy(max_attempts=3, base_delay=0.5, backoff_factor=2.0, max_delay=10.0, sleep=_sleep)


class TestDelays:
    def test_exponential(self):
        policy = RetryPolicy(base_delay=0.5, backoff_factor=2.0)
        assert [policy.delay_for(n) for n in (1, 2, 3)] == [0.5, 1.0, 2.0]

    def test_capped(self):
        assert RetryPolicy(base_delay=4.0, max_delay=5.0).delay_for(3) == 5.0


class TestRetryable:
    @pytest.mark.parametrize("status", [429, 500, 502, 503, 504])
    def test_retryable_status(self, status):
        assert RetryPolicy().is_retryable(_status_error(status))

    @pytest.mark.parametrize("status", [400, 401, 403, 404, 422])
    def test_client_errors_not_retried(self, status):
        assert not RetryPolicy().is_retryable(_status_error(status))

    def test_transport_errors_retried(self):
        assert RetryPolicy().is_retryable(httpx.ConnectError("refused"))
        assert RetryPolicy().is_retryable(httpx.ReadTimeout("slow"))

    def test_programming_errors_not_retried(self):
        assert not RetryPolicy().is_retryable(ValueError("bad"))


@pytest.mark.asyncio
class TestRun:
    async def test_first_try(self, policy, sleeps):
        fn = _Flaky()
        assert await policy.run("op", fn) == "ok"
        assert fn.calls == 1
        assert sleeps == []

    async def test_recovers_after_transient(self, policy, sleeps):
        fn = _Flaky(_status_error(503), httpx.ConnectError("refused"))
        assert await policy.run("op", fn) == "ok"
        assert fn.calls == 3
        assert sleeps == [0.5, 1.0]

    async def test_exhausted(self, policy, sleeps):
        fn = _Flaky(*[_status_error(503)] * 5)
        with pytest.raises(RetryExhaustedError) as exc_info:
            await policy.run("classifier", fn)
        assert fn.calls == 3
        assert exc_info.value.operation == "classifier"
        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.last_error, httpx.HTTPStatusError)
        assert sleeps == [0.5, 1.0]

    async def test_non_retryable_propagates(self, policy, sleeps):
        fn = _Flaky(_status_error(400))
        with pytest.raises(httpx.HTTPStatusError):
            await policy.run("op", fn)
        assert fn.calls == 1
        assert sleeps == []
