"""Tests for the retry policy."""

import errno

import httpx
import pytest
from qdrant_client.http.exceptions import UnexpectedResponse

from domain.errors import MalformedResponse, TerminalError
from infra.retry import backoff_delay, execute_with_retry, is_retryable_error


def _status_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://api.example.test/v1/embeddings")
    return httpx.HTTPStatusError("boom", request=request, response=httpx.Response(status, request=request))


class Flaky:
    """Fails with ``errors`` in order, then returns ``value``."""

    def __init__(self, errors, value="ok"):
        self.errors = list(errors)
        self.value = value
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.value


class TestClassification:
    @pytest.mark.parametrize("status", [408, 429, 500, 502, 503, 504])
    def test_retryable_statuses(self, status):
        assert is_retryable_error(_status_error(status))

    @pytest.mark.parametrize("status", [400, 401, 403, 404, 422])
    def test_client_errors_are_not_retryable(self, status):
        assert not is_retryable_error(_status_error(status))

    def test_qdrant_unexpected_response(self):
        exc = UnexpectedResponse(status_code=503, reason_phrase="Unavailable", content=b"", headers=httpx.Headers())
        assert is_retryable_error(exc)

    def test_transport_errors(self):
        assert is_retryable_error(httpx.ConnectTimeout("slow"))
        assert is_retryable_error(httpx.ConnectError("refused"))
        assert is_retryable_error(ConnectionResetError())
        assert is_retryable_error(OSError(errno.ECONNREFUSED, "refused"))

    def test_message_phrases(self):
        assert is_retryable_error(RuntimeError("Rate limit exceeded"))
        assert is_retryable_error(RuntimeError("request timed out"))
        assert not is_retryable_error(RuntimeError("invalid api key"))

    def test_terminal_errors_never_retryable(self):
        # even when the message looks transient
        assert not is_retryable_error(MalformedResponse("connection timeout in JSON"))

    def test_backoff_delay(self):
        assert [backoff_delay(n, 1.0, 10.0, 2.0) for n in range(1, 6)] == [1.0, 2.0, 4.0, 8.0, 10.0]


class TestExecuteWithRetry:
    async def test_returns_first_success(self, no_sleep):
        op = Flaky([])
        assert await execute_with_retry(op) == "ok"
        assert op.calls == 1
        assert no_sleep == []

    async def test_retries_transient_failures(self, no_sleep):
        op = Flaky([_status_error(503), httpx.ReadTimeout("slow")])
        assert await execute_with_retry(op, max_attempts=3, base_delay=1.0) == "ok"
        assert op.calls == 3
        assert no_sleep == [1.0, 2.0]

    async def test_gives_up_after_max_attempts(self, no_sleep):
        op = Flaky([_status_error(500)] * 5)
        with pytest.raises(httpx.HTTPStatusError):
            await execute_with_retry(op, max_attempts=3, base_delay=0.5, max_delay=0.75)
        assert op.calls == 3
        assert no_sleep == [0.5, 0.75]

    async def test_terminal_error_short_circuits(self, no_sleep):
        op = Flaky([MalformedResponse("not json")])
        with pytest.raises(TerminalError):
            await execute_with_retry(op, max_attempts=5)
        assert op.calls == 1
        assert no_sleep == []

    async def test_non_retryable_error_raised_immediately(self, no_sleep):
        op = Flaky([_status_error(401)])
        with pytest.raises(httpx.HTTPStatusError):
            await execute_with_retry(op, max_attempts=5)
        assert op.calls == 1

    async def test_accepts_sync_operations(self, no_sleep):
        assert await execute_with_retry(lambda: 42) == 42

    async def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            await execute_with_retry(lambda: None, max_attempts=0)
