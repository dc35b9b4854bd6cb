"""Tests for shared provider HTTP plumbing."""

import time
from unittest.mock import patch

import httpx
import pytest

from trading_mirror.providers.http import (
    ERROR_BODY_LIMIT,
    ProviderAuthError,
    ProviderError,
    ProviderTransientError,
    RateLimiter,
    RetryError,
    raise_for_response,
    send_json,
    with_retry,
)


def _client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


class TestRateLimiter:
    """Tests for RateLimiter."""

    def test_acquire_sync_no_wait_first_call(self) -> None:
        limiter = RateLimiter(max_requests_per_second=10)
        start = time.monotonic()
        limiter.acquire_sync()

        assert time.monotonic() - start < 0.05

    def test_acquire_sync_enforces_rate(self) -> None:
        limiter = RateLimiter(max_requests_per_second=10)
        limiter.acquire_sync()

        start = time.monotonic()
        limiter.acquire_sync()

        assert time.monotonic() - start >= 0.08


class TestWithRetry:
    """Tests for the retry decorator."""

    def test_retries_transient_errors(self) -> None:
        call_count = 0

        @with_retry(max_retries=3, base_delay=0.01)
        def flaky() -> str:
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                raise ProviderTransientError("busy", provider="Kalshi", status_code=503)
            return "ok"

        assert flaky() == "ok"
        assert call_count == 3

    def test_exhausted_retries_carry_last_error(self) -> None:
        @with_retry(max_retries=1, base_delay=0.01)
        def always_busy() -> str:
            raise ProviderTransientError("rate limited", provider="Kalshi", status_code=429)

        with pytest.raises(RetryError) as exc_info:
            always_busy()

        assert "2 attempts failed" in str(exc_info.value)
        assert "rate limited" in str(exc_info.value)
        assert isinstance(exc_info.value.last_exception, ProviderTransientError)

    def test_auth_errors_not_retried(self) -> None:
        call_count = 0

        @with_retry(max_retries=3, base_delay=0.01)
        def rejected() -> str:
            nonlocal call_count
            call_count += 1
            raise ProviderAuthError("bad key", provider="Kalshi", status_code=401)

        with pytest.raises(ProviderAuthError):
            rejected()
        assert call_count == 1

    def test_backoff_doubles(self) -> None:
        @with_retry(max_retries=2, base_delay=1.0)
        def always_busy() -> str:
            raise ProviderTransientError("busy", provider="Kalshi")

        with patch("trading_mirror.providers.http.time.sleep") as sleep, pytest.raises(RetryError):
            always_busy()

        assert [c.args[0] for c in sleep.call_args_list] == [1.0, 2.0]


class TestRaiseForResponse:
    """Tests for status code mapping."""

    def _response(self, status: int, body: str = "nope") -> httpx.Response:
        return httpx.Response(status, text=body, request=httpx.Request("GET", "https://x.test/a"))

    def test_success_passes(self) -> None:
        raise_for_response("Kalshi", self._response(200, "{}"))

    @pytest.mark.parametrize("status", [401, 403])
    def test_auth_statuses(self, status: int) -> None:
        with pytest.raises(ProviderAuthError) as exc_info:
            raise_for_response("Kalshi", self._response(status))
        assert exc_info.value.status_code == status

    @pytest.mark.parametrize("status", [429, 500, 502, 503, 504])
    def test_transient_statuses(self, status: int) -> None:
        with pytest.raises(ProviderTransientError):
            raise_for_response("Kalshi", self._response(status))

    def test_other_statuses_are_plain_errors(self) -> None:
        with pytest.raises(ProviderError) as exc_info:
            raise_for_response("Kalshi", self._response(404, "missing"))

        error = exc_info.value
        assert not isinstance(error, (ProviderAuthError, ProviderTransientError))
        assert "Kalshi API request failed (404)" in str(error)
        assert error.body == "missing"

    def test_body_is_truncated(self) -> None:
        with pytest.raises(ProviderError) as exc_info:
            raise_for_response("Kalshi", self._response(400, "x" * 1000))
        assert len(exc_info.value.body) == ERROR_BODY_LIMIT


class TestSendJson:
    """Tests for send_json."""

    def test_decodes_json(self) -> None:
        client = _client(lambda request: httpx.Response(200, json={"ok": True}))
        assert send_json(client, "Kalshi", "GET", "https://x.test/a") == {"ok": True}

    def test_empty_body_is_empty_dict(self) -> None:
        client = _client(lambda request: httpx.Response(204))
        assert send_json(client, "Kalshi", "DELETE", "https://x.test/a") == {}

    def test_invalid_json(self) -> None:
        client = _client(lambda request: httpx.Response(200, text="<html>"))
        with pytest.raises(ProviderError, match="invalid JSON"):
            send_json(client, "Kalshi", "GET", "https://x.test/a")

    def test_transport_errors_are_transient(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(ProviderTransientError):
            send_json(_client(handler), "Kalshi", "GET", "https://x.test/a")
