"""Shared HTTP plumbing for provider adapters: rate limiting, retries, errors."""

import logging
import threading
import time
from collections.abc import Callable
from functools import wraps
from typing import Any, ParamSpec, TypeVar

import httpx

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

MAX_REQUESTS_PER_SECOND = 10
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BASE_DELAY = 1.0
DEFAULT_TIMEOUT_SECONDS = 15.0
RETRY_STATUS_CODES = (429, 500, 502, 503, 504)
AUTH_STATUS_CODES = (401, 403)
ERROR_BODY_LIMIT = 180


class RateLimiter:
    """Minimum-interval rate limiter for blocking adapter calls."""

    def __init__(self, max_requests_per_second: float = MAX_REQUESTS_PER_SECOND) -> None:
        """Initialize the rate limiter.

        Args:
            max_requests_per_second: Maximum requests allowed per second.
        """
        self._min_interval = 1.0 / max_requests_per_second
        self._last_request_time: float = 0.0
        self._lock = threading.Lock()

    def acquire_sync(self) -> None:
        """Block until a request slot is available."""
        with self._lock:
            now = time.monotonic()
            elapsed = now - self._last_request_time
            if elapsed < self._min_interval:
                time.sleep(self._min_interval - elapsed)
            self._last_request_time = time.monotonic()


class ProviderError(Exception):
    """Raised when a provider call fails.

    Carries the HTTP status (None for transport failures) and the response
    body truncated to a short prefix.
    """

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        status_code: int | None = None,
        body: str = "",
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
        self.body = body[:ERROR_BODY_LIMIT]


class ProviderAuthError(ProviderError):
    """Raised when credentials are rejected (401/403) or unusable."""


class ProviderTransientError(ProviderError):
    """Raised for retryable failures (429/5xx, network issues)."""


class RetryError(Exception):
    """Raised when all retry attempts are exhausted."""

    def __init__(self, message: str, last_exception: Exception | None = None) -> None:
        if last_exception is not None:
            message = f"{message}: {last_exception}"
        super().__init__(message)
        self.last_exception = last_exception


def with_retry(
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_RETRY_BASE_DELAY,
    retry_on: tuple[type[Exception], ...] = (ProviderTransientError,),
) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """Decorator for adding retry logic with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts.
        base_delay: Base delay in seconds (doubles with each retry).
        retry_on: Tuple of exception types to retry on.

    Returns:
        Decorated function with retry logic.
    """

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        @wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            last_exception: Exception | None = None

            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except retry_on as e:
                    last_exception = e
                    if attempt == max_retries:
                        break

                    delay = base_delay * (2**attempt)
                    logger.warning(
                        "Attempt %d/%d failed: %s. Retrying in %.1f seconds...",
                        attempt + 1,
                        max_retries + 1,
                        str(e),
                        delay,
                    )
                    time.sleep(delay)

            raise RetryError(
                f"All {max_retries + 1} attempts failed for {func.__name__}",
                last_exception=last_exception,
            )

        return wrapper

    return decorator


def raise_for_response(provider: str, response: httpx.Response) -> None:
    """Raise the matching ProviderError subclass for a non-2xx response."""
    if response.is_success:
        return
    body = response.text[:ERROR_BODY_LIMIT]
    status = response.status_code
    message = f"{provider} API request failed ({status}) for {response.request.url}: {body}"
    if status in AUTH_STATUS_CODES:
        raise ProviderAuthError(message, provider=provider, status_code=status, body=body)
    if status in RETRY_STATUS_CODES:
        raise ProviderTransientError(message, provider=provider, status_code=status, body=body)
    raise ProviderError(message, provider=provider, status_code=status, body=body)


def send_json(
    client: httpx.Client,
    provider: str,
    method: str,
    url: str,
    **kwargs: Any,
) -> Any:
    """Send a request and decode the JSON body, mapping failures to ProviderError."""
    try:
        response = client.request(method, url, **kwargs)
    except httpx.TransportError as e:
        raise ProviderTransientError(
            f"{provider} API request failed for {url}: {e}", provider=provider
        ) from e
    raise_for_response(provider, response)
    if not response.content:
        return {}
    try:
        return response.json()
    except ValueError as e:
        raise ProviderError(
            f"{provider} API returned invalid JSON for {url}",
            provider=provider,
            status_code=response.status_code,
            body=response.text,
        ) from e
