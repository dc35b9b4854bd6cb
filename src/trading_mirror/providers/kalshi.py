"""Kalshi trading API client with RSA-PSS request signing."""

import base64
import logging
import time
from typing import Any
from urllib.parse import urlsplit

import httpx
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from trading_mirror.providers.http import (
    DEFAULT_TIMEOUT_SECONDS,
    MAX_REQUESTS_PER_SECOND,
    ProviderAuthError,
    RateLimiter,
    send_json,
    with_retry,
)
from trading_mirror.providers.models import KalshiBalance, KalshiMarket, KalshiMarketPosition, KalshiOrder
from trading_mirror.providers.pagination import DEFAULT_MAX_PAGES, collect_pages

logger = logging.getLogger(__name__)

PROVIDER_NAME = "Kalshi"
DEFAULT_BASE_URL = "https://api.elections.kalshi.com/trade-api/v2"
DEFAULT_PAGE_LIMIT = 500
MAX_POSITIONS = 1000
MAX_ORDERS = 500


def load_private_key(private_key_pem: str) -> rsa.RSAPrivateKey:
    """Load an unencrypted RSA private key from PEM text."""
    try:
        key = serialization.load_pem_private_key(private_key_pem.encode("utf-8"), password=None)
    except (ValueError, TypeError) as e:
        raise ProviderAuthError(
            f"Invalid Kalshi private key: {e}", provider=PROVIDER_NAME
        ) from e
    if not isinstance(key, rsa.RSAPrivateKey):
        raise ProviderAuthError("Kalshi private key must be an RSA key", provider=PROVIDER_NAME)
    return key


def sign_request(private_key: rsa.RSAPrivateKey, timestamp_ms: str, method: str, path: str) -> str:
    """Sign ``timestamp + METHOD + path`` (query string excluded), base64 encoded."""
    message = f"{timestamp_ms}{method.upper()}{path.split('?')[0]}".encode()
    signature = private_key.sign(
        message,
        padding.PSS(mgf=padding.MGF1(hashes.SHA256()), salt_length=padding.PSS.DIGEST_LENGTH),
        hashes.SHA256(),
    )
    return base64.b64encode(signature).decode("ascii")


class KalshiClient:
    """Authenticated Kalshi adapter.

    Returns provider-shaped records (``KalshiBalance``, ``KalshiMarketPosition``
    and friends); no normalization happens here.

    Example:
        >>> client = KalshiClient(key_id="...", private_key_pem=pem)
        >>> balance = client.get_balance()
        >>> positions = client.get_positions()
    """

    def __init__(
        self,
        *,
        key_id: str,
        private_key_pem: str,
        base_url: str = DEFAULT_BASE_URL,
        http_client: httpx.Client | None = None,
        max_pages: int = DEFAULT_MAX_PAGES,
        page_limit: int = DEFAULT_PAGE_LIMIT,
        requests_per_second: float = MAX_REQUESTS_PER_SECOND,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        """Initialize the Kalshi client.

        Args:
            key_id: Kalshi API key id.
            private_key_pem: RSA private key (PEM) registered for ``key_id``.
            base_url: API base URL including the ``/trade-api/v2`` prefix.
            http_client: Optional pre-built httpx client (tests inject a mock transport).
            max_pages: Hard cap on pages followed per paginated endpoint.
            page_limit: Rows requested per page.
            requests_per_second: Rate limit for API requests.
            timeout: Per-request timeout in seconds.
        """
        self._key_id = key_id
        self._private_key = load_private_key(private_key_pem)
        self._base_url = base_url.rstrip("/")
        self._path_prefix = urlsplit(self._base_url).path.rstrip("/")
        self._http = http_client or httpx.Client(timeout=timeout)
        self._max_pages = max_pages
        self._page_limit = page_limit
        self._rate_limiter = RateLimiter(requests_per_second)

    def close(self) -> None:
        self._http.close()

    def _headers(self, method: str, path: str) -> dict[str, str]:
        timestamp_ms = str(int(time.time() * 1000))
        return {
            "KALSHI-ACCESS-KEY": self._key_id,
            "KALSHI-ACCESS-SIGNATURE": sign_request(
                self._private_key, timestamp_ms, method, f"{self._path_prefix}{path}"
            ),
            "KALSHI-ACCESS-TIMESTAMP": timestamp_ms,
            "Accept": "application/json",
        }

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> Any:
        self._rate_limiter.acquire_sync()
        return send_json(
            self._http,
            PROVIDER_NAME,
            method,
            f"{self._base_url}{path}",
            headers=self._headers(method, path),
            params={k: v for k, v in (params or {}).items() if v is not None},
            json=json_body,
        )

    @with_retry()
    def get_balance(self) -> KalshiBalance:
        """Fetch the account balance (cash and portfolio value)."""
        return KalshiBalance.from_dict(self._request("GET", "/portfolio/balance"))

    @with_retry()
    def get_positions_page(self, cursor: str | None = None) -> dict[str, Any]:
        """Fetch one page of open market positions."""
        page = self._request(
            "GET",
            "/portfolio/positions",
            params={"cursor": cursor, "limit": self._page_limit, "count_filter": "position"},
        )
        return page if isinstance(page, dict) else {}

    def get_positions(self) -> list[KalshiMarketPosition]:
        """Fetch all open market positions, following cursors up to the page cap."""
        rows, _ = collect_pages(
            self.get_positions_page,
            "market_positions",
            max_pages=self._max_pages,
            max_items=MAX_POSITIONS,
        )
        return [KalshiMarketPosition.from_dict(row) for row in rows]

    @with_retry()
    def get_orders_page(self, cursor: str | None = None) -> dict[str, Any]:
        """Fetch one page of resting orders."""
        page = self._request(
            "GET",
            "/portfolio/orders",
            params={"cursor": cursor, "limit": self._page_limit, "status": "resting"},
        )
        return page if isinstance(page, dict) else {}

    def get_orders(self) -> list[KalshiOrder]:
        """Fetch all resting orders, following cursors up to the page cap."""
        rows, _ = collect_pages(
            self.get_orders_page,
            "orders",
            max_pages=self._max_pages,
            max_items=MAX_ORDERS,
        )
        return [KalshiOrder.from_dict(row) for row in rows]

    @with_retry()
    def get_markets_by_tickers(self, tickers: list[str]) -> list[KalshiMarket]:
        """Fetch market metadata for one batch of tickers."""
        if not tickers:
            return []
        resp = self._request(
            "GET",
            "/markets",
            params={"tickers": ",".join(tickers), "limit": len(tickers)},
        )
        markets = resp.get("markets") if isinstance(resp, dict) else None
        if not isinstance(markets, list):
            return []
        return [KalshiMarket.from_dict(m) for m in markets]

    def place_order(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Submit an order. Not retried; ``client_order_id`` makes resubmission safe."""
        resp = self._request("POST", "/portfolio/orders", json_body=payload)
        logger.info("Kalshi order submitted for %s", payload.get("ticker"))
        return resp if isinstance(resp, dict) else {"response": resp}

    @with_retry()
    def cancel_order(self, order_id: str) -> dict[str, Any]:
        """Cancel a resting order."""
        resp = self._request("DELETE", f"/portfolio/orders/{order_id}")
        return resp if isinstance(resp, dict) else {"response": resp}
