"""Polymarket account adapter built on py-clob-client.

Balances combine the CLOB collateral balance with the wallet's conditional
token holdings from the data API; a token holding is a position.
"""

import logging
from decimal import Decimal
from typing import Any

import httpx
from py_clob_client.client import ClobClient as BaseClobClient
from py_clob_client.clob_types import (
    ApiCreds,
    AssetType,
    BalanceAllowanceParams,
    OpenOrderParams,
    OrderArgs,
    OrderType,
    PartialCreateOrderOptions,
)
from py_clob_client.exceptions import PolyApiException, PolyException

from trading_mirror.credentials import PolymarketCredentials
from trading_mirror.providers.http import (
    AUTH_STATUS_CODES,
    DEFAULT_TIMEOUT_SECONDS,
    MAX_REQUESTS_PER_SECOND,
    RETRY_STATUS_CODES,
    ProviderAuthError,
    ProviderError,
    ProviderTransientError,
    RateLimiter,
    send_json,
    with_retry,
)
from trading_mirror.providers.models import POLYGON_USDC_ADDRESS, PolymarketBalance, PolymarketOrder

logger = logging.getLogger(__name__)

PROVIDER_NAME = "Polymarket"
DEFAULT_CLOB_HOST = "https://clob.polymarket.com"
DEFAULT_DATA_API_HOST = "https://data-api.polymarket.com"
USDC_DECIMALS = 6
HOLDINGS_PAGE_LIMIT = 500
MAX_ORDERS = 300


def _translate_clob_error(action: str, exc: Exception) -> ProviderError:
    """Map a py-clob-client failure onto the provider error hierarchy."""
    if isinstance(exc, PolyApiException):
        status = getattr(exc, "status_code", None)
        body = str(getattr(exc, "error_msg", "") or exc)
        message = f"{PROVIDER_NAME} API request failed ({status}) for {action}: {body[:180]}"
        if status in AUTH_STATUS_CODES:
            return ProviderAuthError(message, provider=PROVIDER_NAME, status_code=status, body=body)
        if status is None or status in RETRY_STATUS_CODES:
            return ProviderTransientError(message, provider=PROVIDER_NAME, status_code=status, body=body)
        return ProviderError(message, provider=PROVIDER_NAME, status_code=status, body=body)
    if isinstance(exc, PolyException):
        return ProviderError(f"{PROVIDER_NAME} client error for {action}: {exc}", provider=PROVIDER_NAME)
    return ProviderTransientError(
        f"{PROVIDER_NAME} API request failed for {action}: {exc}", provider=PROVIDER_NAME
    )


class PolymarketClient:
    """Authenticated Polymarket adapter with rate limiting and retry logic.

    Example:
        >>> client = PolymarketClient(credentials)
        >>> balances = client.get_balances()
        >>> orders = client.get_orders()
    """

    def __init__(
        self,
        credentials: PolymarketCredentials,
        *,
        clob_host: str = DEFAULT_CLOB_HOST,
        data_api_host: str = DEFAULT_DATA_API_HOST,
        chain_id: int = 137,
        http_client: httpx.Client | None = None,
        requests_per_second: float = MAX_REQUESTS_PER_SECOND,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        """Initialize the Polymarket client.

        Args:
            credentials: L2 API credentials, signing key and holdings address.
            clob_host: CLOB API endpoint URL.
            data_api_host: Data API endpoint URL (token holdings).
            chain_id: Chain ID for signing (Polygon=137).
            http_client: Optional pre-built httpx client for data API calls.
            requests_per_second: Rate limit for API requests.
            timeout: Per-request timeout in seconds for data API calls.
        """
        self._credentials = credentials
        self._data_api_host = data_api_host.rstrip("/")
        self._http = http_client or httpx.Client(timeout=timeout)
        self._rate_limiter = RateLimiter(requests_per_second)
        self._client = BaseClobClient(
            clob_host,
            chain_id=chain_id,
            key=credentials.private_key,
            creds=ApiCreds(
                api_key=credentials.api_key,
                api_secret=credentials.api_secret,
                api_passphrase=credentials.api_passphrase,
            ),
            signature_type=credentials.signature_type,
            funder=credentials.funder,
        )

    def close(self) -> None:
        self._http.close()

    @with_retry()
    def get_collateral_balance(self) -> PolymarketBalance:
        """Fetch the USDC collateral balance, converted from base units."""
        self._rate_limiter.acquire_sync()
        try:
            resp = self._client.get_balance_allowance(
                params=BalanceAllowanceParams(asset_type=AssetType.COLLATERAL)
            )
        except Exception as e:
            raise _translate_clob_error("balance-allowance", e) from e
        resp = resp if isinstance(resp, dict) else {}
        base_units = PolymarketBalance.from_dict({"balance": resp.get("balance")}).balance
        balance = base_units / (Decimal(10) ** USDC_DECIMALS) if base_units is not None else None
        return PolymarketBalance(asset_id=POLYGON_USDC_ADDRESS, balance=balance, raw=resp)

    @with_retry()
    def get_token_holdings(self) -> list[PolymarketBalance]:
        """Fetch conditional token holdings for the account's holder address."""
        self._rate_limiter.acquire_sync()
        rows = send_json(
            self._http,
            PROVIDER_NAME,
            "GET",
            f"{self._data_api_host}/positions",
            params={
                "user": self._credentials.holder_address,
                "sizeThreshold": 0,
                "limit": HOLDINGS_PAGE_LIMIT,
            },
        )
        if not isinstance(rows, list):
            raise ProviderError(
                f"{PROVIDER_NAME} positions response was not a list",
                provider=PROVIDER_NAME,
                body=str(rows),
            )
        return [PolymarketBalance.from_dict(row) for row in rows]

    def get_balances(self) -> list[PolymarketBalance]:
        """Return collateral plus token balances as raw ``{asset_id, balance}`` rows."""
        return [self.get_collateral_balance(), *self.get_token_holdings()]

    @with_retry()
    def get_orders(self) -> list[PolymarketOrder]:
        """Fetch the account's resting orders in one call."""
        self._rate_limiter.acquire_sync()
        try:
            resp = self._client.get_orders(OpenOrderParams())
        except Exception as e:
            raise _translate_clob_error("orders", e) from e
        if isinstance(resp, dict) and isinstance(resp.get("data"), list):
            resp = resp["data"]
        if not isinstance(resp, list):
            return []
        return [PolymarketOrder.from_dict(o) for o in resp[:MAX_ORDERS]]

    def place_order(
        self,
        *,
        token_id: str,
        side: str,
        price: Decimal,
        size: Decimal,
        tick_size: str = "0.01",
        neg_risk: bool = False,
        order_type: str = OrderType.GTC,
    ) -> dict[str, Any]:
        """Sign and post a limit order. Not retried."""
        self._rate_limiter.acquire_sync()
        try:
            order = self._client.create_order(
                OrderArgs(token_id=token_id, price=float(price), size=float(size), side=side),
                PartialCreateOrderOptions(tick_size=tick_size, neg_risk=neg_risk),
            )
            resp = self._client.post_order(order, order_type)
        except Exception as e:
            raise _translate_clob_error("order", e) from e
        return resp if isinstance(resp, dict) else {"response": resp}

    @with_retry()
    def cancel_order(self, order_id: str) -> dict[str, Any]:
        """Cancel a resting order."""
        self._rate_limiter.acquire_sync()
        try:
            resp = self._client.cancel(order_id=order_id)
        except Exception as e:
            raise _translate_clob_error("cancel", e) from e
        return resp if isinstance(resp, dict) else {"response": resp}
