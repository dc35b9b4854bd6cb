"""Public Polymarket market data: Gamma metadata and CLOB price history."""

import logging

import httpx

from trading_mirror.providers.http import (
    DEFAULT_TIMEOUT_SECONDS,
    MAX_REQUESTS_PER_SECOND,
    RateLimiter,
    send_json,
    with_retry,
)
from trading_mirror.providers.models import GammaMarket, PricePoint

logger = logging.getLogger(__name__)

PROVIDER_NAME = "Polymarket"
DEFAULT_GAMMA_HOST = "https://gamma-api.polymarket.com"
DEFAULT_CLOB_HOST = "https://clob.polymarket.com"


class PolymarketMarketDataClient:
    """Unauthenticated client for Gamma markets and CLOB prices-history."""

    def __init__(
        self,
        *,
        gamma_host: str = DEFAULT_GAMMA_HOST,
        clob_host: str = DEFAULT_CLOB_HOST,
        http_client: httpx.Client | None = None,
        requests_per_second: float = MAX_REQUESTS_PER_SECOND,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._gamma_host = gamma_host.rstrip("/")
        self._clob_host = clob_host.rstrip("/")
        self._http = http_client or httpx.Client(timeout=timeout)
        self._rate_limiter = RateLimiter(requests_per_second)

    def close(self) -> None:
        self._http.close()

    @with_retry()
    def get_markets_by_token_ids(self, token_ids: list[str]) -> list[GammaMarket]:
        """Fetch Gamma markets containing any of the given CLOB token ids.

        Callers are responsible for keeping the batch within the upstream
        limit on repeated ``clob_token_ids`` parameters.
        """
        if not token_ids:
            return []
        self._rate_limiter.acquire_sync()
        params = [("clob_token_ids", token_id) for token_id in token_ids]
        params.append(("limit", str(len(token_ids))))
        rows = send_json(self._http, PROVIDER_NAME, "GET", f"{self._gamma_host}/markets", params=params)
        if not isinstance(rows, list):
            return []
        return [GammaMarket.from_dict(row) for row in rows]

    @with_retry()
    def get_prices_history(
        self,
        token_id: str,
        *,
        start_ts: int,
        end_ts: int,
        fidelity: int | None = None,
    ) -> list[PricePoint]:
        """Fetch the price series for a token between two unix timestamps.

        Args:
            token_id: CLOB token id.
            start_ts: Window start (unix seconds).
            end_ts: Window end (unix seconds).
            fidelity: Optional sample resolution in minutes.

        Returns:
            Price points sorted by timestamp; unusable samples are dropped.
        """
        token_id = token_id.strip()
        if not token_id:
            raise ValueError("token_id is required")
        self._rate_limiter.acquire_sync()
        params: dict[str, str | int] = {"market": token_id, "startTs": int(start_ts), "endTs": int(end_ts)}
        if fidelity is not None:
            params["fidelity"] = fidelity
        resp = send_json(self._http, PROVIDER_NAME, "GET", f"{self._clob_host}/prices-history", params=params)
        history = resp.get("history") if isinstance(resp, dict) else None
        if not isinstance(history, list):
            return []
        points = [p for p in (PricePoint.from_dict(h) for h in history) if p is not None]
        return sorted(points, key=lambda p: p.ts)
