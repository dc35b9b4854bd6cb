"""Builds per-account adapters from credentials and settings."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

from trading_mirror.providers.gamma import PolymarketMarketDataClient
from trading_mirror.providers.kalshi import KalshiClient
from trading_mirror.providers.polymarket import PolymarketClient

if TYPE_CHECKING:
    from trading_mirror.config import Settings
    from trading_mirror.credentials import KalshiCredentials, PolymarketCredentials


class ProviderClientFactory(Protocol):
    """Creates authenticated adapters for one account."""

    def polymarket(self, credentials: PolymarketCredentials) -> PolymarketClient: ...

    def kalshi(self, credentials: KalshiCredentials) -> KalshiClient: ...


class SettingsClientFactory:
    """Client factory wired from application settings."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def polymarket(self, credentials: PolymarketCredentials) -> PolymarketClient:
        poly = self._settings.polymarket
        return PolymarketClient(
            credentials,
            clob_host=poly.clob_host,
            data_api_host=poly.data_api_host,
            chain_id=poly.clob_chain_id,
            requests_per_second=self._settings.sync.requests_per_second,
        )

    def kalshi(self, credentials: KalshiCredentials) -> KalshiClient:
        return KalshiClient(
            key_id=credentials.key_id,
            private_key_pem=credentials.private_key_pem,
            base_url=self._settings.kalshi.base_url,
            max_pages=self._settings.sync.max_pages,
            page_limit=self._settings.sync.page_limit,
            requests_per_second=self._settings.sync.requests_per_second,
        )

    def market_data(self) -> PolymarketMarketDataClient:
        poly = self._settings.polymarket
        return PolymarketMarketDataClient(
            gamma_host=poly.gamma_host,
            clob_host=poly.clob_host,
            requests_per_second=self._settings.sync.requests_per_second,
        )
