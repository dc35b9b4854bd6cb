"""Tests for credential stores and lookup helpers."""

from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from trading_mirror.config import Settings, clear_settings_cache
from trading_mirror.credentials import (
    InMemoryCredentialStore,
    KalshiCredentials,
    PolymarketCredentials,
    SettingsCredentialStore,
    connected_providers,
    lookup_credentials,
)
from trading_mirror.providers.models import TradingProvider


@pytest.fixture
def local_settings(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Settings:
    monkeypatch.chdir(tmp_path)
    for name in (
        "POLYMARKET_CLOB_FUNDER",
        "POLYMARKET_CLOB_SIGNATURE_TYPE",
        "KALSHI_PRIVATE_KEY_PATH",
        "LOCAL_USER_ID",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///mirror.db")
    monkeypatch.setenv("POLYMARKET_CLOB_API_KEY", "key")
    monkeypatch.setenv("POLYMARKET_CLOB_API_SECRET", "secret")
    monkeypatch.setenv("POLYMARKET_CLOB_API_PASSPHRASE", "pass")
    monkeypatch.setenv("POLYMARKET_CLOB_PRIVATE_KEY", "0x" + "2" * 64)
    monkeypatch.setenv("POLYMARKET_WALLET_ADDRESS", "0xwallet")
    monkeypatch.setenv("KALSHI_API_KEY_ID", "kid")
    monkeypatch.setenv("KALSHI_PRIVATE_KEY", "pem-text")
    clear_settings_cache()
    return Settings()


class TestPolymarketCredentials:
    def test_holder_prefers_funder(self, polymarket_credentials: PolymarketCredentials) -> None:
        assert polymarket_credentials.holder_address == polymarket_credentials.wallet_address

        proxied = PolymarketCredentials(
            api_key="k",
            api_secret="s",
            api_passphrase="p",
            private_key="0x1",
            wallet_address="0xwallet",
            funder="0xproxy",
        )
        assert proxied.holder_address == "0xproxy"

    def test_repr_hides_secrets(self, polymarket_credentials: PolymarketCredentials) -> None:
        text = repr(polymarket_credentials)
        assert "secret" not in text
        assert "passphrase" not in text
        assert polymarket_credentials.private_key not in text

    def test_kalshi_repr_hides_key(self) -> None:
        creds = KalshiCredentials(key_id="kid", private_key_pem="PRIVATE")
        assert "PRIVATE" not in repr(creds)


class TestInMemoryCredentialStore:
    @pytest.mark.asyncio
    async def test_set_get_remove(self, polymarket_credentials: PolymarketCredentials) -> None:
        store = InMemoryCredentialStore()
        store.set_credentials("u1", TradingProvider.POLYMARKET, polymarket_credentials)

        assert await store.get_credentials("u1", TradingProvider.POLYMARKET) is polymarket_credentials
        assert await store.get_credentials("u1", TradingProvider.KALSHI) is None

        store.remove_credentials("u1", TradingProvider.POLYMARKET)
        assert await store.get_credentials("u1", TradingProvider.POLYMARKET) is None


class TestSettingsCredentialStore:
    @pytest.mark.asyncio
    async def test_local_user_gets_both_accounts(self, local_settings: Settings) -> None:
        store = SettingsCredentialStore(local_settings)

        poly = await store.get_credentials("local", TradingProvider.POLYMARKET)
        kalshi = await store.get_credentials("local", TradingProvider.KALSHI)

        assert isinstance(poly, PolymarketCredentials)
        assert poly.api_key == "key"
        assert poly.holder_address == "0xwallet"
        assert isinstance(kalshi, KalshiCredentials)
        assert kalshi.key_id == "kid"
        assert kalshi.private_key_pem == "pem-text"

    @pytest.mark.asyncio
    async def test_other_users_not_connected(self, local_settings: Settings) -> None:
        store = SettingsCredentialStore(local_settings)
        assert await store.get_credentials("someone-else", TradingProvider.POLYMARKET) is None

    @pytest.mark.asyncio
    async def test_missing_address_means_not_connected(
        self, local_settings: Settings, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.delenv("POLYMARKET_WALLET_ADDRESS")
        store = SettingsCredentialStore(Settings())
        assert await store.get_credentials("local", TradingProvider.POLYMARKET) is None


class TestLookupHelpers:
    @pytest.mark.asyncio
    async def test_lookup_failure_counts_as_not_connected(self) -> None:
        store = AsyncMock()
        store.get_credentials.side_effect = RuntimeError("vault down")

        assert await lookup_credentials(store, "u1", TradingProvider.KALSHI) is None

    @pytest.mark.asyncio
    async def test_connected_providers(self, polymarket_credentials: PolymarketCredentials) -> None:
        store = InMemoryCredentialStore()
        store.set_credentials("u1", TradingProvider.POLYMARKET, polymarket_credentials)

        connected = await connected_providers(store, "u1")

        assert connected == {TradingProvider.POLYMARKET: True, TradingProvider.KALSHI: False}
