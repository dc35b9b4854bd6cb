"""Provider credentials and the credential store boundary.

Decryption and storage of secrets happen outside this package; the sync
engine only asks a ``CredentialStore`` for a user's credentials and treats
``None`` as "account not connected".
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from trading_mirror.providers.models import TradingProvider

if TYPE_CHECKING:
    from trading_mirror.config import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PolymarketCredentials:
    """CLOB L2 API credentials plus the signing key and holdings address."""

    api_key: str
    api_secret: str
    api_passphrase: str
    private_key: str
    wallet_address: str
    funder: str | None = None
    signature_type: int | None = None

    @property
    def holder_address(self) -> str:
        """Address that holds the account's conditional tokens."""
        return self.funder or self.wallet_address

    def __repr__(self) -> str:
        return f"PolymarketCredentials(wallet_address={self.wallet_address!r}, funder={self.funder!r})"


@dataclass(frozen=True)
class KalshiCredentials:
    """Kalshi API key id plus the RSA private key used for signing."""

    key_id: str
    private_key_pem: str

    def __repr__(self) -> str:
        return f"KalshiCredentials(key_id={self.key_id!r})"


ProviderCredentials = PolymarketCredentials | KalshiCredentials


class CredentialStore(Protocol):
    """Returns decrypted credentials for a user's provider account."""

    async def get_credentials(
        self, user_id: str, provider: TradingProvider
    ) -> ProviderCredentials | None: ...


class InMemoryCredentialStore:
    """Credential store backed by a dict, for tests and embedding."""

    def __init__(self) -> None:
        self._credentials: dict[tuple[str, TradingProvider], ProviderCredentials] = {}

    def set_credentials(
        self, user_id: str, provider: TradingProvider, credentials: ProviderCredentials
    ) -> None:
        self._credentials[(user_id, provider)] = credentials

    def remove_credentials(self, user_id: str, provider: TradingProvider) -> None:
        self._credentials.pop((user_id, provider), None)

    async def get_credentials(
        self, user_id: str, provider: TradingProvider
    ) -> ProviderCredentials | None:
        return self._credentials.get((user_id, provider))


class SettingsCredentialStore:
    """Credentials for the single local user, read from environment settings."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    async def get_credentials(
        self, user_id: str, provider: TradingProvider
    ) -> ProviderCredentials | None:
        if user_id != self._settings.local_user_id:
            return None
        if provider is TradingProvider.POLYMARKET:
            return self._polymarket()
        return self._kalshi()

    def _polymarket(self) -> PolymarketCredentials | None:
        poly = self._settings.polymarket
        if not (
            poly.clob_api_key
            and poly.clob_api_secret
            and poly.clob_api_passphrase
            and poly.clob_private_key
        ):
            return None
        address = poly.wallet_address or poly.clob_funder
        if not address:
            logger.warning("Polymarket credentials set but no wallet/funder address configured")
            return None
        return PolymarketCredentials(
            api_key=poly.clob_api_key.get_secret_value(),
            api_secret=poly.clob_api_secret.get_secret_value(),
            api_passphrase=poly.clob_api_passphrase.get_secret_value(),
            private_key=poly.clob_private_key.get_secret_value(),
            wallet_address=address,
            funder=poly.clob_funder,
            signature_type=poly.clob_signature_type,
        )

    def _kalshi(self) -> KalshiCredentials | None:
        kalshi = self._settings.kalshi
        if not kalshi.api_key_id:
            return None
        pem = kalshi.load_private_key_pem()
        if not pem:
            return None
        return KalshiCredentials(key_id=kalshi.api_key_id, private_key_pem=pem)


async def lookup_credentials(
    store: CredentialStore, user_id: str, provider: TradingProvider
) -> ProviderCredentials | None:
    """Fetch credentials, treating a failing lookup as "not connected"."""
    try:
        return await store.get_credentials(user_id, provider)
    except Exception as e:
        logger.warning("Credential lookup failed for %s/%s: %s", user_id, provider, e)
        return None


async def connected_providers(store: CredentialStore, user_id: str) -> dict[TradingProvider, bool]:
    """Report which provider accounts the user has connected."""
    poly, kalshi = await asyncio.gather(
        lookup_credentials(store, user_id, TradingProvider.POLYMARKET),
        lookup_credentials(store, user_id, TradingProvider.KALSHI),
    )
    return {
        TradingProvider.POLYMARKET: poly is not None,
        TradingProvider.KALSHI: kalshi is not None,
    }
